"""
Instance provisioning for the worker fleet orchestrator.
"""

from .provisioner import (
    RUNNING,
    TERMINAL_STATES,
    InstanceDescription,
    Provisioner,
    wait_until_running,
)
from .vast import VastProvisioner, parse_instance_data

__all__ = [
    "InstanceDescription",
    "Provisioner",
    "RUNNING",
    "TERMINAL_STATES",
    "VastProvisioner",
    "parse_instance_data",
    "wait_until_running",
]
