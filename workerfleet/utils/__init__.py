"""
Utility modules for the worker fleet orchestrator.
"""

from .config import FleetSettings, load_config, validate_config
from .exceptions import (
    CommandError,
    ConfigurationError,
    FleetError,
    FleetOperationError,
    InstanceNotFoundError,
    JobStartError,
    JobStopError,
    OperationCancelled,
    ProvisioningError,
    ProvisioningTimeout,
    SSHConnectionError,
    TeardownError,
)
from .logging import get_logger, log_execution_time, log_function_call, setup_logging

__all__ = [
    "FleetError",
    "ConfigurationError",
    "ProvisioningError",
    "ProvisioningTimeout",
    "InstanceNotFoundError",
    "SSHConnectionError",
    "CommandError",
    "TeardownError",
    "OperationCancelled",
    "FleetOperationError",
    "JobStartError",
    "JobStopError",
    "setup_logging",
    "get_logger",
    "log_function_call",
    "log_execution_time",
    "FleetSettings",
    "load_config",
    "validate_config",
]
