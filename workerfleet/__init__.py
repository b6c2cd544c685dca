"""
Worker fleet orchestrator.

Provisions remote instances for a job, runs commands on them over SSH and
tears the fleet down again.
"""

__version__ = "1.0.0"

from .core.ssh import RemoteExecutor
from .instances.provisioner import InstanceDescription, Provisioner
from .instances.vast import VastProvisioner
from .models import Job, JobRecord, Worker, job_from_record
from .orchestration.manager import Manager
from .orchestration.registry import JobRegistry
from .utils.config import FleetSettings, load_config
from .utils.logging import setup_logging

__all__ = [
    "FleetSettings",
    "InstanceDescription",
    "Job",
    "JobRecord",
    "JobRegistry",
    "Manager",
    "Provisioner",
    "RemoteExecutor",
    "VastProvisioner",
    "Worker",
    "job_from_record",
    "load_config",
    "setup_logging",
]
