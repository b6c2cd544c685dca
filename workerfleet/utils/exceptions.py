"""
Custom exceptions for the worker fleet orchestrator.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Job, Worker


class FleetError(Exception):
    """Base exception for all worker fleet errors."""

    pass


class ConfigurationError(FleetError):
    """Exception raised for configuration errors."""

    pass


class ProvisioningError(FleetError):
    """Exception raised when an instance cannot be created or brought up."""

    def __init__(self, message: str, instance_id: str | None = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id


class ProvisioningTimeout(ProvisioningError):
    """Exception raised when an instance does not reach the running state in time."""

    pass


class InstanceNotFoundError(FleetError):
    """Exception raised when the provider has no record of an instance."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"{instance_id}: could not find instance")
        self.instance_id = instance_id


class SSHConnectionError(FleetError):
    """Exception raised when the SSH retry budget is exhausted."""

    def __init__(
        self, host: str, port: int, attempts: int, last_error: Exception | None = None
    ) -> None:
        super().__init__(
            f"Failed to connect to {host}:{port} after {attempts} attempts: {last_error}"
        )
        self.host = host
        self.port = port
        self.attempts = attempts
        self.last_error = last_error


class CommandError(FleetError):
    """Exception raised when a remote command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        message = f"Command '{command}' failed with exit code {exit_code}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class TeardownError(FleetError):
    """Exception raised when an instance cannot be terminated."""

    def __init__(self, message: str, instance_id: str | None = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id


class OperationCancelled(FleetError):
    """Exception raised when a blocking operation is interrupted by shutdown."""

    pass


class FleetOperationError(FleetError):
    """Aggregate of every per-member failure of a fleet-wide operation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class JobStartError(FleetOperationError):
    """Raised when one or more workers of a job could not be started.

    The job is not registered. ``workers`` holds the workers that were
    provisioned anyway; they keep running until the caller stops the job.
    """

    def __init__(self, job: "Job", errors: list[str]) -> None:
        super().__init__(errors)
        self.job = job
        self.workers: dict[str, "Worker"] = dict(job.workers)


class JobStopError(FleetOperationError):
    """Raised when one or more workers of a job could not be terminated."""

    def __init__(self, job: "Job", errors: list[str]) -> None:
        super().__init__(errors)
        self.job = job
        self.remaining: dict[str, "Worker"] = dict(job.workers)
