"""
Provisioning interface consumed by the orchestrator.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..utils.exceptions import (
    InstanceNotFoundError,
    OperationCancelled,
    ProvisioningError,
    ProvisioningTimeout,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

RUNNING = "running"
TERMINAL_STATES = frozenset({"exited", "error", "destroyed", "terminated"})


@dataclass
class InstanceDescription:
    """Current view of an instance as reported by the provider."""

    instance_id: str
    address: str
    port: int | None
    state: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING


@runtime_checkable
class Provisioner(Protocol):
    """Creates, inspects and destroys compute instances."""

    def create(self) -> str:
        """Request one instance and return its id."""
        ...

    def await_running(
        self,
        instance_id: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> InstanceDescription:
        """Block until the instance is running."""
        ...

    def describe(self, instance_id: str) -> InstanceDescription:
        """Return the instance's address and state."""
        ...

    def terminate(self, instance_id: str) -> None:
        """Destroy the instance. Must tolerate instances that are already gone."""
        ...

    def list_instances(self) -> list[InstanceDescription]:
        """Return every instance the account currently holds."""
        ...


def wait_until_running(
    provisioner: Provisioner,
    instance_id: str,
    timeout: float,
    poll_interval: float,
    cancel: threading.Event | None = None,
) -> InstanceDescription:
    """Poll ``provisioner.describe`` until the instance reports running.

    Raises ProvisioningTimeout once ``timeout`` seconds have elapsed,
    ProvisioningError if the instance lands in a terminal state and
    OperationCancelled if ``cancel`` is set while waiting.
    """
    cancel = cancel or threading.Event()
    deadline = time.monotonic() + timeout
    logger.info(f"{instance_id}: waiting to be ready...")

    while True:
        if cancel.is_set():
            raise OperationCancelled(f"{instance_id}: wait for running cancelled")

        try:
            description = provisioner.describe(instance_id)
        except InstanceNotFoundError:
            # Freshly created instances can take a moment to become visible.
            logger.debug(f"{instance_id}: not visible yet")
            description = None

        if description is not None:
            if description.is_running:
                logger.info(f"{instance_id}: instance ready.")
                return description
            if description.state in TERMINAL_STATES:
                raise ProvisioningError(
                    f"{instance_id}: instance entered state '{description.state}'",
                    instance_id=instance_id,
                )

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ProvisioningTimeout(
                f"{instance_id}: not running after {timeout:.0f}s", instance_id=instance_id
            )
        if cancel.wait(min(poll_interval, remaining)):
            raise OperationCancelled(f"{instance_id}: wait for running cancelled")
