"""
Vast.ai provisioning adapter.

Drives the vast.ai CLI with ``--raw`` so every call returns JSON.
"""

import json
import shlex
import subprocess
import threading
from typing import Any

from ..utils.config import FleetSettings
from ..utils.exceptions import (
    InstanceNotFoundError,
    ProvisioningError,
    TeardownError,
)
from ..utils.logging import get_logger, log_function_call
from .provisioner import InstanceDescription, wait_until_running

logger = get_logger(__name__)


def _build_gpu_query(gpu_list: list[str]) -> str:
    """Build GPU filter query string."""
    if not gpu_list:
        return ""

    gpu_names = [name.replace(" ", "_") for name in gpu_list]
    return (
        f"gpu_name in [{','.join(gpu_names)}]"
        if len(gpu_names) > 1
        else f"gpu_name={gpu_names[0]}"
    )


def parse_instance_data(item: dict[str, Any]) -> InstanceDescription:
    """Parse raw vast.ai instance data into an InstanceDescription."""
    address = item.get("ssh_host") or item.get("public_ipaddr") or ""
    port = item.get("ssh_port")
    # cur_state/intended_status report the target state, not the container.
    state = item.get("actual_status") or "loading"
    return InstanceDescription(
        instance_id=str(item.get("id", "")),
        address=str(address),
        port=int(port) if port else None,
        state=str(state).lower(),
        raw=item,
    )


class VastProvisioner:
    """Provisioner backed by the vast.ai CLI."""

    def __init__(self, settings: FleetSettings) -> None:
        self.settings = settings

    def _run_vast_command(self, args: list[str], timeout: int = 30) -> Any:
        """Execute a vast.ai CLI command and return parsed JSON (or None)."""
        command = shlex.split(self.settings.vast_cli) + args + ["--raw"]
        if self.settings.vast_api_key:
            command += ["--api-key", self.settings.vast_api_key]
        printable = " ".join(shlex.split(self.settings.vast_cli) + args)

        logger.debug(f"Running command: {printable}")
        try:
            result = subprocess.run(
                command, capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            raise ProvisioningError(f"Command timed out: {printable}")
        except OSError as e:
            raise ProvisioningError(f"Could not run vast CLI: {e}")

        if result.returncode != 0:
            raise ProvisioningError(
                f"Command failed: {printable}: {result.stderr.strip()}"
            )

        output = result.stdout.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            logger.debug(f"Raw output: {output[:200]}...")
            raise ProvisioningError(f"Failed to parse JSON from {printable}: {e}")

    @log_function_call
    def search_offers(self, limit: int = 50) -> list[dict[str, Any]]:
        """Search the marketplace for offers matching the configured machine class."""
        query_parts = []
        gpu_query = _build_gpu_query(self.settings.gpu_names)
        if gpu_query:
            query_parts.append(gpu_query)
        query_parts.extend(
            [
                f"dph_total<={self.settings.max_price}",
                f"reliability>={self.settings.min_reliability}",
                f"gpu_ram>={self.settings.min_gpu_ram}",
                "rented=False",
                "verified=True",
            ]
        )

        data = self._run_vast_command(["search", "offers", " ".join(query_parts)])
        if not data:
            return []
        offers = data if isinstance(data, list) else [data]
        offers = [o for o in offers if isinstance(o, dict)]
        offers.sort(key=lambda o: float(o.get("dph_total", o.get("dph", 0.0))))

        logger.info(f"Found {len(offers)} offers")
        return offers[:limit]

    def create(self) -> str:
        """Rent the cheapest matching offer and return the new instance id."""
        offers = self.search_offers()
        if not offers:
            raise ProvisioningError(
                f"No offers found for ${self.settings.max_price}/hr "
                f"(gpus: {self.settings.gpu_names or 'any'})"
            )

        offer_id = str(offers[0]["id"])
        logger.info(f"Renting offer {offer_id}")
        data = self._run_vast_command(
            [
                "create",
                "instance",
                offer_id,
                "--image",
                self.settings.image,
                "--disk",
                str(self.settings.disk_gb),
                "--ssh",
            ],
            timeout=60,
        )

        if not isinstance(data, dict) or not data.get("success") or "new_contract" not in data:
            raise ProvisioningError(f"Rental of offer {offer_id} failed: {data}")

        instance_id = str(data["new_contract"])
        logger.info(f"{instance_id}: created new instance.")
        return instance_id

    def await_running(
        self,
        instance_id: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> InstanceDescription:
        return wait_until_running(
            self,
            instance_id,
            timeout=self.settings.provision_timeout if timeout is None else timeout,
            poll_interval=self.settings.provision_poll_interval,
            cancel=cancel,
        )

    def describe(self, instance_id: str) -> InstanceDescription:
        data = self._run_vast_command(["show", "instance", str(instance_id)])
        if isinstance(data, list):
            data = next(
                (d for d in data if isinstance(d, dict) and str(d.get("id")) == str(instance_id)),
                None,
            )
        if not isinstance(data, dict) or not data.get("id"):
            raise InstanceNotFoundError(str(instance_id))
        return parse_instance_data(data)

    def terminate(self, instance_id: str) -> None:
        """Destroy an instance; an instance that no longer exists counts as destroyed."""
        logger.info(f"{instance_id}: destroying instance")
        try:
            self._run_vast_command(["destroy", "instance", str(instance_id)])
        except ProvisioningError as e:
            try:
                self.describe(instance_id)
            except InstanceNotFoundError:
                logger.info(f"{instance_id}: already gone")
                return
            except ProvisioningError as describe_error:
                logger.debug(f"{instance_id}: could not confirm state: {describe_error}")
            raise TeardownError(
                f"{instance_id}: failed to destroy instance: {e}", instance_id=instance_id
            ) from e

    def list_instances(self) -> list[InstanceDescription]:
        data = self._run_vast_command(["show", "instances"])
        if not data:
            return []
        items = data if isinstance(data, list) else [data]
        instances = [parse_instance_data(item) for item in items if isinstance(item, dict)]
        logger.info(f"Found {len(instances)} instances")
        return instances
