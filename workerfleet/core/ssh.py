"""
SSH operations for the worker fleet orchestrator.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import paramiko

from ..instances.provisioner import Provisioner
from ..models import Worker
from ..utils.config import FleetSettings
from ..utils.exceptions import (
    CommandError,
    ConfigurationError,
    OperationCancelled,
    ProvisioningError,
    SSHConnectionError,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Result of a command execution."""

    success: bool
    stdout: str
    stderr: str
    exit_code: int


def load_private_key(path: str, passphrase: str | None = None) -> paramiko.PKey:
    """Load a private key file of any type paramiko understands."""
    key_path = os.path.expanduser(path)
    secret = passphrase.encode() if passphrase else None
    try:
        # Positional: the keyword was renamed across paramiko releases.
        return paramiko.PKey.from_path(key_path, secret)
    except (OSError, ValueError, TypeError, paramiko.SSHException) as e:
        raise ConfigurationError(f"Failed to load SSH key {key_path}: {e}")


class SSHClient:
    """SSH client wrapper with bounded connection retry."""

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: str = "root",
        pkey: paramiko.PKey | None = None,
        connect_timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.pkey = pkey
        self.connect_timeout = connect_timeout
        self.client: paramiko.SSHClient | None = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    def connect(
        self,
        max_attempts: int = 5,
        retry_interval: float = 10.0,
        cancel: threading.Event | None = None,
    ) -> paramiko.SSHClient:
        """Connect to the SSH server, retrying up to ``max_attempts`` times.

        Waits ``retry_interval`` seconds between attempts. The wait happens on
        ``cancel`` so a shutdown interrupts it with OperationCancelled.
        """
        if self.client is not None:
            return self.client

        cancel = cancel or threading.Event()
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            if cancel.is_set():
                raise OperationCancelled(f"SSH connect to {self.host} cancelled")

            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                logger.debug(
                    f"Connecting to SSH host {self.host}:{self.port} (attempt {attempt})"
                )
                client.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    pkey=self.pkey,
                    timeout=self.connect_timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
            except (paramiko.SSHException, OSError) as e:
                client.close()
                last_error = e
                logger.warning(f"{e} ({attempt}/{max_attempts})")
                if attempt < max_attempts:
                    logger.info(f"Trying again in {retry_interval}s...")
                    if cancel.wait(retry_interval):
                        raise OperationCancelled(f"SSH connect to {self.host} cancelled")
                continue

            logger.info(f"SSH connected to {self.host}:{self.port} after {attempt} attempts")
            self.client = client
            return client

        raise SSHConnectionError(self.host, self.port, max_attempts, last_error)

    def close(self) -> None:
        """Close the SSH connection."""
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.debug(f"SSH connection to {self.host}:{self.port} closed")

    def __enter__(self) -> "SSHClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def execute_command(self, command: str, timeout: float | None = None) -> CommandResult:
        """Execute a command in a new session and buffer its output."""
        if self.client is None:
            raise SSHConnectionError(self.host, self.port, 0)

        try:
            stdin, stdout, stderr = self.client.exec_command(command, timeout=timeout)
            try:
                # Drain stderr alongside stdout so neither fills the channel window.
                with ThreadPoolExecutor(max_workers=1) as pool:
                    stderr_future = pool.submit(stderr.read)
                    stdout_bytes = stdout.read()
                    stderr_bytes = stderr_future.result()
                stdout_text = stdout_bytes.decode("utf-8", errors="replace")
                stderr_text = stderr_bytes.decode("utf-8", errors="replace")
                exit_code = stdout.channel.recv_exit_status()
            finally:
                stdout.channel.close()
        except (paramiko.SSHException, OSError) as e:
            raise CommandError(command, -1, str(e)) from e

        success = exit_code == 0
        if success:
            logger.debug("Command completed successfully")
        else:
            logger.warning(f"Command failed with exit code {exit_code}")

        return CommandResult(
            success=success,
            stdout=stdout_text,
            stderr=stderr_text,
            exit_code=exit_code,
        )


class RemoteExecutor:
    """Runs shell commands on workers."""

    def __init__(
        self,
        provisioner: Provisioner,
        settings: FleetSettings | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.settings = settings or FleetSettings()
        self.cancel = cancel or threading.Event()

    def _client_for(self, worker: Worker) -> SSHClient:
        # Addresses can change between calls, so resolve every time.
        description = self.provisioner.describe(worker.id)
        if not description.address:
            raise ProvisioningError(
                f"{worker.id}: instance has no network address", instance_id=worker.id
            )

        pkey = load_private_key(
            self.settings.ssh_key_path, self.settings.ssh_key_passphrase
        )
        return SSHClient(
            host=description.address,
            port=description.port or self.settings.ssh_port,
            username=self.settings.ssh_user,
            pkey=pkey,
            connect_timeout=self.settings.ssh_connect_timeout,
        )

    def run_command(self, worker: Worker, command: str) -> str:
        """Run one command on ``worker`` and return its standard output."""
        client = self._client_for(worker)
        logger.info(f"{worker.id}: executing command: {command}")
        with client:
            client.connect(
                max_attempts=self.settings.ssh_connect_attempts,
                retry_interval=self.settings.ssh_retry_interval,
                cancel=self.cancel,
            )
            result = client.execute_command(command, timeout=self.settings.command_timeout)

        if not result.success:
            raise CommandError(command, result.exit_code, result.stderr.strip())
        return result.stdout

    def run_commands(self, worker: Worker, commands: list[str]) -> list[str]:
        """Run ``commands`` in order, stopping at the first failure."""
        outputs = []
        for command in commands:
            outputs.append(self.run_command(worker, command))
        return outputs
