"""
Configuration management for the worker fleet orchestrator.

Values are layered: a ``.env`` file (if present) is loaded into the process
environment, then an optional JSON config file, then environment variables.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .exceptions import ConfigurationError

NUMERIC_KEYS = {
    "VAST_DISK_GB": int,
    "VAST_MAX_PRICE": float,
    "VAST_MIN_RELIABILITY": float,
    "VAST_MIN_GPU_RAM": int,
    "SSH_PORT": int,
    "SSH_CONNECT_TIMEOUT": float,
    "SSH_CONNECT_ATTEMPTS": int,
    "SSH_RETRY_INTERVAL": float,
    "COMMAND_TIMEOUT": float,
    "PROVISION_TIMEOUT": float,
    "PROVISION_POLL_INTERVAL": float,
    "MAX_PARALLEL": int,
}

MINIMUMS = {"SSH_CONNECT_ATTEMPTS": 1, "MAX_PARALLEL": 1}

ENV_KEYS = [
    "VAST_API_KEY",
    "VAST_CLI",
    "VAST_IMAGE",
    "VAST_GPU_NAMES",
    "SSH_KEY_PATH",
    "SSH_KEY_PASSPHRASE",
    "SSH_USER",
    "WORKER_STARTUP_COMMANDS",
    "LOG_LEVEL",
    *NUMERIC_KEYS,
]


def load_config(config_file: Path | None = None) -> dict[str, Any]:
    """Load configuration from file or environment variables."""
    config: dict[str, Any] = {}

    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file {config_file} does not exist")
        try:
            with open(config_file) as f:
                config.update(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config file {config_file}: {e}")

    env_config = {key: os.getenv(key) for key in ENV_KEYS}
    config.update({k: v for k, v in env_config.items() if v is not None})

    return config


def validate_config(config: dict[str, Any]) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    for key, kind in NUMERIC_KEYS.items():
        if config.get(key) not in (None, ""):
            try:
                value = kind(config[key])
            except (ValueError, TypeError):
                errors.append(f"Invalid numeric value for {key}: {config[key]}")
                continue
            minimum = MINIMUMS.get(key, 0)
            if value < minimum:
                errors.append(f"{key} must be at least {minimum}: {value}")

    return errors


def _split_list(value: Any, sep: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(sep) if part.strip()]


@dataclass
class FleetSettings:
    """Typed view of the fleet configuration."""

    vast_cli: str = "vastai"
    vast_api_key: str | None = None
    image: str = "vastai/base-image"
    disk_gb: int = 20
    gpu_names: list[str] = field(default_factory=list)
    max_price: float = 0.5
    min_reliability: float = 0.95
    min_gpu_ram: int = 8

    ssh_key_path: str = "~/.ssh/id_rsa"
    ssh_key_passphrase: str | None = None
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_connect_timeout: float = 5.0
    ssh_connect_attempts: int = 5
    ssh_retry_interval: float = 10.0
    command_timeout: float | None = None

    provision_timeout: float = 600.0
    provision_poll_interval: float = 10.0
    max_parallel: int = 8
    startup_commands: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "FleetSettings":
        """Build settings from a mapping returned by ``load_config``."""
        errors = validate_config(config)
        if errors:
            raise ConfigurationError("; ".join(errors))

        settings = cls()
        simple = {
            "VAST_CLI": "vast_cli",
            "VAST_API_KEY": "vast_api_key",
            "VAST_IMAGE": "image",
            "SSH_KEY_PATH": "ssh_key_path",
            "SSH_KEY_PASSPHRASE": "ssh_key_passphrase",
            "SSH_USER": "ssh_user",
            "LOG_LEVEL": "log_level",
        }
        for key, attr in simple.items():
            if config.get(key):
                setattr(settings, attr, str(config[key]))

        numeric = {
            "VAST_DISK_GB": "disk_gb",
            "VAST_MAX_PRICE": "max_price",
            "VAST_MIN_RELIABILITY": "min_reliability",
            "VAST_MIN_GPU_RAM": "min_gpu_ram",
            "SSH_PORT": "ssh_port",
            "SSH_CONNECT_TIMEOUT": "ssh_connect_timeout",
            "SSH_CONNECT_ATTEMPTS": "ssh_connect_attempts",
            "SSH_RETRY_INTERVAL": "ssh_retry_interval",
            "COMMAND_TIMEOUT": "command_timeout",
            "PROVISION_TIMEOUT": "provision_timeout",
            "PROVISION_POLL_INTERVAL": "provision_poll_interval",
            "MAX_PARALLEL": "max_parallel",
        }
        for key, attr in numeric.items():
            if key in config and config[key] not in (None, ""):
                setattr(settings, attr, NUMERIC_KEYS[key](config[key]))

        if "VAST_GPU_NAMES" in config:
            settings.gpu_names = _split_list(config["VAST_GPU_NAMES"], ",")
        # Commands may themselves contain commas, so the env form is ';'-separated.
        if "WORKER_STARTUP_COMMANDS" in config:
            settings.startup_commands = _split_list(
                config["WORKER_STARTUP_COMMANDS"], ";"
            )

        return settings
