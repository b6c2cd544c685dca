"""
Remote execution for the worker fleet orchestrator.
"""

from .ssh import CommandResult, RemoteExecutor, SSHClient, load_private_key

__all__ = [
    "CommandResult",
    "RemoteExecutor",
    "SSHClient",
    "load_private_key",
]
