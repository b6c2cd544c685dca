"""
Orchestration modules for the worker fleet orchestrator.
"""

from .manager import Manager
from .registry import JobRegistry

__all__ = [
    "JobRegistry",
    "Manager",
]
