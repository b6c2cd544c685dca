"""
Registry of jobs that currently have live workers.
"""

import threading
from collections.abc import Iterator

from ..models import Job
from ..utils.logging import get_logger

logger = get_logger(__name__)


class JobRegistry:
    """Thread-safe mapping from job id to running Job.

    Also hands out one lock per job id so start and stop of the same job
    are serialized.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._job_locks: dict[str, threading.Lock] = {}

    def add(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job
        logger.debug(f"{job.id}: registered")

    def remove(self, job_id: str) -> Job | None:
        """Remove a job; removing an unknown id is a no-op."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is not None:
            logger.debug(f"{job_id}: unregistered")
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def lock_for(self, job_id: str) -> threading.Lock:
        with self._lock:
            return self._job_locks.setdefault(job_id, threading.Lock())

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        with self._lock:
            return iter(list(self._jobs.values()))
