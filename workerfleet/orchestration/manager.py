"""
Job orchestration: turns a job's capacity into running workers and back.

Fleet-wide operations fan out over a bounded thread pool. Every member is
attempted even when others fail, and every failure is reported in one
aggregate error.
"""

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from ..core.ssh import RemoteExecutor
from ..instances.provisioner import Provisioner
from ..models import Job, Worker
from ..utils.config import FleetSettings
from ..utils.exceptions import (
    FleetError,
    FleetOperationError,
    JobStartError,
    JobStopError,
)
from ..utils.logging import get_logger, log_execution_time
from .registry import JobRegistry

logger = get_logger(__name__)

T = TypeVar("T")


class Manager:
    """Manages the workers and the jobs."""

    def __init__(
        self,
        provisioner: Provisioner,
        executor: RemoteExecutor | None = None,
        registry: JobRegistry | None = None,
        settings: FleetSettings | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.settings = settings or FleetSettings()
        self.cancel = cancel or threading.Event()
        self.executor = executor or RemoteExecutor(provisioner, self.settings, self.cancel)
        self.jobs = registry if registry is not None else JobRegistry()
        self._workers_lock = threading.Lock()

    # ---------- workers ----------

    def create_worker(self) -> Worker:
        """Create an instance and return a Worker once it is running."""
        instance_id = self.provisioner.create()
        try:
            self.provisioner.await_running(
                instance_id,
                timeout=self.settings.provision_timeout,
                cancel=self.cancel,
            )
        except Exception:
            # Never handed out as a Worker, so nobody else could reclaim it.
            self._discard_instance(instance_id)
            raise
        return Worker(id=instance_id)

    def _discard_instance(self, instance_id: str) -> None:
        try:
            self.provisioner.terminate(instance_id)
        except FleetError as e:
            logger.error(f"{instance_id}: could not discard instance: {e}")

    def start_worker(self, worker: Worker) -> None:
        """Run the configured startup commands on a freshly created worker."""
        if not self.settings.startup_commands:
            return
        logger.info(f"{worker.id}: starting worker")
        self.executor.run_commands(worker, self.settings.startup_commands)

    def stop_worker(self, worker: Worker) -> None:
        """Terminate the worker's backing instance."""
        logger.info(f"{worker.id}: stopping worker.")
        self.provisioner.terminate(worker.id)

    # ---------- jobs ----------

    @log_execution_time
    def start_job(self, job: Job) -> Job:
        """Provision ``job.capacity`` workers and register the job.

        Raises JobStartError if any worker failed. In that case the job is
        not registered, but ``job.workers`` (and the error's ``workers``)
        still hold whatever was provisioned; call ``stop_job`` to release it.
        """
        with self.jobs.lock_for(job.id):
            if job.id in self.jobs:
                raise FleetError(f"{job.id}: job is already running")
            if job.workers:
                raise FleetError(
                    f"{job.id}: job still holds {len(job.workers)} workers; "
                    "stop it before starting again"
                )

            logger.info(f"{job.id}: starting job.")

            def bring_up(index: int) -> None:
                try:
                    worker = self.create_worker()
                except Exception as e:
                    raise FleetError(f"worker {index + 1}/{job.capacity}: {e}") from e
                with self._workers_lock:
                    job.workers[worker.id] = worker
                self.start_worker(worker)

            errors = self._fan_out(bring_up, range(job.capacity))

            if errors:
                logger.error(
                    f"{job.id}: {len(errors)} of {job.capacity} workers failed to start"
                )
                raise JobStartError(job, errors)

            self.jobs.add(job)
            logger.info(f"{job.id}: job running with {len(job.workers)} workers")
            return job

    @log_execution_time
    def stop_job(self, job: Job) -> None:
        """Terminate every worker of ``job`` and drop it from the registry.

        The job is unregistered even if some terminations fail; those
        workers stay in ``job.workers`` so a later call can retry them.
        """
        with self.jobs.lock_for(job.id):
            logger.info(f"{job.id}: stopping job.")

            def tear_down(worker: Worker) -> None:
                self.stop_worker(worker)
                with self._workers_lock:
                    job.workers.pop(worker.id, None)

            errors = self._fan_out(tear_down, list(job.workers.values()))
            self.jobs.remove(job.id)

            if errors:
                logger.error(f"{job.id}: {len(errors)} workers failed to stop")
                raise JobStopError(job, errors)
            logger.info(f"{job.id}: job stopped")

    def stop_all_jobs(self) -> None:
        """Stop every registered job, reporting all failures together."""
        errors: list[str] = []
        for job in list(self.jobs):
            try:
                self.stop_job(job)
            except JobStopError as e:
                errors.extend(f"{job.id}: {msg}" for msg in e.errors)
        if errors:
            raise FleetOperationError(errors)

    # ---------- remote execution ----------

    def run_command(self, worker: Worker, command: str) -> str:
        return self.executor.run_command(worker, command)

    def run_commands(self, worker: Worker, commands: list[str]) -> list[str]:
        return self.executor.run_commands(worker, commands)

    def shutdown(self) -> None:
        """Interrupt in-flight provisioning waits and SSH retries."""
        logger.info("Shutdown requested")
        self.cancel.set()

    # ---------- helpers ----------

    def _fan_out(self, func: Callable[[T], Any], items: Sequence[T]) -> list[str]:
        """Call ``func`` on every item concurrently; return all error messages."""
        if not items:
            return []

        workers = max(1, min(self.settings.max_parallel, len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fleet") as pool:
            futures = [pool.submit(func, item) for item in items]

        errors = []
        for future in futures:
            error = future.exception()
            if error is not None:
                logger.error(str(error))
                errors.append(str(error))
        return errors
