#!/usr/bin/env python3
"""
Command line front end for the worker fleet orchestrator.

    workerfleet run job.json -c "nproc" -c "./crack.sh"
    workerfleet instances
    workerfleet destroy 1234567 1234568
"""

import argparse
import json
import signal
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tabulate import tabulate

from .instances.vast import VastProvisioner
from .models import Job, JobRecord, job_from_record
from .orchestration.manager import Manager
from .utils.config import FleetSettings, load_config
from .utils.exceptions import FleetError, JobStartError, JobStopError
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workerfleet", description="Provision and drive a fleet of workers"
    )
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--log-file", help="Also write logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start a job, run commands on it, stop it")
    run.add_argument("record", type=Path, help="JSON job record")
    run.add_argument(
        "-c",
        "--cmd",
        dest="commands",
        action="append",
        default=[],
        help="Command to run on every worker (repeatable, run in order)",
    )
    run.add_argument(
        "--keep", action="store_true", help="Leave the workers running afterwards"
    )

    sub.add_parser("instances", help="List live instances")

    destroy = sub.add_parser("destroy", help="Terminate instances by id")
    destroy.add_argument("instance_ids", nargs="+")

    return parser


def _load_job(path: Path) -> Job:
    record = JobRecord.from_dict(json.loads(path.read_text()))
    return job_from_record(record)


def _run_everywhere(manager: Manager, job: Job, commands: list[str]) -> int:
    """Run ``commands`` on every worker in parallel; print per-worker output."""
    workers = list(job.workers.values())
    if not workers:
        return 0

    with ThreadPoolExecutor(max_workers=manager.settings.max_parallel) as pool:
        futures = {w.id: pool.submit(manager.run_commands, w, commands) for w in workers}

    status = 0
    rows = []
    for worker_id, future in futures.items():
        error = future.exception()
        if error is not None:
            status = 1
            rows.append([worker_id, "FAILED", str(error)])
            continue
        outputs = future.result()
        rows.append([worker_id, "OK", f"{len(outputs)} commands"])
        print(f"== {worker_id}")
        for output in outputs:
            print(output, end="" if output.endswith("\n") else "\n")

    print(tabulate(rows, headers=["Worker", "Status", "Detail"], tablefmt="grid"))
    return status


def _stop(manager: Manager, job: Job) -> int:
    try:
        manager.stop_job(job)
    except JobStopError as e:
        print(f"Job {job.id} stopped with errors: {e}", file=sys.stderr)
        print(f"Still running: {' '.join(e.remaining)}", file=sys.stderr)
        return 1
    return 0


def _start_and_run(args: argparse.Namespace, manager: Manager, job: Job) -> int:
    try:
        manager.start_job(job)
    except JobStartError as e:
        print(
            f"Job {job.id} failed to start "
            f"({len(e.workers)}/{job.capacity} workers up): {e}",
            file=sys.stderr,
        )
        if args.keep and e.workers:
            print(f"Left running: {' '.join(e.workers)}", file=sys.stderr)
        return 1

    if args.commands:
        return _run_everywhere(manager, job, args.commands)
    return 0


def cmd_run(args: argparse.Namespace, manager: Manager) -> int:
    job = _load_job(args.record)
    status = 1
    try:
        status = _start_and_run(args, manager, job)
    finally:
        # A partially started job is torn down here too.
        if not args.keep and _stop(manager, job):
            status = 1
    return status


def cmd_instances(args: argparse.Namespace, manager: Manager) -> int:
    instances = manager.provisioner.list_instances()
    if not instances:
        print("No instances found.")
        return 0

    rows = [[i.instance_id, i.state, i.address, i.port or ""] for i in instances]
    print(tabulate(rows, headers=["ID", "State", "Address", "Port"], tablefmt="grid"))
    return 0


def cmd_destroy(args: argparse.Namespace, manager: Manager) -> int:
    status = 0
    for instance_id in args.instance_ids:
        try:
            manager.provisioner.terminate(instance_id)
            print(f"{instance_id}: destroyed")
        except FleetError as e:
            print(f"{instance_id}: {e}", file=sys.stderr)
            status = 1
    return status


COMMANDS = {
    "run": cmd_run,
    "instances": cmd_instances,
    "destroy": cmd_destroy,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = FleetSettings.from_config(load_config(args.config))
    except FleetError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(args.log_level or settings.log_level, args.log_file)
    manager = Manager(VastProvisioner(settings), settings=settings)

    def signal_handler(signum: int, frame: object) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        manager.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return COMMANDS[args.command](args, manager)
    except (FleetError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
