"""
Job and worker data model.

A ``Job`` asks for ``capacity`` workers; the orchestrator fills ``workers`` as
instances come up. Jobs are hydrated from persisted ``JobRecord`` objects.
"""

from dataclasses import dataclass, field, fields
from typing import Any


@dataclass(frozen=True)
class Worker:
    """One provisioned instance, identified by its provider instance id."""

    id: str


@dataclass
class Job:
    """A unit of work requesting a fixed number of workers."""

    id: str
    capacity: int
    name: str = ""
    email: str = ""
    timelimit: int = 0  # seconds, advisory
    payload: dict[str, Any] = field(default_factory=dict)
    workers: dict[str, Worker] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.capacity < 0:
            raise ValueError(f"{self.id}: capacity must be >= 0, got {self.capacity}")

    @property
    def is_complete(self) -> bool:
        """True once every requested worker has been provisioned."""
        return len(self.workers) == self.capacity


@dataclass
class JobRecord:
    """Persisted job record as stored by the job store."""

    id: str
    name: str
    email: str
    capacity: int
    timelimit: int
    hash: str
    hash_type: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRecord":
        """Parse a record mapping, ignoring keys the record does not know."""
        known = {f.name for f in fields(cls)}
        missing = [name for name in ("id", "capacity") if name not in data]
        if missing:
            raise ValueError(f"Job record missing required fields: {missing}")

        values = {k: v for k, v in data.items() if k in known}
        return cls(
            id=str(values["id"]),
            name=str(values.get("name", "")),
            email=str(values.get("email", "")),
            capacity=int(values["capacity"]),
            timelimit=int(values.get("timelimit", 0)),
            hash=str(values.get("hash", "")),
            hash_type=str(values.get("hash_type", "")),
        )


def job_from_record(record: JobRecord) -> Job:
    """Convert a stored record to a Job with an empty worker map."""
    return Job(
        id=record.id,
        capacity=record.capacity,
        name=record.name,
        email=record.email,
        timelimit=record.timelimit,
        payload={"hash": record.hash, "hash_type": record.hash_type},
    )
