"""Data model for read/write lock records.

A lock record is the JSON document persisted next to a locked resource. It
holds at most one writer Job and any number of reader Jobs. Status objects
describe whether a requested lock type is currently grantable.

Public API:
    LockType: "read" or "write"
    Job: One recorded claim on a lock path
    LockRecord: Persisted state of one lock path
    Open, WriteLocked, ReadLocked: Status variants returned by checks
    LockStatus: Union of the status variants
    LockCount: Read-only snapshot of a handle's reentrant counters
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, NamedTuple

from rwlockfile import __version__
from rwlockfile.errors import RecordCorruptError

EPOCH = datetime.fromtimestamp(0, tz=UTC)


class LockType(str, Enum):
    """Kind of lock a handle can hold."""

    READ = "read"
    WRITE = "write"


class StatusKind(str, Enum):
    """Discriminator for status variants."""

    OPEN = "open"
    WRITE_LOCK = "write_lock"
    READ_LOCK = "read_lock"


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime:
    """Parse a timestamp written by format_timestamp. Missing values map to the epoch."""
    if not value:
        return EPOCH
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class Job:
    """A recorded read or write claim.

    Attributes:
        id: Instance id of the handle that owns the claim
        pid: Process id of the owning process
        reason: Optional free-form description of why the lock is held
        created: When the claim was granted (UTC)
    """

    id: str
    pid: int
    reason: str | None = None
    created: datetime = EPOCH

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "ownerProcessId": self.pid}
        if self.reason is not None:
            data["reason"] = self.reason
        data["createdAt"] = format_timestamp(self.created)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Job":
        if not isinstance(data, dict):
            raise RecordCorruptError(f"Job entry must be an object, got {type(data).__name__}")
        try:
            job_id = data["id"]
            pid = data["ownerProcessId"]
        except KeyError as e:
            raise RecordCorruptError(f"Job entry missing field: {e}") from e
        if not isinstance(job_id, str) or not isinstance(pid, int) or isinstance(pid, bool):
            raise RecordCorruptError(f"Job entry has invalid id or ownerProcessId: {data!r}")
        reason = data.get("reason")
        try:
            created = parse_timestamp(data.get("createdAt"))
        except (TypeError, ValueError) as e:
            raise RecordCorruptError(f"Job entry has invalid createdAt: {e}") from e
        return cls(
            id=job_id,
            pid=pid,
            reason=str(reason) if reason is not None else None,
            created=created,
        )


@dataclass
class LockRecord:
    """Persisted state of one lock path."""

    version: str = __version__
    writer: Job | None = None
    readers: list[Job] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the record holds neither a writer nor any readers."""
        return self.writer is None and not self.readers

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"formatVersion": self.version}
        if self.writer is not None:
            data["writer"] = self.writer.to_dict()
        data["readers"] = [job.to_dict() for job in self.readers]
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "LockRecord":
        """Build a record from decoded JSON.

        Raises:
            RecordCorruptError: If the document does not have the record shape
        """
        if not isinstance(data, dict):
            raise RecordCorruptError(f"Lock record must be an object, got {type(data).__name__}")
        readers = data.get("readers", [])
        if not isinstance(readers, list):
            raise RecordCorruptError("Lock record 'readers' must be a list")
        writer = data.get("writer")
        return cls(
            version=str(data.get("formatVersion", __version__)),
            writer=Job.from_dict(writer) if writer is not None else None,
            readers=[Job.from_dict(job) for job in readers],
        )


class LockCount(NamedTuple):
    """Snapshot of a handle's reentrant counters."""

    read: int
    write: int


@dataclass(frozen=True)
class Open:
    """The requested lock type can be granted."""

    file: Path
    kind: ClassVar[StatusKind] = StatusKind.OPEN

    @property
    def is_open(self) -> bool:
        return True

    def describe(self) -> str:
        return "open"


@dataclass(frozen=True)
class WriteLocked:
    """Another handle holds the write lock."""

    job: Job
    file: Path
    kind: ClassVar[StatusKind] = StatusKind.WRITE_LOCK

    @property
    def is_open(self) -> bool:
        return False

    def describe(self) -> str:
        reason = f" ({self.job.reason})" if self.job.reason else ""
        return f"write lock held by pid {self.job.pid}{reason}"


@dataclass(frozen=True)
class ReadLocked:
    """Other handles hold read locks, blocking a write request."""

    jobs: tuple[Job, ...]
    file: Path
    kind: ClassVar[StatusKind] = StatusKind.READ_LOCK

    @property
    def is_open(self) -> bool:
        return False

    def describe(self) -> str:
        pids = ", ".join(str(job.pid) for job in self.jobs)
        return f"read lock held by pid(s) {pids}"


LockStatus = Open | WriteLocked | ReadLocked


__all__ = [
    "EPOCH",
    "Job",
    "LockCount",
    "LockRecord",
    "LockStatus",
    "LockType",
    "Open",
    "ReadLocked",
    "StatusKind",
    "WriteLocked",
    "format_timestamp",
    "parse_timestamp",
]
