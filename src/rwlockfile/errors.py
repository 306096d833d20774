"""Exception hierarchy for rwlockfile.

Every error raised by the package derives from RWLockfileError so callers
can catch a single type. Errors that describe a held lock carry the status
that blocked the request.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rwlockfile.models import LockStatus


class RWLockfileError(Exception):
    """Base class for rwlockfile errors."""

    pass


class LockedError(RWLockfileError):
    """Raised when a single acquisition attempt finds the lock held."""

    def __init__(self, status: "LockStatus", message: str | None = None):
        self.status = status
        super().__init__(message or f"{status.file} is locked: {status.describe()}")


class LockTimeoutError(LockedError):
    """Raised when the acquisition loop runs out of its timeout budget."""

    pass


class GuardAcquisitionError(RWLockfileError):
    """Raised when the exclusive guard for a record cannot be acquired in time."""

    pass


class RecordCorruptError(RWLockfileError):
    """Raised when a lock record cannot be parsed."""

    pass


class ConfigError(RWLockfileError):
    """Raised when configuration values are invalid."""

    pass


__all__ = [
    "ConfigError",
    "GuardAcquisitionError",
    "LockTimeoutError",
    "LockedError",
    "RWLockfileError",
    "RecordCorruptError",
]
