"""rwlockfile - cross-process read/write locks backed by a file

Philosophy:
- No lock server: the filesystem is the only coordinator
- Crash tolerant: claims of dead processes are reaped on the next check
- Async first, with a blocking single-attempt surface for exit handlers

Many readers or one writer may hold a lock path at a time. Holders are
recorded in a small JSON file next to the protected resource.
"""

__version__ = "0.1.0"

from rwlockfile.errors import (  # noqa: E402
    ConfigError,
    GuardAcquisitionError,
    LockedError,
    LockTimeoutError,
    RecordCorruptError,
    RWLockfileError,
)
from rwlockfile.models import (  # noqa: E402
    Job,
    LockCount,
    LockRecord,
    LockStatus,
    LockType,
    Open,
    ReadLocked,
    StatusKind,
    WriteLocked,
)
from rwlockfile.rwlock import RWLockfile  # noqa: E402

__all__ = [
    "ConfigError",
    "GuardAcquisitionError",
    "Job",
    "LockCount",
    "LockRecord",
    "LockStatus",
    "LockTimeoutError",
    "LockType",
    "LockedError",
    "Open",
    "RWLockfile",
    "RWLockfileError",
    "ReadLocked",
    "RecordCorruptError",
    "StatusKind",
    "WriteLocked",
    "__version__",
]
