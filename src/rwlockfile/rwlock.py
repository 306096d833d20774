"""Cross-process read/write lock backed by a JSON record on disk.

Any number of processes may hold the read lock on a resource at once; the
write lock is exclusive. Holders are recorded in ``<base>.lock`` together
with their pid, so a process that died while holding a lock is detected and
its claim reaped by the next process that checks.

Public API:
    RWLockfile: Lock handle bound to one resource path

Example:
    >>> from rwlockfile import RWLockfile
    >>>
    >>> lock = RWLockfile("/tmp/cache")
    >>> async def rebuild():
    ...     async with lock.lock("write", reason="rebuild"):
    ...         ...  # nobody else reads or writes the cache here
    >>>
    >>> # Blocking form for code that cannot await (single attempt, no retry)
    >>> lock.add_blocking("read")
    >>> lock.remove_blocking("read")

Concurrency:
- Record read-modify-write runs inside an exclusive guard on
  ``<base>.lock.lock``, serializing all processes touching the record
- Handles count reentrant adds; only the first add and last remove of a
  type touch the record
- Concurrent async acquire or release calls on one handle share one attempt
- The async acquire loop retries with jittered exponential backoff:
  each sleep is drawn from [interval/2, interval*2] and the interval doubles
"""

import asyncio
import inspect
import logging
import os
import random
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from contextlib import asynccontextmanager, contextmanager
from datetime import UTC, datetime
from pathlib import Path

from rwlockfile import exit_registry
from rwlockfile.coalesce import once_at_a_time
from rwlockfile.config import get_config
from rwlockfile.errors import LockedError, LockTimeoutError
from rwlockfile.file_lock_manager import acquire_file_lock, acquire_file_lock_async
from rwlockfile.models import (
    Job,
    LockCount,
    LockRecord,
    LockStatus,
    LockType,
    Open,
    ReadLocked,
    WriteLocked,
)
from rwlockfile.process_liveness import is_process_alive, is_process_alive_async
from rwlockfile.record_store import (
    load_record,
    load_record_async,
    save_record,
    save_record_async,
)

logger = logging.getLogger(__name__)

OnBlocked = Callable[[LockStatus], Awaitable[None] | None]

__all__ = ["OnBlocked", "RWLockfile"]


class RWLockfile:
    """Read/write lock handle for one resource path.

    Attributes:
        base: Resource path the lock protects
        file: Lock record path (``base`` + ".lock", resolved)
        guard_file: Path of the exclusive guard serializing record updates
        instance_id: Unique token identifying this handle's Jobs
        timeout: Default acquisition budget in seconds
        retry_interval: Default initial retry interval in seconds
        on_blocked: Default hook called once when an acquisition has to wait
    """

    def __init__(
        self,
        base: str | os.PathLike[str],
        timeout: float | None = None,
        retry_interval: float | None = None,
        on_blocked: OnBlocked | None = None,
        guard_timeout: float | None = None,
    ):
        """Create a lock handle and register it for release at exit.

        Args:
            base: Resource path; the record lives at ``base + ".lock"``
            timeout: Acquisition budget in seconds (default from config, 30)
            retry_interval: Initial retry interval in seconds (default from config, 0.01)
            on_blocked: Hook called with the blocking status, sync or async
            guard_timeout: Seconds to wait for the record guard (default from config, 10)
        """
        config = get_config()
        self.base = Path(base)
        self.file = Path(f"{os.fspath(base)}.lock").resolve()
        self.guard_file = self.file.with_name(f"{self.file.name}.lock")
        self.instance_id = uuid.uuid4().hex
        self.timeout = config.timeout if timeout is None else timeout
        self.retry_interval = config.retry_interval if retry_interval is None else retry_interval
        self.guard_timeout = config.guard_timeout if guard_timeout is None else guard_timeout
        self.on_blocked = on_blocked
        self._count: dict[LockType, int] = {LockType.READ: 0, LockType.WRITE: 0}
        # Types granted by a shared attempt whose caller was cancelled before counting it
        self._granted: set[LockType] = set()
        exit_registry.register(self)

    def __repr__(self) -> str:
        return (
            f"RWLockfile({str(self.base)!r}, read={self._held(LockType.READ)}, "
            f"write={self._held(LockType.WRITE)})"
        )

    @property
    def count(self) -> LockCount:
        """Current reentrant counts (read-only snapshot)."""
        return LockCount(read=self._held(LockType.READ), write=self._held(LockType.WRITE))

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def add(
        self,
        lock_type: LockType | str,
        reason: str | None = None,
        timeout: float | None = None,
        retry_interval: float | None = None,
        on_blocked: OnBlocked | None = None,
    ) -> None:
        """Acquire (or re-enter) a lock of lock_type, waiting with backoff.

        Args:
            lock_type: "read" or "write"
            reason: Recorded in the Job for other processes to see
            timeout: Budget in seconds; negative means a single attempt
            retry_interval: Initial interval between attempts in seconds
            on_blocked: Called once with the status if the first attempt is blocked

        Raises:
            LockTimeoutError: If the lock is still held when the budget runs out
            GuardAcquisitionError: If the record guard cannot be acquired
        """
        lock_type = LockType(lock_type)
        self._debug_report("add", lock_type, reason)
        if not self._held(lock_type):
            await self._lock(lock_type, reason, timeout, retry_interval, on_blocked)
        self._adopt(lock_type)

    async def remove(self, lock_type: LockType | str) -> None:
        """Drop one reentrant hold; the last one releases the lock."""
        lock_type = LockType(lock_type)
        self._debug_report("remove", lock_type)
        count = self._held(lock_type)
        if count == 0:
            return
        if count == 1:
            await self.unlock(lock_type)
        else:
            self._count[lock_type] -= 1

    async def unlock(self, lock_type: LockType | str | None = None) -> None:
        """Release lock_type regardless of the reentrant count (both types if None)."""
        if lock_type is None:
            await self.unlock(LockType.READ)
            await self.unlock(LockType.WRITE)
            return
        lock_type = LockType(lock_type)
        if not self._held(lock_type):
            return
        self._debug_report("unlock", lock_type)
        await self._remove_job(lock_type)
        self._count[lock_type] = 0
        self._granted.discard(lock_type)

    async def check(self, lock_type: LockType | str) -> LockStatus:
        """Report whether lock_type could be granted now.

        Never grants a lock, but reaps Jobs of dead processes it encounters.
        """
        lock_type = LockType(lock_type)
        if self._held(LockType.WRITE):
            return Open(self.file)
        async with self._guarded_async("check"):
            return await self._check(lock_type)

    async def try_lock(self, lock_type: LockType | str, reason: str | None = None) -> None:
        """Make a single acquisition attempt.

        Raises:
            LockedError: If the lock is held elsewhere
        """
        await self._try_lock(LockType(lock_type), reason, increment=True)

    try_acquire = try_lock

    @asynccontextmanager
    async def lock(
        self,
        lock_type: LockType | str,
        reason: str | None = None,
        timeout: float | None = None,
        retry_interval: float | None = None,
        on_blocked: OnBlocked | None = None,
    ) -> AsyncGenerator["RWLockfile", None]:
        """Hold lock_type for the duration of an ``async with`` block."""
        await self.add(
            lock_type,
            reason=reason,
            timeout=timeout,
            retry_interval=retry_interval,
            on_blocked=on_blocked,
        )
        try:
            yield self
        finally:
            await self.remove(lock_type)

    # ------------------------------------------------------------------
    # Blocking API (single attempt, usable without an event loop)
    # ------------------------------------------------------------------

    def add_blocking(self, lock_type: LockType | str, reason: str | None = None) -> None:
        """Acquire (or re-enter) lock_type with exactly one attempt.

        Raises:
            LockedError: If the lock is held elsewhere
        """
        lock_type = LockType(lock_type)
        self._debug_report("add_blocking", lock_type, reason)
        if self._held(lock_type):
            self._adopt(lock_type)
            return
        with self._guarded("add_blocking"):
            status = self._check_blocking(lock_type)
            if not status.is_open:
                logger.debug(f"status: {status.describe()}")
                raise LockedError(status)
            record = load_record(self.file)
            self._add_job(lock_type, reason, record)
            save_record(self.file, record)
        self._count[lock_type] += 1
        logger.debug(f"got {lock_type.value} lock for {reason}")

    def remove_blocking(self, lock_type: LockType | str) -> None:
        lock_type = LockType(lock_type)
        self._debug_report("remove_blocking", lock_type)
        count = self._held(lock_type)
        if count == 0:
            return
        if count == 1:
            self.unlock_blocking(lock_type)
        else:
            self._count[lock_type] -= 1

    def unlock_blocking(self, lock_type: LockType | str | None = None) -> None:
        if lock_type is None:
            self.unlock_blocking(LockType.WRITE)
            self.unlock_blocking(LockType.READ)
            return
        lock_type = LockType(lock_type)
        if not self._held(lock_type):
            return
        self._debug_report("unlock_blocking", lock_type)
        with self._guarded("unlock_blocking"):
            record = load_record(self.file)
            self._remove_job_from_record(lock_type, record)
            save_record(self.file, record)
        self._count[lock_type] = 0
        self._granted.discard(lock_type)

    def check_blocking(self, lock_type: LockType | str) -> LockStatus:
        lock_type = LockType(lock_type)
        if self._held(LockType.WRITE):
            return Open(self.file)
        with self._guarded("check_blocking"):
            return self._check_blocking(lock_type)

    @contextmanager
    def lock_blocking(
        self, lock_type: LockType | str, reason: str | None = None
    ) -> Generator["RWLockfile", None, None]:
        """Hold lock_type for the duration of a ``with`` block (single attempt)."""
        self.add_blocking(lock_type, reason=reason)
        try:
            yield self
        finally:
            self.remove_blocking(lock_type)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _held(self, lock_type: LockType) -> int:
        # An unclaimed grant counts as one hold until add() adopts it or unlock() drops it
        return self._count[lock_type] or int(lock_type in self._granted)

    def _adopt(self, lock_type: LockType) -> None:
        self._granted.discard(lock_type)
        self._count[lock_type] += 1

    @contextmanager
    def _guarded(self, operation: str) -> Generator[None, None, None]:
        with acquire_file_lock(
            self.guard_file, timeout=self.guard_timeout, operation=f"{operation} on {self.file}"
        ):
            yield

    @asynccontextmanager
    async def _guarded_async(self, operation: str) -> AsyncGenerator[None, None]:
        async with acquire_file_lock_async(
            self.guard_file, timeout=self.guard_timeout, operation=f"{operation} on {self.file}"
        ):
            yield

    @once_at_a_time(0)
    async def _lock(
        self,
        lock_type: LockType,
        reason: str | None,
        timeout: float | None,
        retry_interval: float | None,
        on_blocked: OnBlocked | None,
    ) -> None:
        remaining = self.timeout if timeout is None else timeout
        interval = self.retry_interval if retry_interval is None else retry_interval
        notify = _once(on_blocked or self.on_blocked)
        while True:
            try:
                await self._try_lock(lock_type, reason, increment=False)
                self._granted.add(lock_type)
                return
            except LockedError as e:
                await notify(e.status)
                if remaining < 0:
                    raise LockTimeoutError(
                        e.status,
                        f"Timed out waiting for {lock_type.value} lock on {self.file}: "
                        f"{e.status.describe()}",
                    ) from e
                delay = random.uniform(interval / 2, interval * 2)
                logger.debug(f"{lock_type.value} lock blocked, retrying in {delay:.3f}s")
                await asyncio.sleep(delay)
                remaining -= delay
                interval *= 2

    async def _try_lock(self, lock_type: LockType, reason: str | None, increment: bool) -> None:
        if self._held(lock_type):
            if increment:
                self._adopt(lock_type)
            return
        logger.debug(f"try_lock {lock_type.value} {reason}")
        async with self._guarded_async("try_lock"):
            status = await self._check(lock_type)
            if not status.is_open:
                logger.debug(f"status: {status.describe()}")
                raise LockedError(status)
            record = await load_record_async(self.file)
            self._add_job(lock_type, reason, record)
            await save_record_async(self.file, record)
        if increment:
            self._count[lock_type] += 1
        logger.debug(f"got {lock_type.value} lock for {reason}")

    @once_at_a_time(0)
    async def _remove_job(self, lock_type: LockType) -> None:
        async with self._guarded_async("unlock"):
            record = await load_record_async(self.file)
            self._remove_job_from_record(lock_type, record)
            await save_record_async(self.file, record)

    async def _check(self, lock_type: LockType) -> LockStatus:
        # Caller holds the guard
        if self._held(LockType.WRITE):
            return Open(self.file)
        record = await load_record_async(self.file)
        status = self._status_from_record(lock_type, record)
        if isinstance(status, WriteLocked):
            if not await is_process_alive_async(status.job.pid):
                logger.debug(f"removing inactive writer pid: {status.job.pid}")
                record.writer = None
                await save_record_async(self.file, record)
                return await self._check(lock_type)
            return status
        if isinstance(status, ReadLocked):
            alive = await asyncio.gather(*(is_process_alive_async(job.pid) for job in status.jobs))
            inactive = {job.pid for job, ok in zip(status.jobs, alive) if not ok}
            if inactive:
                return await self._reap_readers(lock_type, record, inactive)
            return self._open_if_sole_reader(status)
        return status

    async def _reap_readers(
        self, lock_type: LockType, record: LockRecord, inactive: set[int]
    ) -> LockStatus:
        logger.debug(f"removing inactive reader pids: {sorted(inactive)}")
        record.readers = [job for job in record.readers if job.pid not in inactive]
        await save_record_async(self.file, record)
        return await self._check(lock_type)

    def _check_blocking(self, lock_type: LockType) -> LockStatus:
        # Caller holds the guard
        if self._held(LockType.WRITE):
            return Open(self.file)
        record = load_record(self.file)
        status = self._status_from_record(lock_type, record)
        if isinstance(status, WriteLocked):
            if not is_process_alive(status.job.pid):
                logger.debug(f"removing inactive writer pid: {status.job.pid}")
                record.writer = None
                save_record(self.file, record)
                return self._check_blocking(lock_type)
            return status
        if isinstance(status, ReadLocked):
            inactive = {job.pid for job in status.jobs if not is_process_alive(job.pid)}
            if inactive:
                return self._reap_readers_blocking(lock_type, record, inactive)
            return self._open_if_sole_reader(status)
        return status

    def _reap_readers_blocking(
        self, lock_type: LockType, record: LockRecord, inactive: set[int]
    ) -> LockStatus:
        logger.debug(f"removing inactive reader pids: {sorted(inactive)}")
        record.readers = [job for job in record.readers if job.pid not in inactive]
        save_record(self.file, record)
        return self._check_blocking(lock_type)

    def _open_if_sole_reader(self, status: ReadLocked) -> LockStatus:
        # A handle may take the write lock while it is the only reader left
        if all(job.id == self.instance_id for job in status.jobs):
            return Open(self.file)
        return status

    def _status_from_record(self, lock_type: LockType, record: LockRecord) -> LockStatus:
        if self._held(LockType.WRITE):
            return Open(self.file)
        if record.writer is not None:
            return WriteLocked(job=record.writer, file=self.file)
        if lock_type is LockType.WRITE and record.readers:
            return ReadLocked(jobs=tuple(record.readers), file=self.file)
        return Open(self.file)

    def _add_job(self, lock_type: LockType, reason: str | None, record: LockRecord) -> None:
        job = Job(
            id=self.instance_id,
            pid=os.getpid(),
            reason=reason,
            created=datetime.now(UTC),
        )
        if lock_type is LockType.READ:
            record.readers = [r for r in record.readers if r.id != self.instance_id]
            record.readers.append(job)
        else:
            record.writer = job

    def _remove_job_from_record(self, lock_type: LockType, record: LockRecord) -> None:
        if lock_type is LockType.READ:
            record.readers = [job for job in record.readers if job.id != self.instance_id]
        elif record.writer is not None and record.writer.id == self.instance_id:
            record.writer = None

    def _debug_report(self, action: str, lock_type: LockType, reason: str | None = None) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        if action.startswith("unlock"):
            operator = f"-{self._held(lock_type)}"
        elif action.startswith("remove"):
            operator = "-1"
        else:
            operator = "+1"
        read = f"{self._held(LockType.READ)}{operator if lock_type is LockType.READ else ''}"
        write = f"{self._held(LockType.WRITE)}{operator if lock_type is LockType.WRITE else ''}"
        reason_part = f" reason:{reason}" if reason else ""
        logger.debug(f"{action} read:{read} write:{write}{reason_part} {self.file}")


def _once(hook: OnBlocked | None) -> Callable[[LockStatus], Awaitable[None]]:
    """Wrap hook so only its first call runs; awaits the result if it is awaitable."""
    fired = False

    async def call(status: LockStatus) -> None:
        nonlocal fired
        if fired or hook is None:
            return
        fired = True
        result = hook(status)
        if inspect.isawaitable(result):
            await result

    return call
