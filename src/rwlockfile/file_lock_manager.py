"""Cross-platform exclusive guard for lock record access.

Every read-modify-write of a lock record happens while holding an exclusive
OS-level lock on a companion guard file, so two processes never interleave
their updates to the same record.

Philosophy:
- Standard library only (fcntl/msvcrt are standard library)
- Cross-platform support (Unix/Windows)
- Exponential backoff for contention handling
- Context managers for automatic cleanup, sync and async

Public API:
    acquire_file_lock: Context manager for holding the guard in blocking code
    acquire_file_lock_async: Async context manager that backs off with asyncio.sleep
    GuardAcquisitionError: Raised when the guard cannot be acquired within timeout

Example:
    >>> from pathlib import Path
    >>> from rwlockfile.file_lock_manager import acquire_file_lock
    >>>
    >>> guard = Path("/tmp/cache.lock.lock")
    >>> with acquire_file_lock(guard, timeout=5.0, operation="record update"):
    ...     # Only this process can touch the record now
    ...     pass

Notes:
- The guard file is created on first use and left in place. Unlinking a
  flock()ed file lets a waiter lock an orphaned inode.
- flock() locks belong to the open file description, so two handles in one
  process exclude each other just like two processes do.
"""

import asyncio
import logging
import platform
import time
from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from rwlockfile.errors import GuardAcquisitionError

# Platform-specific imports
_system = platform.system()
if TYPE_CHECKING or _system == "Windows":
    import msvcrt  # type: ignore[import-not-found]
if TYPE_CHECKING or _system != "Windows":
    import fcntl  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)

INITIAL_DELAY = 0.01
MAX_DELAY = 0.5

__all__ = ["GuardAcquisitionError", "acquire_file_lock", "acquire_file_lock_async"]


def _open_guard(file_path: Path) -> IO[Any]:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    # Mode 'a' creates the file without truncating it; nothing is written through it
    return open(file_path, "a")


def _timeout_error(file_path: Path, timeout: float, operation: str) -> GuardAcquisitionError:
    return GuardAcquisitionError(
        f"Failed to acquire guard for {operation} after {timeout} seconds. "
        f"File: {file_path}. Another process may be holding it."
    )


@contextmanager
def acquire_file_lock(
    file_path: Path,
    timeout: float = 10.0,
    operation: str = "lock record update",
) -> Generator[None, None, None]:
    """Hold the exclusive guard on file_path, blocking with backoff.

    Uses platform-appropriate locking mechanism:
    - Unix/macOS/Linux: fcntl.flock() (advisory whole-file lock)
    - Windows: msvcrt.locking() (byte-range lock on the first byte)

    Args:
        file_path: Path of the guard file (created if missing)
        timeout: Maximum seconds to wait for the guard (default: 10.0)
        operation: Description of operation (used in error messages)

    Yields:
        None (guard is held within context)

    Raises:
        GuardAcquisitionError: If the guard cannot be acquired within timeout
        PermissionError: If lacking permissions to lock the guard file
    """
    with _open_guard(file_path) as file_handle:
        start_time = time.monotonic()
        delay = INITIAL_DELAY
        attempt = 0
        while True:
            try:
                _try_acquire(file_handle)
                break
            except (BlockingIOError, PermissionError) as e:
                if isinstance(e, PermissionError) and attempt == 0 and _system != "Windows":
                    raise
                elapsed = time.monotonic() - start_time
                if elapsed >= timeout:
                    raise _timeout_error(file_path, timeout, operation) from e
                time.sleep(min(delay, timeout - elapsed))
                delay = min(delay * 2, MAX_DELAY)
                attempt += 1

        logger.debug(f"Guard acquired for {operation}: {file_path}")
        try:
            yield
        finally:
            _release_lock(file_handle)
            logger.debug(f"Guard released for {operation}: {file_path}")


@asynccontextmanager
async def acquire_file_lock_async(
    file_path: Path,
    timeout: float = 10.0,
    operation: str = "lock record update",
) -> AsyncGenerator[None, None]:
    """Async counterpart of acquire_file_lock.

    Attempts are non-blocking; between attempts the coroutine yields to the
    event loop, so other tasks (including the current holder) keep running.
    """
    file_handle = await asyncio.to_thread(_open_guard, file_path)
    try:
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        delay = INITIAL_DELAY
        attempt = 0
        while True:
            try:
                _try_acquire(file_handle)
                break
            except (BlockingIOError, PermissionError) as e:
                if isinstance(e, PermissionError) and attempt == 0 and _system != "Windows":
                    raise
                elapsed = loop.time() - start_time
                if elapsed >= timeout:
                    raise _timeout_error(file_path, timeout, operation) from e
                await asyncio.sleep(min(delay, timeout - elapsed))
                delay = min(delay * 2, MAX_DELAY)
                attempt += 1

        logger.debug(f"Guard acquired for {operation}: {file_path}")
        try:
            yield
        finally:
            _release_lock(file_handle)
            logger.debug(f"Guard released for {operation}: {file_path}")
    finally:
        file_handle.close()


def _try_acquire(file_handle: IO[Any]) -> None:
    """Make one non-blocking attempt at the platform lock.

    Raises:
        BlockingIOError: If the lock is held elsewhere (Unix)
        PermissionError: If the lock is held elsewhere (Windows)
    """
    if _system == "Windows":
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
    else:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _release_lock(file_handle: IO[Any]) -> None:
    """Release the platform lock. Errors are logged, not raised."""
    try:
        if _system == "Windows":
            msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        logger.debug(f"Error during guard cleanup: {e}")
