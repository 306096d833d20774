"""Process liveness checks used for stale holder detection.

A lock Job records the pid of the process that owns it. Before honouring a
Job, the engine asks whether that pid still belongs to a running process.

Failures other than "no such process" (for example a PermissionError when the
pid belongs to another user) are logged and reported as not alive. Reclaiming
a lock wrongly is preferred over leaving it wedged forever.
"""

import asyncio
import logging
import os
import platform

logger = logging.getLogger(__name__)

_system = platform.system()

# Windows process access right and exit code for a still-running process
_PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
_STILL_ACTIVE = 259

__all__ = ["is_process_alive", "is_process_alive_async"]


def is_process_alive(pid: int) -> bool:
    """Return True if a process with this pid is currently running."""
    if pid <= 0:
        return False
    if pid == os.getpid():
        return True
    try:
        if _system == "Windows":
            return _is_alive_windows(pid)
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except (OSError, OverflowError) as e:
        logger.warning(f"Could not determine whether pid {pid} is alive, treating as dead: {e}")
        return False


async def is_process_alive_async(pid: int) -> bool:
    """Async form of is_process_alive; the probe runs off the event loop thread."""
    return await asyncio.to_thread(is_process_alive, pid)


def _is_alive_windows(pid: int) -> bool:
    # os.kill(pid, 0) terminates the target on Windows, so query the handle instead
    import ctypes
    from ctypes import wintypes

    kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    handle = kernel32.OpenProcess(_PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        raise ProcessLookupError(pid)
    try:
        exit_code = wintypes.DWORD()
        if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
            raise OSError(f"GetExitCodeProcess failed for pid {pid}")
        return exit_code.value == _STILL_ACTIVE
    finally:
        kernel32.CloseHandle(handle)
