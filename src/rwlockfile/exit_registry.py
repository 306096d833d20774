"""Process-exit safety net for lock handles.

Every RWLockfile registers itself here on construction. When the interpreter
exits, each registered handle is force-unlocked through its blocking API,
since no event loop is available at that point. Failures are logged and
swallowed; stale-holder reaping by the next process covers anything missed
(including hard kills, where atexit never runs).

Handles are not deduplicated by path: two handles on the same lock file are
two independent holders and both are released.
"""

import atexit
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rwlockfile.rwlock import RWLockfile

logger = logging.getLogger(__name__)

_instances: list["RWLockfile"] = []
_registry_lock = threading.Lock()
_hook_installed = False

__all__ = ["register", "registered_handles", "release_all", "unregister"]


def register(handle: "RWLockfile") -> None:
    """Add handle to the exit sweep, installing the atexit hook on first use."""
    global _hook_installed
    with _registry_lock:
        if any(existing is handle for existing in _instances):
            return
        _instances.append(handle)
        if not _hook_installed:
            atexit.register(release_all)
            _hook_installed = True


def unregister(handle: "RWLockfile") -> None:
    with _registry_lock:
        _instances[:] = [existing for existing in _instances if existing is not handle]


def registered_handles() -> list["RWLockfile"]:
    with _registry_lock:
        return list(_instances)


def release_all() -> None:
    """Force-unlock every registered handle. Never raises."""
    for handle in registered_handles():
        try:
            handle.unlock_blocking()
        except Exception as e:
            logger.debug(f"Failed to release {handle.file} at exit: {e}")
