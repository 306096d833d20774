"""Shared test fixtures for rwlockfile tests.

This module provides common fixtures used across all test types:
- Isolation of environment-driven configuration
- Isolation of the process-wide exit registry
- Lock paths under a temporary directory
- Pids of a dead process and of a live foreign process
"""

import subprocess
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from rwlockfile import exit_registry
from rwlockfile.config import reset_config
from rwlockfile.models import Job, LockRecord
from rwlockfile.record_store import save_record

_CONFIG_ENV_VARS = [
    "RWLOCKFILE_TIMEOUT",
    "RWLOCKFILE_RETRY_INTERVAL",
    "RWLOCKFILE_GUARD_TIMEOUT",
    "RWLOCKFILE_DEBUG",
    "HEROKU_DEBUG_ALL",
]


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Run every test against default configuration."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def isolated_exit_registry():
    """Drop handles created by a test from the exit sweep."""
    before = exit_registry.registered_handles()
    yield
    for handle in exit_registry.registered_handles():
        if not any(handle is kept for kept in before):
            exit_registry.unregister(handle)


@pytest.fixture
def lock_base(tmp_path) -> Path:
    """Base path of a resource to lock; its record lives at <base>.lock."""
    return tmp_path / "resource"


@pytest.fixture
def lock_file(lock_base) -> Path:
    return Path(f"{lock_base}.lock").resolve()


@pytest.fixture
def dead_pid() -> int:
    """Pid of a process that has already exited and been reaped."""
    result = subprocess.run(
        [sys.executable, "-c", "import os; print(os.getpid())"],
        capture_output=True,
        text=True,
        check=True,
    )
    return int(result.stdout.strip())


@pytest.fixture
def live_pid() -> Iterator[int]:
    """Pid of a running process other than the test process."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        yield proc.pid
    finally:
        proc.kill()
        proc.wait()


@pytest.fixture
def write_record():
    """Write a lock record directly, bypassing the lock protocol."""

    def _write(file: Path, writer: Job | None = None, readers: list[Job] | None = None) -> None:
        save_record(file, LockRecord(writer=writer, readers=list(readers or [])))

    return _write
