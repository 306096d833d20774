"""Configuration for rwlockfile.

This module provides the default timings used by lock handles and the debug
toggle that controls diagnostic output.

Design Philosophy:
- Sensible defaults: Works out of the box
- Environment-aware: Can be overridden via env vars
- Diagnostics only: the debug level never changes protocol behaviour
"""

import logging
import os
import sys
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler

from rwlockfile.errors import ConfigError

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_INTERVAL = 0.01
DEFAULT_GUARD_TIMEOUT = 10.0

PACKAGE_LOGGER = "rwlockfile"
GUARD_LOGGER = "rwlockfile.file_lock_manager"


@dataclass
class RWLockConfig:
    """Lock timing and diagnostics settings.

    Attributes:
        timeout: Seconds an acquisition loop may wait before giving up
        retry_interval: Initial seconds between acquisition attempts
        guard_timeout: Seconds to wait for the exclusive record guard
        debug_level: 0 (off), 1 (protocol trace) or 2 (protocol and guard trace)
    """

    timeout: float = DEFAULT_TIMEOUT
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    guard_timeout: float = DEFAULT_GUARD_TIMEOUT
    debug_level: int = 0

    @classmethod
    def from_environment(cls) -> "RWLockConfig":
        """Load configuration from environment variables.

        Environment variables (all optional):
            RWLOCKFILE_TIMEOUT: Acquisition timeout in seconds (default: 30)
            RWLOCKFILE_RETRY_INTERVAL: Initial retry interval in seconds (default: 0.01)
            RWLOCKFILE_GUARD_TIMEOUT: Guard timeout in seconds (default: 10)
            RWLOCKFILE_DEBUG: "1" for protocol trace, "2" to include the guard
            HEROKU_DEBUG_ALL: Any non-empty value enables level 1

        Returns:
            RWLockConfig with values from environment or defaults

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        return cls(
            timeout=_float_env("RWLOCKFILE_TIMEOUT", DEFAULT_TIMEOUT),
            retry_interval=_float_env("RWLOCKFILE_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL),
            guard_timeout=_float_env("RWLOCKFILE_GUARD_TIMEOUT", DEFAULT_GUARD_TIMEOUT),
            debug_level=debug_level_from_environment(),
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from e


def debug_level_from_environment() -> int:
    """Read the debug toggle: 2 for verbose, 1 for basic, 0 for off."""
    value = os.getenv("RWLOCKFILE_DEBUG", "")
    if value == "2":
        return 2
    if value == "1" or os.getenv("HEROKU_DEBUG_ALL"):
        return 1
    return 0


_handler: logging.Handler | None = None


def configure_debug_logging(level: int) -> None:
    """Route rwlockfile diagnostics to stderr according to the debug level.

    Level 1 traces the lock protocol but keeps the guard quiet; level 2 also
    traces every guard acquisition. Level 0 leaves logging untouched.
    """
    global _handler
    if level <= 0:
        return

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if _handler is None:
        _handler = RichHandler(
            console=Console(file=sys.stderr),
            show_path=False,
            markup=False,
        )
        package_logger.addHandler(_handler)
    package_logger.setLevel(logging.DEBUG)
    logging.getLogger(GUARD_LOGGER).setLevel(logging.DEBUG if level >= 2 else logging.WARNING)


# Global configuration instance (lazily loaded)
_config: RWLockConfig | None = None


def get_config() -> RWLockConfig:
    """Get global configuration, loading it from the environment on first access.

    Loading also applies the debug toggle to logging.
    """
    global _config
    if _config is None:
        _config = RWLockConfig.from_environment()
        configure_debug_logging(_config.debug_level)
    return _config


def reset_config() -> None:
    """Reset global configuration so the next access reloads it from the environment."""
    global _config
    _config = None


__all__ = [
    "DEFAULT_GUARD_TIMEOUT",
    "DEFAULT_RETRY_INTERVAL",
    "DEFAULT_TIMEOUT",
    "RWLockConfig",
    "configure_debug_logging",
    "debug_level_from_environment",
    "get_config",
    "reset_config",
]
