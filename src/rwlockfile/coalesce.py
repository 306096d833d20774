"""In-process deduplication of concurrent async calls.

Usage:
    class Handle:
        @once_at_a_time(0)
        async def _lock(self, lock_type, opts):
            ...

While a call for a given (method, key argument) is in flight on an instance,
further calls with the same key await the same attempt and receive its result
or exception instead of starting a second one. The entry is dropped as soon as
the attempt settles, so the next call starts fresh.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

_INFLIGHT_ATTR = "_inflight_calls"

__all__ = ["inflight_count", "once_at_a_time"]


def once_at_a_time(key_arg: int = 0) -> Callable[[F], F]:
    """Decorator coalescing concurrent calls of an async method.

    Args:
        key_arg: Index of the positional argument (after self) that keys the call

    Returns:
        Decorated coroutine function
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            inflight: dict[tuple[str, Any], asyncio.Future[Any]] = self.__dict__.setdefault(
                _INFLIGHT_ATTR, {}
            )
            key = (func.__name__, args[key_arg] if len(args) > key_arg else None)
            task = inflight.get(key)
            if task is None:

                async def run() -> Any:
                    try:
                        return await func(self, *args, **kwargs)
                    finally:
                        inflight.pop(key, None)

                task = asyncio.ensure_future(run())
                inflight[key] = task
            # A cancelled waiter must not cancel the attempt other callers share
            return await asyncio.shield(task)

        return wrapper  # type: ignore

    return decorator


def inflight_count(instance: Any) -> int:
    """Number of attempts currently in flight on instance."""
    return len(instance.__dict__.get(_INFLIGHT_ATTR, {}))
