"""
Timing instrumentation for network operations.

Decorators log how long an operation took and warn when it exceeds
DLINK_PERF_THRESHOLD_MS. DLINK_PERF_TRACKING=0 turns them into pass-throughs.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Return milliseconds elapsed since a time.perf_counter() reading."""
    return (time.perf_counter() - start_time) * 1000


def timed(operation_name: str | None = None) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for timing synchronous functions.

    Example:
        @timed("codec_encode")
        def encode(command): ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from dungeon_link.const import DLINK_PERF_THRESHOLD_MS, DLINK_PERF_TRACKING  # noqa: PLC0415
            from dungeon_link.logging_abstraction import get_logger  # noqa: PLC0415

            if not DLINK_PERF_TRACKING:
                return func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _log_timing(
                    get_logger(__name__),
                    operation_name or func.__name__,
                    measure_time(start_time),
                    DLINK_PERF_THRESHOLD_MS,
                )

        return wrapper

    return decorator


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Decorator for timing coroutine functions.

    Example:
        @timed_async("directory_probe")
        async def probe_endpoint(endpoint): ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from dungeon_link.const import DLINK_PERF_THRESHOLD_MS, DLINK_PERF_TRACKING  # noqa: PLC0415
            from dungeon_link.logging_abstraction import get_logger  # noqa: PLC0415

            if not DLINK_PERF_TRACKING:
                return await func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(
                    get_logger(__name__),
                    operation_name or func.__name__,
                    measure_time(start_time),
                    DLINK_PERF_THRESHOLD_MS,
                )

        return wrapper

    return decorator


def _log_timing(logger: Any, operation_name: str, elapsed_ms: float, threshold_ms: int) -> None:
    context = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
        "exceeded_threshold": elapsed_ms > threshold_ms,
    }
    if elapsed_ms > threshold_ms:
        logger.warning(
            "⏱️ [%s] completed in %.1fms (threshold: %dms)",
            operation_name,
            elapsed_ms,
            threshold_ms,
            extra=context,
        )
    else:
        logger.debug("⏱️ [%s] completed in %.1fms", operation_name, elapsed_ms, extra=context)
