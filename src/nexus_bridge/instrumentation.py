"""
Timing decorators for broker round-trips and other awaited operations.

Operations slower than NEXUS_PERF_THRESHOLD_MS are logged at WARNING, the
rest at DEBUG. NEXUS_PERF_TRACKING=false turns timing off entirely.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Milliseconds elapsed since ``start_time`` (a ``time.perf_counter()`` value)."""
    return (time.perf_counter() - start_time) * 1000


def _settings() -> tuple[bool, int]:
    # Import here to avoid circular dependency
    from nexus_bridge.const import NEXUS_PERF_THRESHOLD_MS, NEXUS_PERF_TRACKING  # noqa: PLC0415

    return NEXUS_PERF_TRACKING, NEXUS_PERF_THRESHOLD_MS


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """Time a coroutine function.

    Example:
        @timed_async("mqtt_publish")
        async def publish(self, topic, payload): ...
    """

    def decorator(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            enabled, threshold_ms = _settings()
            if not enabled:
                return await func(*args, **kwargs)
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(operation_name or func.__name__, measure_time(start_time), threshold_ms)

        return wrapper

    return decorator


def _log_timing(operation_name: str, elapsed_ms: float, threshold_ms: int) -> None:
    from nexus_bridge.logging_abstraction import get_logger  # noqa: PLC0415

    logger = get_logger(__name__)
    context = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
        "exceeded_threshold": elapsed_ms > threshold_ms,
    }
    if elapsed_ms > threshold_ms:
        logger.warning(
            "[%s] completed in %.1fms (threshold: %dms)", operation_name, elapsed_ms, threshold_ms, extra=context
        )
    else:
        logger.debug("[%s] completed in %.1fms", operation_name, elapsed_ms, extra=context)
