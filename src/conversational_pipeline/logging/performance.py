"""Timing of pipeline operations (refinement calls, HTTP requests)."""

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import structlog


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    *,
    slow_ms: float | None = None,
    **extra: Any,
) -> Generator[dict[str, Any], None, None]:
    """Time the block and log one outcome event.

    Yields a dict of log fields; keys set on it inside the block (an HTTP
    status, a result length) are logged with the outcome. A completion
    slower than ``slow_ms`` is logged as ``operation_slow`` at warning,
    otherwise ``operation_completed`` at debug. Exceptions are logged as
    ``operation_failed`` and re-raised.
    """
    fields: dict[str, Any] = dict(extra)
    start = time.perf_counter()
    try:
        yield fields
    except Exception as exc:
        logger.warning(
            "operation_failed",
            operation=operation,
            duration_ms=_elapsed_ms(start),
            error_type=type(exc).__name__,
            **fields,
        )
        raise

    duration_ms = _elapsed_ms(start)
    if slow_ms is not None and duration_ms > slow_ms:
        logger.warning(
            "operation_slow",
            operation=operation,
            duration_ms=duration_ms,
            slow_ms=slow_ms,
            **fields,
        )
    else:
        logger.debug("operation_completed", operation=operation, duration_ms=duration_ms, **fields)
