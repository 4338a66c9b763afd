from __future__ import annotations

import functools
import time
from typing import Any, Callable, TypeVar

import structlog

F = TypeVar("F", bound=Callable[..., Any])

logger = structlog.get_logger("job")


def _result_size(res: Any) -> int | None:
    """Best-effort size of a job result: collection length or a known count attribute."""
    if isinstance(res, (list, tuple, set, dict)):
        return len(res)
    for attr in ("features_calculated", "validated", "predictions_generated", "upserted"):
        value = getattr(res, attr, None)
        if isinstance(value, int):
            return value
    return None


def log_job(name: str) -> Callable[[F], F]:
    """Decorator to measure job duration and emit structured logs."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            start = time.perf_counter()
            logger.info("job.start", job=name)
            try:
                result = func(*args, **kwargs)
            except Exception:
                duration = (time.perf_counter() - start) * 1000
                logger.exception("job.error", job=name, duration_ms=round(duration, 2))
                raise
            duration = (time.perf_counter() - start) * 1000
            logger.info(
                "job.completed",
                job=name,
                duration_ms=round(duration, 2),
                result_size=_result_size(result),
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
