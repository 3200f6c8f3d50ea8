"""Performance Logging.

Decorator and context manager for timing gateway calls, bulk batches
and scheduled jobs, logging the slow ones.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)


def _report(
    _logger: logging.Logger,
    name: str,
    duration_ms: float,
    threshold_ms: float,
    extra_data: Optional[str] = None,
) -> None:
    extra: dict[str, Any] = {"duration_ms": round(duration_ms, 2)}
    if extra_data is not None:
        extra["extra_data"] = extra_data

    if duration_ms >= threshold_ms:
        _logger.warning(f"Slow operation: {name} took {duration_ms:.1f}ms", extra=extra)
    else:
        _logger.debug(f"{name} completed in {duration_ms:.1f}ms", extra=extra)


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
    include_args: bool = False,
) -> Callable:
    """Decorator that logs function execution time.

    Logs all calls at DEBUG level and slow calls (above threshold) at WARNING.
    Failures are logged at ERROR and re-raised.

    Example:
        @log_performance(threshold_ms=2000)
        async def send_to_users(user_ids, notification):
            ...
    """
    if threshold_ms is None:
        threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms

    def decorator(func: Callable) -> Callable:
        _logger = logging.getLogger(logger_name or func.__module__)
        func_name = func.__qualname__

        def _failed(start: float, exc: BaseException) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            _logger.error(
                f"{func_name} failed after {duration_ms:.1f}ms: {type(exc).__name__}",
                extra={"duration_ms": round(duration_ms, 2)},
            )

        def _done(start: float, args: tuple, kwargs: dict) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            summary = _summarize_args(args, kwargs) if include_args else None
            _report(_logger, func_name, duration_ms, threshold_ms, summary)

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _failed(start, exc)
                    raise
                _done(start, args, kwargs)
                return result
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _failed(start, exc)
                raise
            _done(start, args, kwargs)
            return result
        return sync_wrapper

    return decorator


def _short_repr(value: Any, max_len: int) -> str:
    # target lists can hold hundreds of user ids
    if isinstance(value, (list, tuple, set)) and len(value) > 3:
        return f"<{type(value).__name__} of {len(value)}>"
    rep = repr(value)
    if len(rep) > max_len:
        rep = rep[:max_len] + "..."
    return rep


def _summarize_args(args: tuple, kwargs: dict, max_len: int = 100) -> str:
    """Short summary of call arguments for the timing log line."""
    parts = [_short_repr(arg, max_len) for arg in args[:3]]
    if len(args) > 3:
        parts.append(f"... +{len(args) - 3} more args")
    parts.extend(f"{key}={_short_repr(val, max_len)}" for key, val in list(kwargs.items())[:3])
    return ", ".join(parts)


class PerformanceTimer:
    """Context manager timing one block, such as a bulk batch.

    Logs through ``log`` (this module's logger by default). Set
    ``success_count`` / ``failure_count`` inside the block to have them
    attached to the timing line.

    Example:
        with PerformanceTimer("bulk batch 2/3", log=logger) as timer:
            outcomes = await asyncio.gather(*sends)
            timer.success_count = sum(o.success for o in outcomes)
    """

    def __init__(
        self,
        operation_name: str,
        threshold_ms: Optional[float] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        self.log = log or logger
        self.success_count: Optional[int] = None
        self.failure_count: Optional[int] = None
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra: dict[str, Any] = {"duration_ms": round(self.duration_ms, 2)}
        if self.success_count is not None:
            extra["success_count"] = self.success_count
        if self.failure_count is not None:
            extra["failure_count"] = self.failure_count

        if exc_type is not None:
            self.log.error(
                f"{self.operation_name} failed after {self.duration_ms:.1f}ms: {exc_type.__name__}",
                extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            self.log.warning(f"Slow operation: {self.operation_name} took {self.duration_ms:.1f}ms", extra=extra)
        else:
            self.log.debug(f"{self.operation_name} completed in {self.duration_ms:.1f}ms", extra=extra)
