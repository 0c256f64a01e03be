"""
Timing utilities for decision cycles and advisory calls.

Durations are collected in a process-wide profiler so the telemetry
collaborator can report cycle latency without the core knowing about it.
"""
import asyncio
import functools
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

import numpy as np

from fusion_trader.utils.logging import get_logger

logger = get_logger(__name__)

MAX_SAMPLES_PER_OPERATION = 1000


@dataclass
class OperationTiming:
    """A single completed timed operation."""
    operation_name: str
    duration: float
    success: bool = True
    error_message: Optional[str] = None


class PerformanceProfiler:
    """Collects operation timings grouped by operation name."""

    def __init__(self):
        self.metrics: Dict[str, Deque[OperationTiming]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES_PER_OPERATION))

    def record(self, timing: OperationTiming) -> None:
        self.metrics[timing.operation_name].append(timing)

    def get_metrics_summary(self, operation_name: Optional[str] = None) -> Dict[str, Any]:
        """Get summary statistics for one operation, or all of them combined."""
        if operation_name:
            operations = self.metrics.get(operation_name, [])
        else:
            operations = [timing for timings in self.metrics.values() for timing in timings]

        if not operations:
            return {"count": 0, "success_rate": 0, "avg_duration": 0, "p50_duration": 0, "p95_duration": 0}

        durations = np.array([op.duration for op in operations], dtype=float)
        successful = sum(1 for op in operations if op.success)

        return {
            "count": len(operations),
            "successful_count": successful,
            "success_rate": successful / len(operations),
            "avg_duration": float(durations.mean()),
            "p50_duration": float(np.percentile(durations, 50)),
            "p95_duration": float(np.percentile(durations, 95)),
            "min_duration": float(durations.min()),
            "max_duration": float(durations.max()),
        }

    def get_all_operation_names(self) -> list:
        return list(self.metrics.keys())

    def clear_metrics(self, operation_name: Optional[str] = None) -> None:
        if operation_name:
            self.metrics[operation_name].clear()
        else:
            self.metrics.clear()


# Global profiler instance
profiler = PerformanceProfiler()


def get_profiler() -> PerformanceProfiler:
    return profiler


def time_function(operation_name: Optional[str] = None, log_result: bool = False):
    """
    Decorator to time function execution.

    Works for both plain and coroutine functions. Exceptions are recorded as
    failed operations and re-raised unchanged.

    Args:
        operation_name: Custom name for the operation (defaults to function name)
        log_result: Whether to log each timing at debug level
    """
    def decorator(func: Callable) -> Callable:
        name = operation_name or f"{func.__module__}.{func.__name__}"

        def _finish(start: float, success: bool, error: Optional[str]) -> None:
            timing = OperationTiming(
                operation_name=name,
                duration=time.perf_counter() - start,
                success=success,
                error_message=error,
            )
            profiler.record(timing)
            if log_result:
                logger.debug("operation_timed", operation=name, duration=timing.duration, success=success)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _finish(start, False, str(e))
                raise
            _finish(start, True, None)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finish(start, False, str(e))
                raise
            _finish(start, True, None)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def get_performance_summary() -> Dict[str, Any]:
    """Get a summary of all performance metrics."""
    return {
        operation: profiler.get_metrics_summary(operation)
        for operation in profiler.get_all_operation_names()
    }


def reset_performance_metrics() -> None:
    """Reset all performance metrics."""
    profiler.clear_metrics()
