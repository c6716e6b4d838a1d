"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(stage="ingest", dataset_id="42"):
            # All logs in this block will carry stage and dataset_id
            do_work()
    """

    def __init__(
        self,
        cycle_id: Optional[str] = None,
        stage: Optional[str] = None,
        worker_id: Optional[str] = None,
        domain: Optional[str] = None,
        trace_id: Optional[str] = None,
        dataset_id: Optional[str] = None,
    ):
        self.new_context = {
            "cycle_id": cycle_id,
            "stage": stage,
            "worker_id": worker_id,
            "domain": domain,
            "trace_id": trace_id,
            "dataset_id": dataset_id,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        for key, value in self.new_context.items():
            if value is not None:
                set_log_context(**{key: value})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self.old_context)
        return False


@contextmanager
def log_phase(
    logger: logging.Logger,
    phase: str,
    level: int = logging.DEBUG,
    **context: Any,
):
    """
    Context manager for timing a phase of message processing.

    Example:
        with log_phase(logger, "transform_rows", zip_path=path):
            records = await pipeline.transform_all(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log_with_context(
            logger,
            level,
            f"Phase complete: {phase}",
            duration_ms=round(duration_ms, 2),
            **context,
        )


class OperationContext:
    """Context manager for timed operations with automatic logging."""

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        slow_threshold_ms: Optional[float] = 1000.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self._start_time: Optional[float] = None

    def __enter__(self) -> "OperationContext":
        self._start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self._start_time) * 1000

        # Slow operations are promoted to INFO
        effective_level = self.level
        if self.slow_threshold_ms and duration_ms > self.slow_threshold_ms:
            effective_level = max(self.level, logging.INFO)

        if exc_val is not None:
            log_exception(
                self.logger,
                exc_val,
                f"Failed: {self.operation}",
                level=logging.WARNING,
                include_traceback=False,
                duration_ms=round(duration_ms, 2),
                operation=self.operation,
                **self.context,
            )
        else:
            log_with_context(
                self.logger,
                effective_level,
                f"Completed: {self.operation}",
                duration_ms=round(duration_ms, 2),
                operation=self.operation,
                **self.context,
            )
        return False

    def add_context(self, **kwargs: Any) -> None:
        """Add context mid-operation (row counts, etc)."""
        self.context.update(kwargs)


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.DEBUG,
    slow_threshold_ms: Optional[float] = 1000.0,
    **context: Any,
):
    """Convenience context manager for ad-hoc operation logging."""
    with OperationContext(
        logger, operation, level=level, slow_threshold_ms=slow_threshold_ms, **context
    ) as ctx:
        yield ctx
