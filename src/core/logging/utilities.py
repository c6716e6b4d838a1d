"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (zip_path, dataset_id, duration_ms, etc.)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Archive published",
            zip_path=path,
            dataset_id=42,
            records_published=17,
        )
    """
    exc_info = kwargs.pop("exc_info", None)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from PipelineError subclasses and
    merges the exception's own context dict into the log fields.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            schema = await provider.schema_for(dataset_id)
        except SchemaNotFoundError as e:
            log_exception(logger, e, "Schema lookup failed", zip_path=path)
    """
    exc_context = getattr(exc, "context", None)
    if isinstance(exc_context, dict):
        for key, value in exc_context.items():
            if key not in _RESERVED_LOG_KEYS:
                kwargs.setdefault(key, value)

    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        error_category = cat.value if hasattr(cat, "value") else str(cat)
        kwargs["error_category"] = error_category

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    skipped: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    Format standardized cycle output for workers with delta tracking.

    Args:
        cycle_count: Current cycle number
        succeeded: Total count of published archives
        failed: Total count of failed archives
        skipped: Total count of dropped archives (default: 0)
        since_last: Optional delta counts since last cycle (keys: succeeded, failed, skipped)
        interval_seconds: Cycle interval in seconds (default: 30)

    Returns:
        Formatted cycle output string

    Example:
        >>> format_cycle_output(1, 120, 3, 5)
        'Cycle 1: processed=128, succeeded=120, failed=3, skipped=5'
        >>> format_cycle_output(5, 120, 3, 5, {"succeeded": 24, "failed": 0, "skipped": 0}, 30)
        'Cycle 5: +24 this cycle | total: 120 succeeded, 3 failed, 5 skipped | 0.8 msg/s'
    """
    total_processed = succeeded + failed + skipped

    if since_last is not None:
        delta_total = (
            since_last.get("succeeded", 0)
            + since_last.get("failed", 0)
            + since_last.get("skipped", 0)
        )
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        parts = [f"+{delta_total} this cycle"]

        total_parts = [f"{succeeded} succeeded"]
        if failed > 0:
            total_parts.append(f"{failed} failed")
        if skipped > 0:
            total_parts.append(f"{skipped} skipped")

        parts.append(f"total: {', '.join(total_parts)}")
        parts.append(f"{rate:.1f} msg/s")

        return f"Cycle {cycle_count}: {' | '.join(parts)}"

    parts = [f"processed={total_processed}"]
    parts.append(f"succeeded={succeeded}")
    parts.append(f"failed={failed}")

    if skipped > 0:
        parts.append(f"skipped={skipped}")

    return f"Cycle {cycle_count}: {', '.join(parts)}"


def detect_log_output_mode() -> str:
    """
    Detect current log output mode by inspecting active logging handlers.

    Returns:
        "file+stdout", "file", "stdout" or "console" (no handlers configured)
    """
    handlers = logging.getLogger().handlers
    has_file = any(isinstance(h, logging.FileHandler) for h in handlers)
    has_stream = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in handlers
    )

    if has_file and has_stream:
        return "file+stdout"
    if has_file:
        return "file"
    if has_stream:
        return "stdout"
    return "console"


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("instance_id", "Instance:     {}"),
    ("domain", "Domain:       {}"),
    ("input_topic", "Input Topic:  {}"),
    ("output_topic", "Output Topic: {}"),
    ("schema_source", "Schemas:      {}"),
    ("metrics_port", "Metrics:      http://localhost:{}/metrics"),
    ("log_output_mode", "Log Output:   {}"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Args:
        logger: Logger instance
        worker_name: Worker name (e.g., "Resource Ingest Worker")
        **kwargs: Optional fields: instance_id, domain, input_topic, output_topic,
            schema_source, metrics_port, version, log_output_mode
    """
    separator = "=" * 50

    lines = ["", separator, worker_name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))


def log_worker_error(
    logger: logging.Logger,
    error_message: str,
    error_category: str | None = None,
    exc: Exception | None = None,
    **context: Any,
) -> None:
    """
    Log worker error with standardized context.

    Args:
        logger: Logger instance
        error_message: Human-readable error description
        error_category: Error category (transient, permanent, auth, etc.)
        exc: Exception object (will include traceback if provided)
        **context: Additional context fields (zip_path, dataset_id, etc.)
    """
    extra = dict(context)

    if error_category:
        extra["error_category"] = error_category

    extra["error_message"] = error_message

    if exc:
        logger.error(error_message, extra=extra, exc_info=exc)
    else:
        logger.error(error_message, extra=extra)
