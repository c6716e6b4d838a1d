"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Masks credentials embedded in connection strings before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Correlation and tracing
        "trace_id",
        "duration_ms",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Archive processing
        "zip_path",
        "dataset_id",
        "entry_name",
        "outcome",
        "reason",
        "row_count",
        "row_index",
        "column_count",
        "records_published",
        "secondary_records",
        # Worker counters
        "records_processed",
        "records_succeeded",
        "records_failed",
        "records_skipped",
        "processing_time_ms",
        # Reference data
        "reference_entries",
        "refresh_count",
        "refresh_failures",
        "snapshot_age_seconds",
        "field_count",
        # Operation tracking
        "operation",
        "table",
        "dsn",
        # Message transport metadata
        "message_topic",
        "message_partition",
        "message_offset",
        "message_key",
        "message_consumer_group",
        "partitions",
        "topic",
        "key",
    ]

    # Numeric fields keep their type so log queries can aggregate them
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "processing_time_ms": float,
        "snapshot_age_seconds": float,
        "dataset_id": int,
        "row_count": int,
        "row_index": int,
        "column_count": int,
        "records_published": int,
        "secondary_records": int,
        "records_processed": int,
        "records_succeeded": int,
        "records_failed": int,
        "records_skipped": int,
        "reference_entries": int,
        "refresh_count": int,
        "refresh_failures": int,
        "field_count": int,
        "message_partition": int,
        "message_offset": int,
        "partitions": int,
    }

    # Fields that may carry a connection string
    DSN_FIELDS = ["dsn", "error", "error_message"]

    # password=... in libpq key/value strings, user:password@ in URLs
    SENSITIVE_DSN_PATTERN = re.compile(r"(password=)\S+|(://[^:/@\s]+:)[^@\s]+(@)", re.IGNORECASE)

    def _sanitize_dsn(self, value: str) -> str:
        def _mask(match: re.Match) -> str:
            if match.group(1):
                return f"{match.group(1)}[REDACTED]"
            return f"{match.group(2)}[REDACTED]{match.group(3)}"

        return self.SENSITIVE_DSN_PATTERN.sub(_mask, value)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.DSN_FIELDS and isinstance(value, str):
            return self._sanitize_dsn(value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Coerce a numeric field to its declared type.

        Returns None when the value cannot be converted.
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    def _inject_context(self, log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        context_fields = ["domain", "stage", "cycle_id", "worker_id", "trace_id", "dataset_id"]
        for field in context_fields:
            if log_context.get(field):
                log_entry[field] = self._ensure_type(field, log_context[field])

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                typed_value = self._ensure_type(field, value)
                log_entry[field] = self._sanitize_value(field, typed_value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": self._sanitize_dsn(str(exc_value)) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line."""
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())

        # Message context fills in topic/partition/offset unless the record already has them
        for field, value in get_message_context().items():
            log_entry.setdefault(field, value)

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["domain"]:
            parts.append(f"[{log_context['domain']}]")
        if log_context["stage"]:
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        trace_id = getattr(record, "trace_id", None) or log_context.get("trace_id")
        dataset_id = getattr(record, "dataset_id", None) or log_context.get("dataset_id")

        tags = []
        if trace_id:
            tags.append(f"[{trace_id[:8]}]")
        if dataset_id:
            tags.append(f"[ds:{dataset_id}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"

        return f"{prefix} - {message}"
