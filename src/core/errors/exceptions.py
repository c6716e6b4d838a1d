"""
Unified exception hierarchy for the archive ingestion pipeline.

Provides typed exceptions with a category so callers can decide whether a
failure is worth retrying, should degrade to stale data, or should drop the
current message.
"""

import errno
import zipfile

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for handling decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Base categories
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Base class for transient errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class KafkaError(PipelineError):
    """Error from Kafka operations (producer/consumer)."""

    pass


class ReferenceStoreError(TransientError):
    """The reference store could not be queried."""

    pass


class MalformedArchiveError(PermanentError):
    """Archive is unreadable, corrupt, or carries an invalid descriptor."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if path is not None:
            context.setdefault("zip_path", path)
        super().__init__(message, cause, context)
        self.path = path


class SchemaNotFoundError(PermanentError):
    """No field schema is registered for a dataset."""

    def __init__(self, dataset_id: int, cause: Exception | None = None):
        super().__init__(
            f"No field schema found for dataset {dataset_id}",
            cause,
            {"dataset_id": dataset_id},
        )
        self.dataset_id = dataset_id


class RowParseError(PermanentError):
    """A tabular row does not carry enough columns to be mapped."""

    def __init__(self, line: str, column_count: int):
        preview = line if len(line) <= 120 else line[:120] + "..."
        super().__init__(
            f"Invalid CSV line ({column_count} column(s)): {preview!r}",
            context={"column_count": column_count},
        )
        self.line = line
        self.column_count = column_count


class RowBatchError(PermanentError):
    """A row batch was abandoned because one of its rows failed."""

    def __init__(self, row_index: int, cause: Exception, row_count: int):
        super().__init__(
            f"Row at index {row_index} of {row_count} failed to transform",
            cause,
            {"row_index": row_index, "row_count": row_count},
        )
        self.row_index = row_index
        self.row_count = row_count


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-PipelineError exceptions)
TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "timeout",
        "timed out",
        "connection",
        "temporarily unavailable",
        "service unavailable",
        "too many clients",
        "server closed",
        "could not connect",
    }
)

AUTH_ERROR_MARKERS = frozenset(
    {
        "authentication failed",
        "password authentication",
        "unauthorized",
        "sasl",
    }
)


def classify_os_error(error: OSError) -> ErrorCategory:
    """
    Classify OSError by errno into error category.

    Missing files and permission problems will not fix themselves; anything
    else (network filesystems, interrupted reads) is treated as transient.
    """
    permanent_errnos = (errno.ENOENT, errno.EISDIR, errno.EACCES, errno.EPERM, errno.ENOSPC)
    return ErrorCategory.PERMANENT if error.errno in permanent_errnos else ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, (zipfile.BadZipFile, UnicodeDecodeError, ValueError, KeyError)):
        return ErrorCategory.PERMANENT

    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if any(m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if "timeout" in exc_type or any(m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, OSError):
        return classify_os_error(exc)

    return ErrorCategory.UNKNOWN


def is_transient_error(exc: Exception) -> bool:
    """Check if exception is transient."""
    return classify_exception(exc) == ErrorCategory.TRANSIENT


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in appropriate PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    context = dict(context or {})
    context["error_type"] = type(exc).__name__

    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
