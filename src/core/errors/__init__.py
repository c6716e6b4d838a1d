"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Domain errors for archives, schemas, rows and the reference store
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AuthError,
    # Enums
    ErrorCategory,
    KafkaError,
    # Domain errors
    MalformedArchiveError,
    PermanentError,
    # Base classes
    PipelineError,
    ReferenceStoreError,
    RowBatchError,
    RowParseError,
    SchemaNotFoundError,
    TransientError,
    # Classification utilities
    classify_exception,
    classify_os_error,
    is_transient_error,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    "KafkaError",
    # Domain errors
    "MalformedArchiveError",
    "SchemaNotFoundError",
    "RowParseError",
    "RowBatchError",
    "ReferenceStoreError",
    # Classification utilities
    "classify_exception",
    "classify_os_error",
    "is_transient_error",
    "wrap_exception",
]
