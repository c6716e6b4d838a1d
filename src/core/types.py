"""
Core types shared across modules.

This module provides the error classification enum used by the exception
hierarchy, the consumer loop and the structured log fields.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed later
                   (e.g., reference store unreachable, broker timeouts)
        AUTH: Authentication failures requiring credential refresh
        PERMANENT: Failures that will not succeed on retry
                   (e.g., corrupt archive, unknown schema, malformed row)
        CIRCUIT_OPEN: A protecting component is rejecting calls
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


__all__ = ["ErrorCategory"]
