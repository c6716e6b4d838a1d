"""
Core library: infrastructure-agnostic components.

Modules:
    logging - Structured JSON logging with message context propagation
    errors  - Error classification and exception hierarchy
    utils   - JSON serialization helpers and worker id generation

Nothing in this package knows about archives, schemas or Kafka topics.
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
