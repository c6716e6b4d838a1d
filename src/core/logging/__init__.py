"""
Structured logging module.

Provides JSON logging with context propagation for workers and messages.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import (
    LogContext,
    OperationContext,
    log_operation,
    log_phase,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    get_logger,
    log_worker_startup,
    setup_logging,
)
from core.logging.utilities import (
    detect_log_output_mode,
    format_cycle_output,
    log_exception,
    log_startup_banner,
    log_with_context,
    log_worker_error,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "generate_cycle_id",
    "get_log_file_path",
    "log_worker_startup",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Message Context
    "set_message_context",
    "get_message_context",
    "clear_message_context",
    "MessageLogContext",
    # Context Managers
    "LogContext",
    "OperationContext",
    "log_phase",
    "log_operation",
    # Periodic
    "PeriodicStatsLogger",
    # Utilities
    "log_with_context",
    "log_exception",
    "log_worker_error",
    "format_cycle_output",
    "detect_log_output_mode",
    "log_startup_banner",
]
