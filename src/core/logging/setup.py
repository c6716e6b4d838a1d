"""Logging setup and configuration."""

import io
import logging
import secrets
import shutil
import sys
import threading
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "H"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 24
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Ordinal instance ids (0, 1, 2, ...) keep concurrent workers on separate log files
_instance_counter = 0
_instance_counter_lock = threading.Lock()


def _get_next_instance_id() -> str:
    """Get next instance ID as ordinal number (thread-safe)."""
    global _instance_counter
    with _instance_counter_lock:
        instance_id = str(_instance_counter)
        _instance_counter += 1
        return instance_id


# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
    "psycopg",
    "psycopg.pool",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files to an archive folder.

    Example:
        Before rotation:
            logs/resources/2026-01-05/resources_ingest_0105_1430_0.log

        After rotation:
            logs/resources/2026-01-05/resources_ingest_0105_1430_0.log (new file)
            logs/archive/resources/2026-01-05/resources_ingest_0105_1430_0.log.2026-01-05_14

    If archive_dir is not provided, rotated files go to an 'archive'
    subdirectory next to the log file.
    """

    def __init__(
        self,
        filename,
        when="midnight",
        interval=1,
        backupCount=0,
        encoding=None,
        delay=False,
        utc=False,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        if archive_dir:
            self.archive_dir = Path(archive_dir)
        else:
            self.archive_dir = Path(self.baseFilename).parent / "archive"

        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        log_path = Path(self.baseFilename)
        for rotated_file in log_path.parent.glob(f"{log_path.name}.*"):
            if rotated_file == log_path:
                continue

            archive_file = self.archive_dir / rotated_file.name
            try:
                shutil.move(str(rotated_file), str(archive_file))
            except OSError as e:
                # stderr, not the logger, to avoid recursing into this handler
                print(f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr)


def get_log_file_path(
    log_dir: Path,
    domain: str | None = None,
    stage: str | None = None,
    instance_id: str | None = None,
) -> Path:
    """
    Build log file path with domain/date subfolder structure.

    Structure: {log_dir}/{domain}/{YYYY-MM-DD}/{domain}_{stage}_{MMDD}_{HHMM}_{instance}.log

    Examples:
        logs/resources/2026-01-05/resources_ingest_0105_1430_0.log
        logs/2026-01-05/ingest_0105_0930_1.log

    Args:
        log_dir: Base log directory
        domain: Pipeline domain (resources)
        stage: Stage name (ingest)
        instance_id: Instance identifier; an ordinal is generated when omitted

    Returns:
        Full path to log file
    """
    now = datetime.now()
    date_folder = now.strftime("%Y-%m-%d")
    date_str = now.strftime("%m%d")
    time_str = now.strftime("%H%M")

    if domain and stage:
        base_name = f"{domain}_{stage}_{date_str}_{time_str}"
    elif domain:
        base_name = f"{domain}_{date_str}_{time_str}"
    elif stage:
        base_name = f"{stage}_{date_str}_{time_str}"
    else:
        base_name = f"pipeline_{date_str}_{time_str}"

    phrase = instance_id or _get_next_instance_id()
    filename = f"{base_name}_{phrase}.log"

    if domain:
        return log_dir / domain / date_folder / filename
    return log_dir / date_folder / filename


def setup_logging(
    name: str = "zipstream",
    stage: str | None = None,
    domain: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    use_instance_id: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure logging with console and auto-archiving time-based rotating file handlers.

    Log files are organized by domain and date:
        logs/resources/2026-01-05/resources_ingest_0105_1430_0.log

    Rotated backups are moved under logs/archive/ mirroring the same layout.

    Args:
        name: Logger name
        stage: Stage name for per-stage log files
        domain: Pipeline domain
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        rotation_when: When to rotate logs - 'midnight', 'H' (hourly), 'M' (minutes)
        rotation_interval: Interval for rotation (default: 1)
        backup_count: Number of backup files to keep (default: 24)
        suppress_noisy: Quiet down Kafka client and database driver loggers
        worker_id: Worker identifier for context
        use_instance_id: Append an ordinal instance id to the log filename (default: True)
        log_to_stdout: Send all log output to stdout only, skipping file handlers.
            Useful for containerized deployments where logs are captured from stdout.

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)
    if domain:
        set_log_context(domain=domain)

    console_formatter = ConsoleFormatter()
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    log_file = None
    if log_to_stdout:
        console_handler.setLevel(file_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)
        console_handler.setFormatter(console_formatter)

        instance_id = _get_next_instance_id() if use_instance_id else None
        log_file = get_log_file_path(log_dir, domain=domain, stage=stage, instance_id=instance_id)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        # Structure: logs/archive/domain/date
        try:
            relative_path = log_file.relative_to(log_dir)
            archive_dir = log_dir / "archive" / relative_path.parent
        except ValueError:
            archive_dir = log_file.parent / "archive"

        file_handler = ArchivingTimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
            archive_dir=archive_dir,
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(f"Logging initialized: file={log_file}, json={json_format}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically for __name__)."""
    return logging.getLogger(name)


def log_worker_startup(
    logger: logging.Logger,
    worker_name: str,
    kafka_bootstrap_servers: str | None = None,
    input_topic: str | None = None,
    output_topic: str | None = None,
    consumer_group: str | None = None,
    extra_config: dict | None = None,
) -> None:
    """
    Log standard worker startup information including Kafka configuration.

    Args:
        logger: Logger instance to use
        worker_name: Name of the worker starting up
        kafka_bootstrap_servers: Kafka bootstrap servers
        input_topic: Input topic the worker consumes from
        output_topic: Output topic the worker produces to
        consumer_group: Consumer group ID
        extra_config: Additional configuration to log
    """
    logger.info("=" * 70)
    logger.info("Starting %s", worker_name)
    logger.info("=" * 70)
    logger.info("Kafka bootstrap servers: %s", kafka_bootstrap_servers or "not set")

    if input_topic:
        logger.info("Input topic: %s", input_topic)
    if output_topic:
        logger.info("Output topic: %s", output_topic)
    if consumer_group:
        logger.info("Consumer group: %s", consumer_group)

    if extra_config:
        for key, value in extra_config.items():
            logger.info("%s: %s", key, value)

    logger.info("=" * 70)


def generate_cycle_id() -> str:
    """
    Generate unique cycle identifier.

    Format: c-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"c-{ts}-{suffix}"
