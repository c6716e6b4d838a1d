"""
Entry point for running the resource ingest worker.

Usage:
    # Run one worker instance
    python -m zipstream

    # Run several instances sharing one consumer group
    python -m zipstream --count 4

    # Custom config file and metrics port
    python -m zipstream --config /etc/zipstream/config.yaml --metrics-port 9090

Architecture:
    resources.archives -> ingest worker (extract, enrich, type, key) -> resources.records
"""

import argparse
import asyncio
import errno
import logging
import os
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import load_config, set_config
from core.logging import (
    detect_log_output_mode,
    get_logger,
    log_startup_banner,
    setup_logging,
)
from zipstream import __version__
from zipstream.common.signals import install_shutdown_handlers
from zipstream.runner import run_ingest_worker, run_worker_pool

# src/zipstream/__main__.py -> repository root holds .env
PROJECT_ROOT = Path(__file__).parent.parent.parent

DOMAIN = "resources"

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the resource ingest worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m zipstream
    python -m zipstream --count 3
    python -m zipstream --log-level DEBUG --log-to-stdout
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--count",
        "-c",
        type=int,
        default=1,
        help="Number of worker instances to run concurrently (default: 1)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )
    return parser.parse_args(argv)


def start_metrics_server(preferred_port: int) -> int:
    """Start the Prometheus exporter, falling back to a free port when taken.

    Returns the port actually in use.
    """
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno != errno.EADDRINUSE:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            available_port = s.getsockname()[1]
        start_http_server(available_port)
        return available_port


async def run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    set_config(config)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown() -> None:
        if not shutdown_event.is_set():
            shutdown_event.set()
            return
        logger.warning("Received second signal, forcing immediate shutdown...")
        for task in asyncio.all_tasks(loop):
            task.cancel()

    install_shutdown_handlers(request_shutdown)

    if args.count > 1:
        await run_worker_pool(
            run_ingest_worker,
            args.count,
            "ingest",
            config,
            shutdown_event,
            domain=DOMAIN,
        )
    else:
        await run_ingest_worker(config, shutdown_event, domain=DOMAIN)


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))
    setup_logging(
        name="zipstream",
        stage="ingest",
        domain=DOMAIN,
        log_dir=log_dir,
        json_format=_env_flag("JSON_LOGS", "true"),
        console_level=getattr(logging, args.log_level),
        worker_id=os.getenv("WORKER_ID", "zipstream-ingest"),
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    logger = get_logger(__name__)

    actual_port = start_metrics_server(args.metrics_port)

    log_startup_banner(
        logger,
        "Resource Ingest Worker",
        version=__version__,
        domain=DOMAIN,
        metrics_port=actual_port,
        log_output_mode=detect_log_output_mode(),
    )

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    except asyncio.CancelledError:
        logger.info("Shutdown complete")
    except ValueError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1
    except Exception:
        logger.exception("Worker terminated with unexpected error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
