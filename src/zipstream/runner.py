"""Worker execution with startup retry, shutdown handling and instance pools."""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

import coolname

from config.config import MessageConfig
from core.logging import set_log_context
from zipstream.resources.worker import IngestWorker

logger = logging.getLogger(__name__)

# Overridable via STARTUP_MAX_RETRIES / STARTUP_BACKOFF_SECONDS
DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5


async def start_with_retry(
    start_fn: Callable[[], Awaitable[None]],
    label: str,
    max_retries: int | None = None,
    backoff_base: float | None = None,
) -> None:
    """Call start_fn, retrying with linear backoff; the last error is re-raised."""
    max_retries = max_retries or int(os.getenv("STARTUP_MAX_RETRIES", str(DEFAULT_STARTUP_RETRIES)))
    if backoff_base is None:
        backoff_base = float(os.getenv("STARTUP_BACKOFF_SECONDS", str(DEFAULT_STARTUP_BACKOFF_BASE)))

    for attempt in range(1, max_retries + 1):
        try:
            await start_fn()
            return
        except Exception as e:
            if attempt == max_retries:
                logger.error(
                    f"Failed to start {label} after {max_retries} attempts, giving up",
                    extra={"error": str(e), "attempts": max_retries},
                )
                raise
            delay = backoff_base * attempt
            logger.warning(
                f"Failed to start {label} (attempt {attempt}/{max_retries}), retrying in {delay}s",
                extra={"error": str(e), "attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)


async def execute_worker_with_shutdown(
    worker: Any,
    stage_name: str,
    shutdown_event: asyncio.Event,
    instance_id: str | None = None,
) -> None:
    """Run worker.start() until it returns or shutdown_event is set, then stop it."""
    context = {"stage": stage_name}
    suffix = ""
    if instance_id is not None:
        context["worker_id"] = f"{stage_name}-{instance_id}"
        suffix = f" (instance {instance_id})"

    set_log_context(**context)
    logger.info(f"Starting {stage_name}{suffix}...")

    async def shutdown_watcher():
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}{suffix}...")
        await worker.stop()

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await start_with_retry(worker.start, stage_name)
    finally:
        watcher_task.cancel()
        try:
            await watcher_task
        except asyncio.CancelledError:
            pass
        await worker.stop()


async def run_ingest_worker(
    config: MessageConfig,
    shutdown_event: asyncio.Event,
    domain: str = "resources",
    instance_id: str | None = None,
) -> None:
    worker = IngestWorker(config=config, domain=domain, instance_id=instance_id)
    await execute_worker_with_shutdown(worker, "ingest", shutdown_event, instance_id=instance_id)


async def run_worker_pool(
    worker_fn: Callable[..., Awaitable[None]],
    count: int,
    worker_name: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Run count instances of worker_fn concurrently, each with a coolname instance_id.

    Instances share one consumer group so partitions are spread across them.
    """
    logger.info("Starting worker instances", extra={"count": count, "worker_name": worker_name})

    tasks = []
    for _ in range(count):
        instance_id = coolname.generate_slug(2)
        tasks.append(
            asyncio.create_task(
                worker_fn(*args, instance_id=instance_id, **kwargs),
                name=f"{worker_name}-{instance_id}",
            )
        )

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Worker pool cancelled, shutting down", extra={"worker_name": worker_name})
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
