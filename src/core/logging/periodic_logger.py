"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = {
    "succeeded": "records_succeeded",
    "failed": "records_failed",
    "skipped": "records_skipped",
}


class PeriodicStatsLogger:
    """
    Manages periodic statistics logging for workers with delta tracking.

    Workers provide a callback that returns extra fields with cumulative
    records_succeeded / records_failed / records_skipped counts; the logger
    reports totals plus the change since the previous cycle.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[int], tuple[str, dict[str, Any]]],
        stage: str,
        worker_id: str,
    ):
        """
        Args:
            interval_seconds: Logging interval in seconds
            get_stats: Callback that takes cycle_count and returns (message, extra_fields)
            stage: Stage name for logging context
            worker_id: Worker identifier
        """
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous_stats: dict[str, int] = {}

    def start(self) -> None:
        """Start the periodic logging task."""
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic logging task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @staticmethod
    def _counts(extra: dict[str, Any]) -> dict[str, int]:
        return {key: extra.get(field, 0) for key, field in _COUNTER_FIELDS.items()}

    async def _run(self) -> None:
        _, initial_extra = self.get_stats(0)
        initial = self._counts(initial_extra)

        initial_msg = format_cycle_output(cycle_count=0, **initial)
        logger.info(
            f"{initial_msg} [cycle output every {self.interval_seconds}s]",
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": 0,
                **initial_extra,
            },
        )
        self._previous_stats = initial

        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._cycle_count += 1

                _, extra = self.get_stats(self._cycle_count)
                current = self._counts(extra)
                deltas = {
                    key: current[key] - self._previous_stats.get(key, 0) for key in current
                }

                msg = format_cycle_output(
                    cycle_count=self._cycle_count,
                    since_last=deltas,
                    interval_seconds=self.interval_seconds,
                    **current,
                )
                self._previous_stats = current

                delta_total = sum(deltas.values())
                rate = delta_total / self.interval_seconds if self.interval_seconds > 0 else 0

                logger.info(
                    msg,
                    extra={
                        "worker_id": self.worker_id,
                        "stage": self.stage,
                        "cycle": self._cycle_count,
                        "cycle_id": f"cycle-{self._cycle_count}",
                        "delta_succeeded": deltas["succeeded"],
                        "delta_failed": deltas["failed"],
                        "delta_skipped": deltas["skipped"],
                        "delta_total": delta_total,
                        "rate_msg_per_sec": round(rate, 1),
                        **extra,
                    },
                )

        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
