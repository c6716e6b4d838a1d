"""Read-through cache of reference attributes, refreshed on a fixed interval."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from core.errors import classify_exception
from core.logging import log_exception
from zipstream.common.metrics import record_reference_refresh
from zipstream.resources.schemas import (
    DEFAULT_CSV_FORMAT,
    CsvFormat,
    ReferenceEntry,
    ReferenceSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 300.0

EntryLoader = Callable[[], Awaitable[Mapping[int, ReferenceEntry]]]


class ReferenceCache:
    """
    Dataset id -> reference attributes, served from one immutable snapshot.

    refresh() builds a complete new snapshot and swaps it in with a single
    attribute assignment, so a lookup always sees either the old or the new
    snapshot in full. A failed refresh keeps the previous snapshot.

    Usage:
        cache = ReferenceCache(store.fetch_reference_entries, refresh_seconds=300)
        await cache.start()
        attributes = cache.lookup(42)
        await cache.stop()
    """

    def __init__(
        self,
        loader: EntryLoader,
        refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
    ) -> None:
        if refresh_seconds <= 0:
            raise ValueError(f"refresh_seconds must be > 0, got {refresh_seconds}")

        self._loader = loader
        self.refresh_seconds = refresh_seconds
        self._snapshot = ReferenceSnapshot()
        self._task: asyncio.Task | None = None
        self._refresh_count = 0
        self._refresh_failures = 0

    @property
    def snapshot(self) -> ReferenceSnapshot:
        return self._snapshot

    def lookup(self, dataset_id: int) -> Mapping[str, str] | None:
        entry = self._snapshot.get(dataset_id)
        return entry.attributes if entry is not None else None

    def csv_format_for(self, dataset_id: int) -> CsvFormat:
        entry = self._snapshot.get(dataset_id)
        return entry.csv_format if entry is not None else DEFAULT_CSV_FORMAT

    async def refresh(self) -> bool:
        """Reload from the store. Returns False (keeping the old snapshot) on failure."""
        try:
            entries = await self._loader()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._refresh_failures += 1
            record_reference_refresh(success=False)
            log_exception(
                logger,
                e,
                "Reference refresh failed, serving previous snapshot",
                level=logging.WARNING,
                include_traceback=False,
                error_category=classify_exception(e).value,
                reference_entries=len(self._snapshot),
                snapshot_age_seconds=round(self._snapshot.age_seconds(), 1),
            )
            return False

        self._snapshot = ReferenceSnapshot(entries=entries)
        self._refresh_count += 1
        record_reference_refresh(success=True, entries=len(self._snapshot))
        logger.debug(
            "Reference snapshot refreshed",
            extra={"reference_entries": len(self._snapshot), "refresh_count": self._refresh_count},
        )
        return True

    async def start(self) -> None:
        """Load the first snapshot, then refresh in the background."""
        if self._task is not None:
            logger.warning("Reference cache already started")
            return

        if await self.refresh():
            logger.info(
                "Reference cache loaded",
                extra={"reference_entries": len(self._snapshot)},
            )
        else:
            logger.warning("Reference cache starting empty; enrichment disabled until next refresh")

        self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _refresh_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.refresh_seconds)
                await self.refresh()
        except asyncio.CancelledError:
            logger.debug("Reference refresh task cancelled")
            raise

    def stats(self) -> dict[str, Any]:
        return {
            "reference_entries": len(self._snapshot),
            "refresh_count": self._refresh_count,
            "refresh_failures": self._refresh_failures,
            "snapshot_age_seconds": round(self._snapshot.age_seconds(), 1),
        }
