"""
PostgreSQL access to the reference tables using psycopg3.

RESOURCE_DESCRIPTION holds per-dataset attributes and CSV format overrides;
PROPS_DATA holds the ordered field list of each dataset.
"""

import asyncio
import logging
from typing import Any

from psycopg import Error as PsycopgError
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from config.config import DatabaseConfig
from core.errors import ReferenceStoreError
from core.logging import log_operation
from zipstream.resources.schemas import CsvFormat, ReferenceEntry

logger = logging.getLogger(__name__)

# Reference attributes copied into every enriched metadata record
REFERENCE_ATTRIBUTE_COLUMNS = {
    "resource_version": "RESOURCE_VERSION",
    "resource_name": "RESOURCE_NAME",
    "file_type": "FILE_TYPE",
}

RESOURCE_DESCRIPTION_QUERY = """
    SELECT resource_id, resource_version, resource_name, file_type, delimiter, end_line
    FROM resource_description
"""

PROPS_DATA_QUERY = """
    SELECT field_name, field_type, field_special_type
    FROM props_data
    WHERE resource_id = %s
    ORDER BY field_position, field_name
"""


def entry_from_row(row: dict[str, Any]) -> ReferenceEntry:
    """Build a ReferenceEntry from one RESOURCE_DESCRIPTION row; null attributes are left out."""
    attributes = {
        key: str(row[column])
        for column, key in REFERENCE_ATTRIBUTE_COLUMNS.items()
        if row.get(column) is not None
    }
    return ReferenceEntry(
        attributes=attributes,
        csv_format=CsvFormat.from_reference(row.get("delimiter"), row.get("end_line")),
    )


class ReferenceStore:
    """
    Async connection pool over the reference database.

    Usage:
        async with ReferenceStore(config.database) as store:
            entries = await store.fetch_reference_entries()
    """

    def __init__(self, database: DatabaseConfig) -> None:
        self.database = database
        self._pool: AsyncConnectionPool | None = None

    async def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying the initial connection.

        Raises:
            ReferenceStoreError: If no connection could be made after all retries
        """
        if self._pool is not None:
            return

        for attempt in range(1, max_retries + 1):
            pool = AsyncConnectionPool(
                conninfo=self.database.conninfo,
                min_size=self.database.min_size,
                max_size=self.database.max_size,
                timeout=float(self.database.connect_timeout_seconds),
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                await pool.open(wait=True, timeout=float(self.database.connect_timeout_seconds))
                self._pool = pool
                logger.info(
                    "Reference store connected",
                    extra={"operation": "open_pool", "dsn": self._describe()},
                )
                return
            except (PoolTimeout, PsycopgError) as e:
                await pool.close()
                if attempt >= max_retries:
                    raise ReferenceStoreError(
                        f"Failed to connect to reference database after {max_retries} attempts",
                        cause=e,
                        context={"dsn": self._describe()},
                    ) from e
                logger.warning(
                    "Reference database connection attempt failed, retrying",
                    extra={"operation": "open_pool", "error": str(e)},
                )
                await asyncio.sleep(retry_delay)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "ReferenceStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    def _describe(self) -> str:
        return f"{self.database.user}@{self.database.host}:{self.database.port}/{self.database.dbname}"

    async def _fetch_all(self, query: str, params: tuple | None = None) -> list[dict[str, Any]]:
        if self._pool is None:
            raise RuntimeError("Reference store is not open. Call open() first.")

        try:
            async with self._pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except (PoolTimeout, PsycopgError) as e:
            raise ReferenceStoreError("Reference database query failed", cause=e) from e

    async def fetch_reference_entries(self) -> dict[int, ReferenceEntry]:
        """Read every RESOURCE_DESCRIPTION row keyed by dataset id."""
        with log_operation(logger, "fetch_reference_entries", table="resource_description") as op:
            rows = await self._fetch_all(RESOURCE_DESCRIPTION_QUERY)
            entries = {int(row["resource_id"]): entry_from_row(row) for row in rows}
            op.add_context(reference_entries=len(entries))
        return entries

    async def fetch_field_rows(self, dataset_id: int) -> list[dict[str, Any]]:
        """PROPS_DATA rows for a dataset in field position order."""
        with log_operation(logger, "fetch_field_rows", table="props_data", dataset_id=dataset_id) as op:
            rows = await self._fetch_all(PROPS_DATA_QUERY, (dataset_id,))
            op.add_context(field_count=len(rows))
        return rows
