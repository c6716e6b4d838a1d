"""Tests for the reference store. No database required."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg import OperationalError

from config.config import DatabaseConfig
from core.errors import ReferenceStoreError
from zipstream.resources.reference_store import ReferenceStore, entry_from_row
from zipstream.resources.schemas import CsvFormat


def _pool_returning(rows=None, error=None):
    cursor = MagicMock()
    cursor.execute = AsyncMock(side_effect=error)
    cursor.fetchall = AsyncMock(return_value=rows or [])

    @asynccontextmanager
    async def _cursor():
        yield cursor

    conn = MagicMock()
    conn.cursor = _cursor

    @asynccontextmanager
    async def _connection():
        yield conn

    pool = MagicMock()
    pool.connection = _connection
    pool.close = AsyncMock()
    return pool, cursor


@pytest.fixture
def store():
    return ReferenceStore(DatabaseConfig())


class TestEntryFromRow:

    def test_maps_attributes_and_format(self):
        entry = entry_from_row(
            {
                "resource_id": 42,
                "resource_version": 3,
                "resource_name": "widgets",
                "file_type": None,
                "delimiter": "|",
                "end_line": "",
            }
        )
        assert dict(entry.attributes) == {"RESOURCE_VERSION": "3", "RESOURCE_NAME": "widgets"}
        assert entry.csv_format == CsvFormat("|", None)

    def test_defaults_when_format_missing(self):
        entry = entry_from_row({"resource_id": 1})
        assert dict(entry.attributes) == {}
        assert entry.csv_format == CsvFormat()


class TestQueries:

    @pytest.mark.asyncio
    async def test_requires_open(self, store):
        with pytest.raises(RuntimeError, match="not open"):
            await store.fetch_reference_entries()

    @pytest.mark.asyncio
    async def test_fetch_reference_entries(self, store):
        store._pool, _ = _pool_returning(
            [
                {"resource_id": "42", "resource_name": "widgets", "delimiter": None, "end_line": None},
                {"resource_id": 7, "resource_name": "gears", "delimiter": ";", "end_line": None},
            ]
        )

        entries = await store.fetch_reference_entries()

        assert set(entries) == {42, 7}
        assert entries[42].attributes["RESOURCE_NAME"] == "widgets"
        assert entries[7].csv_format.delimiter == ";"

    @pytest.mark.asyncio
    async def test_fetch_field_rows_passes_dataset_id(self, store):
        rows = [{"field_name": "cost", "field_type": "float", "field_special_type": None}]
        store._pool, cursor = _pool_returning(rows)

        assert await store.fetch_field_rows(42) == rows
        assert cursor.execute.await_args.args[1] == (42,)

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, store):
        store._pool, _ = _pool_returning(error=OperationalError("connection lost"))

        with pytest.raises(ReferenceStoreError) as exc_info:
            await store.fetch_field_rows(42)
        assert isinstance(exc_info.value.cause, OperationalError)

    @pytest.mark.asyncio
    async def test_close_releases_pool(self, store):
        pool, _ = _pool_returning()
        store._pool = pool

        await store.close()
        await store.close()

        pool.close.assert_awaited_once()
        assert store._pool is None
