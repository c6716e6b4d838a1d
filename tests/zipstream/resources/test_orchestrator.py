"""Tests for per-message archive processing."""

import hashlib
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.config import ProcessingSettings
from zipstream.common.types import PipelineMessage
from zipstream.resources import orchestrator as orchestrator_module
from zipstream.resources.orchestrator import (
    ArchiveOrchestrator,
    PublishError,
    parse_dataset_id,
    to_json,
)
from zipstream.resources.reference_cache import ReferenceCache
from zipstream.resources.row_pipeline import RowPipeline
from zipstream.resources.schema_provider import DatabaseSchemaProvider, StaticSchemaProvider
from zipstream.resources.schemas import (
    CsvFormat,
    Dropped,
    Failed,
    OutcomeKind,
    Published,
    ReferenceEntry,
    ReferenceSnapshot,
)

SCHEMAS = {42: [{"name": "cost", "type": "float"}, {"name": "active", "type": "boolean"}]}
REFERENCE = {42: ReferenceEntry({"RESOURCE_NAME": "widgets", "RESOURCE_VERSION": "3"})}
METADATA = {"resourceId": 42, "source": "nightly"}
CSV = "resourceId,resourceName,cost,active\n42,widget,3.5,true\n"


def _message(body) -> PipelineMessage:
    if isinstance(body, dict):
        body = json.dumps(body)
    value = body.encode() if isinstance(body, str) else body
    return PipelineMessage(topic="resources.archives", partition=0, offset=1, timestamp=0, value=value)


def _notification(path) -> PipelineMessage:
    return _message({"zipPath": str(path)})


def _cache(entries):
    cache = ReferenceCache(AsyncMock(return_value=entries))
    cache._snapshot = ReferenceSnapshot(entries=entries)
    return cache


@pytest.fixture
def reference_cache():
    return _cache(REFERENCE)


@pytest.fixture
def row_pipeline():
    pipeline = RowPipeline(max_workers=2)
    yield pipeline
    pipeline.close()


@pytest.fixture
def publish():
    return AsyncMock()


@pytest.fixture
def orchestrator(reference_cache, row_pipeline, publish):
    settings = ProcessingSettings()
    return ArchiveOrchestrator(
        settings=settings,
        schema_provider=StaticSchemaProvider(SCHEMAS, settings.leading_columns_for),
        reference_cache=reference_cache,
        row_pipeline=row_pipeline,
        publish=publish,
    )


class TestHelpers:

    @pytest.mark.parametrize(
        "value,expected",
        [(42, 42), ("42", 42), (" -7 ", -7), ("4.2", None), ("abc", None), (None, None), (True, None)],
    )
    def test_parse_dataset_id(self, value, expected):
        assert parse_dataset_id(value) == expected

    def test_to_json_is_compact(self):
        assert to_json({"a": 1, "b": [True, None]}) == '{"a":1,"b":[true,null]}'


class TestPublished:

    @pytest.mark.asyncio
    async def test_end_to_end(self, orchestrator, publish, make_archive):
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV})

        outcome = await orchestrator.process(_notification(path))

        assert isinstance(outcome, Published)
        assert len(outcome.records) == 1
        record = outcome.records[0]
        assert record.key == hashlib.sha256(b"true3.542widget").hexdigest()

        metadata_line, record_line = record.value.split("\n")
        assert json.loads(metadata_line) == {
            "resourceId": 42,
            "source": "nightly",
            "RESOURCE_NAME": "widgets",
            "RESOURCE_VERSION": "3",
        }
        assert record_line == '{"resourceId":42,"resourceName":"widget","cost":3.5,"active":true}'
        publish.assert_awaited_once_with(outcome.records)

    @pytest.mark.asyncio
    async def test_reference_attributes_override_descriptor(self, orchestrator, make_archive):
        metadata = {"resourceId": "42", "RESOURCE_NAME": "stale"}
        path = make_archive({"metadata.json": metadata, "data.csv": CSV})

        outcome = await orchestrator.process(_notification(path))

        metadata_line = outcome.records[0].value.split("\n")[0]
        assert json.loads(metadata_line)["RESOURCE_NAME"] == "widgets"

    @pytest.mark.asyncio
    async def test_rows_then_secondary_records(self, orchestrator, make_archive):
        path = make_archive(
            {
                "metadata.json": METADATA,
                "data.csv": CSV + "42,gadget,1.0,false\n",
                "events.json": [{"event": "a"}, {"event": "b"}],
            }
        )

        outcome = await orchestrator.process(_notification(path))

        bodies = [json.loads(r.value.split("\n")[1]) for r in outcome.records]
        assert [b.get("resourceName") or b.get("event") for b in bodies] == ["widget", "gadget", "a", "b"]

    @pytest.mark.asyncio
    async def test_secondary_records_only(self, orchestrator, make_archive):
        path = make_archive({"metadata.json": {"resourceId": 99}, "summary.json": {"total": 1}})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.kind is OutcomeKind.PUBLISHED
        assert outcome.records[0].value == '{"resourceId":99}\n{"total":1}'

    @pytest.mark.asyncio
    async def test_dataset_format_from_reference(self, row_pipeline, publish, make_archive):
        reference_cache = _cache({42: ReferenceEntry({}, CsvFormat("|", None))})
        settings = ProcessingSettings()
        orchestrator = ArchiveOrchestrator(
            settings,
            StaticSchemaProvider(SCHEMAS, settings.leading_columns_for),
            reference_cache,
            row_pipeline,
            publish,
        )
        path = make_archive({"metadata.json": METADATA, "data.csv": "h\n42|w,x|2.0|false\n"})

        outcome = await orchestrator.process(_notification(path))

        record_line = outcome.records[0].value.split("\n")[1]
        assert json.loads(record_line) == {"resourceId": 42, "resourceName": "w,x", "cost": 2.0, "active": False}


class TestDropped:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,reason",
        [
            (b"", "empty_message"),
            (b"   ", "empty_message"),
            (b"{not json", "invalid_json"),
            (b'{"other": 1}', "missing_zip_path"),
            (b'{"zipPath": ""}', "missing_zip_path"),
            (b"[1, 2]", "missing_zip_path"),
        ],
    )
    async def test_bad_bodies(self, orchestrator, publish, body, reason):
        outcome = await orchestrator.process(_message(body))
        assert outcome == Dropped(reason)
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_path_never_opened(self, orchestrator, publish):
        with patch.object(orchestrator_module, "read_archive_contents") as read_contents:
            outcome = await orchestrator.process(_message({"zipPath": "/tmp/notazip.txt"}))

        assert outcome == Dropped("path_not_matched")
        read_contents.assert_not_called()
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_descriptor(self, orchestrator, make_archive):
        path = make_archive({"data.csv": CSV})
        assert await orchestrator.process(_notification(path)) == Dropped("no_descriptor")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("metadata", [{"source": "x"}, {"resourceId": "abc"}, {"resourceId": None}])
    async def test_no_dataset_id(self, orchestrator, make_archive, metadata):
        path = make_archive({"metadata.json": metadata, "data.csv": CSV})
        assert await orchestrator.process(_notification(path)) == Dropped("no_dataset_id")

    @pytest.mark.asyncio
    async def test_nothing_to_publish(self, orchestrator, publish, make_archive):
        path = make_archive({"metadata.json": METADATA, "data.csv": "resourceId,resourceName\n"})

        assert await orchestrator.process(_notification(path)) == Dropped("no_records")
        publish.assert_not_awaited()


class TestFailed:

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, orchestrator, publish, tmp_path):
        path = tmp_path / "111_csv_with_metadata_broken.zip"
        path.write_bytes(b"not a zip at all")

        outcome = await orchestrator.process(_notification(path))

        assert isinstance(outcome, Failed)
        assert outcome.reason == "malformed_archive"
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_archive(self, orchestrator, tmp_path):
        outcome = await orchestrator.process(_notification(tmp_path / "111_csv_with_metadata_gone.zip"))
        assert outcome.reason == "malformed_archive"

    @pytest.mark.asyncio
    async def test_invalid_secondary_json(self, orchestrator, make_archive):
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV, "broken.json": "[1,"})
        outcome = await orchestrator.process(_notification(path))
        assert outcome.reason == "malformed_archive"

    @pytest.mark.asyncio
    async def test_non_finite_secondary_value(self, orchestrator, publish, make_archive):
        path = make_archive({"metadata.json": METADATA, "odd.json": '{"ratio": NaN}'})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "malformed_archive"
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_schema(self, orchestrator, make_archive):
        path = make_archive({"metadata.json": {"resourceId": 99}, "data.csv": CSV})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "schema_not_found"

    @pytest.mark.asyncio
    async def test_duplicate_schema_fields(self, reference_cache, row_pipeline, publish, make_archive):
        store = MagicMock()
        row = {"field_name": "cost", "field_type": "float", "field_special_type": None}
        store.fetch_field_rows = AsyncMock(return_value=[row, dict(row)])
        settings = ProcessingSettings()
        orchestrator = ArchiveOrchestrator(
            settings,
            DatabaseSchemaProvider(store, settings.leading_columns_for),
            reference_cache,
            row_pipeline,
            publish,
        )
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "schema_not_found"
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_row_publishes_nothing(self, orchestrator, publish, make_archive):
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV + "lonely\n42,ok,1,true\n"})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "malformed_row"
        assert outcome.error.row_index == 1
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failure(self, orchestrator, publish, make_archive):
        publish.side_effect = ConnectionError("broker gone")
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV})

        outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "publish_failed"
        assert isinstance(outcome.error, PublishError)
        assert isinstance(outcome.error.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_escape(self, orchestrator, make_archive):
        path = make_archive({"metadata.json": METADATA, "data.csv": CSV})
        with patch.object(orchestrator_module, "read_archive_contents", side_effect=KeyError("boom")):
            outcome = await orchestrator.process(_notification(path))

        assert outcome.reason == "unexpected_error"
