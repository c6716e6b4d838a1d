"""
Tests for the ingest worker.

Kafka consumer and producer are mocked; the static schema source means no database.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from zipstream.common.types import PipelineMessage
from zipstream.resources.reference_cache import ReferenceCache
from zipstream.resources.row_pipeline import RowPipeline
from zipstream.resources.schemas import Dropped, Failed, OutboundRecord, Published
from zipstream.resources.worker import IngestWorker


def _transport_mock():
    transport = MagicMock()
    transport.start = AsyncMock()
    transport.stop = AsyncMock()
    transport.send_batch = AsyncMock()
    return transport


@pytest.fixture
def transports():
    consumer, producer = _transport_mock(), _transport_mock()
    with (
        patch("zipstream.resources.worker.MessageConsumer", return_value=consumer) as consumer_cls,
        patch("zipstream.resources.worker.MessageProducer", return_value=producer),
    ):
        yield consumer_cls, consumer, producer


@pytest.fixture
def worker(message_config):
    return IngestWorker(config=message_config, instance_id="happy-otter")


class TestInit:

    def test_topics_and_group(self, worker):
        assert worker.archives_topic == "resources.archives"
        assert worker.records_topic == "resources.records"
        assert worker.consumer_group == "resources-ingest_worker"
        assert worker.worker_id == "ingest_worker-happy-otter"
        assert worker.settings.schema_source == "static"
        assert worker.settings.max_row_workers == 2
        assert not worker.is_running

    def test_explicit_topics(self, message_config):
        worker = IngestWorker(message_config, archives_topic="in", records_topic="out")
        assert (worker.archives_topic, worker.records_topic) == ("in", "out")
        assert worker.worker_id == "ingest_worker"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_wires_components(self, worker, transports):
        consumer_cls, consumer, producer = transports

        await worker.start()
        try:
            assert worker.is_running
            assert worker.reference_store is None
            assert worker.orchestrator is not None
            producer.start.assert_awaited_once()
            consumer.start.assert_awaited_once()
            assert consumer_cls.call_args.kwargs["topics"] == ["resources.archives"]
            assert consumer_cls.call_args.kwargs["instance_id"] == "happy-otter"
        finally:
            await worker.stop()

        assert not worker.is_running
        consumer.stop.assert_awaited_once()
        producer.stop.assert_awaited_once()
        assert worker.row_pipeline is None

    @pytest.mark.asyncio
    async def test_stop_twice(self, worker, transports):
        await worker.start()
        await worker.stop()
        await worker.stop()

        _, consumer, _ = transports
        consumer.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_failure_resets_running(self, worker, transports):
        _, consumer, _ = transports
        consumer.start.side_effect = ConnectionError("no brokers")

        with pytest.raises(ConnectionError):
            await worker.start()

        assert not worker.is_running
        await worker.stop()

    @pytest.mark.asyncio
    async def test_failed_starts_release_each_attempt(self, worker):
        producers = [_transport_mock(), _transport_mock()]
        consumer = _transport_mock()
        consumer.start.side_effect = ConnectionError("no brokers")
        caches, pipelines = [], []

        def track(cls, created):
            def build(*args, **kwargs):
                instance = cls(*args, **kwargs)
                created.append(instance)
                return instance

            return build

        with (
            patch("zipstream.resources.worker.MessageConsumer", return_value=consumer),
            patch("zipstream.resources.worker.MessageProducer", side_effect=producers),
            patch("zipstream.resources.worker.ReferenceCache", side_effect=track(ReferenceCache, caches)),
            patch("zipstream.resources.worker.RowPipeline", side_effect=track(RowPipeline, pipelines)),
        ):
            for _ in range(2):
                with pytest.raises(ConnectionError):
                    await worker.start()

        assert len(caches) == 2
        for producer in producers:
            producer.stop.assert_awaited_once()
        for cache in caches:
            assert cache._task is None
        for pipeline in pipelines:
            with pytest.raises(RuntimeError):
                pipeline._executor.submit(print)
        assert worker._stats_logger is None
        assert worker.producer is None


class TestMessages:

    @pytest.mark.asyncio
    async def test_archive_published_to_records_topic(self, worker, transports, make_archive):
        _, _, producer = transports
        path = make_archive(
            {
                "metadata.json": {"resourceId": 42},
                "data.csv": "resourceId,resourceName,cost,active\n42,widget,3.5,true\n",
            }
        )
        message = PipelineMessage(
            topic="resources.archives",
            partition=0,
            offset=3,
            timestamp=0,
            value=json.dumps({"zipPath": str(path)}).encode(),
        )

        await worker.start()
        try:
            await worker._handle_message(message)
        finally:
            await worker.stop()

        topic, pairs = producer.send_batch.await_args.args
        assert topic == "resources.records"
        assert len(pairs) == 1
        assert pairs[0][1].endswith('{"resourceId":42,"resourceName":"widget","cost":3.5,"active":true}')
        assert worker._records_succeeded == 1
        assert worker._records_published == 1

    @pytest.mark.asyncio
    async def test_publish_requires_producer(self, worker):
        with pytest.raises(RuntimeError):
            await worker._publish_records([OutboundRecord("k", "v")])


class TestStats:

    def test_tally(self, worker):
        worker._tally(Published([OutboundRecord("a", "1"), OutboundRecord("b", "2")]))
        worker._tally(Failed("schema_not_found"))
        worker._tally(Dropped("path_not_matched"))
        worker._tally(Dropped("no_descriptor"))

        assert worker._records_succeeded == 1
        assert worker._records_published == 2
        assert worker._records_failed == 1
        assert worker._records_skipped == 2

    def test_cycle_stats(self, worker):
        worker._tally(Published([OutboundRecord("a", "1")]))
        msg, extra = worker._get_cycle_stats(3)

        assert isinstance(msg, str)
        assert extra["records_succeeded"] == 1
        assert extra["records_published"] == 1
        assert "reference_entries" not in extra
