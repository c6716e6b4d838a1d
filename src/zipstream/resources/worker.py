"""
Resource Ingest Worker - turns archive notifications into keyed records.

This worker wires the ingestion stage together:
1. Consumes archive notifications ({"zipPath": ...}) from the archives topic
2. Reads descriptor, rows and auxiliary records from the referenced archive
3. Enriches the descriptor from the reference cache and types each row
4. Produces one keyed record per row / auxiliary record to the records topic

Consumer group: {prefix}-ingest_worker
Input topic: resources.archives
Output topic: resources.records
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from config.config import MessageConfig
from core.logging import (
    PeriodicStatsLogger,
    format_cycle_output,
    log_exception,
    log_worker_startup,
    set_log_context,
)
from zipstream.common.consumer import MessageConsumer
from zipstream.common.producer import MessageProducer
from zipstream.common.types import PipelineMessage
from zipstream.resources.orchestrator import ArchiveOrchestrator
from zipstream.resources.reference_cache import ReferenceCache
from zipstream.resources.reference_store import ReferenceStore
from zipstream.resources.row_pipeline import RowPipeline
from zipstream.resources.schema_provider import (
    DatabaseSchemaProvider,
    SchemaProvider,
    StaticSchemaProvider,
)
from zipstream.resources.schemas import (
    OutboundRecord,
    OutcomeKind,
    ProcessingOutcome,
    ReferenceEntry,
)

logger = logging.getLogger(__name__)


async def _no_reference_entries() -> Mapping[int, ReferenceEntry]:
    return {}


class IngestWorker:
    """
    Worker that consumes archive notifications and publishes enriched records.

    Architecture:
    - One message at a time; rows of a message are transformed in parallel
    - Reference data served from an in-memory snapshot refreshed in the background
    - Every message is committed once processed; failures are logged, not retried
    """

    WORKER_NAME = "ingest_worker"

    def __init__(
        self,
        config: MessageConfig,
        domain: str = "resources",
        archives_topic: str = "",
        records_topic: str = "",
        instance_id: str | None = None,
    ):
        self.config = config
        self.domain = domain
        self.instance_id = instance_id
        self.archives_topic = archives_topic or config.get_topic(domain, "archives")
        self.records_topic = records_topic or config.get_topic(domain, "records")

        if instance_id:
            self.worker_id = f"{self.WORKER_NAME}-{instance_id}"
        else:
            self.worker_id = self.WORKER_NAME

        self.consumer_group = config.get_consumer_group(domain, self.WORKER_NAME)
        self.settings = config.get_processing_settings(domain, self.WORKER_NAME)

        self.reference_store: ReferenceStore | None = None
        self.reference_cache: ReferenceCache | None = None
        self.row_pipeline: RowPipeline | None = None
        self.producer: MessageProducer | None = None
        self.consumer: MessageConsumer | None = None
        self.orchestrator: ArchiveOrchestrator | None = None

        self._running = False
        self._records_succeeded = 0
        self._records_failed = 0
        self._records_skipped = 0
        self._records_published = 0
        self._stats_logger: PeriodicStatsLogger | None = None

        logger.info(
            "Initialized IngestWorker",
            extra={
                "domain": domain,
                "worker_id": self.worker_id,
                "consumer_group": self.consumer_group,
                "archives_topic": self.archives_topic,
                "records_topic": self.records_topic,
                "schema_source": self.settings.schema_source,
                "max_row_workers": self.settings.max_row_workers,
            },
        )

    async def _build_reference_components(self) -> SchemaProvider:
        """Open the reference store (database source) and start the reference cache."""
        leading_columns_for = self.settings.leading_columns_for

        if self.settings.schema_source == "static":
            provider: SchemaProvider = StaticSchemaProvider(self.config.schemas, leading_columns_for)
            loader = _no_reference_entries
        else:
            self.reference_store = ReferenceStore(self.config.database)
            await self.reference_store.open()
            provider = DatabaseSchemaProvider(self.reference_store, leading_columns_for)
            loader = self.reference_store.fetch_reference_entries

        self.reference_cache = ReferenceCache(loader, refresh_seconds=self.settings.reference_refresh_seconds)
        await self.reference_cache.start()
        return provider

    async def start(self) -> None:
        if self._running:
            logger.warning("Worker already running")
            return

        log_worker_startup(
            logger,
            "Resource Ingest Worker",
            kafka_bootstrap_servers=self.config.bootstrap_servers,
            input_topic=self.archives_topic,
            output_topic=self.records_topic,
            consumer_group=self.consumer_group,
            extra_config={
                "Schema source": self.settings.schema_source,
                "Archive pattern": self.settings.zip_path_pattern,
            },
        )
        set_log_context(stage="ingest", worker_id=self.worker_id, domain=self.domain)
        self._running = True

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.settings.stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage="ingest",
            worker_id=self.worker_id,
        )
        self._stats_logger.start()

        try:
            schema_provider = await self._build_reference_components()

            self.row_pipeline = RowPipeline(max_workers=self.settings.max_row_workers)

            self.producer = MessageProducer(
                config=self.config,
                domain=self.domain,
                worker_name=self.WORKER_NAME,
            )
            await self.producer.start()

            self.orchestrator = ArchiveOrchestrator(
                settings=self.settings,
                schema_provider=schema_provider,
                reference_cache=self.reference_cache,
                row_pipeline=self.row_pipeline,
                publish=self._publish_records,
            )

            self.consumer = MessageConsumer(
                config=self.config,
                domain=self.domain,
                worker_name=self.WORKER_NAME,
                topics=[self.archives_topic],
                message_handler=self._handle_message,
                instance_id=self.instance_id,
            )
            await self.consumer.start()

        except asyncio.CancelledError:
            logger.info("Worker cancelled during startup/run")
            raise
        except Exception:
            # release what this attempt opened before the caller retries
            try:
                await self.stop()
            except Exception as cleanup_error:
                log_exception(
                    logger,
                    cleanup_error,
                    "Error releasing components after failed start",
                    level=logging.WARNING,
                    include_traceback=False,
                )
            raise

    async def stop(self) -> None:
        """Stop consuming, then release the producer, cache, store and row pool. Safe to call twice."""
        logger.info("Stopping IngestWorker")
        self._running = False

        if self._stats_logger:
            await self._stats_logger.stop()
            self._stats_logger = None

        if self.consumer:
            await self.consumer.stop()
            self.consumer = None

        if self.producer:
            await self.producer.stop()
            self.producer = None

        if self.reference_cache:
            await self.reference_cache.stop()
            self.reference_cache = None

        if self.reference_store:
            await self.reference_store.close()
            self.reference_store = None

        if self.row_pipeline:
            self.row_pipeline.close()
            self.row_pipeline = None

        logger.info(
            "IngestWorker stopped successfully",
            extra={
                "records_succeeded": self._records_succeeded,
                "records_failed": self._records_failed,
                "records_skipped": self._records_skipped,
            },
        )

    async def request_shutdown(self) -> None:
        logger.info("Graceful shutdown requested")
        await self.stop()

    async def _publish_records(self, records: list[OutboundRecord]) -> None:
        if self.producer is None:
            raise RuntimeError("Producer not started")

        await self.producer.send_batch(
            self.records_topic,
            [(record.key, record.value) for record in records],
        )

    async def _handle_message(self, message: PipelineMessage) -> None:
        outcome = await self.orchestrator.process(message)
        self._tally(outcome)

    def _tally(self, outcome: ProcessingOutcome) -> None:
        if outcome.kind is OutcomeKind.PUBLISHED:
            self._records_succeeded += 1
            self._records_published += len(outcome.records)
        elif outcome.kind is OutcomeKind.FAILED:
            self._records_failed += 1
        else:
            self._records_skipped += 1

    def _get_cycle_stats(self, cycle_count: int) -> tuple[str, dict[str, Any]]:
        msg = format_cycle_output(
            cycle_count=cycle_count,
            succeeded=self._records_succeeded,
            failed=self._records_failed,
            skipped=self._records_skipped,
        )
        extra: dict[str, Any] = {
            "records_succeeded": self._records_succeeded,
            "records_failed": self._records_failed,
            "records_skipped": self._records_skipped,
            "records_published": self._records_published,
        }
        if self.reference_cache is not None:
            extra.update(self.reference_cache.stats())
        return msg, extra

    @property
    def is_running(self) -> bool:
        return self._running
