"""
Per-message archive processing: extract, enrich, transform, key and publish.

Every inbound notification resolves to exactly one outcome:

    Dropped    the message does not apply (bad body, foreign path, no descriptor
               or dataset id, nothing to publish); the archive may not be opened
    Failed     the archive applies but could not be processed; nothing published
    Published  every row record, then every auxiliary record, was published

process() never raises except for task cancellation.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from config.config import ProcessingSettings
from core.errors import (
    MalformedArchiveError,
    PipelineError,
    ReferenceStoreError,
    RowBatchError,
    SchemaNotFoundError,
    wrap_exception,
)
from core.logging import LogContext, log_exception, log_phase, log_with_context
from core.utils.json_serializers import json_serializer
from zipstream.common.metrics import (
    record_archive_outcome,
    record_records_published,
    record_rows_transformed,
)
from zipstream.common.types import PipelineMessage
from zipstream.resources.archive import (
    find_primary_row_source,
    iter_rows,
    list_secondary_records,
    open_archive,
    read_metadata,
)
from zipstream.resources.keys import derive_key
from zipstream.resources.reference_cache import ReferenceCache
from zipstream.resources.row_pipeline import RowPipeline
from zipstream.resources.schema_provider import SchemaProvider
from zipstream.resources.schemas import (
    RESOURCE_ID_FIELD,
    ArchiveNotification,
    Dropped,
    Failed,
    OutboundRecord,
    ProcessingOutcome,
    Published,
)

logger = logging.getLogger(__name__)

RecordPublisher = Callable[[list[OutboundRecord]], Awaitable[Any]]

# Dropped reasons
EMPTY_MESSAGE = "empty_message"
INVALID_JSON = "invalid_json"
MISSING_ZIP_PATH = "missing_zip_path"
PATH_NOT_MATCHED = "path_not_matched"
NO_DESCRIPTOR = "no_descriptor"
NO_DATASET_ID = "no_dataset_id"
NO_RECORDS = "no_records"

# Failed reasons
MALFORMED_ARCHIVE = "malformed_archive"
SCHEMA_NOT_FOUND = "schema_not_found"
REFERENCE_STORE_UNAVAILABLE = "reference_store_unavailable"
MALFORMED_ROW = "malformed_row"
PUBLISH_FAILED = "publish_failed"
UNEXPECTED_ERROR = "unexpected_error"

_FAILURE_REASONS: list[tuple[type[Exception], str]] = [
    (MalformedArchiveError, MALFORMED_ARCHIVE),
    (SchemaNotFoundError, SCHEMA_NOT_FOUND),
    (ReferenceStoreError, REFERENCE_STORE_UNAVAILABLE),
    (RowBatchError, MALFORMED_ROW),
]

_DATASET_ID_PATTERN = re.compile(r"[+-]?\d+")


@dataclass
class ArchiveContents:
    """Everything read from one archive before enrichment."""

    metadata: dict[str, Any] | None
    rows: list[str] | None = None
    row_source: str | None = None
    secondary_records: list[dict[str, Any]] = field(default_factory=list)


class PublishError(PipelineError):
    """Records could not be handed to the outbound topic."""


def parse_dataset_id(value: Any) -> int | None:
    """Dataset id from a descriptor value: an int, or text of an optional sign and digits."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _DATASET_ID_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    return None


def to_json(document: Mapping[str, Any]) -> str:
    """Compact JSON text used for outbound values."""
    return json.dumps(
        document, separators=(",", ":"), ensure_ascii=False, allow_nan=False, default=json_serializer
    )


def build_outbound(metadata_json: str, record: Mapping[str, Any]) -> OutboundRecord:
    return OutboundRecord(key=derive_key(record), value=f"{metadata_json}\n{to_json(record)}")


def read_archive_contents(
    zip_path: str,
    metadata_entry: str,
    row_source_suffix: str,
) -> ArchiveContents:
    """Blocking read of descriptor, data rows and auxiliary records from one archive."""
    with open_archive(zip_path, metadata_entry, row_source_suffix) as archive:
        metadata = read_metadata(archive)
        if metadata is None:
            return ArchiveContents(metadata=None)

        contents = ArchiveContents(metadata=metadata)
        row_entry = find_primary_row_source(archive)
        if row_entry is not None:
            contents.row_source = row_entry.filename
            contents.rows = list(iter_rows(archive, row_entry))
        contents.secondary_records = list_secondary_records(archive)
        return contents


class ArchiveOrchestrator:
    """Turns one archive notification into published records."""

    def __init__(
        self,
        settings: ProcessingSettings,
        schema_provider: SchemaProvider,
        reference_cache: ReferenceCache,
        row_pipeline: RowPipeline,
        publish: RecordPublisher,
    ) -> None:
        self.settings = settings
        self.schema_provider = schema_provider
        self.reference_cache = reference_cache
        self.row_pipeline = row_pipeline
        self.publish = publish
        self._zip_path_pattern = re.compile(settings.zip_path_pattern)

    async def process(self, message: PipelineMessage) -> ProcessingOutcome:
        """Process one inbound message; see module docstring for outcomes."""
        try:
            outcome = await self._process(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = wrap_exception(e)
            log_exception(logger, error, "Unexpected error processing archive notification")
            outcome = Failed(reason=UNEXPECTED_ERROR, error=error)

        record_archive_outcome(outcome.kind.value, getattr(outcome, "reason", ""))
        return outcome

    def _drop(self, reason: str, **context: Any) -> Dropped:
        log_with_context(
            logger, logging.INFO, "Archive notification dropped", outcome="dropped", reason=reason, **context
        )
        return Dropped(reason=reason)

    def _fail(self, reason: str, error: Exception, **context: Any) -> Failed:
        log_exception(
            logger,
            error,
            "Archive processing failed",
            include_traceback=not isinstance(error, PipelineError),
            outcome="failed",
            reason=reason,
            **context,
        )
        return Failed(reason=reason, error=error)

    def _parse_notification(self, message: PipelineMessage) -> ArchiveNotification | Dropped:
        if not message.value or not message.value.strip():
            return self._drop(EMPTY_MESSAGE)

        try:
            return ArchiveNotification.model_validate_json(message.value)
        except ValidationError as e:
            if any(err["type"] == "json_invalid" for err in e.errors()):
                return self._drop(INVALID_JSON)
            return self._drop(MISSING_ZIP_PATH)

    async def _process(self, message: PipelineMessage) -> ProcessingOutcome:
        notification = self._parse_notification(message)
        if isinstance(notification, Dropped):
            return notification

        zip_path = notification.zip_path
        if not self._zip_path_pattern.fullmatch(zip_path):
            return self._drop(PATH_NOT_MATCHED, zip_path=zip_path)

        loop = asyncio.get_running_loop()
        try:
            with log_phase(logger, "read_archive", zip_path=zip_path):
                contents = await loop.run_in_executor(
                    None,
                    read_archive_contents,
                    zip_path,
                    self.settings.metadata_entry,
                    self.settings.row_source_suffix,
                )
        except MalformedArchiveError as e:
            return self._fail(MALFORMED_ARCHIVE, e, zip_path=zip_path)

        if contents.metadata is None:
            return self._drop(NO_DESCRIPTOR, zip_path=zip_path)

        dataset_id = parse_dataset_id(contents.metadata.get(RESOURCE_ID_FIELD))
        if dataset_id is None:
            return self._drop(NO_DATASET_ID, zip_path=zip_path)

        with LogContext(dataset_id=str(dataset_id)):
            return await self._enrich_and_publish(zip_path, dataset_id, contents)

    async def _enrich_and_publish(
        self,
        zip_path: str,
        dataset_id: int,
        contents: ArchiveContents,
    ) -> ProcessingOutcome:
        metadata = dict(contents.metadata)
        reference = self.reference_cache.lookup(dataset_id)
        if reference is not None:
            metadata.update(reference)

        secondary_records = contents.secondary_records
        try:
            row_records = await self._transform_rows(dataset_id, contents)
            metadata_json = to_json(metadata)
            outbound = [build_outbound(metadata_json, record) for record in row_records]
            outbound.extend(build_outbound(metadata_json, record) for record in secondary_records)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = next(
                (reason for error_type, reason in _FAILURE_REASONS if isinstance(e, error_type)),
                MALFORMED_ARCHIVE if isinstance(e, ValueError) else UNEXPECTED_ERROR,
            )
            return self._fail(reason, e, zip_path=zip_path, dataset_id=dataset_id)

        if not outbound:
            return self._drop(NO_RECORDS, zip_path=zip_path, dataset_id=dataset_id)

        try:
            with log_phase(logger, "publish", zip_path=zip_path, records_published=len(outbound)):
                await self.publish(outbound)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = PublishError(f"Failed to publish {len(outbound)} record(s)", cause=e)
            return self._fail(PUBLISH_FAILED, error, zip_path=zip_path, dataset_id=dataset_id)

        record_rows_transformed(len(row_records))
        record_records_published("rows", len(row_records))
        record_records_published("secondary", len(secondary_records))

        log_with_context(
            logger,
            logging.INFO,
            "Archive published",
            outcome="published",
            zip_path=zip_path,
            dataset_id=dataset_id,
            row_count=len(row_records),
            secondary_records=len(secondary_records),
            records_published=len(outbound),
        )
        return Published(records=outbound)

    async def _transform_rows(self, dataset_id: int, contents: ArchiveContents) -> list[dict[str, Any]]:
        if contents.rows is None:
            logger.info(
                "Archive has no row source, publishing auxiliary records only",
                extra={"dataset_id": dataset_id, "secondary_records": len(contents.secondary_records)},
            )
            return []

        schema = await self.schema_provider.schema_for(dataset_id)
        with log_phase(logger, "transform_rows", row_count=len(contents.rows), entry_name=contents.row_source):
            return await self.row_pipeline.transform_all(
                contents.rows,
                schema,
                self.reference_cache.csv_format_for(dataset_id),
                self.settings.leading_columns_for(dataset_id),
            )
