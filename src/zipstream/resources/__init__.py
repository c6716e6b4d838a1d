"""Resource archive ingestion: extraction, enrichment, row typing and keying."""

from zipstream.resources.orchestrator import ArchiveOrchestrator
from zipstream.resources.reference_cache import ReferenceCache
from zipstream.resources.row_pipeline import RowPipeline
from zipstream.resources.schemas import (
    ArchiveNotification,
    Dropped,
    Failed,
    FieldSchema,
    FieldSpec,
    OutboundRecord,
    ProcessingOutcome,
    Published,
)
from zipstream.resources.worker import IngestWorker

__all__ = [
    "ArchiveNotification",
    "ArchiveOrchestrator",
    "Dropped",
    "Failed",
    "FieldSchema",
    "FieldSpec",
    "IngestWorker",
    "OutboundRecord",
    "ProcessingOutcome",
    "Published",
    "ReferenceCache",
    "RowPipeline",
]
