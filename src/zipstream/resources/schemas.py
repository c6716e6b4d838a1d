"""Data model for archive ingestion: notifications, field schemas, reference data and outcomes."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

# Keys injected by the transformer when a dataset carries leading identification columns
RESOURCE_ID_FIELD = "resourceId"
RESOURCE_NAME_FIELD = "resourceName"
LEADING_ID_FIELDS = (RESOURCE_ID_FIELD, RESOURCE_NAME_FIELD)

RowValue = int | float | bool | str | None
RowRecord = dict[str, RowValue]


class ArchiveNotification(BaseModel):
    """Inbound message body announcing an archive to ingest."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    zip_path: str = Field(alias="zipPath", min_length=1)


class FieldType(StrEnum):
    """Field types with a casting rule; anything else is kept as text."""

    INT = "int"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING = "string"


@dataclass(frozen=True)
class FieldSpec:
    """One column of a dataset: name, declared type and optional special type."""

    name: str
    type: str = FieldType.STRING.value
    special_type: str | None = None


@dataclass(frozen=True)
class FieldSchema:
    """Ordered field list for a dataset. Order defines the positional column mapping."""

    dataset_id: int
    fields: tuple[FieldSpec, ...]

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(
                f"Dataset {self.dataset_id} declares duplicate field names: {duplicates}"
            )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class CsvFormat:
    """Row delimiter and optional line terminator for a dataset."""

    delimiter: str = ","
    line_terminator: str | None = None

    @classmethod
    def from_reference(cls, delimiter: str | None, line_terminator: str | None) -> "CsvFormat":
        """Build from nullable reference columns; null or empty means default."""
        return cls(
            delimiter=delimiter or ",",
            line_terminator=line_terminator or None,
        )


DEFAULT_CSV_FORMAT = CsvFormat()


@dataclass(frozen=True)
class ReferenceEntry:
    """Reference attributes plus the CSV format recorded for one dataset."""

    attributes: Mapping[str, str]
    csv_format: CsvFormat = DEFAULT_CSV_FORMAT

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Immutable dataset id -> ReferenceEntry mapping; replaced wholesale on refresh."""

    entries: Mapping[int, ReferenceEntry] = field(default_factory=dict)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def get(self, dataset_id: int) -> ReferenceEntry | None:
        return self.entries.get(dataset_id)

    def __len__(self) -> int:
        return len(self.entries)

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or datetime.now(UTC)) - self.loaded_at).total_seconds()


@dataclass(frozen=True)
class OutboundRecord:
    """One message to publish: fingerprint key and metadata+record text."""

    key: str
    value: str


class OutcomeKind(StrEnum):
    PUBLISHED = "published"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(frozen=True)
class Dropped:
    """The message does not apply to this pipeline; nothing was published."""

    reason: str
    kind: OutcomeKind = field(default=OutcomeKind.DROPPED, init=False)


@dataclass(frozen=True)
class Failed:
    """The archive applies but could not be processed; nothing was published."""

    reason: str
    error: Exception | None = None
    kind: OutcomeKind = field(default=OutcomeKind.FAILED, init=False)


@dataclass(frozen=True)
class Published:
    """Every record derived from the archive was published, in order."""

    records: list[OutboundRecord]
    kind: OutcomeKind = field(default=OutcomeKind.PUBLISHED, init=False)


ProcessingOutcome = Dropped | Failed | Published
