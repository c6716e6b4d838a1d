"""Field schema lookup by dataset id."""

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from core.errors import SchemaNotFoundError
from zipstream.resources.reference_store import ReferenceStore
from zipstream.resources.schemas import LEADING_ID_FIELDS, FieldSchema, FieldSpec

logger = logging.getLogger(__name__)


class SchemaProvider(Protocol):
    async def schema_for(self, dataset_id: int) -> FieldSchema: ...


def build_schema(
    dataset_id: int,
    specs: Iterable[FieldSpec],
    leading_columns: int,
) -> FieldSchema:
    """Assemble a FieldSchema, leaving out the injected identification fields when present.

    Raises:
        SchemaNotFoundError: If no fields remain or field names repeat
    """
    fields = tuple(
        spec for spec in specs if not (leading_columns == 2 and spec.name in LEADING_ID_FIELDS)
    )
    if not fields:
        raise SchemaNotFoundError(dataset_id)
    try:
        return FieldSchema(dataset_id=dataset_id, fields=fields)
    except ValueError as e:
        raise SchemaNotFoundError(dataset_id, cause=e) from e


class DatabaseSchemaProvider:
    """Reads field schemas from PROPS_DATA on every call."""

    def __init__(
        self,
        store: ReferenceStore,
        leading_columns_for: Callable[[int], int],
    ) -> None:
        self.store = store
        self.leading_columns_for = leading_columns_for

    async def schema_for(self, dataset_id: int) -> FieldSchema:
        rows = await self.store.fetch_field_rows(dataset_id)
        specs = (
            FieldSpec(
                name=row["field_name"],
                type=row.get("field_type") or "string",
                special_type=row.get("field_special_type"),
            )
            for row in rows
        )
        return build_schema(dataset_id, specs, self.leading_columns_for(dataset_id))


class StaticSchemaProvider:
    """Serves schemas declared in configuration (`schemas:` section)."""

    def __init__(
        self,
        schemas: Mapping[int, list[dict[str, Any]]],
        leading_columns_for: Callable[[int], int],
    ) -> None:
        self._schemas: dict[int, FieldSchema] = {}
        for dataset_id, fields in schemas.items():
            specs = [
                FieldSpec(
                    name=spec["name"],
                    type=str(spec.get("type") or "string"),
                    special_type=spec.get("special_type"),
                )
                for spec in fields
            ]
            try:
                self._schemas[dataset_id] = build_schema(
                    dataset_id, specs, leading_columns_for(dataset_id)
                )
            except SchemaNotFoundError as e:
                logger.warning(
                    "Skipping unusable static schema",
                    extra={"dataset_id": dataset_id, "error": str(e.cause or e)},
                )

        logger.debug("Loaded %d static schema(s)", len(self._schemas))

    async def schema_for(self, dataset_id: int) -> FieldSchema:
        schema = self._schemas.get(dataset_id)
        if schema is None:
            raise SchemaNotFoundError(dataset_id)
        return schema
