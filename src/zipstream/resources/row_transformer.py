"""Delimited row -> typed record conversion driven by a dataset's field schema."""

import math
import re

from core.errors import RowParseError
from zipstream.resources.schemas import (
    RESOURCE_ID_FIELD,
    RESOURCE_NAME_FIELD,
    CsvFormat,
    FieldSchema,
    FieldType,
    RowRecord,
    RowValue,
)

MIN_COLUMNS = 2

_INT_PATTERN = re.compile(r"[+-]?\d+")
_BOOLEAN_VALUES = {"true": True, "false": False}


def _cast_int(raw: str) -> RowValue:
    if _INT_PATTERN.fullmatch(raw):
        return int(raw)
    return raw


def _cast_float(raw: str) -> RowValue:
    try:
        value = float(raw)
    except ValueError:
        return raw
    # inf/nan have no JSON representation
    return value if math.isfinite(value) else raw


def _cast_boolean(raw: str) -> RowValue:
    return _BOOLEAN_VALUES.get(raw.strip().lower(), raw)


_CASTERS = {
    FieldType.INT: _cast_int,
    FieldType.INTEGER: _cast_int,
    FieldType.FLOAT: _cast_float,
    FieldType.BOOLEAN: _cast_boolean,
}


def cast_value(raw: str | None, field_type: str) -> RowValue:
    """Cast a raw column by declared type; values that do not parse are returned unchanged."""
    if raw is None:
        return None

    caster = _CASTERS.get(field_type.strip().lower())
    if caster is None:
        return raw
    return caster(raw)


def split_row(raw_line: str, csv_format: CsvFormat) -> list[str]:
    """Split on the literal delimiter, keeping empty fields, and drop a trailing terminator."""
    values = raw_line.split(csv_format.delimiter)
    if csv_format.line_terminator:
        values[-1] = values[-1].removesuffix(csv_format.line_terminator)
    return values


def transform_row(
    raw_line: str,
    schema: FieldSchema,
    csv_format: CsvFormat,
    leading_columns_to_skip: int = 0,
) -> RowRecord:
    """
    Convert one delimited line into a record holding exactly the schema fields.

    With two leading columns, column 0 becomes resourceId (an int when it
    parses) and column 1 becomes resourceName; schema fields map from
    column 2 on. Columns missing at the end of the row map to None.

    Raises:
        RowParseError: If the line has fewer than two columns
    """
    values = split_row(raw_line, csv_format)
    if len(values) < MIN_COLUMNS:
        raise RowParseError(raw_line, len(values))

    record: RowRecord = {}
    offset = 0
    if leading_columns_to_skip == 2:
        record[RESOURCE_ID_FIELD] = _cast_int(values[0].strip())
        record[RESOURCE_NAME_FIELD] = values[1]
        offset = 2

    for position, spec in enumerate(schema.fields, start=offset):
        raw = values[position] if position < len(values) else None
        record[spec.name] = cast_value(raw, spec.type)

    return record
