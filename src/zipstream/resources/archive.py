"""Archive access: descriptor, primary CSV entry and auxiliary JSON records."""

import io
import json
import logging
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from core.errors import MalformedArchiveError

logger = logging.getLogger(__name__)

DEFAULT_METADATA_ENTRY = "metadata.json"
DEFAULT_ROW_SOURCE_SUFFIX = ".csv"
SECONDARY_RECORD_SUFFIX = ".json"

# Raised by zipfile for corrupt, truncated, encrypted or unsupported entries
_ENTRY_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    RuntimeError,
    NotImplementedError,
)


@dataclass
class Archive:
    """An open zip archive plus the entry naming rules applied to it."""

    path: str
    zip_file: zipfile.ZipFile
    metadata_entry: str = DEFAULT_METADATA_ENTRY
    row_source_suffix: str = DEFAULT_ROW_SOURCE_SUFFIX


@contextmanager
def open_archive(
    path: str,
    metadata_entry: str = DEFAULT_METADATA_ENTRY,
    row_source_suffix: str = DEFAULT_ROW_SOURCE_SUFFIX,
) -> Iterator[Archive]:
    """
    Open a zip archive for the duration of a with block.

    Raises:
        MalformedArchiveError: If the file is missing, unreadable or not a zip
    """
    try:
        zip_file = zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise MalformedArchiveError(f"Cannot open archive: {e}", path=path, cause=e) from e

    with zip_file:
        yield Archive(
            path=path,
            zip_file=zip_file,
            metadata_entry=metadata_entry,
            row_source_suffix=row_source_suffix,
        )


def _read_entry(archive: Archive, info: zipfile.ZipInfo) -> bytes:
    try:
        return archive.zip_file.read(info)
    except _ENTRY_READ_ERRORS as e:
        raise MalformedArchiveError(
            f"Cannot read entry {info.filename}: {e}", path=archive.path, cause=e
        ) from e


def _parse_json_entry(archive: Archive, info: zipfile.ZipInfo) -> Any:
    data = _read_entry(archive, info)
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedArchiveError(
            f"Entry {info.filename} is not valid JSON: {e}", path=archive.path, cause=e
        ) from e


def read_metadata(archive: Archive) -> dict[str, Any] | None:
    """
    Parse the metadata descriptor.

    Returns:
        The descriptor object, or None when the archive has no descriptor entry

    Raises:
        MalformedArchiveError: If the descriptor is not a JSON object
    """
    try:
        info = archive.zip_file.getinfo(archive.metadata_entry)
    except KeyError:
        return None

    metadata = _parse_json_entry(archive, info)
    if not isinstance(metadata, dict):
        raise MalformedArchiveError(
            f"Descriptor {archive.metadata_entry} must be a JSON object, "
            f"got {type(metadata).__name__}",
            path=archive.path,
        )
    return metadata


def find_primary_row_source(archive: Archive) -> zipfile.ZipInfo | None:
    """First entry, in archive order, whose name ends with the row source suffix."""
    for info in archive.zip_file.infolist():
        if not info.is_dir() and info.filename.endswith(archive.row_source_suffix):
            return info
    return None


def iter_rows(archive: Archive, entry: zipfile.ZipInfo) -> Iterator[str]:
    """
    Yield the data lines of a CSV entry with line breaks removed.

    The first line is a header and is skipped.

    Raises:
        MalformedArchiveError: If the entry is corrupt or not UTF-8
    """
    try:
        with archive.zip_file.open(entry) as raw:
            lines = io.TextIOWrapper(raw, encoding="utf-8")
            next(lines, None)
            for line in lines:
                yield line.removesuffix("\n")
    except (UnicodeDecodeError, *_ENTRY_READ_ERRORS) as e:
        raise MalformedArchiveError(
            f"Cannot read rows from {entry.filename}: {e}", path=archive.path, cause=e
        ) from e


def list_secondary_records(archive: Archive) -> list[dict[str, Any]]:
    """
    Collect auxiliary records from every JSON entry other than the descriptor.

    Arrays contribute one record per object element, a single object
    contributes itself, anything else is ignored.
    """
    records: list[dict[str, Any]] = []
    for info in archive.zip_file.infolist():
        name = info.filename
        if info.is_dir() or not name.endswith(SECONDARY_RECORD_SUFFIX):
            continue
        if name == archive.metadata_entry:
            continue

        document = _parse_json_entry(archive, info)
        if isinstance(document, list):
            records.extend(item for item in document if isinstance(item, dict))
        elif isinstance(document, dict):
            records.append(document)
        else:
            logger.debug(
                "Ignoring scalar JSON entry",
                extra={"zip_path": archive.path, "entry_name": name},
            )
    return records
