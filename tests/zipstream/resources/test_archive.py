"""Tests for archive access."""

import pytest

from core.errors import MalformedArchiveError
from zipstream.resources.archive import (
    find_primary_row_source,
    iter_rows,
    list_secondary_records,
    open_archive,
    read_metadata,
)

METADATA = {"RESOURCE_ID": 42, "source": "nightly"}


class TestOpenArchive:

    def test_missing_file(self, tmp_path):
        with pytest.raises(MalformedArchiveError) as exc_info:
            with open_archive(str(tmp_path / "absent.zip")):
                pass
        assert exc_info.value.path.endswith("absent.zip")

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / "fake.zip"
        path.write_text("definitely not a zip")
        with pytest.raises(MalformedArchiveError):
            with open_archive(str(path)):
                pass


class TestReadMetadata:

    def test_reads_descriptor(self, make_archive):
        path = make_archive({"metadata.json": METADATA})
        with open_archive(str(path)) as archive:
            assert read_metadata(archive) == METADATA

    def test_missing_descriptor(self, make_archive):
        path = make_archive({"data.csv": "h\n1,2\n"})
        with open_archive(str(path)) as archive:
            assert read_metadata(archive) is None

    def test_custom_descriptor_name(self, make_archive):
        path = make_archive({"descriptor.json": METADATA})
        with open_archive(str(path), metadata_entry="descriptor.json") as archive:
            assert read_metadata(archive) == METADATA

    def test_invalid_json(self, make_archive):
        path = make_archive({"metadata.json": "{not json"})
        with open_archive(str(path)) as archive:
            with pytest.raises(MalformedArchiveError, match="not valid JSON"):
                read_metadata(archive)

    def test_descriptor_must_be_object(self, make_archive):
        path = make_archive({"metadata.json": [1, 2]})
        with open_archive(str(path)) as archive:
            with pytest.raises(MalformedArchiveError, match="JSON object"):
                read_metadata(archive)


class TestRows:

    def test_first_csv_entry_wins(self, make_archive):
        path = make_archive({"b.csv": "h\n1,2\n", "a.csv": "h\n3,4\n"})
        with open_archive(str(path)) as archive:
            assert find_primary_row_source(archive).filename == "b.csv"

    def test_no_csv_entry(self, make_archive):
        path = make_archive({"metadata.json": METADATA})
        with open_archive(str(path)) as archive:
            assert find_primary_row_source(archive) is None

    def test_header_skipped_and_breaks_removed(self, make_archive):
        path = make_archive({"data.csv": "id,name\n1,a\r\n2,b\n3,c"})
        with open_archive(str(path)) as archive:
            rows = list(iter_rows(archive, find_primary_row_source(archive)))
        assert rows == ["1,a", "2,b", "3,c"]

    def test_header_only(self, make_archive):
        path = make_archive({"data.csv": "id,name\n"})
        with open_archive(str(path)) as archive:
            assert list(iter_rows(archive, find_primary_row_source(archive))) == []

    def test_undecodable_rows(self, make_archive):
        path = make_archive({"data.csv": b"h\n\xff\xfe,1\n"})
        with open_archive(str(path)) as archive:
            with pytest.raises(MalformedArchiveError):
                list(iter_rows(archive, find_primary_row_source(archive)))


class TestSecondaryRecords:

    def test_collects_objects_and_arrays(self, make_archive):
        path = make_archive(
            {
                "metadata.json": METADATA,
                "events.json": [{"e": 1}, 5, {"e": 2}],
                "summary.json": {"total": 2},
                "count.json": 7,
                "data.csv": "h\n",
            }
        )
        with open_archive(str(path)) as archive:
            records = list_secondary_records(archive)
        assert records == [{"e": 1}, {"e": 2}, {"total": 2}]

    def test_invalid_secondary_json(self, make_archive):
        path = make_archive({"metadata.json": METADATA, "broken.json": "[1,"})
        with open_archive(str(path)) as archive:
            with pytest.raises(MalformedArchiveError):
                list_secondary_records(archive)
