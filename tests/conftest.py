"""
pytest configuration for zipstream tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import json
import sys
import zipfile
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import MessageConfig, ProcessingSettings  # noqa: E402


@pytest.fixture
def message_config():
    """MessageConfig with the resources domain and a static schema for dataset 42."""
    return MessageConfig(
        bootstrap_servers="localhost:9092",
        consumer_defaults={
            "enable_auto_commit": False,
            "auto_offset_reset": "earliest",
            "max_poll_records": 100,
            "session_timeout_ms": 30000,
            "max_poll_interval_ms": 300000,
        },
        producer_defaults={"acks": "all", "enable_idempotence": True},
        resources={
            "topics": {
                "archives": "resources.archives",
                "records": "resources.records",
            },
            "consumer_group_prefix": "resources",
            "ingest_worker": {
                "consumer": {"max_poll_records": 10},
                "producer": {"linger_ms": 20},
                "processing": {"schema_source": "static", "max_row_workers": 2},
            },
        },
        schemas={
            42: [
                {"name": "cost", "type": "float"},
                {"name": "active", "type": "boolean"},
            ]
        },
    )


@pytest.fixture
def processing_settings():
    """Processing settings with defaults (two leading id columns)."""
    return ProcessingSettings()


@pytest.fixture
def make_archive(tmp_path):
    """Build a zip archive in tmp_path from a {entry_name: str | bytes | dict | list} mapping."""

    def _make(entries, name="111_csv_with_metadata_test.zip"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for entry_name, content in entries.items():
                if not isinstance(content, (str, bytes)):
                    content = json.dumps(content)
                zf.writestr(entry_name, content)
        return path

    return _make
