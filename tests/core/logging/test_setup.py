"""Tests for logging setup."""

import logging
from pathlib import Path

import pytest

from core.logging.context import clear_log_context, get_log_context
from core.logging.formatters import JSONFormatter
from core.logging.setup import (
    NOISY_LOGGERS,
    ArchivingTimedRotatingFileHandler,
    generate_cycle_id,
    get_log_file_path,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_log_context()


class TestGetLogFilePath:

    def test_domain_and_stage(self):
        path = get_log_file_path(Path("logs"), domain="resources", stage="ingest", instance_id="7")

        assert path.parts[:2] == ("logs", "resources")
        assert path.name.startswith("resources_ingest_")
        assert path.name.endswith("_7.log")

    def test_no_domain(self):
        path = get_log_file_path(Path("logs"), stage="ingest", instance_id="0")

        assert path.parts[0] == "logs"
        assert path.name.startswith("ingest_")


class TestSetupLogging:

    def test_file_and_console_handlers(self, tmp_path):
        setup_logging(stage="ingest", domain="resources", log_dir=tmp_path, worker_id="w-1")

        handlers = logging.getLogger().handlers
        file_handlers = [h for h in handlers if isinstance(h, ArchivingTimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert isinstance(file_handlers[0].formatter, JSONFormatter)
        assert Path(file_handlers[0].baseFilename).is_relative_to(tmp_path / "resources")

        context = get_log_context()
        assert context["worker_id"] == "w-1"
        assert context["domain"] == "resources"

    def test_stdout_only(self, tmp_path):
        setup_logging(domain="resources", log_dir=tmp_path, log_to_stdout=True)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert not isinstance(handlers[0], logging.FileHandler)
        assert not any(tmp_path.iterdir())

    def test_quiets_noisy_loggers(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


def test_generate_cycle_id_format():
    cycle_id = generate_cycle_id()
    assert cycle_id.startswith("c-")
    assert len(cycle_id.split("-")) == 4
