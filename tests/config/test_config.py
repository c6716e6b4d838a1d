import os
from pathlib import Path
from unittest.mock import patch

import pytest

from config.config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_ZIP_PATH_PATTERN,
    DatabaseConfig,
    MessageConfig,
    ProcessingSettings,
    _deep_merge,
    _expand_env_vars,
    _mask_secrets,
    get_config,
    load_config,
    load_yaml,
    reset_config,
    set_config,
)

MINIMAL_YAML = """
kafka:
  connection:
    bootstrap_servers: ${TEST_BOOTSTRAP:-broker:9092}
  consumer_defaults:
    max_poll_records: 20
  resources:
    topics:
      archives: custom.archives
      records: custom.records
    consumer_group_prefix: custom
    ingest_worker:
      consumer:
        max_poll_records: 5
      processing:
        max_row_workers: 4
        leading_id_columns_overrides:
          "7": false
database:
  host: db.internal
  password: secret
schemas:
  "42":
    - {name: cost, type: float}
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(MINIMAL_YAML)
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("KAFKA_BOOTSTRAP_SERVERS", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(var, raising=False)
    yield
    reset_config()


# =========================================================================
# YAML helpers
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_returns_empty_dict_for_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}


class TestExpandEnvVars:
    def test_expands_set_variable(self):
        with patch.dict(os.environ, {"ZS_HOST": "kafka:9093"}):
            assert _expand_env_vars({"a": "${ZS_HOST}"}) == {"a": "kafka:9093"}

    def test_uses_default_when_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars(["${ZS_MISSING:-fallback}"]) == ["fallback"]

    def test_leaves_unset_without_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${ZS_MISSING}") == "${ZS_MISSING}"

    def test_non_strings_untouched(self):
        assert _expand_env_vars({"n": 3, "b": True}) == {"n": 3, "b": True}


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"kafka": {"connection": {"a": 1, "b": 2}}}
        merged = _deep_merge(base, {"kafka": {"connection": {"b": 3}}})
        assert merged == {"kafka": {"connection": {"a": 1, "b": 3}}}
        assert base["kafka"]["connection"]["b"] == 2


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:
    def test_loads_minimal_file(self, config_file):
        config = load_config(config_file)

        assert config.bootstrap_servers == "broker:9092"
        assert config.get_topic("resources", "archives") == "custom.archives"
        assert config.get_consumer_group("resources", "ingest_worker") == "custom-ingest_worker"
        assert config.database.host == "db.internal"
        assert config.schemas == {42: [{"name": "cost", "type": "float"}]}

    def test_worker_consumer_overrides_defaults(self, config_file):
        config = load_config(config_file)
        consumer = config.get_worker_config("resources", "ingest_worker", "consumer")
        assert consumer["max_poll_records"] == 5

    def test_processing_settings(self, config_file):
        settings = load_config(config_file).get_processing_settings("resources", "ingest_worker")

        assert settings.max_row_workers == 4
        assert settings.zip_path_pattern == DEFAULT_ZIP_PATH_PATTERN
        assert settings.leading_columns_for(42) == 2
        assert settings.leading_columns_for(7) == 0

    def test_env_bootstrap_servers_wins(self, config_file, monkeypatch):
        monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "env:9092")
        assert load_config(config_file).bootstrap_servers == "env:9092"

    def test_database_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("DB_HOST", "pg.prod")
        monkeypatch.setenv("DB_PORT", "6543")
        database = load_config(config_file).database
        assert database.host == "pg.prod"
        assert database.port == 6543

    def test_overrides_are_deep_merged(self, config_file):
        config = load_config(
            config_file,
            overrides={"kafka": {"resources": {"topics": {"records": "override.records"}}}},
        )
        assert config.get_topic("resources", "records") == "override.records"
        assert config.get_topic("resources", "archives") == "custom.archives"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_missing_kafka_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("database: {}\n")
        with pytest.raises(ValueError, match="missing 'kafka:' section"):
            load_config(path)

    def test_bundled_config_is_valid(self):
        config = load_config(DEFAULT_CONFIG_FILE)
        assert config.get_topic("resources", "archives") == "resources.archives"
        assert config.get_topic("resources", "records") == "resources.records"
        assert 42 in config.schemas


class TestSingleton:
    def test_set_and_get(self):
        config = MessageConfig(bootstrap_servers="x:1")
        set_config(config)
        assert get_config() is config

    def test_reset(self):
        set_config(MessageConfig(bootstrap_servers="x:1"))
        reset_config()
        assert get_config().bootstrap_servers


# =========================================================================
# Validation
# =========================================================================


def _config(processing=None, **kwargs):
    return MessageConfig(
        bootstrap_servers="localhost:9092",
        resources={
            "topics": {"archives": "a", "records": "r"},
            "ingest_worker": {"processing": processing or {}},
        },
        **kwargs,
    )


class TestValidate:
    def test_valid(self):
        _config({"max_row_workers": 8, "schema_source": "static"}).validate()

    def test_requires_bootstrap_servers(self):
        with pytest.raises(ValueError, match="bootstrap_servers"):
            MessageConfig().validate()

    @pytest.mark.parametrize(
        "processing, match",
        [
            ({"max_row_workers": 0}, "max_row_workers"),
            ({"max_row_workers": 65}, "max_row_workers"),
            ({"reference_refresh_seconds": 0}, "reference_refresh_seconds"),
            ({"schema_source": "ldap"}, "schema_source"),
            ({"zip_path_pattern": "(unclosed"}, "zip_path_pattern"),
            ({"metadata_entry": ""}, "metadata_entry"),
        ],
    )
    def test_bad_processing_settings(self, processing, match):
        with pytest.raises(ValueError, match=match):
            _config(processing).validate()

    def test_heartbeat_must_be_below_third_of_session_timeout(self):
        config = _config(consumer_defaults={"heartbeat_interval_ms": 10000, "session_timeout_ms": 30000})
        with pytest.raises(ValueError, match="heartbeat_interval_ms"):
            config.validate()

    def test_database_pool_sizes(self):
        with pytest.raises(ValueError, match="min_size"):
            _config(database=DatabaseConfig(min_size=5, max_size=2)).validate()

    def test_duplicate_schema_fields(self):
        schemas = {1: [{"name": "a"}, {"name": "a"}]}
        with pytest.raises(ValueError, match="duplicate field name"):
            _config(schemas=schemas).validate()

    def test_empty_schema(self):
        with pytest.raises(ValueError, match="non-empty"):
            _config(schemas={1: []}).validate()

    def test_unknown_domain(self):
        with pytest.raises(ValueError, match="No configuration found"):
            _config().get_topic("other", "archives")


class TestDatabaseConfig:
    def test_conninfo(self):
        database = DatabaseConfig(host="db", password="pw", connect_timeout_seconds=5)
        assert database.conninfo == "host=db port=5432 dbname=resources user=pipeline password=pw connect_timeout=5"

    def test_conninfo_without_password(self):
        assert "password" not in DatabaseConfig().conninfo


class TestProcessingSettings:
    def test_defaults(self):
        settings = ProcessingSettings.from_dict({})
        assert settings.metadata_entry == "metadata.json"
        assert settings.row_source_suffix == ".csv"
        assert settings.leading_columns_for(1) == 2

    def test_leading_columns_disabled_globally(self):
        settings = ProcessingSettings.from_dict(
            {"leading_id_columns": False, "leading_id_columns_overrides": {3: True}}
        )
        assert settings.leading_columns_for(1) == 0
        assert settings.leading_columns_for(3) == 2


def test_mask_secrets():
    masked = _mask_secrets({"database": {"password": "pw", "host": "db"}, "list": [{"sasl_plain_password": "x"}]})
    assert masked["database"] == {"password": "***", "host": "db"}
    assert masked["list"][0]["sasl_plain_password"] == "***"
