"""Resource ingestion pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection settings and consumer/producer defaults
- Resources domain topics and per-worker settings
- Reference database connection
- Static field schemas for local runs

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "config.yaml"

DEFAULT_ZIP_PATH_PATTERN = r".*111_csv_with_metadata_.*\.zip$"

# Keys inside a domain section that are not worker sections
_DOMAIN_RESERVED_KEYS = ("topics", "consumer_group_prefix")


@dataclass
class DatabaseConfig:
    """Reference database (PostgreSQL) connection settings."""

    host: str = "localhost"
    port: int = 5432
    dbname: str = "resources"
    user: str = "pipeline"
    password: str = ""
    min_size: int = 1
    max_size: int = 4
    connect_timeout_seconds: int = 10

    @property
    def conninfo(self) -> str:
        """libpq key/value connection string."""
        parts = [
            f"host={self.host}",
            f"port={self.port}",
            f"dbname={self.dbname}",
            f"user={self.user}",
        ]
        if self.password:
            parts.append(f"password={self.password}")
        parts.append(f"connect_timeout={int(self.connect_timeout_seconds)}")
        return " ".join(parts)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        """Build from the `database:` section; DB_* environment variables take priority."""
        return cls(
            host=os.getenv("DB_HOST") or data.get("host", "localhost"),
            port=int(os.getenv("DB_PORT") or data.get("port", 5432)),
            dbname=os.getenv("DB_NAME") or data.get("dbname", "resources"),
            user=os.getenv("DB_USER") or data.get("user", "pipeline"),
            password=os.getenv("DB_PASSWORD") or data.get("password", ""),
            min_size=int(data.get("min_size", 1)),
            max_size=int(data.get("max_size", 4)),
            connect_timeout_seconds=int(data.get("connect_timeout_seconds", 10)),
        )


@dataclass
class ProcessingSettings:
    """Typed view over a worker's `processing:` section."""

    zip_path_pattern: str = DEFAULT_ZIP_PATH_PATTERN
    metadata_entry: str = "metadata.json"
    row_source_suffix: str = ".csv"
    max_row_workers: int = 8
    reference_refresh_seconds: float = 300.0
    leading_id_columns: bool = True
    leading_id_columns_overrides: Dict[int, bool] = field(default_factory=dict)
    schema_source: str = "database"
    stats_interval_seconds: int = 30

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingSettings":
        defaults = cls()
        overrides = {
            int(dataset_id): bool(enabled)
            for dataset_id, enabled in (data.get("leading_id_columns_overrides") or {}).items()
        }
        return cls(
            zip_path_pattern=data.get("zip_path_pattern", defaults.zip_path_pattern),
            metadata_entry=data.get("metadata_entry", defaults.metadata_entry),
            row_source_suffix=data.get("row_source_suffix", defaults.row_source_suffix),
            max_row_workers=int(data.get("max_row_workers", defaults.max_row_workers)),
            reference_refresh_seconds=float(
                data.get("reference_refresh_seconds", defaults.reference_refresh_seconds)
            ),
            leading_id_columns=bool(data.get("leading_id_columns", defaults.leading_id_columns)),
            leading_id_columns_overrides=overrides,
            schema_source=data.get("schema_source", defaults.schema_source),
            stats_interval_seconds=int(
                data.get("stats_interval_seconds", defaults.stats_interval_seconds)
            ),
        )

    def leading_columns_for(self, dataset_id: int) -> int:
        """Number of leading identification columns (0 or 2) for a dataset."""
        enabled = self.leading_id_columns_overrides.get(dataset_id, self.leading_id_columns)
        return 2 if enabled else 0


@dataclass
class MessageConfig:
    """Resource ingestion pipeline configuration.

    Loads from YAML file with hierarchical structure organized by domain and worker.
    Each consumer and producer can be individually configured.

    Configuration structure:
        kafka:
          connection: {...}           # Shared connection settings
          consumer_defaults: {...}    # Default consumer settings
          producer_defaults: {...}    # Default producer settings
          resources:                  # Resources domain
            topics: {...}
            consumer_group_prefix: ...
            ingest_worker:
              consumer: {...}
              producer: {...}
              processing: {...}
        database: {...}               # Reference store connection
        schemas: {...}                # Static field schemas by dataset id

    All timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # CONNECTION SETTINGS (shared across all consumers/producers)
    # =========================================================================
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000  # 2 minutes
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    # =========================================================================
    # DEFAULT SETTINGS (applied to all consumers/producers unless overridden)
    # =========================================================================
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # DOMAIN CONFIGURATION
    # =========================================================================
    resources: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    schemas: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)

    def _domain_config(self, domain: str) -> Dict[str, Any]:
        domain_config = {"resources": self.resources}.get(domain)
        if not domain_config:
            raise ValueError(f"No configuration found for domain: {domain}")
        return domain_config

    def get_worker_config(
        self,
        domain: str,
        worker_name: str,
        component: str,  # "consumer", "producer", or "processing"
    ) -> Dict[str, Any]:
        """Get merged configuration for a specific worker's component.

        Merge priority (highest to lowest):
        1. Worker-specific config (e.g., resources.ingest_worker.consumer)
        2. Default config (consumer_defaults or producer_defaults)
        """
        domain_config = self._domain_config(domain)

        if component == "consumer":
            result = self.consumer_defaults.copy()
        elif component == "producer":
            result = self.producer_defaults.copy()
        elif component == "processing":
            result = {}
        else:
            raise ValueError(
                f"Invalid component: {component}. Must be 'consumer', 'producer', or 'processing'"
            )

        worker_config = domain_config.get(worker_name, {})
        result.update(worker_config.get(component, {}))

        return result

    def get_processing_settings(self, domain: str, worker_name: str) -> ProcessingSettings:
        return ProcessingSettings.from_dict(self.get_worker_config(domain, worker_name, "processing"))

    def get_topic(self, domain: str, topic_key: str) -> str:
        topics = self._domain_config(domain).get("topics", {})
        if topic_key not in topics:
            raise ValueError(
                f"Topic '{topic_key}' not found in {domain} domain. "
                f"Available topics: {list(topics.keys())}"
            )

        return topics[topic_key]

    def get_consumer_group(self, domain: str, worker_name: str) -> str:
        """Get consumer group name for a worker.

        First checks for custom group_id in worker config, otherwise constructs from prefix.
        """
        worker_config = self.get_worker_config(domain, worker_name, "consumer")
        if "group_id" in worker_config:
            return worker_config["group_id"]

        prefix = self._domain_config(domain).get("consumer_group_prefix", domain)
        return f"{prefix}-{worker_name}"

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, Kafka timeout constraints, numeric ranges,
        database pool sizing and static schema declarations.
        """
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")

        self._validate_enum(
            {"security_protocol": self.security_protocol},
            "security_protocol",
            ["PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"],
            "kafka.connection",
        )

        self._validate_consumer_settings(self.consumer_defaults, "consumer_defaults")
        self._validate_producer_settings(self.producer_defaults, "producer_defaults")

        for worker_name, worker_config in self.resources.items():
            if worker_name in _DOMAIN_RESERVED_KEYS:
                continue

            context = f"resources.{worker_name}"
            if "consumer" in worker_config:
                self._validate_consumer_settings(worker_config["consumer"], f"{context}.consumer")

            if "producer" in worker_config:
                self._validate_producer_settings(worker_config["producer"], f"{context}.producer")

            if "processing" in worker_config:
                self._validate_processing_settings(
                    worker_config["processing"], f"{context}.processing"
                )

        self._validate_database(self.database)
        self._validate_schemas(self.schemas)

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f}). "
                    f"Recommended: heartbeat_interval_ms <= {session_timeout // 3}"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ValueError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "batch_size", 0, inclusive=True, context=context)
        self._validate_min(settings, "linger_ms", 0, inclusive=True, context=context)

    def _validate_processing_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_range(settings, "max_row_workers", 1, 64, context)
        self._validate_min(settings, "reference_refresh_seconds", 0, inclusive=False, context=context)
        self._validate_min(settings, "stats_interval_seconds", 0, inclusive=False, context=context)
        self._validate_enum(settings, "schema_source", ["database", "static"], context)

        if "zip_path_pattern" in settings:
            try:
                re.compile(settings["zip_path_pattern"])
            except re.error as e:
                raise ValueError(
                    f"{context}: zip_path_pattern is not a valid regular expression: {e}"
                ) from e

        for key in ("metadata_entry", "row_source_suffix"):
            if key in settings and not settings[key]:
                raise ValueError(f"{context}: {key} must not be empty")

    def _validate_database(self, database: DatabaseConfig) -> None:
        context = "database"
        settings = {
            "port": database.port,
            "min_size": database.min_size,
            "max_size": database.max_size,
            "connect_timeout_seconds": database.connect_timeout_seconds,
        }
        self._validate_range(settings, "port", 1, 65535, context)
        self._validate_min(settings, "min_size", 0, inclusive=True, context=context)
        self._validate_min(settings, "max_size", 1, inclusive=True, context=context)
        self._validate_min(settings, "connect_timeout_seconds", 0, inclusive=False, context=context)
        if database.min_size > database.max_size:
            raise ValueError(
                f"{context}: min_size ({database.min_size}) must be <= max_size ({database.max_size})"
            )

    @staticmethod
    def _validate_schemas(schemas: Dict[int, List[Dict[str, Any]]]) -> None:
        for dataset_id, fields in schemas.items():
            context = f"schemas.{dataset_id}"
            if not isinstance(fields, list) or not fields:
                raise ValueError(f"{context}: must be a non-empty list of fields")

            seen: set[str] = set()
            for position, spec in enumerate(fields):
                name = spec.get("name") if isinstance(spec, dict) else None
                if not name:
                    raise ValueError(f"{context}[{position}]: field name is required")
                if name in seen:
                    raise ValueError(f"{context}: duplicate field name '{name}'")
                seen.add(name)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_schemas(raw: Dict[Any, Any]) -> Dict[int, List[Dict[str, Any]]]:
    """Normalize `schemas:` keys to int dataset ids."""
    schemas: Dict[int, List[Dict[str, Any]]] = {}
    for dataset_id, fields in (raw or {}).items():
        try:
            schemas[int(dataset_id)] = fields
        except (TypeError, ValueError) as e:
            raise ValueError(f"schemas: dataset id must be an integer, got '{dataset_id}'") from e
    return schemas


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> MessageConfig:
    """Load pipeline configuration from config.yaml file.

    `overrides` is deep-merged over the whole document (e.g.
    {"kafka": {"connection": {"bootstrap_servers": "..."}}}).

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)
    yaml_data = _expand_env_vars(yaml_data)

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, overrides)

    if "kafka" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'kafka:' section\n"
            "See src/config/config.yaml for correct structure"
        )

    kafka_config = yaml_data["kafka"]

    connection = kafka_config.get("connection", {})
    if not connection:
        connection = kafka_config

    config = MessageConfig(
        bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or connection.get("bootstrap_servers", ""),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=connection.get("request_timeout_ms", 120000),
        metadata_max_age_ms=connection.get("metadata_max_age_ms", 300000),
        connections_max_idle_ms=connection.get("connections_max_idle_ms", 540000),
        consumer_defaults=kafka_config.get("consumer_defaults", {}),
        producer_defaults=kafka_config.get("producer_defaults", {}),
        resources=kafka_config.get("resources", {}),
        database=DatabaseConfig.from_dict(yaml_data.get("database", {}) or {}),
        schemas=_parse_schemas(yaml_data.get("schemas", {})),
    )

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Bootstrap servers: {config.bootstrap_servers}")
    logger.debug(f"  - Resources domain configured: {bool(config.resources)}")
    logger.debug(f"  - Static schemas: {len(config.schemas)}")

    logger.debug("Validating configuration...")
    config.validate()
    logger.debug("Configuration validation passed")

    return config


_message_config: Optional[MessageConfig] = None


def get_config() -> MessageConfig:
    """Get or load the singleton config instance."""
    global _message_config
    if _message_config is None:
        _message_config = load_config()
    return _message_config


def set_config(config: MessageConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _message_config
    _message_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _message_config
    _message_config = None


def _mask_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: "***" if "password" in str(key).lower() and value else _mask_secrets(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_mask_secrets(item) for item in data]
    return data


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Resource Ingestion Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration
  python -m config.config --show-merged

  # Use custom config file
  python -m config.config --config /path/to/config.yaml --validate

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and completeness",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display merged configuration as YAML (passwords masked)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)

        config_path = args.config or DEFAULT_CONFIG_FILE
        config_dict = _mask_secrets(_expand_env_vars(load_yaml(config_path)))

        output = {}

        if args.validate:
            if args.json:
                output["validation"] = {"passed": True, "errors": []}
            else:
                print("✓ Configuration validation passed")
                print("  - Configuration structure: OK")
                if config.resources:
                    print("  - Resources domain: OK")
                print(f"  - Static schemas: {len(config.schemas)}")
                print("  - All settings validated: OK")

        if args.show_merged:
            if args.json:
                output["merged_config"] = config_dict
            else:
                print("\nConfiguration:")
                print("=" * 80)
                print(yaml.dump(config_dict, default_flow_style=False, sort_keys=False))
                print("=" * 80)

        if args.json:
            print(json.dumps(output, indent=2))

        return 0

    except FileNotFoundError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    except ValueError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(_cli_main())
