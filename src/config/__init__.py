"""Configuration loading for the resource ingestion pipeline.

Configuration is loaded from a single YAML file, src/config/config.yaml by
default, with ${VAR} / ${VAR:-default} environment expansion.

Main Functions
--------------

    - load_config(): Load configuration from YAML
    - get_config(): Get or load singleton config instance
    - set_config(): Replace the singleton (tests)
    - reset_config(): Reset singleton config instance

Usage Examples
--------------

    >>> from config import get_config
    >>>
    >>> config = get_config()
    >>> topic = config.get_topic("resources", "archives")
    >>> settings = config.get_processing_settings("resources", "ingest_worker")

Configuration Priority
---------------------

Settings are merged in the following priority (highest to lowest):

1. Environment variables (KAFKA_BOOTSTRAP_SERVERS, DB_HOST, DB_PORT, DB_NAME,
   DB_USER, DB_PASSWORD)
2. YAML configuration file
3. Dataclass defaults

Validate a file from the command line with ``python -m config.config --validate``.
"""

from config.config import (
    DatabaseConfig,
    MessageConfig,
    ProcessingSettings,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "MessageConfig",
    "DatabaseConfig",
    "ProcessingSettings",
]
