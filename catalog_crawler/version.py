"""Package version and the config schema version read by config.migrate_config."""

__all__ = ["__version__", "CONFIG_SCHEMA_VERSION"]

__version__ = "0.2.0"

#: 2 renamed ``retries`` to ``max_retries``; older files are migrated on load.
CONFIG_SCHEMA_VERSION = 2
