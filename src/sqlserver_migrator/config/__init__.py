"""Connection settings and TOML profile loading."""

from sqlserver_migrator.config.loader import DEFAULT_CONFIG_FILE, load_config
from sqlserver_migrator.config.models import ConnectionProfile, ConnectionSettings, MigratorConfig

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ConnectionProfile",
    "ConnectionSettings",
    "MigratorConfig",
    "load_config",
]
