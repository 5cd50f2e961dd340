"""Configuration file loading."""

import tomllib
from pathlib import Path

from sqlserver_migrator.config.models import ConnectionProfile, MigratorConfig

DEFAULT_CONFIG_FILE = "migrator.toml"


def load_config(config_path: Path | str | None = None) -> MigratorConfig:
    """Load connection profiles from a TOML file.

    Args:
        config_path: Path to the config file (default: ./migrator.toml)

    Returns:
        MigratorConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example file:
        [profiles.staging]
        server = "db-staging"
        database = "shop"
        username = "migrator"
        password = "..."
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Migrator config not found: {config_path}\n"
            f"Create it with one [profiles.<name>] table per connection."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        if not isinstance(profile_data, dict):
            raise ValueError(f"Profile '{name}' in {config_path} must be a table")
        profiles[name] = ConnectionProfile(**profile_data)

    return MigratorConfig(profiles=profiles)
