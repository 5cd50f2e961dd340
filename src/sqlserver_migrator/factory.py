"""Connection settings resolution and connection factory.

Settings come from two places, merged in order:

1. A profile in ``migrator.toml`` (optional, selected with ``--profile``)
2. Explicit values (command-line flags); non-None values win

Usage:
    from sqlserver_migrator.factory import build_settings, open_connection

    settings = build_settings(profile="staging", database="shop_copy")
    with open_connection(settings) as conn:
        ...
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlalchemy import Connection, Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError

from sqlserver_migrator.config import ConnectionSettings, load_config
from sqlserver_migrator.errors import ConfigurationError, ConnectivityError

logger = logging.getLogger(__name__)


# ============================================================================
# Settings Resolution
# ============================================================================


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        field = ".".join(str(p) for p in detail["loc"]) or "settings"
        if detail["type"] == "missing":
            parts.append(f"--{field.replace('_', '-')} is required")
        else:
            parts.append(f"{field}: {detail['msg']}")
    return "Invalid connection parameters: " + "; ".join(parts)


def build_settings(
    profile: str | None = None,
    config_path: Path | str | None = None,
    **overrides: Any,
) -> ConnectionSettings:
    """Resolve connection settings from an optional profile plus overrides.

    Args:
        profile: Profile name in the config file, or None for flags only
        config_path: Config file path (default: ./migrator.toml)
        **overrides: ``ConnectionSettings`` fields; None values are ignored

    Returns:
        Validated ConnectionSettings

    Raises:
        ConfigurationError: If the profile is unknown, the config file is
            missing or invalid, or required values are missing

    Example:
        >>> s = build_settings(server="db01", database="shop",
        ...     username="sa", password="secret")
        >>> s.port
        1433
    """
    values: dict[str, Any] = {}

    if profile is not None:
        try:
            config = load_config(config_path)
        except (FileNotFoundError, ValueError) as e:
            raise ConfigurationError(str(e)) from e

        if profile not in config.profiles:
            available = ", ".join(config.profiles.keys()) or "(none)"
            raise ConfigurationError(f"Profile '{profile}' not found. Available: {available}")
        values.update(config.profiles[profile].settings_values())

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ConnectionSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


# ============================================================================
# Connection Factory
# ============================================================================


def create_migration_engine(settings: ConnectionSettings, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for one export or import run.

    Default engine settings:

    - ``fast_executemany=True``: pyodbc sends INSERT batches in one round trip.
    - ``pool_size=1``: every operation uses exactly one connection.
    - ``pool_pre_ping=True``: Validate the connection before checkout.

    Args:
        settings: Resolved connection settings.
        **kwargs: Additional keyword arguments forwarded to ``create_engine``.

    Returns:
        Configured ``Engine``.
    """
    defaults: dict[str, Any] = {
        "fast_executemany": True,
        "pool_size": 1,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_engine(settings.to_url(), **merged)


@contextmanager
def open_connection(settings: ConnectionSettings, **engine_kwargs: Any) -> Iterator[Connection]:
    """Open the single connection used by an export or import.

    The connection is closed and the engine disposed on every exit path.

    Raises:
        ConnectivityError: If the connection cannot be established
    """
    engine = create_migration_engine(settings, **engine_kwargs)
    try:
        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            raise ConnectivityError(
                f"Could not connect to {settings.display_target()}/{settings.database}: {e}"
            ) from e

        logger.info(f"Connected to {settings.display_target()}, database {settings.database}")
        try:
            yield conn
        finally:
            conn.close()
    finally:
        engine.dispose()
