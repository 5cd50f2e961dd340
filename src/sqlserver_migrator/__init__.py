"""Logical migration of SQL Server databases through portable archives.

Exports a database's schemas, tables, rows and procedural objects into a
gzip-compressed JSON archive, and replays an archive into another database
in a single transaction.

Usage:
    from sqlserver_migrator import build_settings, open_connection
    from sqlserver_migrator import SqlServerCatalogReader, export_database

    settings = build_settings(server="db01", database="shop",
                              username="sa", password="secret")
    with open_connection(settings) as conn:
        path = export_database(SqlServerCatalogReader(conn))
"""

from sqlserver_migrator.adapters import (
    CatalogReader,
    MigrationTarget,
    SqlServerCatalogReader,
    SqlServerTarget,
)
from sqlserver_migrator.config import ConnectionSettings, load_config
from sqlserver_migrator.errors import (
    ArchiveFormatError,
    CatalogReadError,
    CodecError,
    ConfigurationError,
    ConnectivityError,
    MigrationError,
    ReplayError,
)
from sqlserver_migrator.factory import build_settings, open_connection
from sqlserver_migrator.migration import (
    ImportResult,
    ImportStep,
    ReplayFailure,
    build_snapshot,
    export_database,
    import_archive,
    import_database,
    verify_archive,
)
from sqlserver_migrator.snapshot import SnapshotDocument, read_archive, write_archive

__version__ = "0.1.0"

__all__ = [
    "ArchiveFormatError",
    "CatalogReadError",
    "CatalogReader",
    "CodecError",
    "ConfigurationError",
    "ConnectionSettings",
    "ConnectivityError",
    "ImportResult",
    "ImportStep",
    "MigrationError",
    "MigrationTarget",
    "ReplayError",
    "ReplayFailure",
    "SnapshotDocument",
    "SqlServerCatalogReader",
    "SqlServerTarget",
    "build_settings",
    "build_snapshot",
    "export_database",
    "import_archive",
    "import_database",
    "load_config",
    "open_connection",
    "read_archive",
    "verify_archive",
    "write_archive",
]
