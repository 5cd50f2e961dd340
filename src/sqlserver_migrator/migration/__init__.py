"""Export, import, and archive verification.

Usage:
    from sqlserver_migrator.migration import export_database, import_archive, verify_archive
"""

from sqlserver_migrator.migration.export import build_snapshot, default_archive_name, export_database
from sqlserver_migrator.migration.importer import (
    BATCH_SIZE,
    ImportResult,
    ImportStep,
    ReplayFailure,
    identity_insert,
    import_archive,
    import_database,
)
from sqlserver_migrator.migration.verify import object_counts, verify_archive

__all__ = [
    "BATCH_SIZE",
    "ImportResult",
    "ImportStep",
    "ReplayFailure",
    "build_snapshot",
    "default_archive_name",
    "export_database",
    "identity_insert",
    "import_archive",
    "import_database",
    "object_counts",
    "verify_archive",
]
