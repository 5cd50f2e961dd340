"""Offline integrity check of a snapshot archive.

No database I/O: the archive is read and checked for internal consistency.

Usage:
    from sqlserver_migrator.migration.verify import verify_archive

    report = verify_archive("sqlserver_backup_shop_20240301_140509.gz")
    if not report["valid"]:
        print("\\n".join(report["errors"]))
"""

import logging
from pathlib import Path

from sqlserver_migrator.errors import ArchiveFormatError
from sqlserver_migrator.snapshot.archive import read_archive
from sqlserver_migrator.snapshot.models import FORMAT_VERSION, SnapshotDocument

logger = logging.getLogger(__name__)


def object_counts(document: SnapshotDocument) -> dict[str, int]:
    """Count every kind of object stored in a snapshot."""
    return {
        "tables": len(document.tables),
        "records": sum(len(rows) for rows in document.data.values()),
        "schemas": len(document.schemas),
        "stored_procedures": len(document.stored_procedures),
        "functions": len(document.functions),
        "views": len(document.views),
        "triggers": len(document.triggers),
        "indexes": len(document.indexes),
        "constraints": len(document.constraints),
    }


def verify_archive(archive_path: str | Path) -> dict:
    """Validate an archive's format and internal consistency.

    Errors make the archive unusable for import; warnings flag
    inconsistencies the import tolerates.

    Args:
        archive_path: Path to the archive file.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]), ``warnings``
        (list[str]), ``metadata`` (dict or None), and ``object_counts``
        (dict or None).

    Example:
        report = verify_archive("backup.gz")
        report["object_counts"]["tables"]
    """
    errors: list[str] = []
    warnings: list[str] = []

    try:
        document = read_archive(archive_path)
    except ArchiveFormatError as e:
        errors.append(str(e))
        return {"valid": False, "errors": errors, "warnings": warnings, "metadata": None, "object_counts": None}

    metadata = document.metadata

    if metadata.version != FORMAT_VERSION:
        errors.append(f"Unsupported archive version '{metadata.version}' (expected '{FORMAT_VERSION}')")

    # Load order must only reference captured tables
    for name in document.table_order:
        if name not in document.tables:
            errors.append(f"table_order references unknown table: {name}")

    ordered = set(document.table_order)
    for name in document.tables:
        if name not in ordered:
            warnings.append(f"Table missing from table_order: {name}")

    for name in document.data:
        if name not in document.tables:
            warnings.append(f"Data for unknown table: {name}")

    # Row counts captured at export vs rows actually stored
    for name, table in document.tables.items():
        stored = len(document.data.get(name, []))
        if table.row_count != stored:
            warnings.append(f"{name}: row_count is {table.row_count} but {stored} rows are stored")

    counts = object_counts(document)
    if metadata.total_records != counts["records"]:
        warnings.append(
            f"total_records is {metadata.total_records} but {counts['records']} rows are stored"
        )

    for warning in warnings:
        logger.warning(warning)

    return {
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "metadata": metadata.model_dump(mode="json"),
        "object_counts": counts,
    }
