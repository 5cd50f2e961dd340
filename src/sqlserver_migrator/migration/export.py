"""Export a live database into a compressed snapshot archive.

The export reads everything through a ``CatalogReader``: server identity,
user schemas, table structures, every row, and the verbatim definitions of
procedures, functions, views, triggers, indexes and check constraints.
Tables are captured in foreign-key dependency order, and that order is
stored in the snapshot so the import can replay it.

Usage:
    from sqlserver_migrator.adapters import SqlServerCatalogReader
    from sqlserver_migrator.factory import open_connection
    from sqlserver_migrator.migration.export import export_database

    with open_connection(settings) as conn:
        path = export_database(SqlServerCatalogReader(conn))
"""

import logging
from datetime import datetime
from pathlib import Path

from sqlserver_migrator.adapters.base import CatalogReader
from sqlserver_migrator.schema.ddl import build_create_table
from sqlserver_migrator.schema.ordering import build_dependency_map, resolve_table_order
from sqlserver_migrator.snapshot.archive import write_archive
from sqlserver_migrator.snapshot.codec import encode_row
from sqlserver_migrator.snapshot.models import (
    Metadata,
    ProceduralKind,
    SchemaInfo,
    SnapshotDocument,
    TableInfo,
)

logger = logging.getLogger(__name__)

# Capture order of procedural objects in the snapshot
EXPORTED_KINDS = (
    ProceduralKind.PROCEDURE,
    ProceduralKind.FUNCTION,
    ProceduralKind.VIEW,
    ProceduralKind.TRIGGER,
    ProceduralKind.INDEX,
    ProceduralKind.CHECK_CONSTRAINT,
)


def default_archive_name(database_name: str, now: datetime | None = None) -> str:
    """Default archive file name for a database.

    Example:
        >>> default_archive_name("shop", datetime(2024, 3, 1, 14, 5, 9))
        'sqlserver_backup_shop_20240301_140509.gz'
    """
    now = now or datetime.now()
    return f"sqlserver_backup_{database_name}_{now.strftime('%Y%m%d_%H%M%S')}.gz"


def _capture_table(reader: CatalogReader, qualified_name: str) -> tuple[TableInfo, list[dict]]:
    schema_name, _, table_name = qualified_name.partition(".")

    table = TableInfo(
        schema_name=schema_name,
        table_name=table_name,
        columns=reader.get_columns(schema_name, table_name),
        primary_key=reader.get_primary_key(schema_name, table_name),
        foreign_keys=reader.get_foreign_keys(schema_name, table_name),
    )
    table.create_statement = build_create_table(table)
    table.row_count = reader.get_row_count(qualified_name)

    long_text_columns = {c.column_name for c in table.columns if c.is_long_text}
    rows = [encode_row(row, long_text_columns) for row in reader.stream_rows(qualified_name)]

    return table, rows


def build_snapshot(reader: CatalogReader) -> SnapshotDocument:
    """Read the whole source database into a ``SnapshotDocument``.

    Args:
        reader: Catalog reader bound to the source connection.

    Returns:
        The complete snapshot, with ``total_tables`` and ``total_records``
        finalized.

    Raises:
        CatalogReadError: If any catalog or data query fails.
    """
    database_name, collation = reader.get_database_identity()
    metadata = Metadata(
        sql_server_version=reader.get_server_version(),
        database_name=database_name,
        collation=collation,
    )
    document = SnapshotDocument(metadata=metadata)
    logger.info(f"Exporting database {database_name} ({metadata.server_version_line})")

    # Schemas
    for schema_name, owner in reader.list_user_schemas():
        document.schemas[schema_name] = SchemaInfo(schema_name=schema_name, owner=owner)
    logger.info(f"Found {len(document.schemas)} schemas")

    # Table order
    tables = reader.list_user_tables()
    logger.info(f"Found {len(tables)} tables")
    dependencies = build_dependency_map(tables, reader.list_foreign_key_edges(tables))
    document.table_order = resolve_table_order(tables, dependencies)
    logger.debug(f"Export order: {', '.join(document.table_order)}")

    # Structure and data, parents first
    total_records = 0
    for qualified_name in document.table_order:
        table, rows = _capture_table(reader, qualified_name)
        document.tables[qualified_name] = table
        document.data[qualified_name] = rows
        total_records += len(rows)
        logger.info(f"  {qualified_name}: {len(rows)} rows")

    # Procedural objects
    for kind in EXPORTED_KINDS:
        objects = document.procedural_objects(kind)
        for name, definition in reader.list_procedural_objects(kind):
            objects[name] = definition
        logger.info(f"Captured {len(objects)} {kind.document_field.replace('_', ' ')}")

    document.metadata.total_tables = len(document.tables)
    document.metadata.total_records = total_records
    return document


def export_database(reader: CatalogReader, output_path: str | Path | None = None) -> str:
    """Export the source database to a gzip-compressed JSON archive.

    Nothing is written unless the whole snapshot was read successfully.

    Args:
        reader: Catalog reader bound to the source connection.
        output_path: Archive path.  When ``None``, a timestamped
            ``sqlserver_backup_<db>_<YYYYMMDD_HHMMSS>.gz`` in the current
            directory.

    Returns:
        Path of the written archive.
    """
    document = build_snapshot(reader)

    if output_path is None:
        output_path = Path.cwd() / default_archive_name(document.metadata.database_name or "database")

    path = write_archive(document, output_path)
    logger.info(
        f"Export complete: {document.metadata.total_tables} tables, "
        f"{document.metadata.total_records} records -> {path}"
    )
    return path
