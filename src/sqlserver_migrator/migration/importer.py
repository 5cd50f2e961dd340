"""Replay a snapshot into a destination database.

The whole import runs in one transaction on the destination connection:

    SCHEMAS -> TABLES -> DATA -> CONSTRAINTS -> FOREIGN_KEYS -> INDEXES
    -> PROCEDURES -> FUNCTIONS -> VIEWS -> TRIGGERS -> commit

Schemas, tables and data are fatal: any failure (other than a schema that
already exists) rolls everything back.  Every later statement runs in its
own savepoint; a failure there is recorded on the result and the import
continues.

Usage:
    from sqlserver_migrator.adapters import SqlServerTarget
    from sqlserver_migrator.factory import open_connection
    from sqlserver_migrator.migration.importer import import_archive

    with open_connection(settings) as conn:
        result = import_archive(SqlServerTarget(conn), "sqlserver_backup_shop.gz")
    if not result.success:
        print(result.error)
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from sqlserver_migrator.adapters.base import MigrationTarget
from sqlserver_migrator.errors import ReplayError
from sqlserver_migrator.schema.ddl import (
    build_create_schema,
    build_create_table,
    build_foreign_keys,
    build_identity_insert,
    build_insert,
)
from sqlserver_migrator.snapshot.archive import read_archive
from sqlserver_migrator.snapshot.codec import decode_value
from sqlserver_migrator.snapshot.models import ProceduralKind, SnapshotDocument

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

# Schemas that always exist on the destination
BUILTIN_SCHEMAS = frozenset({"dbo"})

_ALREADY_EXISTS_MARKERS = ("already exists", "already an object named")

USER_TABLE_COUNT_SQL = "SELECT COUNT(*) FROM sys.tables WHERE is_ms_shipped = 0"


class ImportStep(str, Enum):
    """Import phases, in execution order."""

    SCHEMAS = "schemas"
    TABLES = "tables"
    DATA = "data"
    CONSTRAINTS = "constraints"
    FOREIGN_KEYS = "foreign_keys"
    INDEXES = "indexes"
    PROCEDURES = "procedures"
    FUNCTIONS = "functions"
    VIEWS = "views"
    TRIGGERS = "triggers"


# Non-fatal steps replaying verbatim definitions from the snapshot
_DEFINITION_STEPS = (
    (ImportStep.INDEXES, ProceduralKind.INDEX),
    (ImportStep.PROCEDURES, ProceduralKind.PROCEDURE),
    (ImportStep.FUNCTIONS, ProceduralKind.FUNCTION),
    (ImportStep.VIEWS, ProceduralKind.VIEW),
    (ImportStep.TRIGGERS, ProceduralKind.TRIGGER),
)


# ============================================================================
# Result Models
# ============================================================================


class ReplayFailure(BaseModel):
    """A non-fatal statement failure recorded during import."""

    step: ImportStep
    name: str
    message: str

    @classmethod
    def from_error(cls, error: ReplayError) -> "ReplayFailure":
        return cls(step=ImportStep(error.step), name=error.object_name, message=str(error))


class ImportResult(BaseModel):
    """Outcome of an import.

    ``success`` reflects fatal failures only; non-fatal ones are listed in
    ``failures``.  After a rollback the counters are reset to zero.
    """

    success: bool = False
    tables_created: int = 0
    rows_inserted: int = 0
    completed_steps: list[ImportStep] = Field(default_factory=list)
    failures: list[ReplayFailure] = Field(default_factory=list)
    failed_step: ImportStep | None = None
    error: str | None = None

    @property
    def failure_count(self) -> int:
        """Number of non-fatal failures."""
        return len(self.failures)


# ============================================================================
# Statement helpers
# ============================================================================


def _is_already_exists(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _ALREADY_EXISTS_MARKERS)


@contextmanager
def identity_insert(target: MigrationTarget, qualified_name: str, enabled: bool = True) -> Iterator[None]:
    """Allow explicit identity values for a table while the block runs.

    ``SET IDENTITY_INSERT ... OFF`` is issued on every exit path.
    """
    if not enabled:
        yield
        return

    target.execute(build_identity_insert(qualified_name, True))
    try:
        yield
    finally:
        target.execute(build_identity_insert(qualified_name, False))


def _execute_optional(
    target: MigrationTarget,
    result: ImportResult,
    step: ImportStep,
    name: str,
    sql: str,
) -> bool:
    """Run one non-fatal statement inside a savepoint.

    Returns:
        True if the statement succeeded
    """
    try:
        with target.savepoint():
            target.execute(sql)
    except SQLAlchemyError as e:
        error = ReplayError(str(e).splitlines()[0], step=step.value, object_name=name, fatal=False)
        logger.warning(f"Could not create {name} ({step.value}): {error}")
        result.failures.append(ReplayFailure.from_error(error))
        return False

    logger.debug(f"Created {name}")
    return True


# ============================================================================
# Import steps
# ============================================================================


def _warn_if_not_empty(target: MigrationTarget) -> None:
    try:
        with target.savepoint():
            existing = target.scalar(USER_TABLE_COUNT_SQL) or 0
    except SQLAlchemyError as e:
        logger.warning(f"Could not check whether the destination is empty: {str(e).splitlines()[0]}")
        return

    if existing > 0:
        logger.warning(
            f"Destination database already contains {existing} user tables; "
            f"objects with the same names will fail to create"
        )


def _create_schemas(target: MigrationTarget, snapshot: SnapshotDocument, result: ImportResult) -> None:
    for schema_name in snapshot.schemas:
        if schema_name.lower() in BUILTIN_SCHEMAS:
            continue
        try:
            with target.savepoint():
                target.execute(build_create_schema(schema_name))
        except SQLAlchemyError as e:
            if _is_already_exists(e):
                logger.info(f"Schema {schema_name} already exists")
                continue
            raise ReplayError(
                f"Could not create schema {schema_name}: {e}",
                step=ImportStep.SCHEMAS.value,
                object_name=schema_name,
            ) from e
        logger.info(f"Created schema {schema_name}")


def _create_tables(target: MigrationTarget, snapshot: SnapshotDocument, result: ImportResult) -> None:
    for name in snapshot.load_order():
        table = snapshot.tables[name]
        sql = table.create_statement or build_create_table(table)
        try:
            target.execute(sql)
        except SQLAlchemyError as e:
            raise ReplayError(
                f"Could not create table {name}: {e}",
                step=ImportStep.TABLES.value,
                object_name=name,
            ) from e
        result.tables_created += 1
        logger.info(f"Created table {name}")


def _insert_data(
    target: MigrationTarget,
    snapshot: SnapshotDocument,
    result: ImportResult,
    batch_size: int,
) -> None:
    order = snapshot.load_order()

    for name in snapshot.data:
        if name not in snapshot.tables:
            logger.warning(f"Skipping data for {name}: table not in snapshot")

    for name in order:
        rows = snapshot.data.get(name) or []
        if not rows:
            continue

        table = snapshot.tables[name]
        column_types = table.column_types()
        columns = list(rows[0].keys())
        sql = build_insert(name, columns)

        inserted = 0
        try:
            with identity_insert(target, name, table.has_identity):
                batch: list[tuple] = []
                for row in rows:
                    batch.append(tuple(decode_value(row.get(c), column_types.get(c)) for c in columns))
                    if len(batch) >= batch_size:
                        target.execute_many(sql, batch)
                        inserted += len(batch)
                        batch = []
                if batch:
                    target.execute_many(sql, batch)
                    inserted += len(batch)
        except SQLAlchemyError as e:
            raise ReplayError(
                f"Could not insert data into {name} after {inserted} rows: {e}",
                step=ImportStep.DATA.value,
                object_name=name,
            ) from e

        result.rows_inserted += inserted
        logger.info(f"  {name}: {inserted} rows")


def _create_check_constraints(target: MigrationTarget, snapshot: SnapshotDocument, result: ImportResult) -> None:
    for name, sql in snapshot.constraints.items():
        _execute_optional(target, result, ImportStep.CONSTRAINTS, name, sql)


def _create_foreign_keys(target: MigrationTarget, snapshot: SnapshotDocument, result: ImportResult) -> None:
    for table_name in snapshot.load_order():
        for constraint_name, sql in build_foreign_keys(snapshot.tables[table_name]):
            _execute_optional(target, result, ImportStep.FOREIGN_KEYS, f"{table_name}.{constraint_name}", sql)


def _create_definitions(
    target: MigrationTarget,
    snapshot: SnapshotDocument,
    result: ImportResult,
    step: ImportStep,
    kind: ProceduralKind,
) -> None:
    objects = snapshot.procedural_objects(kind)
    created = sum(
        _execute_optional(target, result, step, name, definition)
        for name, definition in objects.items()
    )
    if objects:
        logger.info(f"Created {created}/{len(objects)} {step.value.replace('_', ' ')}")


# ============================================================================
# Entry points
# ============================================================================


def import_database(
    target: MigrationTarget,
    snapshot: SnapshotDocument,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Replay a snapshot into the destination in one transaction.

    Never raises for replay problems: a fatal failure rolls back and is
    reported through ``ImportResult.error``.

    Args:
        target: Destination bound to an open connection.
        snapshot: Parsed snapshot document.
        batch_size: Rows sent per ``execute_many`` call.

    Returns:
        ImportResult with counters, completed steps and non-fatal failures.

    Raises:
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    result = ImportResult()
    steps = [
        (ImportStep.SCHEMAS, lambda: _create_schemas(target, snapshot, result)),
        (ImportStep.TABLES, lambda: _create_tables(target, snapshot, result)),
        (ImportStep.DATA, lambda: _insert_data(target, snapshot, result, batch_size)),
        (ImportStep.CONSTRAINTS, lambda: _create_check_constraints(target, snapshot, result)),
        (ImportStep.FOREIGN_KEYS, lambda: _create_foreign_keys(target, snapshot, result)),
    ]
    for step, kind in _DEFINITION_STEPS:
        steps.append((step, lambda step=step, kind=kind: _create_definitions(target, snapshot, result, step, kind)))

    current: ImportStep | None = None
    try:
        with target.transaction():
            _warn_if_not_empty(target)
            for step, run in steps:
                current = step
                logger.debug(f"Import step: {step.value}")
                run()
                result.completed_steps.append(step)
    except ReplayError as e:
        logger.error(f"Import failed, rolled back: {e}")
        _mark_failed(result, str(e), ImportStep(e.step))
        return result
    except Exception as e:
        logger.error(f"Import failed, rolled back: {e}")
        logger.debug("Import failure details", exc_info=True)
        _mark_failed(result, str(e), current)
        return result

    result.success = True
    logger.info(
        f"Import complete: {result.tables_created} tables, {result.rows_inserted} rows, "
        f"{result.failure_count} non-fatal failures"
    )
    return result


def _mark_failed(result: ImportResult, message: str, step: ImportStep | None) -> None:
    result.success = False
    result.error = message
    result.failed_step = step
    result.tables_created = 0
    result.rows_inserted = 0


def import_archive(
    target: MigrationTarget,
    archive_path: str | Path,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Read an archive and replay it into the destination.

    The archive is parsed completely before the destination is touched.

    Raises:
        ArchiveFormatError: If the archive cannot be read
    """
    snapshot = read_archive(archive_path)
    metadata = snapshot.metadata
    logger.info(
        f"Importing {metadata.database_name} exported {metadata.export_date:%Y-%m-%d %H:%M:%S} "
        f"({metadata.total_tables} tables, {metadata.total_records} records)"
    )
    return import_database(target, snapshot, batch_size=batch_size)
