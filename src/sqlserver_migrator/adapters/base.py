"""Protocols for the source catalog and the destination database.

The export orchestrator only talks to a ``CatalogReader`` and the import
orchestrator only talks to a ``MigrationTarget``.  Neither knows the query
dialect or the driver; concrete adapters live in
``sqlserver_migrator.adapters.sqlserver``.

Usage:
    from sqlserver_migrator.adapters.base import CatalogReader, MigrationTarget

    def count_tables(reader: CatalogReader) -> int:
        return len(reader.list_user_tables())
"""

from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any, Protocol

from sqlserver_migrator.snapshot.models import ColumnInfo, ForeignKeyInfo, ProceduralKind


class CatalogReader(Protocol):
    """Read-only view of a source database's catalog and rows.

    Implementations raise ``CatalogReadError`` when a query fails.
    """

    def get_server_version(self) -> str:
        """Return the server's full version string."""
        ...

    def get_database_identity(self) -> tuple[str, str]:
        """Return ``(database_name, collation)`` of the connected database."""
        ...

    def list_user_schemas(self) -> list[tuple[str, str]]:
        """Return ``(schema_name, owner)`` for every non-system schema."""
        ...

    def list_user_tables(self) -> list[str]:
        """Return fully-qualified names of user tables, ordered by schema and name."""
        ...

    def list_foreign_key_edges(self, tables: list[str]) -> list[tuple[str, str]]:
        """Return ``(dependent, referenced)`` pairs between tables in ``tables``.

        Self-references are excluded.
        """
        ...

    def get_columns(self, schema: str, table: str) -> list[ColumnInfo]:
        """Return the table's columns in ordinal order."""
        ...

    def get_primary_key(self, schema: str, table: str) -> list[str]:
        """Return the primary-key column names in key order (empty if none)."""
        ...

    def get_foreign_keys(self, schema: str, table: str) -> list[ForeignKeyInfo]:
        """Return one ``ForeignKeyInfo`` per FK column of the table."""
        ...

    def get_row_count(self, qualified_table: str) -> int:
        """Return ``COUNT(*)`` of the table."""
        ...

    def stream_rows(self, qualified_table: str) -> Iterator[dict[str, Any]]:
        """Yield every row of the table as ``{column_name: native_value}``.

        The underlying cursor is released when the iterator is exhausted
        or closed.
        """
        ...

    def list_procedural_objects(self, kind: ProceduralKind) -> list[tuple[str, str]]:
        """Return ``(qualified_name, definition)`` for user objects of ``kind``."""
        ...


class MigrationTarget(Protocol):
    """Destination connection used by the import orchestrator.

    All calls go over one connection, strictly in sequence.  Statement
    failures propagate as ``sqlalchemy.exc.SQLAlchemyError``.
    """

    def execute(self, sql: str) -> None:
        """Execute one statement verbatim (DDL or session settings).

        Example:
            target.execute("CREATE SCHEMA [sales]")
        """
        ...

    def execute_many(self, sql: str, rows: list[tuple]) -> None:
        """Execute a qmark-parameterized statement once per row tuple."""
        ...

    def scalar(self, sql: str) -> Any:
        """Execute a query and return the first column of the first row."""
        ...

    def transaction(self) -> AbstractContextManager[Any]:
        """Open the import transaction.

        Commits when the block exits normally, rolls back on exception.
        """
        ...

    def savepoint(self) -> AbstractContextManager[Any]:
        """Open a savepoint inside the current transaction.

        Releases on normal exit; on exception rolls back to the savepoint
        and re-raises, leaving the outer transaction usable.
        """
        ...
