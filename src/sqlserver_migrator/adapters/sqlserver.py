"""SQL Server catalog reader and migration target.

Both adapters wrap an open SQLAlchemy ``Connection`` (``mssql+pyodbc``)
created by ``sqlserver_migrator.factory.open_connection``.  They never open
or close the connection themselves.

Catalog queries use ``sys.*`` views and ``INFORMATION_SCHEMA`` and skip
``is_ms_shipped`` objects and the built-in/fixed-role schemas.

Usage:
    from sqlserver_migrator.adapters.sqlserver import SqlServerCatalogReader, SqlServerTarget
    from sqlserver_migrator.factory import open_connection

    with open_connection(settings) as conn:
        reader = SqlServerCatalogReader(conn)
        tables = reader.list_user_tables()
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Connection, text
from sqlalchemy.exc import SQLAlchemyError

from sqlserver_migrator.errors import CatalogReadError
from sqlserver_migrator.schema.ddl import quote_table
from sqlserver_migrator.snapshot.models import ColumnInfo, ForeignKeyInfo, ProceduralKind

logger = logging.getLogger(__name__)

# Built-in and fixed database role schemas
SYSTEM_SCHEMAS = (
    "sys",
    "INFORMATION_SCHEMA",
    "guest",
    "db_owner",
    "db_accessadmin",
    "db_securityadmin",
    "db_ddladmin",
    "db_backupoperator",
    "db_datareader",
    "db_datawriter",
    "db_denydatareader",
    "db_denydatawriter",
)

_PROCEDURAL_QUERIES: dict[ProceduralKind, str] = {
    ProceduralKind.PROCEDURE: """
        SELECT SCHEMA_NAME(p.schema_id) + '.' + p.name AS object_name, m.definition
        FROM sys.procedures p
        INNER JOIN sys.sql_modules m ON p.object_id = m.object_id
        WHERE p.is_ms_shipped = 0
        ORDER BY object_name
    """,
    ProceduralKind.FUNCTION: """
        SELECT SCHEMA_NAME(f.schema_id) + '.' + f.name AS object_name, m.definition
        FROM sys.objects f
        INNER JOIN sys.sql_modules m ON f.object_id = m.object_id
        WHERE f.type IN ('FN', 'IF', 'TF') AND f.is_ms_shipped = 0
        ORDER BY object_name
    """,
    ProceduralKind.VIEW: """
        SELECT SCHEMA_NAME(v.schema_id) + '.' + v.name AS object_name, m.definition
        FROM sys.views v
        INNER JOIN sys.sql_modules m ON v.object_id = m.object_id
        WHERE v.is_ms_shipped = 0
        ORDER BY object_name
    """,
    ProceduralKind.TRIGGER: """
        SELECT SCHEMA_NAME(t.schema_id) + '.' + t.name + '.' + tr.name AS object_name,
               m.definition
        FROM sys.triggers tr
        INNER JOIN sys.sql_modules m ON tr.object_id = m.object_id
        INNER JOIN sys.tables t ON tr.parent_id = t.object_id
        WHERE tr.is_ms_shipped = 0
        ORDER BY object_name
    """,
    ProceduralKind.INDEX: """
        SELECT SCHEMA_NAME(t.schema_id) + '.' + t.name + '.' + i.name AS object_name,
               'CREATE ' + CASE WHEN i.is_unique = 1 THEN 'UNIQUE ' ELSE '' END
               + 'INDEX [' + i.name + '] ON [' + SCHEMA_NAME(t.schema_id) + '].['
               + t.name + '] ('
               + STUFF((
                   SELECT ', [' + c.name + ']'
                          + CASE WHEN ic.is_descending_key = 1 THEN ' DESC' ELSE ' ASC' END
                   FROM sys.index_columns ic
                   INNER JOIN sys.columns c
                       ON ic.object_id = c.object_id AND ic.column_id = c.column_id
                   WHERE ic.object_id = i.object_id AND ic.index_id = i.index_id
                     AND ic.is_included_column = 0
                   ORDER BY ic.key_ordinal
                   FOR XML PATH(''), TYPE
               ).value('.', 'nvarchar(max)'), 1, 2, '') + ')' AS definition
        FROM sys.indexes i
        INNER JOIN sys.tables t ON i.object_id = t.object_id
        WHERE i.type > 0
          AND i.is_primary_key = 0
          AND i.is_unique_constraint = 0
          AND t.is_ms_shipped = 0
        ORDER BY object_name
    """,
    ProceduralKind.CHECK_CONSTRAINT: """
        SELECT SCHEMA_NAME(t.schema_id) + '.' + t.name + '.' + cc.name AS object_name,
               'ALTER TABLE [' + SCHEMA_NAME(t.schema_id) + '].[' + t.name
               + '] ADD CONSTRAINT [' + cc.name + '] CHECK ' + cc.definition AS definition
        FROM sys.check_constraints cc
        INNER JOIN sys.tables t ON cc.parent_object_id = t.object_id
        WHERE t.is_ms_shipped = 0
        ORDER BY object_name
    """,
}


class SqlServerCatalogReader:
    """``CatalogReader`` implementation for SQL Server.

    Args:
        connection: Open SQLAlchemy connection to the source database.

    Example:
        with open_connection(settings) as conn:
            reader = SqlServerCatalogReader(conn)
            for row in reader.stream_rows("dbo.orders"):
                ...
    """

    def __init__(self, connection: Connection) -> None:
        self._conn = connection

    def _query(self, sql: str, params: dict[str, Any] | None = None) -> list[tuple]:
        """Run a catalog query and return all rows as tuples."""
        try:
            result = self._conn.execute(text(sql), params or {})
            return [tuple(row) for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise CatalogReadError(f"Catalog query failed: {e}") from e

    # ------------------------------------------------------------------
    # Database identity
    # ------------------------------------------------------------------

    def get_server_version(self) -> str:
        rows = self._query("SELECT @@VERSION AS server_version")
        return rows[0][0] if rows else ""

    def get_database_identity(self) -> tuple[str, str]:
        rows = self._query(
            "SELECT DB_NAME() AS db_name, "
            "CAST(DATABASEPROPERTYEX(DB_NAME(), 'Collation') AS NVARCHAR(128)) AS collation"
        )
        if not rows:
            raise CatalogReadError("Could not read database identity")
        return rows[0][0], rows[0][1]

    # ------------------------------------------------------------------
    # Schemas and tables
    # ------------------------------------------------------------------

    def list_user_schemas(self) -> list[tuple[str, str]]:
        placeholders = ", ".join(f":s{i}" for i in range(len(SYSTEM_SCHEMAS)))
        params = {f"s{i}": name for i, name in enumerate(SYSTEM_SCHEMAS)}
        sql = f"""
            SELECT s.name AS schema_name, p.name AS owner_name
            FROM sys.schemas s
            INNER JOIN sys.database_principals p ON s.principal_id = p.principal_id
            WHERE s.name NOT IN ({placeholders})
            ORDER BY s.name
        """
        return [(name, owner) for name, owner in self._query(sql, params)]

    def list_user_tables(self) -> list[str]:
        sql = """
            SELECT SCHEMA_NAME(t.schema_id) + '.' + t.name AS full_table_name
            FROM sys.tables t
            WHERE t.is_ms_shipped = 0
            ORDER BY SCHEMA_NAME(t.schema_id), t.name
        """
        return [row[0] for row in self._query(sql)]

    def list_foreign_key_edges(self, tables: list[str]) -> list[tuple[str, str]]:
        sql = """
            SELECT
                SCHEMA_NAME(ct.schema_id) + '.' + ct.name AS dependent_table,
                SCHEMA_NAME(rt.schema_id) + '.' + rt.name AS referenced_table
            FROM sys.foreign_keys fk
            INNER JOIN sys.tables ct ON fk.parent_object_id = ct.object_id
            INNER JOIN sys.tables rt ON fk.referenced_object_id = rt.object_id
            WHERE fk.is_ms_shipped = 0
        """
        table_set = set(tables)
        edges: list[tuple[str, str]] = []
        for dependent, referenced in self._query(sql):
            if dependent == referenced:
                continue
            if dependent in table_set and referenced in table_set:
                edges.append((dependent, referenced))
        return edges

    # ------------------------------------------------------------------
    # Table structure
    # ------------------------------------------------------------------

    def get_columns(self, schema: str, table: str) -> list[ColumnInfo]:
        sql = """
            SELECT
                c.COLUMN_NAME,
                c.DATA_TYPE,
                c.CHARACTER_MAXIMUM_LENGTH,
                c.NUMERIC_PRECISION,
                c.NUMERIC_SCALE,
                c.IS_NULLABLE,
                c.COLUMN_DEFAULT,
                COLUMNPROPERTY(
                    OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)),
                    c.COLUMN_NAME, 'IsIdentity'
                ) AS IS_IDENTITY,
                IDENT_SEED(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)) AS IDENTITY_SEED,
                IDENT_INCR(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)) AS IDENTITY_INCREMENT
            FROM INFORMATION_SCHEMA.COLUMNS c
            WHERE c.TABLE_SCHEMA = :schema AND c.TABLE_NAME = :table
            ORDER BY c.ORDINAL_POSITION
        """
        columns: list[ColumnInfo] = []
        for row in self._query(sql, {"schema": schema, "table": table}):
            (
                name,
                data_type,
                max_length,
                precision,
                scale,
                is_nullable,
                default,
                is_identity,
                seed,
                increment,
            ) = row
            identity = bool(is_identity)
            columns.append(
                ColumnInfo(
                    column_name=name,
                    data_type=data_type,
                    max_length=max_length,
                    precision=precision,
                    scale=scale,
                    is_nullable=(is_nullable == "YES"),
                    default_value=default,
                    is_identity=identity,
                    identity_seed=int(seed) if identity and seed is not None else None,
                    identity_increment=int(increment) if identity and increment is not None else None,
                )
            )
        return columns

    def get_primary_key(self, schema: str, table: str) -> list[str]:
        sql = """
            SELECT kcu.COLUMN_NAME
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            INNER JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
                ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
                AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
                AND tc.TABLE_NAME = kcu.TABLE_NAME
            WHERE tc.TABLE_SCHEMA = :schema
              AND tc.TABLE_NAME = :table
              AND tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
            ORDER BY kcu.ORDINAL_POSITION
        """
        return [row[0] for row in self._query(sql, {"schema": schema, "table": table})]

    def get_foreign_keys(self, schema: str, table: str) -> list[ForeignKeyInfo]:
        sql = """
            SELECT
                fk.name AS constraint_name,
                c1.name AS column_name,
                s2.name AS referenced_schema,
                t2.name AS referenced_table,
                c2.name AS referenced_column,
                fk.delete_referential_action_desc AS delete_rule,
                fk.update_referential_action_desc AS update_rule
            FROM sys.foreign_keys fk
            INNER JOIN sys.foreign_key_columns fkc ON fk.object_id = fkc.constraint_object_id
            INNER JOIN sys.columns c1
                ON fkc.parent_object_id = c1.object_id AND fkc.parent_column_id = c1.column_id
            INNER JOIN sys.columns c2
                ON fkc.referenced_object_id = c2.object_id AND fkc.referenced_column_id = c2.column_id
            INNER JOIN sys.tables t1 ON fk.parent_object_id = t1.object_id
            INNER JOIN sys.schemas s1 ON t1.schema_id = s1.schema_id
            INNER JOIN sys.tables t2 ON fk.referenced_object_id = t2.object_id
            INNER JOIN sys.schemas s2 ON t2.schema_id = s2.schema_id
            WHERE s1.name = :schema AND t1.name = :table
            ORDER BY fk.name, fkc.constraint_column_id
        """
        return [
            ForeignKeyInfo(
                constraint_name=row[0],
                column_name=row[1],
                referenced_schema=row[2],
                referenced_table=row[3],
                referenced_column=row[4],
                delete_rule=row[5],
                update_rule=row[6],
            )
            for row in self._query(sql, {"schema": schema, "table": table})
        ]

    # ------------------------------------------------------------------
    # Row data
    # ------------------------------------------------------------------

    def get_row_count(self, qualified_table: str) -> int:
        rows = self._query(f"SELECT COUNT_BIG(*) AS row_count FROM {quote_table(qualified_table)}")
        return int(rows[0][0]) if rows else 0

    def stream_rows(self, qualified_table: str) -> Iterator[dict[str, Any]]:
        sql = f"SELECT * FROM {quote_table(qualified_table)}"
        try:
            result = self._conn.exec_driver_sql(sql)
        except SQLAlchemyError as e:
            raise CatalogReadError(f"Could not read rows of {qualified_table}: {e}") from e

        try:
            for row in result.mappings():
                yield dict(row)
        except SQLAlchemyError as e:
            raise CatalogReadError(f"Could not read rows of {qualified_table}: {e}") from e
        finally:
            result.close()

    # ------------------------------------------------------------------
    # Procedural objects
    # ------------------------------------------------------------------

    def list_procedural_objects(self, kind: ProceduralKind) -> list[tuple[str, str]]:
        return [(name, definition) for name, definition in self._query(_PROCEDURAL_QUERIES[kind])]


class SqlServerTarget:
    """``MigrationTarget`` implementation on a SQLAlchemy connection.

    Statements run through ``exec_driver_sql`` so verbatim definitions are
    never scanned for bind parameters, and INSERTs use pyodbc's qmark
    placeholders (``fast_executemany`` is enabled by the factory).

    Args:
        connection: Open SQLAlchemy connection to the destination database.
    """

    def __init__(self, connection: Connection) -> None:
        self._conn = connection

    def execute(self, sql: str) -> None:
        logger.debug(f"execute: {sql.splitlines()[0] if sql else ''}")
        self._conn.exec_driver_sql(sql)

    def execute_many(self, sql: str, rows: list[tuple]) -> None:
        if not rows:
            return
        self._conn.exec_driver_sql(sql, rows)

    def scalar(self, sql: str) -> Any:
        return self._conn.exec_driver_sql(sql).scalar()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the block in one transaction, committed on success.

        A transaction the connection already auto-began is continued
        rather than started again.
        """
        if not self._conn.in_transaction():
            with self._conn.begin():
                yield
            return

        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self._conn.begin_nested():
            yield
