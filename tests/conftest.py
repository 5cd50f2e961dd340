"""Shared fixtures: in-memory catalog reader and migration target.

``FakeCatalogReader`` serves a fixed catalog and row set.  ``FakeTarget``
interprets the handful of statement shapes the importer emits (CREATE
SCHEMA, CREATE TABLE, SET IDENTITY_INSERT, INSERT) well enough to check
ordering, identity handling, batching, and transactional rollback.
"""

import copy
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import ProgrammingError

from sqlserver_migrator.errors import CatalogReadError
from sqlserver_migrator.snapshot.models import ColumnInfo, ForeignKeyInfo, ProceduralKind

_TABLE_RE = re.compile(r"\[([^\]]+)\]\.\[([^\]]+)\]")
_IDENTITY_COLUMN_RE = re.compile(r"^\s+\[([^\]]+)\] [^\n]*IDENTITY\(", re.MULTILINE)
_INSERT_COLUMNS_RE = re.compile(r"INSERT INTO \S+ \(([^)]*)\)")


def _table_name(sql: str) -> str:
    match = _TABLE_RE.search(sql)
    assert match, f"no table name in: {sql}"
    return f"{match.group(1)}.{match.group(2)}"


def _db_error(sql: str, message: str) -> ProgrammingError:
    return ProgrammingError(sql, None, Exception(message))


# ------------------------------------------------------------------
# Migration target
# ------------------------------------------------------------------


class FakeTarget:
    """In-memory ``MigrationTarget``.

    State (schemas, tables, rows, other objects) is copied on entry to
    ``transaction()`` and ``savepoint()`` and restored if the block raises.
    """

    def __init__(self, existing_tables: int = 0, existing_schemas: set[str] | None = None):
        self.existing_tables = existing_tables
        self.schemas: set[str] = set(existing_schemas or {"dbo"})
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.identity_columns: dict[str, set[str]] = {}
        self.identity_insert_on: set[str] = set()
        self.objects: list[str] = []
        self.statements: list[str] = []
        self.batches: list[tuple[str, int]] = []
        self.committed = False
        self.rolled_back = False
        self._failures: list[tuple[Callable[[str], bool], str]] = []

    # -- failure injection ---------------------------------------------

    def fail_on(self, fragment: str, message: str = "simulated failure") -> None:
        """Raise a driver error for any statement containing ``fragment``."""
        self._failures.append((lambda sql: fragment in sql, message))

    def _check_failures(self, sql: str) -> None:
        for predicate, message in self._failures:
            if predicate(sql):
                raise _db_error(sql, message)

    # -- MigrationTarget -----------------------------------------------

    def execute(self, sql: str) -> None:
        self.statements.append(sql)
        self._check_failures(sql)

        if sql.startswith("CREATE SCHEMA"):
            name = sql.split("[", 1)[1].rstrip("]")
            if name in self.schemas:
                raise _db_error(sql, f"There is already an object named '{name}' in the database.")
            self.schemas.add(name)
        elif sql.startswith("CREATE TABLE"):
            name = _table_name(sql)
            if name in self.tables:
                raise _db_error(sql, f"There is already an object named '{name}' in the database.")
            if name.split(".")[0] not in self.schemas:
                raise _db_error(sql, f"The specified schema name '{name.split('.')[0]}' does not exist")
            self.tables[name] = []
            self.identity_columns[name] = set(_IDENTITY_COLUMN_RE.findall(sql))
        elif sql.startswith("SET IDENTITY_INSERT"):
            name = _table_name(sql)
            if sql.endswith(" ON"):
                self.identity_insert_on.add(name)
            else:
                self.identity_insert_on.discard(name)
        else:
            self.objects.append(sql)

    def execute_many(self, sql: str, rows: list[tuple]) -> None:
        self.statements.append(sql)
        self._check_failures(sql)

        name = _table_name(sql)
        if name not in self.tables:
            raise _db_error(sql, f"Invalid object name '{name}'.")
        columns = [c.strip().strip("[]") for c in _INSERT_COLUMNS_RE.search(sql).group(1).split(",")]

        identity = self.identity_columns.get(name, set())
        if identity & set(columns) and name not in self.identity_insert_on:
            raise _db_error(
                sql,
                f"Cannot insert explicit value for identity column in table '{name}' "
                f"when IDENTITY_INSERT is set to OFF.",
            )

        self.batches.append((name, len(rows)))
        for row in rows:
            self.tables[name].append(dict(zip(columns, row)))

    def scalar(self, sql: str) -> Any:
        self.statements.append(sql)
        self._check_failures(sql)
        return self.existing_tables

    @contextmanager
    def transaction(self) -> Iterator[None]:
        saved = self._snapshot()
        try:
            yield
        except BaseException:
            self._restore(saved)
            self.rolled_back = True
            raise
        self.committed = True

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        saved = self._snapshot()
        try:
            yield
        except BaseException:
            self._restore(saved)
            raise

    # -- helpers ---------------------------------------------------------

    def _snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(
            {
                "schemas": self.schemas,
                "tables": self.tables,
                "identity_columns": self.identity_columns,
                "identity_insert_on": self.identity_insert_on,
                "objects": self.objects,
            }
        )

    def _restore(self, saved: dict[str, Any]) -> None:
        for key, value in saved.items():
            setattr(self, key, value)

    def row_count(self, name: str) -> int:
        return len(self.tables.get(name, []))

    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.tables.values())

    def statement_index(self, fragment: str) -> int:
        """Index of the first logged statement containing ``fragment``."""
        for i, sql in enumerate(self.statements):
            if fragment in sql:
                return i
        raise AssertionError(f"no statement contains {fragment!r}")


# ------------------------------------------------------------------
# Catalog reader
# ------------------------------------------------------------------


class FakeCatalogReader:
    """In-memory ``CatalogReader``.

    Args:
        tables: ``{"schema.table": {"columns": [...], "primary_key": [...],
            "foreign_keys": [...], "rows": [...]}}`` in catalog order.
        procedural: Objects per kind as ``(name, definition)`` pairs.
    """

    def __init__(
        self,
        tables: dict[str, dict[str, Any]],
        schemas: list[tuple[str, str]] | None = None,
        procedural: dict[ProceduralKind, list[tuple[str, str]]] | None = None,
        database: tuple[str, str] = ("shop", "SQL_Latin1_General_CP1_CI_AS"),
        server_version: str = "Microsoft SQL Server 2019 (RTM) - 15.0.2000.5 (X64)\n\tCopyright (C) 2019",
    ):
        self._tables = tables
        self._schemas = schemas if schemas is not None else [("dbo", "dbo")]
        self._procedural = procedural or {}
        self._database = database
        self._server_version = server_version
        self.streams_opened = 0
        self.streams_closed = 0
        self.failing_tables: set[str] = set()

    def get_server_version(self) -> str:
        return self._server_version

    def get_database_identity(self) -> tuple[str, str]:
        return self._database

    def list_user_schemas(self) -> list[tuple[str, str]]:
        return list(self._schemas)

    def list_user_tables(self) -> list[str]:
        return list(self._tables)

    def list_foreign_key_edges(self, tables: list[str]) -> list[tuple[str, str]]:
        edges = []
        for name, definition in self._tables.items():
            for fk in definition.get("foreign_keys", []):
                referenced = fk.referenced_qualified_name
                if referenced != name and name in tables and referenced in tables:
                    edges.append((name, referenced))
        return edges

    def _table_definition(self, schema: str, table: str) -> dict[str, Any]:
        return self._tables[f"{schema}.{table}"]

    def get_columns(self, schema: str, table: str) -> list[ColumnInfo]:
        return list(self._table_definition(schema, table).get("columns", []))

    def get_primary_key(self, schema: str, table: str) -> list[str]:
        return list(self._table_definition(schema, table).get("primary_key", []))

    def get_foreign_keys(self, schema: str, table: str) -> list[ForeignKeyInfo]:
        return list(self._table_definition(schema, table).get("foreign_keys", []))

    def get_row_count(self, qualified_table: str) -> int:
        return len(self._tables[qualified_table].get("rows", []))

    def stream_rows(self, qualified_table: str) -> Iterator[dict[str, Any]]:
        self.streams_opened += 1
        try:
            for i, row in enumerate(self._tables[qualified_table].get("rows", [])):
                if qualified_table in self.failing_tables and i == 1:
                    raise CatalogReadError(f"Could not read rows of {qualified_table}: connection reset")
                yield dict(row)
        finally:
            self.streams_closed += 1

    def list_procedural_objects(self, kind: ProceduralKind) -> list[tuple[str, str]]:
        return list(self._procedural.get(kind, []))


# ------------------------------------------------------------------
# Sample catalog
# ------------------------------------------------------------------


def _shop_tables() -> dict[str, dict[str, Any]]:
    """Three tables across two schemas; listed children first on purpose."""
    return {
        "sales.order_items": {
            "columns": [
                ColumnInfo(column_name="id", data_type="int", is_nullable=False,
                           is_identity=True, identity_seed=1, identity_increment=1),
                ColumnInfo(column_name="order_id", data_type="int", is_nullable=False),
                ColumnInfo(column_name="sku", data_type="varchar", max_length=20, is_nullable=False),
                ColumnInfo(column_name="price", data_type="decimal", precision=10, scale=2),
            ],
            "primary_key": ["id"],
            "foreign_keys": [
                ForeignKeyInfo(constraint_name="FK_items_orders", column_name="order_id",
                               referenced_schema="sales", referenced_table="orders",
                               referenced_column="id", delete_rule="CASCADE"),
            ],
            "rows": [
                {"id": 1, "order_id": 5, "sku": "A-1", "price": Decimal("9.99")},
                {"id": 2, "order_id": 5, "sku": "B-2", "price": Decimal("19.50")},
                {"id": 3, "order_id": 7, "sku": "A-1", "price": Decimal("9.99")},
            ],
        },
        "sales.orders": {
            "columns": [
                ColumnInfo(column_name="id", data_type="int", is_nullable=False,
                           is_identity=True, identity_seed=1, identity_increment=1),
                ColumnInfo(column_name="customer_id", data_type="int", is_nullable=False),
                ColumnInfo(column_name="placed_at", data_type="datetime2"),
                ColumnInfo(column_name="ship_date", data_type="date"),
                ColumnInfo(column_name="notes", data_type="nvarchar", max_length=-1),
            ],
            "primary_key": ["id"],
            "foreign_keys": [
                ForeignKeyInfo(constraint_name="FK_orders_customers", column_name="customer_id",
                               referenced_schema="dbo", referenced_table="customers",
                               referenced_column="id"),
            ],
            "rows": [
                {"id": 5, "customer_id": 1, "placed_at": datetime(2024, 3, 1, 14, 5, 9),
                 "ship_date": date(2024, 3, 4), "notes": "leave at door"},
                {"id": 6, "customer_id": 2, "placed_at": datetime(2024, 3, 2, 9, 0, 0),
                 "ship_date": None, "notes": None},
                {"id": 7, "customer_id": 1, "placed_at": datetime(2024, 3, 3, 18, 30, 0),
                 "ship_date": date(2024, 3, 6), "notes": ""},
            ],
        },
        "dbo.customers": {
            "columns": [
                ColumnInfo(column_name="id", data_type="int", is_nullable=False),
                ColumnInfo(column_name="name", data_type="nvarchar", max_length=100, is_nullable=False),
                ColumnInfo(column_name="avatar", data_type="varbinary", max_length=-1),
            ],
            "primary_key": ["id"],
            "foreign_keys": [],
            "rows": [
                {"id": 1, "name": "Ada", "avatar": b"\x89PNG\x00\x01"},
                {"id": 2, "name": "Grace", "avatar": None},
            ],
        },
    }


def _shop_procedural() -> dict[ProceduralKind, list[tuple[str, str]]]:
    return {
        ProceduralKind.PROCEDURE: [
            ("sales.usp_order_total",
             "CREATE PROCEDURE sales.usp_order_total @id INT AS SELECT SUM(price) "
             "FROM sales.order_items WHERE order_id = @id"),
        ],
        ProceduralKind.FUNCTION: [
            ("dbo.fn_initial", "CREATE FUNCTION dbo.fn_initial(@s NVARCHAR(100)) RETURNS NCHAR(1) "
                               "AS BEGIN RETURN LEFT(@s, 1) END"),
        ],
        ProceduralKind.VIEW: [
            ("sales.v_open_orders", "CREATE VIEW sales.v_open_orders AS SELECT id FROM sales.orders "
                                    "WHERE ship_date IS NULL"),
        ],
        ProceduralKind.TRIGGER: [
            ("sales.orders.trg_orders_audit", "CREATE TRIGGER sales.trg_orders_audit ON sales.orders "
                                              "AFTER INSERT AS SET NOCOUNT ON"),
        ],
        ProceduralKind.INDEX: [
            ("sales.order_items.IX_items_sku",
             "CREATE INDEX [IX_items_sku] ON [sales].[order_items] ([sku] ASC)"),
        ],
        ProceduralKind.CHECK_CONSTRAINT: [
            ("sales.order_items.CK_items_price",
             "ALTER TABLE [sales].[order_items] ADD CONSTRAINT [CK_items_price] CHECK ([price]>=(0))"),
        ],
    }


@pytest.fixture
def shop_reader() -> FakeCatalogReader:
    """Catalog of a small shop database (customers, orders, order items)."""
    return FakeCatalogReader(
        tables=_shop_tables(),
        schemas=[("dbo", "dbo"), ("sales", "dbo")],
        procedural=_shop_procedural(),
    )


@pytest.fixture
def make_reader() -> Callable[..., FakeCatalogReader]:
    """Factory for custom catalogs."""
    return FakeCatalogReader


@pytest.fixture
def fake_target() -> FakeTarget:
    """Empty destination database."""
    return FakeTarget()


@pytest.fixture
def make_target() -> Callable[..., FakeTarget]:
    """Factory for destinations with custom state."""
    return FakeTarget


@pytest.fixture
def sqlite_engine(tmp_path) -> Iterator[Engine]:
    """File-backed SQLite destination with a ``dbo`` schema.

    pysqlite's own transaction handling is switched off so SQLAlchemy emits
    BEGIN itself, which makes DDL and SAVEPOINT transactional.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'destination.db'}")
    dbo_path = tmp_path / "dbo.db"

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute(f"ATTACH DATABASE '{dbo_path}' AS dbo")

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    yield engine
    engine.dispose()
