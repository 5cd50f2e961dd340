"""Snapshot document models.

The snapshot document is the unit written to and read from an archive:
server metadata, schemas, table structures, row data, procedural object
definitions, and the table load order.  Field names are the JSON keys of the
archive format and must stay stable.

Usage:
    from sqlserver_migrator.snapshot.models import SnapshotDocument, TableInfo

    doc = SnapshotDocument()
    doc.tables["dbo.orders"] = TableInfo(schema_name="dbo", table_name="orders")
    doc.table_order.append("dbo.orders")
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

FORMAT_VERSION = "1.0-SQLSERVER"

# Character/binary types whose declared length is part of the type.
LENGTH_TYPES = frozenset({"char", "varchar", "nchar", "nvarchar", "binary", "varbinary"})

# Declared types stored as TEXT cells on export.
LONG_TEXT_TYPES = frozenset({"text", "ntext"})


class ProceduralKind(str, Enum):
    """Kinds of objects captured as verbatim definition text."""

    PROCEDURE = "procedure"
    FUNCTION = "function"
    VIEW = "view"
    TRIGGER = "trigger"
    INDEX = "index"
    CHECK_CONSTRAINT = "check_constraint"

    @property
    def document_field(self) -> str:
        """Name of the ``SnapshotDocument`` field holding this kind."""
        return _KIND_FIELDS[self]


_KIND_FIELDS = {
    ProceduralKind.PROCEDURE: "stored_procedures",
    ProceduralKind.FUNCTION: "functions",
    ProceduralKind.VIEW: "views",
    ProceduralKind.TRIGGER: "triggers",
    ProceduralKind.INDEX: "indexes",
    ProceduralKind.CHECK_CONSTRAINT: "constraints",
}


class Metadata(BaseModel):
    """Provenance of a snapshot.

    ``total_tables`` and ``total_records`` are finalized at the end of the
    export.
    """

    export_date: datetime = Field(default_factory=datetime.now)
    sql_server_version: str | None = None
    database_name: str | None = None
    collation: str | None = None
    version: str = FORMAT_VERSION
    total_tables: int = 0
    total_records: int = 0

    @property
    def server_version_line(self) -> str:
        """First line of the ``@@VERSION`` string."""
        if not self.sql_server_version:
            return ""
        return self.sql_server_version.splitlines()[0]


class SchemaInfo(BaseModel):
    """A user namespace."""

    schema_name: str
    owner: str | None = None


class ColumnInfo(BaseModel):
    """One column of a table.

    Example:
        >>> col = ColumnInfo(column_name="notes", data_type="nvarchar", max_length=-1)
        >>> col.is_long_text
        True
    """

    column_name: str
    data_type: str
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_nullable: bool = True
    default_value: str | None = None
    is_identity: bool = False
    identity_seed: int | None = None
    identity_increment: int | None = None

    @property
    def type_name(self) -> str:
        """Lower-cased declared type name."""
        return self.data_type.lower()

    @property
    def is_long_text(self) -> bool:
        """True for unbounded character columns (``text``, ``ntext``, ``(MAX)``)."""
        if self.type_name in LONG_TEXT_TYPES:
            return True
        return self.type_name.endswith("char") and self.max_length == -1


class ForeignKeyInfo(BaseModel):
    """One column of a foreign-key constraint."""

    constraint_name: str
    column_name: str
    referenced_schema: str
    referenced_table: str
    referenced_column: str
    delete_rule: str = "NO_ACTION"
    update_rule: str = "NO_ACTION"

    @property
    def referenced_qualified_name(self) -> str:
        return f"{self.referenced_schema}.{self.referenced_table}"


class TableInfo(BaseModel):
    """Structure of one table, captured on export and replayed on import."""

    schema_name: str
    table_name: str
    create_statement: str = ""
    columns: list[ColumnInfo] = Field(default_factory=list)
    primary_key: list[str] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = Field(default_factory=list)
    row_count: int = 0

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def has_identity(self) -> bool:
        """True if any column is an identity column."""
        return any(c.is_identity for c in self.columns)

    def column_types(self) -> dict[str, str]:
        """Map column name to lower-cased declared type."""
        return {c.column_name: c.type_name for c in self.columns}


class SnapshotDocument(BaseModel):
    """Complete exported representation of one database.

    Every collection defaults to empty so documents from partial producers
    still validate.
    """

    metadata: Metadata = Field(default_factory=Metadata)
    schemas: dict[str, SchemaInfo] = Field(default_factory=dict)
    tables: dict[str, TableInfo] = Field(default_factory=dict)
    data: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    stored_procedures: dict[str, str] = Field(default_factory=dict)
    functions: dict[str, str] = Field(default_factory=dict)
    views: dict[str, str] = Field(default_factory=dict)
    triggers: dict[str, str] = Field(default_factory=dict)
    indexes: dict[str, str] = Field(default_factory=dict)
    constraints: dict[str, str] = Field(default_factory=dict)
    table_order: list[str] = Field(default_factory=list)

    def procedural_objects(self, kind: ProceduralKind) -> dict[str, str]:
        """Return the name -> definition map for a procedural object kind."""
        return getattr(self, kind.document_field)

    def load_order(self) -> list[str]:
        """Tables in replay order.

        ``table_order`` first, then any table missing from it in document
        order.  Entries without a ``TableInfo`` are dropped.
        """
        order: list[str] = []
        seen: set[str] = set()
        for name in list(self.table_order) + list(self.tables):
            if name in self.tables and name not in seen:
                order.append(name)
                seen.add(name)
        return order
