"""T-SQL statement generation for export and replay.

CREATE TABLE statements are generated once at export time and stored in the
snapshot.  Foreign keys, schemas, identity-insert toggles, and INSERT
statements are generated at import time from the captured structure.

Usage:
    from sqlserver_migrator.schema.ddl import build_create_table, build_foreign_keys

    table.create_statement = build_create_table(table)
    for name, sql in build_foreign_keys(table):
        target.execute(sql)
"""

from sqlserver_migrator.snapshot.models import LENGTH_TYPES, ColumnInfo, ForeignKeyInfo, TableInfo


def quote_name(name: str) -> str:
    """Bracket-quote an identifier, escaping closing brackets."""
    return "[" + name.replace("]", "]]") + "]"


def quote_table(qualified_name: str) -> str:
    """Quote a ``schema.table`` name as ``[schema].[table]``.

    Names without a schema part are quoted as a single identifier.

    Example:
        >>> quote_table("sales.orders")
        '[sales].[orders]'
    """
    schema, sep, table = qualified_name.partition(".")
    if not sep:
        return quote_name(qualified_name)
    return f"{quote_name(schema)}.{quote_name(table)}"


def column_definition(column: ColumnInfo) -> str:
    """Build one column line of a CREATE TABLE statement.

    Example:
        >>> column_definition(ColumnInfo(column_name="id", data_type="int",
        ...     is_nullable=False, is_identity=True, identity_seed=1, identity_increment=1))
        '[id] INT IDENTITY(1,1) NOT NULL'
    """
    parts = [f"{quote_name(column.column_name)} {column.data_type.upper()}"]

    type_name = column.type_name
    if type_name in LENGTH_TYPES:
        if column.max_length is not None and column.max_length > 0:
            parts.append(f"({column.max_length})")
        else:
            parts.append("(MAX)")
    elif type_name in ("decimal", "numeric"):
        parts.append(f"({column.precision or 18},{column.scale or 0})")

    if column.is_identity:
        seed = column.identity_seed if column.identity_seed is not None else 1
        increment = column.identity_increment if column.identity_increment is not None else 1
        parts.append(f" IDENTITY({seed},{increment})")

    if not column.is_nullable:
        parts.append(" NOT NULL")

    if column.default_value:
        parts.append(f" DEFAULT {column.default_value}")

    return "".join(parts)


def build_create_table(table: TableInfo) -> str:
    """Generate the CREATE TABLE statement for a captured table."""
    lines = [f"    {column_definition(c)}" for c in table.columns]
    sql = f"CREATE TABLE {quote_name(table.schema_name)}.{quote_name(table.table_name)} (\n"
    sql += ",\n".join(lines)

    if table.primary_key:
        pk_columns = ", ".join(quote_name(c) for c in table.primary_key)
        sql += (
            f",\n    CONSTRAINT {quote_name('PK_' + table.table_name)} "
            f"PRIMARY KEY ({pk_columns})"
        )

    sql += "\n)"
    return sql


def _referential_action(rule: str | None) -> str | None:
    if not rule or rule.upper() == "NO_ACTION":
        return None
    return rule.upper().replace("_", " ")


def build_foreign_keys(table: TableInfo) -> list[tuple[str, str]]:
    """Generate ALTER TABLE ... ADD CONSTRAINT statements for a table's FKs.

    Entries sharing a constraint name are merged into one multi-column
    constraint, keeping their captured column order.

    Returns:
        List of ``(constraint_name, sql)`` tuples.
    """
    grouped: dict[str, list[ForeignKeyInfo]] = {}
    for fk in table.foreign_keys:
        grouped.setdefault(fk.constraint_name, []).append(fk)

    statements: list[tuple[str, str]] = []
    for name, fks in grouped.items():
        first = fks[0]
        local_cols = ", ".join(quote_name(fk.column_name) for fk in fks)
        ref_cols = ", ".join(quote_name(fk.referenced_column) for fk in fks)

        sql = (
            f"ALTER TABLE {quote_name(table.schema_name)}.{quote_name(table.table_name)}"
            f" ADD CONSTRAINT {quote_name(name)}"
            f" FOREIGN KEY ({local_cols})"
            f" REFERENCES {quote_name(first.referenced_schema)}.{quote_name(first.referenced_table)}"
            f" ({ref_cols})"
        )
        on_delete = _referential_action(first.delete_rule)
        if on_delete:
            sql += f" ON DELETE {on_delete}"
        on_update = _referential_action(first.update_rule)
        if on_update:
            sql += f" ON UPDATE {on_update}"

        statements.append((name, sql))

    return statements


def build_create_schema(schema_name: str) -> str:
    return f"CREATE SCHEMA {quote_name(schema_name)}"


def build_identity_insert(qualified_name: str, enabled: bool) -> str:
    """``SET IDENTITY_INSERT`` toggle for a table."""
    state = "ON" if enabled else "OFF"
    return f"SET IDENTITY_INSERT {quote_table(qualified_name)} {state}"


def build_insert(qualified_name: str, columns: list[str]) -> str:
    """Parameterized INSERT using qmark placeholders."""
    column_list = ", ".join(quote_name(c) for c in columns)
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {quote_table(qualified_name)} ({column_list}) VALUES ({placeholders})"
