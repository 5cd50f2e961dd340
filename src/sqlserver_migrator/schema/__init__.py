"""Table ordering and T-SQL generation.

Usage:
    from sqlserver_migrator.schema import build_dependency_map, resolve_table_order
    from sqlserver_migrator.schema import build_create_table, build_foreign_keys
"""

from sqlserver_migrator.schema.ddl import (
    build_create_schema,
    build_create_table,
    build_foreign_keys,
    build_identity_insert,
    build_insert,
    quote_name,
    quote_table,
)
from sqlserver_migrator.schema.ordering import build_dependency_map, resolve_table_order

__all__ = [
    "build_create_schema",
    "build_create_table",
    "build_dependency_map",
    "build_foreign_keys",
    "build_identity_insert",
    "build_insert",
    "quote_name",
    "quote_table",
    "resolve_table_order",
]
