"""Catalog reader and migration target adapters.

Usage:
    from sqlserver_migrator.adapters import SqlServerCatalogReader, SqlServerTarget
"""

from sqlserver_migrator.adapters.base import CatalogReader, MigrationTarget
from sqlserver_migrator.adapters.sqlserver import SYSTEM_SCHEMAS, SqlServerCatalogReader, SqlServerTarget

__all__ = [
    "SYSTEM_SCHEMAS",
    "CatalogReader",
    "MigrationTarget",
    "SqlServerCatalogReader",
    "SqlServerTarget",
]
