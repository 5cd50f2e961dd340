"""Snapshot document model, value codec, and archive I/O.

Usage:
    from sqlserver_migrator.snapshot import SnapshotDocument, read_archive, write_archive
    from sqlserver_migrator.snapshot import decode_value, encode_value
"""

from sqlserver_migrator.snapshot.archive import read_archive, write_archive
from sqlserver_migrator.snapshot.codec import (
    TaggedValue,
    ValueTag,
    decode_value,
    encode_row,
    encode_value,
)
from sqlserver_migrator.snapshot.models import (
    FORMAT_VERSION,
    ColumnInfo,
    ForeignKeyInfo,
    Metadata,
    ProceduralKind,
    SchemaInfo,
    SnapshotDocument,
    TableInfo,
)

__all__ = [
    "FORMAT_VERSION",
    "ColumnInfo",
    "ForeignKeyInfo",
    "Metadata",
    "ProceduralKind",
    "SchemaInfo",
    "SnapshotDocument",
    "TableInfo",
    "TaggedValue",
    "ValueTag",
    "decode_value",
    "encode_row",
    "encode_value",
    "read_archive",
    "write_archive",
]
