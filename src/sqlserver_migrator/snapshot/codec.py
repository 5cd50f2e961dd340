"""Type-preserving cell codec.

Converts native column values to a JSON-safe form and back.  Values whose
type would be lost in JSON (bytes, temporal values, large objects) are
wrapped in a tagged object::

    {"_type": "VARBINARY", "_value": "AAEC"}

Everything else is stored as its natural scalar.  Decoding dispatches on
the tag when one is present, and otherwise falls back to a best-effort
conversion driven by the destination column's declared type.  Decoding
never fails: a value that cannot be converted is passed through unchanged.

Usage:
    from sqlserver_migrator.snapshot.codec import decode_value, encode_value

    cell = encode_value(b"\\x00\\x01")
    # {'_type': 'VARBINARY', '_value': 'AAE='}
    decode_value(cell, "varbinary")
    # b'\\x00\\x01'
"""

import base64
import binascii
import logging
import re
from collections.abc import Callable
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sqlserver_migrator.errors import CodecError

logger = logging.getLogger(__name__)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


class ValueTag(str, Enum):
    """Type tags for values that need more than a JSON scalar."""

    VARBINARY = "VARBINARY"
    TIMESTAMP = "TIMESTAMP"
    TIME = "TIME"
    DATE = "DATE"
    TEXT = "TEXT"
    CLOB = "CLOB"
    BLOB = "BLOB"


class TaggedValue(BaseModel):
    """A tagged cell: type tag plus string payload."""

    model_config = ConfigDict(populate_by_name=True)

    type: ValueTag = Field(alias="_type")
    value: str | None = Field(default=None, alias="_value")

    def to_cell(self) -> dict[str, Any]:
        """Wire form stored in the snapshot."""
        return self.model_dump(mode="json", by_alias=True)


# ------------------------------------------------------------------
# Encoding
# ------------------------------------------------------------------


def encode_value(value: Any, long_text: bool = False) -> Any:
    """Encode a native column value for the snapshot.

    Args:
        value: Value as returned by the database driver.
        long_text: True when the column's declared type is an unbounded
            character type (``text``, ``ntext``, ``varchar(max)``...).

    Returns:
        ``None``, a JSON scalar, or a tagged dict.

    Example:
        >>> encode_value(date(2024, 1, 31))
        {'_type': 'DATE', '_value': '2024-01-31'}
        >>> encode_value(42)
        42
    """
    if value is None:
        return None

    # Streamed large objects expose read(); materialize them fully
    if hasattr(value, "read"):
        content = value.read()
        if isinstance(content, (bytes, bytearray, memoryview)):
            return _tag(ValueTag.BLOB, _b64(content))
        return _tag(ValueTag.CLOB, str(content))

    if isinstance(value, (bytes, bytearray, memoryview)):
        return _tag(ValueTag.VARBINARY, _b64(value))
    # datetime is a subclass of date, so it must be checked first
    if isinstance(value, datetime):
        return _tag(ValueTag.TIMESTAMP, value.isoformat(sep=" "))
    if isinstance(value, time):
        return _tag(ValueTag.TIME, value.isoformat())
    if isinstance(value, date):
        return _tag(ValueTag.DATE, value.isoformat())
    if long_text and isinstance(value, str):
        return _tag(ValueTag.TEXT, value)

    return value


def encode_row(row: dict[str, Any], long_text_columns: set[str] | frozenset[str] = frozenset()) -> dict[str, Any]:
    """Encode every cell of a row."""
    return {
        name: encode_value(value, long_text=name in long_text_columns)
        for name, value in row.items()
    }


def _tag(tag: ValueTag, payload: str) -> dict[str, Any]:
    return TaggedValue(type=tag, value=payload).to_cell()


def _b64(data: bytes | bytearray | memoryview) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------


def _decode_binary(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"invalid base64 payload: {e}") from e


def _decode_timestamp(payload: str) -> datetime:
    try:
        return datetime.fromisoformat(payload)
    except ValueError as e:
        raise CodecError(f"invalid timestamp: {payload!r}") from e


def _decode_time(payload: str) -> time:
    try:
        return time.fromisoformat(payload)
    except ValueError as e:
        raise CodecError(f"invalid time: {payload!r}") from e


def _decode_date(payload: str) -> date:
    try:
        return date.fromisoformat(payload)
    except ValueError as e:
        raise CodecError(f"invalid date: {payload!r}") from e


def _decode_text(payload: str) -> str:
    return payload


_TAG_DECODERS: dict[ValueTag, Callable[[str], Any]] = {
    ValueTag.VARBINARY: _decode_binary,
    ValueTag.BLOB: _decode_binary,
    ValueTag.TIMESTAMP: _decode_timestamp,
    ValueTag.TIME: _decode_time,
    ValueTag.DATE: _decode_date,
    ValueTag.TEXT: _decode_text,
    ValueTag.CLOB: _decode_text,
}


def parse_tagged(cell: Any) -> TaggedValue | None:
    """Return the ``TaggedValue`` for a tagged cell, or None if untagged."""
    if not isinstance(cell, dict):
        return None
    if "_type" not in cell and "type" not in cell:
        return None
    try:
        return TaggedValue.model_validate(cell)
    except ValidationError:
        return None


def is_base64(value: str) -> bool:
    """True if ``value`` looks like padded base64 text."""
    return len(value) % 4 == 0 and bool(_BASE64_RE.match(value))


def decode_value(cell: Any, column_type: str | None = None) -> Any:
    """Decode a snapshot cell for binding to an INSERT.

    Tagged cells are decoded strictly by their tag.  Untagged strings are
    reinterpreted according to ``column_type`` (binary, datetime, time,
    date).  Any conversion failure returns the original payload.

    Args:
        cell: Encoded cell from the snapshot.
        column_type: Declared type of the destination column (any case).

    Returns:
        Value ready to bind as a statement parameter.

    Example:
        >>> decode_value({"_type": "VARBINARY", "_value": "not base64!"})
        'not base64!'
        >>> decode_value("2024-01-31", "date")
        datetime.date(2024, 1, 31)
    """
    if cell is None:
        return None

    tagged = parse_tagged(cell)
    if tagged is not None:
        if tagged.value is None:
            return None
        try:
            return _TAG_DECODERS[tagged.type](tagged.value)
        except CodecError as e:
            logger.warning(f"Could not decode {tagged.type.value} value, using raw payload: {e}")
            return tagged.value

    if column_type and isinstance(cell, str):
        try:
            return _decode_by_column_type(cell, column_type.lower())
        except CodecError as e:
            logger.debug(f"Untagged value kept as-is for {column_type} column: {e}")
            return cell

    return cell


def _decode_by_column_type(value: str, column_type: str) -> Any:
    if "binary" in column_type or "image" in column_type:
        if is_base64(value):
            return _decode_binary(value)
        return value
    if "datetime" in column_type or "timestamp" in column_type:
        return _decode_timestamp(value)
    if "time" in column_type:
        return _decode_time(value)
    if "date" in column_type:
        return _decode_date(value)
    return value
