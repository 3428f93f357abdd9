"""
Value codec for rows crossing the storage-driver boundary.

Rows are dynamically shaped, so the driver's return types have to be folded
into one canonical Python value per logical type before they reach callers:

- integers -> int, floating point -> float, integral NUMERIC -> int
- text and raw bytes -> str, with "true"/"false" bytes -> bool
- timestamps -> timezone-aware datetime in UTC
- UUID -> str
- NULL -> None

Outbound parameters pass through unchanged when they are native scalars;
containers and arbitrary objects are refused so they never reach SQL.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping

from tablerest.errors import DecodeError, EncodeError

_ENCODABLE = (str, int, float, Decimal, datetime, date, time, uuid.UUID, bytes)


def utcnow() -> datetime:
    """Clock used for managed timestamps and soft deletes."""
    return datetime.now(timezone.utc)


def _decode_decimal(value: Decimal) -> Any:
    if value.is_finite() and value == value.to_integral_value() and value.as_tuple().exponent >= 0:
        return int(value)
    return float(value)


def _decode_bytes(value: bytes) -> Any:
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(type(value).__name__) from exc
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return text


def decode(value: Any) -> Any:
    """
    Normalize a raw driver value.

    Raises DecodeError naming the source type for values with no scalar
    representation (JSON documents, arrays, intervals, ...).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return value
    if isinstance(value, Decimal):
        return _decode_decimal(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _decode_bytes(bytes(value))
    # datetime is a date subclass, check it first
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (date, time)):
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    raise DecodeError(type(value).__name__)


def is_scalar(value: Any) -> bool:
    """True for values a single column can hold; mappings and sequences are not."""
    return value is None or isinstance(value, (bool,) + _ENCODABLE)


def encode(value: Any) -> Any:
    """Validate an outbound statement parameter; native scalars pass through."""
    if is_scalar(value):
        return value
    raise EncodeError(type(value).__name__)


def decode_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Decode every column of a driver row into a fresh dict."""
    decoded: Dict[str, Any] = {}
    for name, value in row.items():
        try:
            decoded[name] = decode(value)
        except DecodeError as exc:
            raise DecodeError(exc.source_type, field=name) from exc
    return decoded


def to_text(value: Any) -> str:
    """
    Canonical text form of a scalar.

    Used to compare stored values with string query parameters and to key the
    in-memory store, so that 7, "7" and Decimal("7") address the same row.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return decode(value).isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value.is_finite():
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return str(value)


__all__ = ["decode", "decode_row", "encode", "is_scalar", "to_text", "utcnow"]
