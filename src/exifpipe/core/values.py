# values.py
# SPDX-License-Identifier: MIT
"""Typed tag values.

Every tag in a normalized record holds a :class:`TagValue`, a small tagged
variant over string, integer (narrowed to uint16/int32/int64), float,
boolean, and timestamp payloads. Construction goes through explicit
constructors so callers never need to type-switch on raw extractor output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

__all__ = [
    "ValueKind",
    "TagValue",
    "ZERO_TIMESTAMP",
    "UINT16_LIMIT",
    "INT32_MIN",
    "INT32_MAX",
    "INT64_MIN",
    "INT64_MAX",
    "narrow_integer_kind",
    "format_native",
]

# 65535 itself is kept as int32, matching exiftool's "unknown" sentinel range
UINT16_LIMIT = 65535
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

ZERO_TIMESTAMP = datetime(1, 1, 1, tzinfo=timezone.utc)


class ValueKind(str, Enum):
    STRING = "string"
    UINT16 = "uint16"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT64 = "float64"
    BOOL = "bool"
    TIMESTAMP = "timestamp"

    @property
    def is_integer(self) -> bool:
        return self in (ValueKind.UINT16, ValueKind.INT32, ValueKind.INT64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integer or self is ValueKind.FLOAT64


def narrow_integer_kind(value: int) -> ValueKind:
    """Return the smallest integer kind that holds ``value`` without loss.

    Raises:
        OverflowError: If ``value`` does not fit in a signed 64-bit integer.
    """
    if 0 <= value < UINT16_LIMIT:
        return ValueKind.UINT16
    if INT32_MIN <= value <= INT32_MAX:
        return ValueKind.INT32
    if INT64_MIN <= value <= INT64_MAX:
        return ValueKind.INT64
    raise OverflowError(f"integer {value} does not fit in 64 bits")


def format_native(value: Any) -> str:
    """Render a plain Python value the same way TagValue.display does."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return repr(value)
    return str(value)


@dataclass(frozen=True, slots=True)
class TagValue:
    """A single typed tag value.

    Attributes:
        kind (ValueKind): Variant tag.
        value (Any): Payload; ``str``, ``int``, ``float``, ``bool`` or an
            aware ``datetime`` depending on ``kind``.
    """

    kind: ValueKind
    value: Any

    @classmethod
    def string(cls, value: str) -> TagValue:
        return cls(ValueKind.STRING, str(value))

    @classmethod
    def integer(cls, value: int) -> TagValue:
        as_int = int(value)
        return cls(narrow_integer_kind(as_int), as_int)

    @classmethod
    def floating(cls, value: float) -> TagValue:
        return cls(ValueKind.FLOAT64, float(value))

    @classmethod
    def boolean(cls, value: bool) -> TagValue:
        return cls(ValueKind.BOOL, bool(value))

    @classmethod
    def timestamp(cls, value: datetime) -> TagValue:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return cls(ValueKind.TIMESTAMP, value)

    @classmethod
    def from_native(cls, value: Any) -> TagValue:
        """Wrap a plain Python scalar without any normalization rules.

        Raises:
            TypeError: If ``value`` is not a supported scalar.
        """
        if isinstance(value, TagValue):
            return value
        if isinstance(value, bool):
            return cls.boolean(value)
        if isinstance(value, int):
            return cls.integer(value)
        if isinstance(value, float):
            return cls.floating(value)
        if isinstance(value, str):
            return cls.string(value)
        if isinstance(value, datetime):
            return cls.timestamp(value)
        raise TypeError(f"unsupported tag value type {type(value).__name__}")

    @classmethod
    def from_json(cls, kind: str | ValueKind, value: Any) -> TagValue:
        """Rebuild a value serialized with :meth:`to_json`."""
        kind = ValueKind(kind)
        if kind is ValueKind.TIMESTAMP:
            return cls.timestamp(datetime.fromisoformat(value))
        if kind.is_integer:
            return cls(kind, int(value))
        if kind is ValueKind.FLOAT64:
            return cls.floating(value)
        if kind is ValueKind.BOOL:
            return cls.boolean(value)
        return cls.string(value)

    @property
    def native(self) -> Any:
        return self.value

    @property
    def is_zero_timestamp(self) -> bool:
        return self.kind is ValueKind.TIMESTAMP and self.value == ZERO_TIMESTAMP

    def display(self) -> str:
        """String form used by CSV rows and template expansion."""
        if self.kind is ValueKind.FLOAT64 and math.isfinite(self.value) and self.value.is_integer():
            return str(int(self.value))
        return format_native(self.value)

    def to_json(self) -> Any:
        if self.kind is ValueKind.TIMESTAMP:
            return self.value.isoformat()
        if self.kind is ValueKind.FLOAT64 and not math.isfinite(self.value):
            return repr(self.value)
        return self.value
