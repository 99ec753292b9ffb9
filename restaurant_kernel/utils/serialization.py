"""
Conversion of domain objects to JSON-compatible primitives.

Used for audit before/after snapshots and for the persistence codec.
Decimals become strings (never floats), datetimes become ISO-8601 strings,
enums become their values, tuples become lists and dataclasses become dicts.
"""

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def to_primitive(value: Any) -> Any:
    """Recursively convert ``value`` into JSON-compatible primitives."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_primitive(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_primitive(v) for v in value]
    if isinstance(value, float):
        raise TypeError("float values are not allowed; use Decimal")
    raise TypeError(f"Cannot convert {type(value).__name__} to a primitive")
