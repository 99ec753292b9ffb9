"""
restaurant_services.persistence.codec -- RestaurantState <-> JSON document.

Responsibility:
    Encode a ``RestaurantState`` into a JSON-compatible dict with camelCase
    keys, and decode such a dict back, driven by the dataclass type hints.

Invariants enforced:
    - Lossless round trip: ``decode_state(encode_state(s)) == s``.
    - Decimals are written as strings, never floats.  Datetimes are ISO-8601
      with their offset.
    - Audit ``before``/``after`` snapshots are stored verbatim so the hash
      chain still verifies after a reload.

Failure modes:
    - StateLoadError: a required field is missing or a value does not parse.
"""

from __future__ import annotations

import types
from dataclasses import MISSING, fields, is_dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import cache
from typing import Any, Union, get_args, get_origin, get_type_hints

from restaurant_kernel.exceptions import StateLoadError
from restaurant_services.state import RestaurantState

# State keys whose stored name predates the Python field name
_KEY_OVERRIDES = {"prep_items": "prepTasks"}


def json_key(field_name: str) -> str:
    if field_name in _KEY_OVERRIDES:
        return _KEY_OVERRIDES[field_name]
    head, *rest = field_name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def encode_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {json_key(f.name): encode_value(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    raise TypeError(f"Cannot encode {type(value).__name__}")


@cache
def _hints(cls: type) -> dict[str, Any]:
    return get_type_hints(cls)


def decode_value(tp: Any, value: Any) -> Any:
    """Rebuild a value of type ``tp`` from its encoded form."""
    if tp is Any:
        return value
    origin = get_origin(tp)
    if origin in (Union, types.UnionType):
        if value is None:
            return None
        (inner,) = [arg for arg in get_args(tp) if arg is not type(None)]
        return decode_value(inner, value)
    if value is None:
        return None
    if origin is tuple:
        element = get_args(tp)[0]
        return tuple(decode_value(element, v) for v in value)
    if origin is dict:
        key_type, value_type = get_args(tp)
        return {decode_value(key_type, k): decode_value(value_type, v) for k, v in value.items()}
    if tp is Decimal:
        if isinstance(value, bool):
            raise ValueError(f"not a number: {value!r}")
        return Decimal(str(value))
    if tp is datetime:
        return datetime.fromisoformat(value)
    if tp is bool:
        return bool(value)
    if tp is int:
        return int(value)
    if tp is str:
        return str(value)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if is_dataclass(tp):
        return decode_dataclass(tp, value)
    raise TypeError(f"Cannot decode into {tp!r}")


def decode_dataclass(cls: type, data: dict[str, Any]) -> Any:
    """
    Build ``cls`` from a camelCase dict.

    Keys absent from ``data`` fall back to the field default; a missing
    required field raises ``KeyError``.
    """
    if not isinstance(data, dict):
        raise TypeError(f"{cls.__name__} expects an object, got {type(data).__name__}")
    hints = _hints(cls)
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = json_key(f.name)
        if key in data:
            kwargs[f.name] = decode_value(hints[f.name], data[key])
        elif f.default is MISSING and f.default_factory is MISSING:
            raise KeyError(f"{cls.__name__}.{key}")
    return cls(**kwargs)


def encode_state(state: RestaurantState) -> dict[str, Any]:
    return encode_value(state)


def decode_state(payload: dict[str, Any], source: str = "payload") -> RestaurantState:
    """
    Rebuild a ``RestaurantState``.

    Raises:
        StateLoadError: The payload does not describe a valid state.
    """
    try:
        return decode_dataclass(RestaurantState, payload)
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise StateLoadError(source, f"{type(exc).__name__}: {exc}") from exc
