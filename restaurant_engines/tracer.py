"""
restaurant_engines.tracer -- Engine invocation tracer emitting RESTAURANT_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging.  The trace carries
    engine_name, engine_version, an input_fingerprint (SHA-256 over the
    canonical form of selected keyword arguments) and duration_ms.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; never mutates inputs.

Failure modes:
    - Fingerprint fields that are not passed as keyword arguments are
      recorded as null.
    - Values that cannot be reduced to primitives fall back to ``repr``.

Usage:
    from restaurant_engines.tracer import traced_engine

    @traced_engine("costing.recipe", "1.0", fingerprint_fields=("recipe",))
    def recipe_cost(recipe, ingredients_by_id, prep_items_by_id):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable
from typing import Any

from restaurant_kernel.logging_config import get_logger
from restaurant_kernel.utils.hashing import canonicalize_json
from restaurant_kernel.utils.serialization import to_primitive

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of ``value`` for fingerprinting."""
    try:
        return canonicalize_json(to_primitive(value))
    except TypeError:
        return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """
    Deterministic 16-hex-char fingerprint of the selected keyword arguments.

    Missing fields are recorded as ``null``.
    """
    parts: list[str] = []
    for field in fingerprint_fields:
        parts.append(f"{field}={_canonicalize(kwargs.get(field))}")
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Decorator that emits RESTAURANT_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "deductions").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Keyword argument names included in the input
            fingerprint hash.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                fp = compute_input_fingerprint(fingerprint_fields, kwargs)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "RESTAURANT_ENGINE_TRACE",
                extra={
                    "trace_type": "RESTAURANT_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
