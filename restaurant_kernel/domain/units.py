"""
Units -- unit normalization and conversion factors.

Responsibility:
    Maps free-form unit spellings (English and Persian) onto canonical unit
    codes and computes the multiplicative factor that converts an amount in
    one unit into another.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Used by costing, deductions, prep
    production, invoice confirmation and data health checks.

Invariants enforced:
    - ``conversion_factor(u, u) == 1`` for every unit ``u``.
    - Standard mass (kg/gram/mg) and volume (liter/ml/cc) families convert
      within themselves only; there is no mass <-> volume path.
    - A custom conversion ``carton -> kg (x12)`` is usable directly,
      inversely, and chained through the standard table (carton -> gram).

Failure modes:
    - ``conversion_factor`` returns None when no path exists; callers decide
      whether that is a warning or an error.
"""

import re
from collections.abc import Iterable
from decimal import Decimal

from restaurant_kernel.domain.models import CustomUnitConversion

ALL_UNITS: tuple[str, ...] = (
    "kg", "gram", "mg", "liter", "ml", "cc", "number", "pack", "can",
    "portion", "slice", "carton", "bucket", "tin", "bag", "box",
)

_UNIT_ALIASES: dict[str, str] = {
    # Mass
    "kg": "kg", "کیلوگرم": "kg", "کیلو": "kg",
    "gram": "gram", "g": "gram", "gr": "gram", "گرم": "gram",
    "mg": "mg", "میلی گرم": "mg",
    # Volume
    "liter": "liter", "l": "liter", "لیتر": "liter",
    "ml": "ml", "میلی لیتر": "ml",
    "cc": "cc", "سی سی": "cc",
    # Pieces
    "number": "number", "pcs": "number", "piece": "number", "عدد": "number",
    "pack": "pack", "بسته": "pack", "پک": "pack",
    "can": "can", "قوطی": "can", "کنسرو": "can",
    "portion": "portion", "پرس": "portion",
    "slice": "slice", "ورقه": "slice", "اسلایس": "slice",
    # Local bulk units
    "carton": "carton", "کارتن": "carton",
    "bucket": "bucket", "سطل": "bucket",
    "tin": "tin", "حلب": "tin",
    "bag": "bag", "کیسه": "bag",
    "box": "box", "جعبه": "box",
}

_STANDARD_FACTORS: dict[str, dict[str, Decimal]] = {
    "kg": {"gram": Decimal("1000"), "mg": Decimal("1000000")},
    "gram": {"kg": Decimal("0.001"), "mg": Decimal("1000")},
    "mg": {"gram": Decimal("0.001"), "kg": Decimal("0.000001")},
    "liter": {"ml": Decimal("1000"), "cc": Decimal("1000")},
    "ml": {"liter": Decimal("0.001"), "cc": Decimal("1")},
    "cc": {"liter": Decimal("0.001"), "ml": Decimal("1")},
}

_WHITESPACE = re.compile(r"\s+")


def normalize_unit(raw_unit: str | None) -> str:
    """
    Canonical code for ``raw_unit``.

    Lower-cases, trims and collapses whitespace, then resolves known aliases.
    Unknown units come back cleaned but otherwise unchanged; empty input
    yields ``""``.
    """
    if not raw_unit:
        return ""
    cleaned = _WHITESPACE.sub(" ", raw_unit.strip().lower())
    return _UNIT_ALIASES.get(cleaned, cleaned)


def _standard_factor(from_unit: str, to_unit: str) -> Decimal | None:
    if from_unit == to_unit:
        return Decimal("1")
    direct = _STANDARD_FACTORS.get(from_unit, {}).get(to_unit)
    if direct is not None:
        return direct
    reverse = _STANDARD_FACTORS.get(to_unit, {}).get(from_unit)
    if reverse is not None:
        return Decimal("1") / reverse
    return None


def conversion_factor(
    from_unit: str,
    to_unit: str,
    custom_conversions: Iterable[CustomUnitConversion] = (),
) -> Decimal | None:
    """
    Factor ``f`` such that ``amount_in_from * f == amount_in_to``.

    Args:
        from_unit: Unit the amount is expressed in.
        to_unit: Unit to convert into.
        custom_conversions: Item-specific conversions (e.g. one carton is
            12 kg of this ingredient).

    Returns:
        The factor, or None when the units are not convertible.
    """
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)

    factor = _standard_factor(src, dst)
    if factor is not None:
        return factor

    by_unit = {normalize_unit(c.from_unit): c for c in custom_conversions}
    if not by_unit:
        return None

    custom = by_unit.get(src)
    if custom is not None:
        via = _standard_factor(normalize_unit(custom.to_unit), dst)
        if via is not None:
            return custom.factor * via

    inverse = by_unit.get(dst)
    if inverse is not None and inverse.factor != 0:
        via = _standard_factor(src, normalize_unit(inverse.to_unit))
        if via is not None:
            return via / inverse.factor

    return None


def units_compatible(
    from_unit: str,
    to_unit: str,
    custom_conversions: Iterable[CustomUnitConversion] = (),
) -> bool:
    return conversion_factor(from_unit, to_unit, custom_conversions) is not None
