"""
Money and quantity helpers.

All monetary amounts and stock quantities are ``Decimal``.  Floats are
rejected at the boundary so binary rounding never leaks into costs.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Currency amounts (rial/toman) are whole units
CURRENCY_QUANTUM = Decimal("1")
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: object) -> Decimal:
    """
    Coerce ``value`` to Decimal.

    Raises:
        TypeError: If ``value`` is a float or bool.
        ValueError: If ``value`` is not a valid number.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to build Decimal from {type(value).__name__}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def round_currency(amount: Decimal) -> Decimal:
    """Round to whole currency units, half away from zero."""
    return amount.quantize(CURRENCY_QUANTUM, rounding=DEFAULT_ROUNDING)


def floor_int(amount: Decimal) -> int:
    """Largest integer not greater than ``amount``."""
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def format_quantity(amount: Decimal) -> str:
    """Human-readable quantity: ``100`` not ``1E+2``, ``0.5`` not ``0.500``."""
    if amount == amount.to_integral_value():
        return str(amount.quantize(ONE))
    return format(amount.normalize(), "f")
