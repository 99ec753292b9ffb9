"""
restaurant_engines.invoicing -- Sequential, human-readable invoice numbers.

Invoice numbers look like ``FYR-2024-00042``: a fixed prefix, the year at
generation time and the global counter zero-padded to five digits.  The
counter is global and never resets at a year boundary, so numbers are
strictly increasing by counter across the life of the restaurant.

The counter lives in the application state; this module only computes the
next value.  The caller commits the returned counter together with the sale.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

INVOICE_PREFIX = "FYR"
COUNTER_WIDTH = 5

_INVOICE_RE = re.compile(rf"^{INVOICE_PREFIX}-(\d{{4}})-(\d+)$")


@dataclass(frozen=True)
class InvoiceNumber:
    number: str
    counter: int


def format_invoice_number(year: int, counter: int) -> str:
    return f"{INVOICE_PREFIX}-{year}-{counter:0{COUNTER_WIDTH}d}"


def next_invoice_number(current_counter: int, year: int) -> InvoiceNumber:
    """
    Mint the invoice number following ``current_counter``.

    Args:
        current_counter: Last counter value committed (0 before the first sale).
        year: Calendar year at generation time, taken from the caller's clock.

    Raises:
        ValueError: If ``current_counter`` is negative.
    """
    if current_counter < 0:
        raise ValueError(f"invoice counter cannot be negative: {current_counter}")
    counter = current_counter + 1
    return InvoiceNumber(number=format_invoice_number(year, counter), counter=counter)


def parse_invoice_number(number: str) -> tuple[int, int]:
    """
    Split an invoice number into ``(year, counter)``.

    Raises:
        ValueError: If ``number`` is not a well-formed invoice number.
    """
    match = _INVOICE_RE.match(number)
    if match is None:
        raise ValueError(f"not an invoice number: {number!r}")
    return int(match.group(1)), int(match.group(2))
