"""
restaurant_engines.shifts -- Cash drawer reconciliation for a shift.

Responsibility:
    Sum a shift's sales by payment method and compute the expected cash in
    the drawer and the discrepancy against the counted cash.

Architecture position:
    Engines -- pure, zero I/O.  ``ShiftService`` enforces the open/closed
    lifecycle and writes the audit trail.

Invariants enforced:
    - Only sales tagged with the shift's id count.  Void sales never count.
    - ``expected_cash = starting_cash + cash sales``.
    - ``discrepancy = actual_cash - expected_cash`` (negative means short).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import PaymentMethod, Sale, Shift, ShiftStatus
from restaurant_kernel.domain.values import ZERO


@dataclass(frozen=True)
class ShiftTotals:
    cash: Decimal = ZERO
    card: Decimal = ZERO
    online: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.cash + self.card + self.online


def aggregate_shift_sales(shift_id: str, sales: Iterable[Sale]) -> ShiftTotals:
    """Totals of the shift's sales by payment method."""
    cash = card = online = ZERO
    for sale in sales:
        if sale.shift_id != shift_id:
            continue
        if sale.payment_method is PaymentMethod.CASH:
            cash += sale.total_amount
        elif sale.payment_method is PaymentMethod.CARD:
            card += sale.total_amount
        elif sale.payment_method is PaymentMethod.ONLINE:
            online += sale.total_amount
    return ShiftTotals(cash=cash, card=card, online=online)


@traced_engine("shifts.reconcile", "1.0", fingerprint_fields=("actual_cash", "bank_deposit"))
def reconcile_shift(
    shift: Shift,
    sales: Iterable[Sale],
    actual_cash: Decimal,
    bank_deposit: Decimal,
    closed_at: datetime,
) -> Shift:
    """
    The closed version of ``shift``.

    Postconditions:
        status is CLOSED, end_time is ``closed_at``, and the expected cash,
        card/online totals, bank deposit and discrepancy are filled in.
    """
    totals = aggregate_shift_sales(shift.id, sales)
    expected = shift.starting_cash + totals.cash
    return replace(
        shift,
        status=ShiftStatus.CLOSED,
        end_time=closed_at,
        expected_cash_sales=expected,
        actual_cash_sales=actual_cash,
        card_sales=totals.card,
        online_sales=totals.online,
        bank_deposit=bank_deposit,
        discrepancy=actual_cash - expected,
    )
