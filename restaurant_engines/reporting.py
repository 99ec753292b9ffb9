"""
restaurant_engines.reporting -- Profit and loss.

Responsibility:
    Revenue, cost of goods sold, gross profit, operating expenses, waste and
    net profit over an optional period.

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - Void sales never count as revenue.  Their cost of goods still counts,
      since the stock was consumed.
    - ``gross = revenue - cogs``; ``net = gross - operating_expenses - waste``.
    - Periods are half-open: ``start <= t < end``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    Expense,
    ExpenseCategory,
    PaymentMethod,
    Sale,
    WasteRecord,
)
from restaurant_kernel.domain.values import ZERO


@dataclass(frozen=True)
class ProfitAndLoss:
    revenue: Decimal
    cost_of_goods_sold: Decimal
    operating_expenses: Decimal
    waste_loss: Decimal
    sale_count: int
    expenses_by_category: dict[ExpenseCategory, Decimal] = field(default_factory=dict)

    @property
    def gross_profit(self) -> Decimal:
        return self.revenue - self.cost_of_goods_sold

    @property
    def net_profit(self) -> Decimal:
        return self.gross_profit - self.operating_expenses - self.waste_loss


def _in_period(when: datetime, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and when < start:
        return False
    if end is not None and when >= end:
        return False
    return True


@traced_engine("reporting.pnl", "1.0", fingerprint_fields=("start", "end"))
def profit_and_loss(
    sales: Iterable[Sale],
    expenses: Iterable[Expense],
    waste_records: Iterable[WasteRecord],
    start: datetime | None = None,
    end: datetime | None = None,
) -> ProfitAndLoss:
    """P&L over ``[start, end)``; either bound may be open."""
    revenue = cogs = ZERO
    sale_count = 0
    for sale in sales:
        if not _in_period(sale.timestamp, start, end):
            continue
        cogs += sale.total_cost
        if sale.payment_method is not PaymentMethod.VOID:
            revenue += sale.total_amount
            sale_count += 1

    opex = ZERO
    by_category: dict[ExpenseCategory, Decimal] = {}
    for expense in expenses:
        if not _in_period(expense.date, start, end):
            continue
        opex += expense.amount
        by_category[expense.category] = by_category.get(expense.category, ZERO) + expense.amount

    waste = sum(
        (w.cost_loss for w in waste_records if _in_period(w.date, start, end)),
        ZERO,
    )

    return ProfitAndLoss(
        revenue=revenue,
        cost_of_goods_sold=cogs,
        operating_expenses=opex,
        waste_loss=waste,
        sale_count=sale_count,
        expenses_by_category=by_category,
    )
