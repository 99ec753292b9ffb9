"""
restaurant_engines.daily_brief -- The manager's end-of-day summary.

Responsibility:
    Summarize today's sales and margin, the last seven days' margin, waste
    and most profitable item, low stock and today's best sellers, flag a
    sharp sales drop against yesterday and turn all of it into a short list
    of recommended actions.

Architecture position:
    Engines -- pure, zero I/O.  ``ReportingService.daily_brief`` supplies
    the state and the clock.

Invariants enforced:
    - "Today" is ``[midnight, midnight + 1 day)`` in ``now``'s timezone;
      the seven-day window starts six days before today's midnight and
      ends with today.
    - Void sales never count as revenue, sale count or best sellers.  Their
      cost of goods still counts, as in the profit and loss statement.
    - Margins are percentages of revenue, and zero when there is none.
    - Recommended actions keep a fixed order: low margin, top profit item,
      high waste, low stock, prep for the best seller, sales drop.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from restaurant_engines.task_rules import start_of_day
from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    EvidenceItem,
    EvidenceType,
    Ingredient,
    MenuItem,
    PaymentMethod,
    RecipeSource,
    Sale,
    TaskCategory,
    TaskDraft,
    TaskPriority,
    TaskSource,
    WasteRecord,
)
from restaurant_kernel.domain.values import ZERO, format_quantity, round_currency
from restaurant_kernel.logging_config import get_logger

logger = get_logger("engines.daily_brief")

WINDOW_DAYS = 7
LIST_LIMIT = 5
LOW_MARGIN_PERCENT = Decimal("45")
LOW_MARGIN_MIN_SALES = 5
HIGH_WASTE_LOSS = Decimal("200000")
SALES_DROP_RATIO = Decimal("0.75")


class AnomalyType(str, Enum):
    SALES_DROP = "sales_drop"


@dataclass(frozen=True)
class BriefAnomaly:
    type: AnomalyType
    description: str


@dataclass(frozen=True)
class ItemProfit:
    menu_item: MenuItem
    profit: Decimal


@dataclass(frozen=True)
class ItemQuantity:
    menu_item: MenuItem
    quantity: int


@dataclass(frozen=True)
class RecommendedAction:
    """A suggested next step; ``draft`` can be handed to the task service."""
    id: str
    draft: TaskDraft


@dataclass(frozen=True)
class DailyBrief:
    date: datetime
    sales_today_total: Decimal
    sales_today_count: int
    gross_profit_today: Decimal
    gross_margin_today: Decimal
    gross_margin_last_7_days: Decimal
    waste_loss_last_7_days: Decimal
    top_profit_item: ItemProfit | None
    low_stock_items: tuple[Ingredient, ...]
    top_selling_today: tuple[ItemQuantity, ...]
    anomalies: tuple[BriefAnomaly, ...]
    recommended_actions: tuple[RecommendedAction, ...]


@dataclass
class _Totals:
    revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    count: int = 0

    def add(self, sale: Sale) -> None:
        self.cogs += sale.total_cost
        if sale.payment_method is not PaymentMethod.VOID:
            self.revenue += sale.total_amount
            self.count += 1

    @property
    def gross_profit(self) -> Decimal:
        return self.revenue - self.cogs

    @property
    def margin(self) -> Decimal:
        if self.revenue <= 0:
            return ZERO
        return self.gross_profit / self.revenue * 100


def _money(amount: Decimal) -> str:
    return format_quantity(round_currency(amount))


def _percent(value: Decimal) -> str:
    return f"{value:.0f}%"


def _low_stock(inventory: Iterable[Ingredient]) -> tuple[Ingredient, ...]:
    low = [
        i for i in inventory
        if not i.is_deleted and i.min_threshold > 0 and i.current_stock <= i.min_threshold
    ]
    low.sort(key=lambda i: i.current_stock / i.min_threshold)
    return tuple(low[:LIST_LIMIT])


def _actions(
    week: _Totals,
    waste_loss: Decimal,
    top_profit: ItemProfit | None,
    low_stock: tuple[Ingredient, ...],
    top_selling: tuple[ItemQuantity, ...],
    sales_drop: bool,
) -> tuple[RecommendedAction, ...]:
    actions: list[RecommendedAction] = []

    def add(action_id, title, description, category, priority, evidence=()):
        actions.append(RecommendedAction(
            id=action_id,
            draft=TaskDraft(
                title=title,
                description=description,
                category=category,
                priority=priority,
                source=TaskSource.RULE,
                evidence=tuple(evidence),
            ),
        ))

    if week.count > LOW_MARGIN_MIN_SALES and week.margin < LOW_MARGIN_PERCENT:
        add(
            "low-margin",
            "Review menu pricing",
            f"Gross margin over the last {WINDOW_DAYS} days is "
            f"{_percent(week.margin)}, below the {_percent(LOW_MARGIN_PERCENT)} target. "
            "Review prices and recipe costs.",
            TaskCategory.FINANCE,
            TaskPriority.HIGH,
            [
                EvidenceItem(EvidenceType.METRIC, "7-day gross margin", _percent(week.margin)),
                EvidenceItem(EvidenceType.LINK, "Open menu", "menu", view="menu"),
            ],
        )

    if top_profit is not None:
        item = top_profit.menu_item
        add(
            "top-profit",
            f"Promote {item.name}",
            f'"{item.name}" earned the most gross profit over the last '
            f"{WINDOW_DAYS} days ({_money(top_profit.profit)}). Give it more visibility.",
            TaskCategory.SALES,
            TaskPriority.MEDIUM,
            [
                EvidenceItem(EvidenceType.METRIC, "7-day gross profit", _money(top_profit.profit)),
                EvidenceItem(EvidenceType.LINK, item.name, item.id, view="menu"),
            ],
        )

    if waste_loss > HIGH_WASTE_LOSS:
        add(
            "high-waste",
            "Reduce waste",
            f"Waste over the last {WINDOW_DAYS} days cost {_money(waste_loss)}. "
            "Check storage and prep quantities.",
            TaskCategory.INVENTORY,
            TaskPriority.MEDIUM,
            [EvidenceItem(EvidenceType.METRIC, "7-day waste loss", _money(waste_loss))],
        )

    if low_stock:
        add(
            "low-stock",
            "Restock low inventory",
            f"{len(low_stock)} ingredient(s) are at or below their threshold.",
            TaskCategory.INVENTORY,
            TaskPriority.HIGH,
            [
                EvidenceItem(EvidenceType.LINK, i.name, i.id, view="inventory")
                for i in low_stock
            ],
        )

    if top_selling:
        best = top_selling[0].menu_item
        if any(line.source is RecipeSource.PREP for line in best.recipe):
            add(
                "prep-top-seller",
                f"Prepare ahead for {best.name}",
                f'"{best.name}" is today\'s best seller. Check its prep items '
                "are ready for the next service.",
                TaskCategory.QUALITY,
                TaskPriority.MEDIUM,
                [EvidenceItem(EvidenceType.LINK, best.name, best.id, view="menu")],
            )

    if sales_drop:
        add(
            "sales-drop",
            "Investigate sales drop",
            "Today's sales are more than 25% below yesterday's. Review possible causes.",
            TaskCategory.SALES,
            TaskPriority.HIGH,
        )

    return tuple(actions)


@traced_engine("reporting.daily_brief", "1.0", fingerprint_fields=("now",))
def generate_daily_brief(
    sales: Iterable[Sale],
    menu: Iterable[MenuItem],
    inventory: Iterable[Ingredient],
    waste_records: Iterable[WasteRecord],
    now: datetime,
) -> DailyBrief:
    """
    Build the daily brief for ``now``'s calendar day.

    Args:
        sales: All recorded sales.
        menu: Menu items, including soft-deleted ones so past sales still
            resolve to a name.
        inventory: Current inventory.
        waste_records: All recorded waste.
        now: The moment the brief is generated for.
    """
    today = start_of_day(now)
    tomorrow = today + timedelta(days=1)
    yesterday = today - timedelta(days=1)
    week_start = today - timedelta(days=WINDOW_DAYS - 1)
    menu_by_id = {item.id: item for item in menu}

    day = _Totals()
    week = _Totals()
    revenue_yesterday = ZERO
    item_profit: dict[str, Decimal] = {}
    item_quantity: dict[str, int] = {}

    for sale in sales:
        when = sale.timestamp
        if not week_start <= when < tomorrow:
            continue
        is_void = sale.payment_method is PaymentMethod.VOID

        week.add(sale)
        if yesterday <= when < today and not is_void:
            revenue_yesterday += sale.total_amount
        if not is_void:
            for item in sale.items:
                if item.menu_item_id in menu_by_id:
                    profit = (item.price_at_sale - item.cost_at_sale) * item.quantity
                    item_profit[item.menu_item_id] = (
                        item_profit.get(item.menu_item_id, ZERO) + profit
                    )
        if when >= today:
            day.add(sale)
            if not is_void:
                for item in sale.items:
                    if item.menu_item_id in menu_by_id:
                        item_quantity[item.menu_item_id] = (
                            item_quantity.get(item.menu_item_id, 0) + item.quantity
                        )

    top_profit = None
    if item_profit:
        best_id = max(item_profit, key=item_profit.__getitem__)
        if item_profit[best_id] > 0:
            top_profit = ItemProfit(menu_by_id[best_id], item_profit[best_id])

    top_selling = tuple(
        ItemQuantity(menu_by_id[item_id], quantity)
        for item_id, quantity in sorted(
            item_quantity.items(), key=lambda pair: pair[1], reverse=True,
        )[:LIST_LIMIT]
    )

    waste_loss = sum(
        (w.cost_loss for w in waste_records if week_start <= w.date < tomorrow), ZERO,
    )
    low_stock = _low_stock(inventory)

    anomalies: list[BriefAnomaly] = []
    sales_drop = (
        day.revenue > 0
        and revenue_yesterday > 0
        and day.revenue < revenue_yesterday * SALES_DROP_RATIO
    )
    if sales_drop:
        anomalies.append(BriefAnomaly(
            type=AnomalyType.SALES_DROP,
            description=(
                f"Sales today ({_money(day.revenue)}) are more than 25% below "
                f"yesterday ({_money(revenue_yesterday)})."
            ),
        ))
        logger.info(
            "daily_brief_sales_drop",
            extra={"sales_today": day.revenue, "sales_yesterday": revenue_yesterday},
        )

    return DailyBrief(
        date=today,
        sales_today_total=day.revenue,
        sales_today_count=day.count,
        gross_profit_today=day.gross_profit,
        gross_margin_today=day.margin,
        gross_margin_last_7_days=week.margin,
        waste_loss_last_7_days=waste_loss,
        top_profit_item=top_profit,
        low_stock_items=low_stock,
        top_selling_today=top_selling,
        anomalies=tuple(anomalies),
        recommended_actions=_actions(
            week, waste_loss, top_profit, low_stock, top_selling, sales_drop,
        ),
    )
