"""
restaurant_engines.task_rules -- Rule-based manager task proposals.

Responsibility:
    Scan the menu, inventory and recent sales and propose manager tasks for
    conditions that need attention.  Also builds the prep-shortage task that
    a sale raises when it drives a prep item negative.

Architecture position:
    Engines -- pure, zero I/O.  Produces ``TaskDraft`` objects only;
    ``ManagerTaskService`` deduplicates them against active tasks and
    creates them.

Rules:
    1. Menu items (not deleted) without a recipe: one aggregate task,
       quality / high, one link per item.
    2. Ingredients (not deleted) with ``min_threshold > 0`` and
       ``current_stock <= min_threshold``: one ``Low stock: {name}`` task
       each, inventory / medium.
    3. Sales dip: when more than three sales fall in the seven days before
       today, the window total / 7 is the daily average; today's total
       below 80% of it (both positive) raises one sales / high task.

Invariants enforced:
    - Drafts carry ``source=RULE``.
    - ``dedupe_drafts`` never proposes a title already held by an open or
      in-progress task, nor the same title twice.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    CartLine,
    EvidenceItem,
    EvidenceType,
    Ingredient,
    ManagerTask,
    MenuItem,
    PrepItem,
    Sale,
    TaskCategory,
    TaskDraft,
    TaskPriority,
    TaskSource,
)
from restaurant_kernel.domain.values import ZERO, format_quantity, round_currency
from restaurant_kernel.logging_config import get_logger

logger = get_logger("engines.task_rules")

MISSING_RECIPES_TITLE = "Complete menu item recipes"
SALES_DROP_TITLE = "Sales drop alert"
SALES_DIP_WINDOW_DAYS = 7
SALES_DIP_MIN_SALES = 3
SALES_DIP_RATIO = Decimal("0.8")


def low_stock_title(ingredient_name: str) -> str:
    return f"Low stock: {ingredient_name}"


def prep_shortage_title(prep_name: str) -> str:
    return f"Prep shortage: {prep_name}"


def start_of_day(now: datetime) -> datetime:
    """Midnight of ``now``'s calendar day, in ``now``'s timezone."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _missing_recipe_draft(items: Sequence[MenuItem]) -> TaskDraft:
    return TaskDraft(
        title=MISSING_RECIPES_TITLE,
        description=(
            f"{len(items)} menu item(s) have no recipe. Complete them so cost "
            "of goods and stock deductions are accurate."
        ),
        category=TaskCategory.QUALITY,
        priority=TaskPriority.HIGH,
        source=TaskSource.RULE,
        evidence=tuple(
            EvidenceItem(type=EvidenceType.LINK, label=item.name, value=item.id, view="menu")
            for item in items
        ),
    )


def _low_stock_draft(ingredient: Ingredient) -> TaskDraft:
    unit = ingredient.usage_unit
    return TaskDraft(
        title=low_stock_title(ingredient.name),
        description=(
            f'Stock of "{ingredient.name}" is at or below its threshold '
            f"({format_quantity(ingredient.min_threshold)} {unit})."
        ),
        category=TaskCategory.INVENTORY,
        priority=TaskPriority.MEDIUM,
        source=TaskSource.RULE,
        evidence=(
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="Current stock",
                value=f"{format_quantity(ingredient.current_stock)} {unit}",
            ),
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="Threshold",
                value=f"{format_quantity(ingredient.min_threshold)} {unit}",
            ),
            EvidenceItem(
                type=EvidenceType.LINK,
                label="View in inventory",
                value=ingredient.id,
                view="inventory",
            ),
        ),
    )


def _sales_drop_draft(sales_today: Decimal, average: Decimal) -> TaskDraft:
    return TaskDraft(
        title=SALES_DROP_TITLE,
        description=(
            "Today's sales are more than 20% below the average of the past "
            "seven days. Review possible causes."
        ),
        category=TaskCategory.SALES,
        priority=TaskPriority.HIGH,
        source=TaskSource.RULE,
        evidence=(
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="Sales today",
                value=format_quantity(round_currency(sales_today)),
            ),
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="7-day daily average",
                value=format_quantity(round_currency(average)),
            ),
        ),
    )


def detect_sales_dip(sales: Iterable[Sale], now: datetime) -> TaskDraft | None:
    """The sales-drop draft, or None when there is no dip or too little data."""
    today = start_of_day(now)
    window_start = today - timedelta(days=SALES_DIP_WINDOW_DAYS)

    sales_today = ZERO
    window_total = ZERO
    window_count = 0
    for sale in sales:
        if sale.timestamp >= today:
            sales_today += sale.total_amount
        elif sale.timestamp >= window_start:
            window_total += sale.total_amount
            window_count += 1

    if window_count <= SALES_DIP_MIN_SALES:
        return None

    average = window_total / SALES_DIP_WINDOW_DAYS
    if sales_today > 0 and average > 0 and sales_today < average * SALES_DIP_RATIO:
        logger.info(
            "sales_dip_detected",
            extra={"sales_today": sales_today, "daily_average": average},
        )
        return _sales_drop_draft(sales_today, average)
    return None


@traced_engine("task_rules.evaluate", "1.0")
def evaluate_task_rules(
    menu: Iterable[MenuItem],
    inventory: Iterable[Ingredient],
    sales: Iterable[Sale],
    now: datetime,
) -> tuple[TaskDraft, ...]:
    """
    Drafts for every rule that currently fires, in rule order.

    The result is not deduplicated against existing tasks; see
    ``dedupe_drafts``.
    """
    drafts: list[TaskDraft] = []

    missing = [item for item in menu if not item.is_deleted and not item.recipe]
    if missing:
        drafts.append(_missing_recipe_draft(missing))

    for ingredient in inventory:
        if (
            not ingredient.is_deleted
            and ingredient.min_threshold > 0
            and ingredient.current_stock <= ingredient.min_threshold
        ):
            drafts.append(_low_stock_draft(ingredient))

    dip = detect_sales_dip(sales, now)
    if dip is not None:
        drafts.append(dip)

    return tuple(drafts)


def prep_shortage_draft(
    prep: PrepItem,
    on_hand_before: Decimal,
    on_hand_after: Decimal,
    cart: Iterable[CartLine],
) -> TaskDraft:
    """High-priority task raised when a sale drives ``prep`` below zero."""
    affected = ", ".join(
        f"{line.menu_item.name} (x{line.quantity})"
        for line in cart
        if any(r.component_id == prep.id for r in line.menu_item.recipe)
    )
    return TaskDraft(
        title=prep_shortage_title(prep.name),
        description=(
            f'Stock of "{prep.name}" went negative after selling {affected}. '
            "Prioritize producing this item."
        ),
        category=TaskCategory.INVENTORY,
        priority=TaskPriority.HIGH,
        source=TaskSource.RULE,
        evidence=(
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="Previous on hand",
                value=f"{on_hand_before:.2f} {prep.unit}",
            ),
            EvidenceItem(
                type=EvidenceType.METRIC,
                label="New on hand",
                value=f"{on_hand_after:.2f} {prep.unit}",
            ),
            EvidenceItem(
                type=EvidenceType.LINK,
                label="View item",
                value=prep.id,
                view="kitchen-prep",
            ),
        ),
    )


def dedupe_drafts(
    drafts: Iterable[TaskDraft],
    existing_tasks: Iterable[ManagerTask],
) -> tuple[TaskDraft, ...]:
    """Drop drafts whose title is held by an active task or an earlier draft."""
    taken = {task.title for task in existing_tasks if task.status.is_active}
    fresh: list[TaskDraft] = []
    for draft in drafts:
        if draft.title in taken:
            continue
        taken.add(draft.title)
        fresh.append(draft)
    return tuple(fresh)
