"""
restaurant_engines.deductions -- Stock deductions and availability for a sale.

Responsibility:
    Turn a cart into per-component deduction totals (inventory in usage
    units, prep items in their batch unit), compare those totals against
    stock on hand, and apply the restaurant's stock deduction policy.

Architecture position:
    Engines -- pure, zero I/O.  Consumed by the transaction engine for both
    the pre-checkout stock check and the commit plan.

Invariants enforced:
    - Deductions aggregate across cart lines that share a component.
    - A component is insufficient exactly when ``available - required < 0``.
    - ALLOW_NEGATIVE never reports a shortfall; it skips the check entirely.

Failure modes:
    - UnitConversionError: a recipe line's unit cannot be converted into
      its component's stock unit.  Nothing is returned for the cart.
    - Recipe lines whose component is missing are skipped with a
      ``deduction_component_missing`` warning and reported in
      ``StockDeductions.skipped``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    CartLine,
    Ingredient,
    InsufficientItem,
    PrepItem,
    RecipeSource,
    StockDeductionPolicy,
)
from restaurant_kernel.domain.units import conversion_factor
from restaurant_kernel.domain.values import ZERO
from restaurant_kernel.exceptions import UnitConversionError
from restaurant_kernel.logging_config import get_logger

logger = get_logger("engines.deductions")


@dataclass(frozen=True)
class SkippedRecipeLine:
    """A recipe line that could not be turned into a deduction."""
    menu_item_id: str
    component_id: str
    source: RecipeSource
    reason: str


@dataclass(frozen=True)
class StockDeductions:
    """
    Deduction totals for a cart.

    ``inventory`` maps ingredient id to usage-unit quantity; ``prep`` maps
    prep item id to quantity in the prep item's unit.
    """
    inventory: dict[str, Decimal] = field(default_factory=dict)
    prep: dict[str, Decimal] = field(default_factory=dict)
    skipped: tuple[SkippedRecipeLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.inventory and not self.prep


class StockCheckStatus(str, Enum):
    OK = "OK"
    BLOCKED = "BLOCKED"
    NEEDS_CONFIRMATION = "NEEDS_CONFIRMATION"


@dataclass(frozen=True)
class StockCheck:
    status: StockCheckStatus
    insufficient_items: tuple[InsufficientItem, ...] = ()


@traced_engine("deductions.calculate", "1.0", fingerprint_fields=("cart",))
def calculate_deductions(
    cart: Iterable[CartLine],
    inventory_by_id: Mapping[str, Ingredient],
    prep_items_by_id: Mapping[str, PrepItem],
) -> StockDeductions:
    """
    Aggregate the stock a cart will consume.

    Preconditions:
        Cart quantities are positive integers.

    Postconditions:
        For every recipe line, ``amount x quantity x factor`` is added to
        its component's total.  Lines with a missing component are listed
        in the result and logged.

    Raises:
        UnitConversionError: A recipe line's unit has no conversion path
            to its component's stock unit.

    Args:
        cart: Cart lines (menu item and quantity).
        inventory_by_id: Current inventory keyed by id.
        prep_items_by_id: Current prep items keyed by id.
    """
    inventory: dict[str, Decimal] = {}
    prep: dict[str, Decimal] = {}
    skipped: list[SkippedRecipeLine] = []

    for cart_line in cart:
        menu_item = cart_line.menu_item
        for line in menu_item.recipe:
            required = line.amount * cart_line.quantity

            if line.source is RecipeSource.PREP:
                component = prep_items_by_id.get(line.component_id)
                stock_unit = component.unit if component else None
                factor = conversion_factor(line.unit, stock_unit) if component else None
                totals = prep
            else:
                component = inventory_by_id.get(line.component_id)
                stock_unit = component.usage_unit if component else None
                factor = (
                    conversion_factor(line.unit, stock_unit, component.custom_unit_conversions)
                    if component else None
                )
                totals = inventory

            log_extra = {
                "menu_item_id": menu_item.id,
                "component_id": line.component_id,
                "source": line.source.value,
                "recipe_unit": line.unit,
                "stock_unit": stock_unit,
            }
            if component is None:
                logger.warning("deduction_component_missing", extra=log_extra)
                skipped.append(SkippedRecipeLine(
                    menu_item_id=menu_item.id,
                    component_id=line.component_id,
                    source=line.source,
                    reason="component_missing",
                ))
                continue
            if factor is None:
                logger.warning("deduction_unit_mismatch", extra=log_extra)
                raise UnitConversionError(line.unit, stock_unit, component.name)

            totals[line.component_id] = totals.get(line.component_id, ZERO) + required * factor

    return StockDeductions(inventory=inventory, prep=prep, skipped=tuple(skipped))


def check_stock_availability(
    inventory_by_id: Mapping[str, Ingredient],
    prep_items_by_id: Mapping[str, PrepItem],
    inventory_deductions: Mapping[str, Decimal],
    prep_deductions: Mapping[str, Decimal],
) -> tuple[InsufficientItem, ...]:
    """
    Components whose stock would go negative after the deductions.

    Inventory shortfalls are listed before prep shortfalls, each in the
    order of the deduction mappings.
    """
    insufficient: list[InsufficientItem] = []

    for item_id, required in inventory_deductions.items():
        ingredient = inventory_by_id.get(item_id)
        if ingredient is not None and ingredient.current_stock - required < 0:
            insufficient.append(InsufficientItem(
                id=item_id,
                name=ingredient.name,
                required=required,
                available=ingredient.current_stock,
                unit=ingredient.usage_unit,
                source=RecipeSource.INVENTORY,
            ))

    for item_id, required in prep_deductions.items():
        prep = prep_items_by_id.get(item_id)
        if prep is not None and prep.on_hand - required < 0:
            insufficient.append(InsufficientItem(
                id=item_id,
                name=prep.name,
                required=required,
                available=prep.on_hand,
                unit=prep.unit,
                source=RecipeSource.PREP,
            ))

    return tuple(insufficient)


def evaluate_stock_policy(
    policy: StockDeductionPolicy,
    inventory_by_id: Mapping[str, Ingredient],
    prep_items_by_id: Mapping[str, PrepItem],
    deductions: StockDeductions,
) -> StockCheck:
    """
    Apply ``policy`` to a cart's deductions.

    ALLOW_NEGATIVE always returns OK.  The other policies return BLOCKED or
    NEEDS_CONFIRMATION together with the insufficient items when any
    component would go short.
    """
    if policy is StockDeductionPolicy.ALLOW_NEGATIVE:
        return StockCheck(status=StockCheckStatus.OK)

    insufficient = check_stock_availability(
        inventory_by_id, prep_items_by_id, deductions.inventory, deductions.prep,
    )
    if not insufficient:
        return StockCheck(status=StockCheckStatus.OK)

    status = (
        StockCheckStatus.BLOCKED
        if policy is StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT
        else StockCheckStatus.NEEDS_CONFIRMATION
    )
    logger.info(
        "stock_policy_shortfall",
        extra={
            "policy": policy.value,
            "status": status.value,
            "insufficient_ids": [item.id for item in insufficient],
        },
    )
    return StockCheck(status=status, insufficient_items=insufficient)
