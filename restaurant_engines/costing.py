"""
restaurant_engines.costing -- Ingredient, recipe and batch costing.

Responsibility:
    Cost per usage unit, stock valuation, waste loss, the cost of goods of a
    recipe (mixing raw inventory and prep components), prep batch cost and
    menu margin.

Architecture position:
    Engines -- pure, zero I/O.  Consumed by the transaction engine (cost at
    sale), inventory service (waste, prep recipes) and reporting.

Invariants enforced:
    - ``inventory_item_value(i) == i.current_stock * cost_per_usage_unit(i)``.
    - ``cost_per_usage_unit(i) == i.cost_per_unit / (i.conversion_rate or 1)``,
      and 0 when ``cost_per_unit`` is 0.
    - ``recipe_cost`` and ``batch_cost`` round to whole currency units,
      half away from zero.

Failure modes:
    - Components that are missing, have no cost, or whose units cannot be
      converted contribute 0 and log a ``*_unit_mismatch`` /
      ``recipe_component_missing`` warning.  Costing never raises for bad
      reference data; data health checks surface it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    Ingredient,
    PrepItem,
    RecipeLine,
    RecipeSource,
)
from restaurant_kernel.domain.units import conversion_factor
from restaurant_kernel.domain.values import HUNDRED, ZERO, round_currency
from restaurant_kernel.logging_config import get_logger

logger = get_logger("engines.costing")


def cost_per_usage_unit(ingredient: Ingredient) -> Decimal:
    """Cost of one usage unit (e.g. one gram) of ``ingredient``."""
    if not ingredient.cost_per_unit:
        return ZERO
    return ingredient.cost_per_unit / ingredient.safe_conversion_rate


def inventory_item_value(ingredient: Ingredient) -> Decimal:
    """Value of the stock on hand.  Negative stock yields a negative value."""
    return ingredient.current_stock * cost_per_usage_unit(ingredient)


def waste_loss(ingredient: Ingredient, amount: Decimal, unit: str) -> Decimal:
    """
    Cost of ``amount`` ``unit`` of ``ingredient`` thrown away.

    Returns 0 (and logs a warning) when ``unit`` cannot be converted to the
    ingredient's usage unit.
    """
    factor = conversion_factor(unit, ingredient.usage_unit, ingredient.custom_unit_conversions)
    if factor is None:
        logger.warning(
            "waste_loss_unit_mismatch",
            extra={
                "ingredient_id": ingredient.id,
                "ingredient_name": ingredient.name,
                "waste_unit": unit,
                "usage_unit": ingredient.usage_unit,
            },
        )
        return ZERO
    return amount * cost_per_usage_unit(ingredient) * factor


def _inventory_line_cost(line: RecipeLine, ingredient: Ingredient | None) -> Decimal:
    if ingredient is None:
        logger.warning(
            "recipe_component_missing",
            extra={"component_id": line.component_id, "source": line.source.value},
        )
        return ZERO
    factor = conversion_factor(line.unit, ingredient.usage_unit, ingredient.custom_unit_conversions)
    if factor is None:
        logger.warning(
            "recipe_unit_mismatch",
            extra={
                "component_id": ingredient.id,
                "component_name": ingredient.name,
                "recipe_unit": line.unit,
                "stock_unit": ingredient.usage_unit,
            },
        )
        return ZERO
    return cost_per_usage_unit(ingredient) * line.amount * factor


def _prep_line_cost(line: RecipeLine, prep: PrepItem | None) -> Decimal:
    if prep is None:
        logger.warning(
            "recipe_component_missing",
            extra={"component_id": line.component_id, "source": line.source.value},
        )
        return ZERO
    if not prep.cost_per_unit:
        return ZERO
    factor = conversion_factor(line.unit, prep.unit)
    if factor is None:
        logger.warning(
            "recipe_unit_mismatch",
            extra={
                "component_id": prep.id,
                "component_name": prep.name,
                "recipe_unit": line.unit,
                "stock_unit": prep.unit,
            },
        )
        return ZERO
    return prep.cost_per_unit * line.amount * factor


@traced_engine("costing.recipe", "1.0", fingerprint_fields=("recipe",))
def recipe_cost(
    recipe: Iterable[RecipeLine],
    ingredients_by_id: Mapping[str, Ingredient],
    prep_items_by_id: Mapping[str, PrepItem],
) -> Decimal:
    """
    Cost of goods for one portion made from ``recipe``.

    Preconditions:
        Recipe amounts are non-negative Decimals.

    Postconditions:
        Returns the sum over lines of ``amount x factor x unit cost``, where
        unit cost is the prep item's cost per unit or the ingredient's cost
        per usage unit, rounded to whole currency units.  An empty recipe
        costs 0.

    Args:
        recipe: The recipe lines.
        ingredients_by_id: Current inventory keyed by id.
        prep_items_by_id: Current prep items keyed by id.
    """
    total = ZERO
    for line in recipe:
        if line.source is RecipeSource.PREP:
            total += _prep_line_cost(line, prep_items_by_id.get(line.component_id))
        else:
            total += _inventory_line_cost(line, ingredients_by_id.get(line.component_id))
    return round_currency(total)


@traced_engine("costing.batch", "1.0", fingerprint_fields=("recipe",))
def batch_cost(
    recipe: Iterable[RecipeLine],
    ingredients_by_id: Mapping[str, Ingredient],
) -> Decimal:
    """
    Cost of one production batch of a prep item.

    Prep recipes draw from raw inventory only; prep-sourced lines are skipped
    with a ``batch_recipe_nested_prep`` warning.
    """
    total = ZERO
    for line in recipe:
        if line.source is RecipeSource.PREP:
            logger.warning(
                "batch_recipe_nested_prep",
                extra={"component_id": line.component_id},
            )
            continue
        total += _inventory_line_cost(line, ingredients_by_id.get(line.component_id))
    return round_currency(total)


def prep_unit_cost(
    recipe: Iterable[RecipeLine],
    batch_size: Decimal | None,
    ingredients_by_id: Mapping[str, Ingredient],
) -> Decimal:
    """Cost of one prep unit: batch cost spread over the batch size."""
    if not batch_size or batch_size <= 0:
        return ZERO
    return round_currency(batch_cost(recipe, ingredients_by_id) / batch_size)


def margin_percent(cost: Decimal, price: Decimal) -> int:
    """Gross margin as a whole percentage; 0 for a non-positive price."""
    if price <= 0:
        return 0
    return int(round_currency((price - cost) / price * HUNDRED))
