"""
Tests for recipe costing.

Cost per usage unit is ``cost_per_unit / conversion_rate``; a recipe line
costs ``amount x unit factor x cost per stock unit``; totals round to whole
currency units.
"""

from decimal import Decimal

import pytest

from restaurant_engines.costing import (
    batch_cost,
    cost_per_usage_unit,
    inventory_item_value,
    margin_percent,
    prep_unit_cost,
    recipe_cost,
    waste_loss,
)
from restaurant_kernel.domain.models import RecipeSource


@pytest.fixture
def beef(make_ingredient):
    # 1 kg bought for 500,000; 1000 grams per kg, so 500 per gram
    return make_ingredient(
        id="ing-beef",
        name="Beef",
        current_stock="2000",
        usage_unit="gram",
        purchase_unit="kg",
        conversion_rate=Decimal("1000"),
        cost_per_unit="500000",
    )


@pytest.fixture
def bun(make_ingredient):
    return make_ingredient(
        id="ing-bun", name="Bun", current_stock="50", usage_unit="number", cost_per_unit="8000",
    )


class TestCostPerUsageUnit:

    def test_divides_by_conversion_rate(self, beef):
        assert cost_per_usage_unit(beef) == Decimal("500")

    def test_missing_conversion_rate_treated_as_one(self, bun):
        assert cost_per_usage_unit(bun) == Decimal("8000")

    def test_zero_cost(self, make_ingredient):
        assert cost_per_usage_unit(make_ingredient(cost_per_unit="0")) == 0

    def test_inventory_value_of_negative_stock_is_negative(self, make_ingredient):
        item = make_ingredient(current_stock="-10", cost_per_unit="100")
        assert inventory_item_value(item) == Decimal("-1000")


class TestRecipeCost:

    def test_empty_recipe_costs_zero(self):
        assert recipe_cost((), {}, {}) == 0

    def test_sums_inventory_lines(self, beef, bun, recipe_line):
        recipe = (
            recipe_line("ing-beef", "150", "gram"),
            recipe_line("ing-bun", "1", "number"),
        )
        by_id = {beef.id: beef, bun.id: bun}
        # 150 g x 500 + 1 x 8000
        assert recipe_cost(recipe, by_id, {}) == Decimal("83000")

    def test_converts_recipe_unit_to_usage_unit(self, beef, recipe_line):
        recipe = (recipe_line("ing-beef", "0.2", "kg"),)
        assert recipe_cost(recipe, {beef.id: beef}, {}) == Decimal("100000")

    def test_prep_line_uses_prep_cost(self, make_prep_item, recipe_line):
        sauce = make_prep_item(id="prep-sauce", cost_per_unit=Decimal("30"))
        recipe = (recipe_line("prep-sauce", "50", "gram", RecipeSource.PREP),)
        assert recipe_cost(recipe, {}, {sauce.id: sauce}) == Decimal("1500")

    def test_prep_without_cost_contributes_zero(self, make_prep_item, recipe_line):
        sauce = make_prep_item(id="prep-sauce")
        recipe = (recipe_line("prep-sauce", "50", "gram", RecipeSource.PREP),)
        assert recipe_cost(recipe, {}, {sauce.id: sauce}) == 0

    def test_missing_component_contributes_zero(self, bun, recipe_line, captured_logs):
        recipe = (recipe_line("ing-gone", "10"), recipe_line("ing-bun", "1", "number"))
        assert recipe_cost(recipe, {bun.id: bun}, {}) == Decimal("8000")
        assert any(r["message"] == "recipe_component_missing" for r in captured_logs())

    def test_unit_mismatch_contributes_zero_with_warning(self, beef, recipe_line, captured_logs):
        recipe = (recipe_line("ing-beef", "1", "liter"),)
        assert recipe_cost(recipe, {beef.id: beef}, {}) == 0

        warnings = [r for r in captured_logs() if r["message"] == "recipe_unit_mismatch"]
        assert warnings and warnings[0]["level"] == "WARNING"
        assert warnings[0]["recipe_unit"] == "liter"

    def test_rounds_to_whole_currency(self, make_ingredient, recipe_line):
        salt = make_ingredient(id="ing-salt", cost_per_unit="3", conversion_rate=Decimal("2"))
        # 3 grams x 1.5 = 4.5, rounded half up
        assert recipe_cost((recipe_line("ing-salt", "3"),), {salt.id: salt}, {}) == Decimal("5")

    def test_emits_engine_trace(self, captured_logs):
        recipe_cost(recipe=(), ingredients_by_id={}, prep_items_by_id={})
        traces = [r for r in captured_logs() if r["message"] == "RESTAURANT_ENGINE_TRACE"]
        assert traces[-1]["engine_name"] == "costing.recipe"
        assert traces[-1]["input_fingerprint"]


class TestPrepCosting:

    def test_batch_cost_and_unit_cost(self, beef, recipe_line):
        recipe = (recipe_line("ing-beef", "1", "kg"),)
        by_id = {beef.id: beef}
        assert batch_cost(recipe, by_id) == Decimal("500000")
        # 1 kg of beef yields 2000 grams of ragu
        assert prep_unit_cost(recipe, Decimal("2000"), by_id) == Decimal("250")

    def test_nested_prep_skipped(self, recipe_line, captured_logs):
        recipe = (recipe_line("prep-other", "1", "gram", RecipeSource.PREP),)
        assert batch_cost(recipe, {}) == 0
        assert any(r["message"] == "batch_recipe_nested_prep" for r in captured_logs())

    def test_unit_cost_without_batch_size_is_zero(self, beef, recipe_line):
        assert prep_unit_cost((recipe_line("ing-beef", "1", "kg"),), None, {beef.id: beef}) == 0


class TestWasteLoss:

    def test_waste_in_usage_unit(self, beef):
        assert waste_loss(beef, Decimal("100"), "gram") == Decimal("50000")

    def test_waste_in_other_unit(self, beef):
        assert waste_loss(beef, Decimal("0.5"), "kg") == Decimal("250000")

    def test_unconvertible_unit_is_zero(self, beef):
        assert waste_loss(beef, Decimal("1"), "liter") == 0


class TestMarginPercent:

    def test_margin(self):
        assert margin_percent(Decimal("30000"), Decimal("100000")) == 70

    def test_loss_making_item(self):
        assert margin_percent(Decimal("150"), Decimal("100")) == -50

    def test_free_item(self):
        assert margin_percent(Decimal("10"), Decimal("0")) == 0
