"""
restaurant_engines.data_health -- Reference-data integrity checks.

Responsibility:
    Detect data problems that silently distort costing or deductions:
    menu items without recipes, recipes pointing at missing components,
    recipe units that cannot be converted, negative stock or thresholds,
    non-positive conversion rates and duplicate names.

Architecture position:
    Engines -- pure, zero I/O.  Surfaced by ``ReportingService`` so the
    operator can fix what costing and deductions skipped with a warning.

Invariants enforced:
    - Issue ids are deterministic (derived from entity ids), so re-running
      the checks on unchanged data yields identical results.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    Ingredient,
    MenuItem,
    PrepItem,
    RecipeLine,
    RecipeSource,
)
from restaurant_kernel.domain.units import conversion_factor
from restaurant_kernel.domain.values import format_quantity


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueEntityType(str, Enum):
    MENU = "MENU"
    INVENTORY = "INVENTORY"
    PREP = "PREP"


@dataclass(frozen=True)
class HealthIssue:
    id: str
    severity: IssueSeverity
    title: str
    description: str
    entity_type: IssueEntityType
    entity_id: str
    entity_name: str
    suggested_fix: str


@dataclass(frozen=True)
class HealthSnapshot:
    menu: tuple[MenuItem, ...]
    inventory: tuple[Ingredient, ...]
    prep_items: tuple[PrepItem, ...]


def _menu_without_recipe(snapshot: HealthSnapshot) -> list[HealthIssue]:
    return [
        HealthIssue(
            id=f"menu-no-recipe-{item.id}",
            severity=IssueSeverity.HIGH,
            title="Menu item without recipe",
            description=f'"{item.name}" has no recipe, so its cost and stock usage are unknown.',
            entity_type=IssueEntityType.MENU,
            entity_id=item.id,
            entity_name=item.name,
            suggested_fix="Define a recipe for this menu item.",
        )
        for item in snapshot.menu
        if not item.is_deleted and not item.recipe
    ]


def _check_recipe(
    recipe: Iterable[RecipeLine],
    parent_id: str,
    parent_name: str,
    parent_type: IssueEntityType,
    ingredients: dict[str, Ingredient],
    prep_items: dict[str, PrepItem],
) -> list[HealthIssue]:
    issues: list[HealthIssue] = []

    def issue(kind: str, line: RecipeLine, title: str, description: str, fix: str) -> None:
        issues.append(HealthIssue(
            id=f"recipe-{kind}-{parent_id}-{line.component_id}",
            severity=IssueSeverity.HIGH,
            title=title,
            description=description,
            entity_type=parent_type,
            entity_id=parent_id,
            entity_name=parent_name,
            suggested_fix=fix,
        ))

    for line in recipe:
        if line.source is RecipeSource.PREP:
            prep = prep_items.get(line.component_id)
            if prep is None:
                issue(
                    "invalid-prep", line,
                    "Invalid prep item in recipe",
                    f'Recipe of "{parent_name}" references a prep item that does not exist.',
                    "Remove or replace the missing prep item in the recipe.",
                )
            elif conversion_factor(line.unit, prep.unit) is None:
                issue(
                    "incompatible-prep-unit", line,
                    "Recipe unit incompatible with prep unit",
                    f'In "{parent_name}", unit "{line.unit}" cannot be converted to '
                    f'"{prep.unit}" of prep item "{prep.name}".',
                    f"Use a unit compatible with {prep.unit}.",
                )
            continue

        ingredient = ingredients.get(line.component_id)
        if ingredient is None:
            issue(
                "invalid-ing", line,
                "Invalid ingredient in recipe",
                f'Recipe of "{parent_name}" references an ingredient that does not exist.',
                "Remove or replace the missing ingredient in the recipe.",
            )
        elif not line.unit or not line.unit.strip():
            issue(
                "empty-unit", line,
                "Recipe unit not set",
                f'In "{parent_name}", no unit is set for "{ingredient.name}".',
                "Choose a valid unit for this recipe line.",
            )
        elif conversion_factor(line.unit, ingredient.usage_unit, ingredient.custom_unit_conversions) is None:
            issue(
                "incompatible-unit", line,
                "Recipe unit incompatible with stock unit",
                f'In "{parent_name}", unit "{line.unit}" cannot be converted to '
                f'"{ingredient.usage_unit}" of "{ingredient.name}".',
                "Align the units or add a custom conversion for the ingredient.",
            )
    return issues


def _recipe_integrity(snapshot: HealthSnapshot) -> list[HealthIssue]:
    ingredients = {i.id: i for i in snapshot.inventory}
    prep_items = {p.id: p for p in snapshot.prep_items}
    issues: list[HealthIssue] = []
    for item in snapshot.menu:
        if not item.is_deleted:
            issues.extend(_check_recipe(
                item.recipe, item.id, item.name, IssueEntityType.MENU, ingredients, prep_items,
            ))
    for prep in snapshot.prep_items:
        issues.extend(_check_recipe(
            prep.recipe, prep.id, prep.name, IssueEntityType.PREP, ingredients, prep_items,
        ))
    return issues


def _negative_inventory_values(snapshot: HealthSnapshot) -> list[HealthIssue]:
    issues: list[HealthIssue] = []
    for item in snapshot.inventory:
        if item.is_deleted:
            continue
        if item.current_stock < 0:
            issues.append(HealthIssue(
                id=f"inv-neg-stock-{item.id}",
                severity=IssueSeverity.HIGH,
                title="Negative stock",
                description=f'Stock of "{item.name}" is negative ({format_quantity(item.current_stock)}).',
                entity_type=IssueEntityType.INVENTORY,
                entity_id=item.id,
                entity_name=item.name,
                suggested_fix="Count the item and correct its stock; check recipes for over-deduction.",
            ))
        if item.min_threshold < 0:
            issues.append(HealthIssue(
                id=f"inv-neg-threshold-{item.id}",
                severity=IssueSeverity.MEDIUM,
                title="Negative threshold",
                description=f'Low-stock threshold of "{item.name}" is negative.',
                entity_type=IssueEntityType.INVENTORY,
                entity_id=item.id,
                entity_name=item.name,
                suggested_fix="Set the threshold to zero or a positive number.",
            ))
    return issues


def _invalid_conversion_rate(snapshot: HealthSnapshot) -> list[HealthIssue]:
    return [
        HealthIssue(
            id=f"inv-invalid-conversion-{item.id}",
            severity=IssueSeverity.MEDIUM,
            title="Invalid conversion rate",
            description=f'Purchase-to-usage conversion rate of "{item.name}" is zero or negative.',
            entity_type=IssueEntityType.INVENTORY,
            entity_id=item.id,
            entity_name=item.name,
            suggested_fix="Set a positive conversion rate.",
        )
        for item in snapshot.inventory
        if not item.is_deleted and item.conversion_rate is not None and item.conversion_rate <= 0
    ]


def _duplicate_names(snapshot: HealthSnapshot) -> list[HealthIssue]:
    issues: list[HealthIssue] = []
    groups = (
        (IssueEntityType.INVENTORY, "inv", [i for i in snapshot.inventory if not i.is_deleted]),
        (IssueEntityType.MENU, "menu", [m for m in snapshot.menu if not m.is_deleted]),
    )
    for entity_type, prefix, items in groups:
        by_name: dict[str, list] = {}
        for item in items:
            by_name.setdefault(item.name.strip().lower(), []).append(item)
        for key, same in by_name.items():
            if len(same) < 2:
                continue
            issues.append(HealthIssue(
                id=f"{prefix}-duplicate-name-{key}",
                severity=IssueSeverity.MEDIUM,
                title="Duplicate name",
                description=f'{len(same)} records are named "{same[0].name}".',
                entity_type=entity_type,
                entity_id=",".join(item.id for item in same),
                entity_name=same[0].name,
                suggested_fix="Rename or remove the duplicates.",
            ))
    return issues


_CHECKS: tuple[Callable[[HealthSnapshot], list[HealthIssue]], ...] = (
    _menu_without_recipe,
    _recipe_integrity,
    _negative_inventory_values,
    _invalid_conversion_rate,
    _duplicate_names,
)


@traced_engine("data_health.run", "1.0")
def run_data_health_checks(
    menu: Iterable[MenuItem],
    inventory: Iterable[Ingredient],
    prep_items: Iterable[PrepItem],
) -> tuple[HealthIssue, ...]:
    """All issues found, grouped by check in a fixed order."""
    snapshot = HealthSnapshot(tuple(menu), tuple(inventory), tuple(prep_items))
    return tuple(issue for check in _CHECKS for issue in check(snapshot))
