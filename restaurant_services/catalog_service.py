"""
restaurant_services.catalog_service -- Menu, ingredient, prep and supplier records.

Responsibility:
    Create, update and delete the reference data that costing and
    deductions read: ingredients, menu items, prep items and suppliers.
    Keeps prep item unit costs in step with their batch recipes and
    reports menu margins.

Invariants enforced:
    - Ingredients, menu items and suppliers are soft-deleted
      (``is_deleted=True``) so historical sales and audit entries keep
      resolving.  Prep items have no soft-delete flag and are removed.
    - Every change is audited with the record before and after.
    - A prep item's ``cost_per_unit`` is recomputed whenever its recipe or
      batch size changes.

Failure modes:
    - EntityNotFoundError: update or delete of an unknown id.
    - InvalidInventoryOperationError: empty names, negative prices or
      thresholds, non-positive conversion rates or batch sizes, duplicate ids.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any

from restaurant_engines.costing import margin_percent, prep_unit_cost, recipe_cost
from restaurant_kernel.domain.audit import AuditTrail
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    Ingredient,
    MenuItem,
    Operator,
    PrepItem,
    RecipeLine,
    Supplier,
)
from restaurant_kernel.exceptions import EntityNotFoundError, InvalidInventoryOperationError
from restaurant_kernel.logging_config import get_logger
from restaurant_services.state import (
    SYSTEM_OPERATOR,
    RestaurantState,
    RestaurantStore,
    replace_by_id,
)

logger = get_logger("services.catalog")


@dataclass(frozen=True)
class MenuItemCosting:
    menu_item_id: str
    name: str
    price: Decimal
    cost: Decimal
    margin_percent: int


def _require_name(name: str, operation: str) -> None:
    if not name or not name.strip():
        raise InvalidInventoryOperationError(operation, "name is required")


def _validate_ingredient(ingredient: Ingredient) -> None:
    _require_name(ingredient.name, "ingredient")
    if not ingredient.usage_unit:
        raise InvalidInventoryOperationError("ingredient", "usage unit is required")
    if ingredient.cost_per_unit < 0:
        raise InvalidInventoryOperationError("ingredient", "cost cannot be negative")
    if ingredient.min_threshold < 0:
        raise InvalidInventoryOperationError("ingredient", "threshold cannot be negative")
    if ingredient.conversion_rate is not None and ingredient.conversion_rate <= 0:
        raise InvalidInventoryOperationError("ingredient", "conversion rate must be positive")


def _validate_menu_item(item: MenuItem) -> None:
    _require_name(item.name, "menu item")
    if item.price < 0:
        raise InvalidInventoryOperationError("menu item", "price cannot be negative")
    for line in item.recipe:
        if line.amount <= 0:
            raise InvalidInventoryOperationError("menu item", "recipe amounts must be positive")


def _validate_prep_item(prep: PrepItem) -> None:
    _require_name(prep.name, "prep item")
    if prep.batch_size is not None and prep.batch_size <= 0:
        raise InvalidInventoryOperationError("prep item", "batch size must be positive")
    if prep.par_level < 0:
        raise InvalidInventoryOperationError("prep item", "par level cannot be negative")


class CatalogService:
    """
    Maintains reference data against the store.

    Contract:
        Each mutating call publishes once and returns the stored record.
    """

    def __init__(self, store: RestaurantStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    # -- plumbing -----------------------------------------------------------

    def _commit(
        self,
        state: RestaurantState,
        collection: str,
        items: tuple,
        action: AuditAction,
        entity: AuditEntity,
        entity_id: str,
        details: str,
        actor: Operator | None,
        before: Any = None,
        after: Any = None,
    ) -> None:
        actor = actor or SYSTEM_OPERATOR
        trail = AuditTrail(
            state.audit_logs,
            timestamp=self._clock.now(),
            user_id=actor.id,
            user_name=actor.full_name,
        )
        trail.record(action, entity, entity_id, details, before=before, after=after)
        self._store.publish(replace(
            state, **{collection: items}, audit_logs=trail.entries,
        ))
        logger.info(
            "catalog_changed",
            extra={"entity": entity.value, "entity_id": entity_id, "action": action.value},
        )

    @staticmethod
    def _get(items, item_id: str, entity: str):
        for item in items:
            if item.id == item_id:
                return item
        raise EntityNotFoundError(entity, item_id)

    @staticmethod
    def _reject_duplicate_id(items, item_id: str, entity: str) -> None:
        if any(item.id == item_id for item in items):
            raise InvalidInventoryOperationError(entity, f"id already exists: {item_id}")

    # -- ingredients --------------------------------------------------------

    def add_ingredient(self, ingredient: Ingredient, actor: Operator | None = None) -> Ingredient:
        _validate_ingredient(ingredient)
        state = self._store.state
        self._reject_duplicate_id(state.inventory, ingredient.id, "ingredient")
        self._commit(
            state, "inventory", state.inventory + (ingredient,),
            AuditAction.CREATE, AuditEntity.INVENTORY, ingredient.id,
            f"Created ingredient: {ingredient.name}", actor, after=ingredient,
        )
        return ingredient

    def update_ingredient(self, ingredient: Ingredient, actor: Operator | None = None) -> Ingredient:
        _validate_ingredient(ingredient)
        state = self._store.state
        before = self._get(state.inventory, ingredient.id, "Ingredient")
        self._commit(
            state, "inventory", replace_by_id(state.inventory, {ingredient.id: ingredient}),
            AuditAction.UPDATE, AuditEntity.INVENTORY, ingredient.id,
            f"Updated ingredient: {ingredient.name}", actor, before=before, after=ingredient,
        )
        return ingredient

    def delete_ingredient(self, ingredient_id: str, actor: Operator | None = None) -> Ingredient:
        state = self._store.state
        before = self._get(state.inventory, ingredient_id, "Ingredient")
        deleted = replace(before, is_deleted=True)
        self._commit(
            state, "inventory", replace_by_id(state.inventory, {ingredient_id: deleted}),
            AuditAction.DELETE, AuditEntity.INVENTORY, ingredient_id,
            f"Deleted ingredient: {before.name}", actor, before=before,
        )
        return deleted

    # -- menu ---------------------------------------------------------------

    def add_menu_item(self, item: MenuItem, actor: Operator | None = None) -> MenuItem:
        _validate_menu_item(item)
        state = self._store.state
        self._reject_duplicate_id(state.menu, item.id, "menu item")
        self._commit(
            state, "menu", state.menu + (item,),
            AuditAction.CREATE, AuditEntity.MENU, item.id,
            f"Created menu item: {item.name}", actor, after=item,
        )
        return item

    def update_menu_item(self, item: MenuItem, actor: Operator | None = None) -> MenuItem:
        _validate_menu_item(item)
        state = self._store.state
        before = self._get(state.menu, item.id, "MenuItem")
        self._commit(
            state, "menu", replace_by_id(state.menu, {item.id: item}),
            AuditAction.UPDATE, AuditEntity.MENU, item.id,
            f"Updated menu item: {item.name}", actor, before=before, after=item,
        )
        return item

    def delete_menu_item(self, item_id: str, actor: Operator | None = None) -> MenuItem:
        state = self._store.state
        before = self._get(state.menu, item_id, "MenuItem")
        deleted = replace(before, is_deleted=True)
        self._commit(
            state, "menu", replace_by_id(state.menu, {item_id: deleted}),
            AuditAction.DELETE, AuditEntity.MENU, item_id,
            f"Deleted menu item: {before.name}", actor, before=before,
        )
        return deleted

    def menu_costing(self) -> tuple[MenuItemCosting, ...]:
        """Current cost and margin of every active menu item."""
        state = self._store.state
        inventory_by_id = state.inventory_by_id()
        prep_by_id = state.prep_items_by_id()
        result = []
        for item in state.menu:
            if item.is_deleted:
                continue
            cost = recipe_cost(item.recipe, inventory_by_id, prep_by_id)
            result.append(MenuItemCosting(
                menu_item_id=item.id,
                name=item.name,
                price=item.price,
                cost=cost,
                margin_percent=margin_percent(cost, item.price),
            ))
        return tuple(result)

    # -- prep items ---------------------------------------------------------

    def add_prep_item(self, prep: PrepItem, actor: Operator | None = None) -> PrepItem:
        _validate_prep_item(prep)
        state = self._store.state
        self._reject_duplicate_id(state.prep_items, prep.id, "prep item")
        if prep.recipe:
            prep = replace(
                prep,
                cost_per_unit=prep_unit_cost(prep.recipe, prep.batch_size, state.inventory_by_id()),
            )
        self._commit(
            state, "prep_items", state.prep_items + (prep,),
            AuditAction.CREATE, AuditEntity.PREP, prep.id,
            f"Created prep item: {prep.name}", actor, after=prep,
        )
        return prep

    def set_prep_recipe(
        self,
        prep_id: str,
        recipe: Sequence[RecipeLine],
        batch_size: Decimal,
        actor: Operator | None = None,
    ) -> PrepItem:
        """Replace a prep item's batch recipe and recompute its unit cost."""
        state = self._store.state
        before = self._get(state.prep_items, prep_id, "PrepItem")
        updated = replace(before, recipe=tuple(recipe), batch_size=batch_size)
        _validate_prep_item(updated)
        updated = replace(
            updated,
            cost_per_unit=prep_unit_cost(updated.recipe, batch_size, state.inventory_by_id()),
        )
        self._commit(
            state, "prep_items", replace_by_id(state.prep_items, {prep_id: updated}),
            AuditAction.UPDATE, AuditEntity.PREP, prep_id,
            f"Updated recipe of prep item: {before.name}", actor, before=before, after=updated,
        )
        return updated

    def delete_prep_item(self, prep_id: str, actor: Operator | None = None) -> None:
        state = self._store.state
        before = self._get(state.prep_items, prep_id, "PrepItem")
        self._commit(
            state, "prep_items", tuple(p for p in state.prep_items if p.id != prep_id),
            AuditAction.DELETE, AuditEntity.PREP, prep_id,
            f"Deleted prep item: {before.name}", actor, before=before,
        )

    # -- suppliers ----------------------------------------------------------

    def add_supplier(self, supplier: Supplier, actor: Operator | None = None) -> Supplier:
        _require_name(supplier.name, "supplier")
        state = self._store.state
        self._reject_duplicate_id(state.suppliers, supplier.id, "supplier")
        self._commit(
            state, "suppliers", state.suppliers + (supplier,),
            AuditAction.CREATE, AuditEntity.INVENTORY, supplier.id,
            f"Created supplier: {supplier.name}", actor, after=supplier,
        )
        return supplier

    def delete_supplier(self, supplier_id: str, actor: Operator | None = None) -> Supplier:
        state = self._store.state
        before = self._get(state.suppliers, supplier_id, "Supplier")
        deleted = replace(before, is_deleted=True)
        self._commit(
            state, "suppliers", replace_by_id(state.suppliers, {supplier_id: deleted}),
            AuditAction.DELETE, AuditEntity.INVENTORY, supplier_id,
            f"Deleted supplier: {before.name}", actor, before=before,
        )
        return deleted
