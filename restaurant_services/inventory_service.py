"""
restaurant_services.inventory_service -- Stock movements outside of sales.

Responsibility:
    Waste recording for ingredients and prep items, prep batch production,
    and confirmation of purchase invoices (restock with weighted-average
    cost, or creation of new ingredients).

Architecture position:
    Services -- imperative shell over ``restaurant_engines.costing`` and
    ``restaurant_kernel.domain.units``.

Invariants enforced:
    - Waste amount is positive and never more than the stock on hand;
      stock after waste is clamped at zero.
    - Production converts every recipe line before touching any stock, so a
      conversion failure leaves the state unchanged.
    - Restocking recomputes the cost per purchase unit as the weighted
      average of the stock value on hand and the purchase value.
    - Every stock movement is audited: ``WASTE``, ``UPDATE PREP`` for
      production, ``INVOICE_ADD INVENTORY`` per invoice line and
      ``CREATE INVOICE`` for the invoice.

Failure modes:
    - EntityNotFoundError: unknown ingredient or prep item.
    - InvalidInventoryOperationError: non-positive or excessive amounts,
      production without a recipe.
    - UnitConversionError: a production recipe line cannot be converted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from restaurant_engines.costing import cost_per_usage_unit, waste_loss
from restaurant_kernel.domain.audit import AuditTrail
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    Ingredient,
    InvoiceLine,
    InvoicePaymentStatus,
    Operator,
    PrepItem,
    ProcessedInvoiceItem,
    PurchaseInvoice,
    PurchaseRecord,
    RecipeSource,
    WasteRecord,
)
from restaurant_kernel.domain.units import conversion_factor
from restaurant_kernel.domain.values import ONE, ZERO, format_quantity, round_currency
from restaurant_kernel.exceptions import (
    EntityNotFoundError,
    InvalidInventoryOperationError,
    UnitConversionError,
)
from restaurant_kernel.logging_config import get_logger
from restaurant_services.state import (
    SYSTEM_OPERATOR,
    RestaurantState,
    RestaurantStore,
    replace_by_id,
)

logger = get_logger("services.inventory")

UNKNOWN_REASON = "unspecified"


@dataclass(frozen=True)
class InvoiceConfirmation:
    """Outcome of confirming a purchase invoice."""

    invoice: PurchaseInvoice
    restocked: tuple[Ingredient, ...] = ()
    created: tuple[Ingredient, ...] = ()
    skipped: tuple[ProcessedInvoiceItem, ...] = ()


def restock_ingredient(
    ingredient: Ingredient,
    quantity: Decimal,
    unit: str,
    cost_per_unit: Decimal,
    purchased_at: datetime,
) -> Ingredient | None:
    """
    ``ingredient`` after receiving ``quantity`` ``unit`` at ``cost_per_unit``.

    Returns None when ``unit`` cannot be converted to the usage unit.
    """
    factor = conversion_factor(unit, ingredient.usage_unit, ingredient.custom_unit_conversions)
    if factor is None:
        return None

    new_stock = ingredient.current_stock + quantity * factor
    current_value = ingredient.current_stock * cost_per_usage_unit(ingredient)
    purchase_value = quantity * cost_per_unit
    if new_stock > 0:
        average_per_usage_unit = (current_value + purchase_value) / new_stock
    else:
        average_per_usage_unit = cost_per_usage_unit(ingredient)

    return replace(
        ingredient,
        current_stock=new_stock,
        cost_per_unit=round_currency(average_per_usage_unit * ingredient.safe_conversion_rate),
        purchase_history=ingredient.purchase_history + (
            PurchaseRecord(date=purchased_at, quantity=quantity, cost_per_unit=cost_per_unit),
        ),
    )


def _find(items, item_id: str, entity: str):
    for item in items:
        if item.id == item_id:
            return item
    raise EntityNotFoundError(entity, item_id)


def _validate_waste_amount(amount: Decimal, available: Decimal, name: str) -> None:
    if amount <= 0:
        raise InvalidInventoryOperationError("waste", "amount must be positive")
    if amount > available:
        raise InvalidInventoryOperationError(
            "waste",
            f"amount {format_quantity(amount)} exceeds stock of {name} ({format_quantity(available)})",
        )


class InventoryService:
    """
    Records waste, production and purchases against the store.

    Contract:
        Receives the store and a clock via constructor injection.
    Non-goals:
        - Does not read invoice images; see ``InvoiceIngestionService``.
    """

    def __init__(self, store: RestaurantStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def _trail(self, state: RestaurantState, now: datetime, actor: Operator | None) -> AuditTrail:
        actor = actor or SYSTEM_OPERATOR
        return AuditTrail(
            state.audit_logs, timestamp=now, user_id=actor.id, user_name=actor.full_name,
        )

    def record_waste(
        self,
        ingredient_id: str,
        amount: Decimal,
        reason: str | None = None,
        actor: Operator | None = None,
    ) -> WasteRecord:
        """
        Throw away ``amount`` usage units of an ingredient.

        Raises:
            EntityNotFoundError: Unknown ingredient.
            InvalidInventoryOperationError: ``amount`` is not positive or
                exceeds the stock on hand.
        """
        state = self._store.state
        ingredient = _find(state.inventory, ingredient_id, "Ingredient")
        _validate_waste_amount(amount, ingredient.current_stock, ingredient.name)

        now = self._clock.now()
        reason = reason or UNKNOWN_REASON
        loss = waste_loss(ingredient, amount, ingredient.usage_unit)
        record = WasteRecord(
            id=str(uuid4()),
            item_id=ingredient.id,
            item_name=ingredient.name,
            item_source=RecipeSource.INVENTORY,
            amount=amount,
            unit=ingredient.usage_unit,
            cost_loss=loss,
            reason=reason,
            date=now,
        )
        updated = replace(ingredient, current_stock=max(ZERO, ingredient.current_stock - amount))

        trail = self._trail(state, now, actor)
        trail.record(
            AuditAction.WASTE,
            AuditEntity.INVENTORY,
            ingredient.id,
            f"Waste recorded for {ingredient.name}: {format_quantity(amount)} "
            f"{ingredient.usage_unit}. Reason: {reason}. Loss: {format_quantity(round_currency(loss))}",
            before={"current_stock": ingredient.current_stock},
            after={"current_stock": updated.current_stock},
        )
        self._store.publish(replace(
            state,
            inventory=replace_by_id(state.inventory, {ingredient.id: updated}),
            waste_records=state.waste_records + (record,),
            audit_logs=trail.entries,
        ))
        logger.info(
            "waste_recorded",
            extra={"item_id": ingredient.id, "amount": amount, "cost_loss": loss},
        )
        return record

    def record_prep_waste(
        self,
        prep_id: str,
        amount: Decimal,
        reason: str | None = None,
        actor: Operator | None = None,
    ) -> WasteRecord:
        """Throw away ``amount`` of a prep item, valued at its cost per unit."""
        state = self._store.state
        prep = _find(state.prep_items, prep_id, "PrepItem")
        _validate_waste_amount(amount, prep.on_hand, prep.name)

        now = self._clock.now()
        reason = reason or UNKNOWN_REASON
        loss = amount * (prep.cost_per_unit or ZERO)
        record = WasteRecord(
            id=str(uuid4()),
            item_id=prep.id,
            item_name=prep.name,
            item_source=RecipeSource.PREP,
            amount=amount,
            unit=prep.unit,
            cost_loss=loss,
            reason=reason,
            date=now,
        )
        updated = replace(prep, on_hand=max(ZERO, prep.on_hand - amount))

        trail = self._trail(state, now, actor)
        trail.record(
            AuditAction.WASTE,
            AuditEntity.PREP,
            prep.id,
            f"Waste recorded for {prep.name}: {format_quantity(amount)} {prep.unit}. "
            f"Reason: {reason}. Loss: {format_quantity(round_currency(loss))}",
            before={"on_hand": prep.on_hand},
            after={"on_hand": updated.on_hand},
        )
        self._store.publish(replace(
            state,
            prep_items=replace_by_id(state.prep_items, {prep.id: updated}),
            waste_records=state.waste_records + (record,),
            audit_logs=trail.entries,
        ))
        logger.info(
            "prep_waste_recorded",
            extra={"item_id": prep.id, "amount": amount, "cost_loss": loss},
        )
        return record

    def produce_prep_batch(
        self,
        prep_id: str,
        batches: Decimal,
        actor: Operator | None = None,
    ) -> PrepItem:
        """
        Produce ``batches`` batches of a prep item from raw inventory.

        Postconditions:
            Each recipe ingredient loses ``amount x factor x batches``
            (clamped at zero) and the prep item gains
            ``(batch_size or 1) x batches``.

        Raises:
            EntityNotFoundError: Unknown prep item.
            InvalidInventoryOperationError: ``batches`` is not positive or
                the prep item has no recipe.
            UnitConversionError: A recipe line cannot be converted; nothing
                is deducted.
        """
        state = self._store.state
        prep = _find(state.prep_items, prep_id, "PrepItem")
        if batches <= 0:
            raise InvalidInventoryOperationError("production", "batches must be positive")
        if not prep.recipe:
            raise InvalidInventoryOperationError("production", f"{prep.name} has no recipe")

        inventory_by_id = state.inventory_by_id()
        deductions: dict[str, Decimal] = {}
        for line in prep.recipe:
            ingredient = inventory_by_id.get(line.component_id)
            if line.source is RecipeSource.PREP or ingredient is None:
                continue
            factor = conversion_factor(
                line.unit, ingredient.usage_unit, ingredient.custom_unit_conversions,
            )
            if factor is None:
                raise UnitConversionError(line.unit, ingredient.usage_unit, ingredient.name)
            deductions[ingredient.id] = (
                deductions.get(ingredient.id, ZERO) + line.amount * factor * batches
            )

        now = self._clock.now()
        produced = (prep.batch_size or ONE) * batches
        updated_prep = replace(prep, on_hand=prep.on_hand + produced)
        inventory_updates = {
            item_id: replace(
                inventory_by_id[item_id],
                current_stock=max(ZERO, inventory_by_id[item_id].current_stock - amount),
            )
            for item_id, amount in deductions.items()
        }

        trail = self._trail(state, now, actor)
        trail.record(
            AuditAction.UPDATE,
            AuditEntity.PREP,
            prep.id,
            f"Produced {format_quantity(batches)} batch(es) of {prep.name}: "
            f"+{format_quantity(produced)} {prep.unit}",
            before={"on_hand": prep.on_hand},
            after={"on_hand": updated_prep.on_hand},
        )
        self._store.publish(replace(
            state,
            inventory=replace_by_id(state.inventory, inventory_updates),
            prep_items=replace_by_id(state.prep_items, {prep.id: updated_prep}),
            audit_logs=trail.entries,
        ))
        logger.info(
            "prep_batch_produced",
            extra={
                "prep_id": prep.id,
                "batches": batches,
                "produced": produced,
                "ingredients_consumed": len(inventory_updates),
            },
        )
        return updated_prep

    def confirm_purchase_invoice(
        self,
        items: Sequence[ProcessedInvoiceItem],
        invoice_date: datetime | None = None,
        supplier_id: str | None = None,
        invoice_number: str | None = None,
        actor: Operator | None = None,
    ) -> InvoiceConfirmation:
        """
        Book a reviewed purchase invoice into inventory.

        Matched lines restock their ingredient at weighted-average cost; new
        lines create an ingredient whose usage and purchase unit are the
        line's unit.  Matched lines whose unit cannot be converted, or whose
        match no longer exists, are skipped and reported.

        Raises:
            InvalidInventoryOperationError: No lines, or a line with a
                non-positive quantity or negative cost.
        """
        if not items:
            raise InvalidInventoryOperationError("purchase invoice", "invoice has no items")
        for item in items:
            if item.quantity <= 0:
                raise InvalidInventoryOperationError(
                    "purchase invoice", f"{item.name}: quantity must be positive",
                )
            if item.cost_per_unit < 0:
                raise InvalidInventoryOperationError(
                    "purchase invoice", f"{item.name}: cost cannot be negative",
                )

        state = self._store.state
        now = self._clock.now()
        purchased_at = invoice_date or now
        trail = self._trail(state, now, actor)
        inventory_by_id = state.inventory_by_id()

        restocked: dict[str, Ingredient] = {}
        created: list[Ingredient] = []
        skipped: list[ProcessedInvoiceItem] = []
        for item in items:
            if item.is_new or item.matched_id is None:
                ingredient = Ingredient(
                    id=str(uuid4()),
                    name=item.name,
                    usage_unit=item.unit,
                    purchase_unit=item.unit,
                    conversion_rate=ONE,
                    current_stock=item.quantity,
                    cost_per_unit=item.cost_per_unit,
                    purchase_history=(PurchaseRecord(
                        date=purchased_at, quantity=item.quantity, cost_per_unit=item.cost_per_unit,
                    ),),
                    supplier_id=supplier_id,
                )
                created.append(ingredient)
                trail.record(
                    AuditAction.INVOICE_ADD,
                    AuditEntity.INVENTORY,
                    ingredient.id,
                    f"Ingredient created from invoice: {item.name}",
                    after=ingredient,
                )
                continue

            current = restocked.get(item.matched_id) or inventory_by_id.get(item.matched_id)
            updated = (
                restock_ingredient(current, item.quantity, item.unit, item.cost_per_unit, purchased_at)
                if current is not None else None
            )
            if updated is None:
                logger.warning(
                    "invoice_line_skipped",
                    extra={"item_name": item.name, "matched_id": item.matched_id, "unit": item.unit},
                )
                skipped.append(item)
                continue
            restocked[updated.id] = updated
            trail.record(
                AuditAction.INVOICE_ADD,
                AuditEntity.INVENTORY,
                updated.id,
                f"Stock increased from invoice: {item.name}",
                before=current,
                after=updated,
            )

        invoice = PurchaseInvoice(
            id=str(uuid4()),
            invoice_date=purchased_at,
            total_amount=sum((i.quantity * i.cost_per_unit for i in items), ZERO),
            status=InvoicePaymentStatus.UNPAID,
            items=tuple(
                InvoiceLine(name=i.name, quantity=i.quantity, unit=i.unit, cost_per_unit=i.cost_per_unit)
                for i in items
            ),
            supplier_id=supplier_id,
            invoice_number=invoice_number,
        )
        trail.record(
            AuditAction.CREATE,
            AuditEntity.INVOICE,
            invoice.id,
            f"Purchase invoice recorded with {len(invoice.items)} item(s).",
            after=invoice,
        )

        self._store.publish(replace(
            state,
            inventory=replace_by_id(state.inventory, restocked) + tuple(created),
            purchase_invoices=state.purchase_invoices + (invoice,),
            audit_logs=trail.entries,
        ))
        logger.info(
            "purchase_invoice_confirmed",
            extra={
                "invoice_id": invoice.id,
                "restocked_count": len(restocked),
                "created_count": len(created),
                "skipped_count": len(skipped),
            },
        )
        return InvoiceConfirmation(
            invoice=invoice,
            restocked=tuple(restocked.values()),
            created=tuple(created),
            skipped=tuple(skipped),
        )
