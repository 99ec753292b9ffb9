"""
restaurant_services.transaction_service -- Atomic sale processing.

Responsibility:
    Validate a POS cart, cost it, apply the stock deduction policy, update
    the customer and loyalty balances, deduct inventory and prep stock, mint
    the invoice number and record the sale with its audit entries.

Architecture position:
    Services -- imperative shell.  ``plan_transaction`` is pure: it takes a
    state snapshot and returns the complete next state.
    ``TransactionEngine`` publishes that state in one step and then hands
    queued prep-shortage drafts to ``ManagerTaskService``.

Invariants enforced:
    - All-or-nothing: validation and policy failures raise before anything
      is published.  A blocked sale leaves inventory, sales, customers, the
      audit trail and the invoice counter untouched.
    - ``total_cost == sum(cost_at_sale x quantity)`` over the sale's items.
    - The invoice counter advances by exactly one per committed sale.
    - One ``TRANSACTION`` audit entry per stock component touched, one
      ``UPDATE CUSTOMER`` per loyalty balance change and one ``CREATE SALE``.

Failure modes:
    - InvalidSaleRequestError: empty cart, non-positive quantity, negative
      discount, tax or redemption, negative total, a wallet redemption the
      customer or the bill cannot cover, or a redemption on a purchase
      below the loyalty minimum.
    - SaleBlockedError: BLOCK_SALE_IF_INSUFFICIENT and stock would go short.
    - StockConfirmationRequiredError: ALLOW_BUT_REQUIRE_CONFIRMATION, stock
      would go short, and ``confirm_insufficient_stock`` is not set.
    - UnitConversionError: a recipe line cannot be converted into its
      component's stock unit.

Audit relevance:
    Every committed sale leaves a CREATE SALE entry carrying the full sale
    record, chained into the audit trail together with the stock and
    customer entries of the same sale.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from restaurant_engines.costing import recipe_cost
from restaurant_engines.customers import apply_loyalty, new_customer, record_visit
from restaurant_engines.deductions import (
    StockCheck,
    StockCheckStatus,
    calculate_deductions,
    evaluate_stock_policy,
)
from restaurant_engines.invoicing import next_invoice_number
from restaurant_engines.task_rules import prep_shortage_draft
from restaurant_kernel.domain.audit import AuditTrail
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    CartLine,
    Customer,
    LoyaltyProgramType,
    ManagerTask,
    Operator,
    PaymentMethod,
    Sale,
    SaleItem,
    TaskDraft,
)
from restaurant_kernel.domain.values import HUNDRED, ONE, ZERO, format_quantity
from restaurant_kernel.exceptions import (
    InvalidSaleRequestError,
    SaleBlockedError,
    StockConfirmationRequiredError,
)
from restaurant_kernel.logging_config import LogContext, get_logger
from restaurant_services.state import RestaurantState, RestaurantStore, replace_by_id
from restaurant_services.task_service import ManagerTaskService

logger = get_logger("services.transaction")


@dataclass(frozen=True)
class PaymentDetails:
    """
    Everything about a checkout besides the cart itself.

    ``discount`` is the manual discount in currency.  ``wallet_to_redeem``
    is paid from the customer's cashback wallet: it is taken off the
    payable total and recorded on the sale as part of its discount.
    ``points_to_redeem`` only debits the customer's points; any money
    value the points carry must already be folded into ``discount``.
    """

    operator: Operator
    payment_method: PaymentMethod
    discount: Decimal = ZERO
    tax_percent: Decimal = ZERO
    shift_id: str | None = None
    customer_phone: str | None = None
    points_to_redeem: int = 0
    wallet_to_redeem: Decimal = ZERO
    confirm_insufficient_stock: bool = False
    table_number: str | None = None


@dataclass(frozen=True)
class TransactionPlan:
    """The pure outcome of planning a sale, before publication."""

    next_state: RestaurantState
    sale: Sale
    inventory_shortage: bool
    prep_shortage: bool
    task_drafts: tuple[TaskDraft, ...] = ()


@dataclass(frozen=True)
class TransactionResult:
    new_sale: Sale
    inventory_shortage: bool
    prep_shortage: bool
    created_tasks: tuple[ManagerTask, ...] = ()


def _validate(cart: Sequence[CartLine], payment: PaymentDetails) -> None:
    if not cart:
        raise InvalidSaleRequestError("cart", "cart is empty")
    for line in cart:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise InvalidSaleRequestError("quantity", f"{line.menu_item.name}: quantity must be an integer")
        if line.quantity <= 0:
            raise InvalidSaleRequestError("quantity", f"{line.menu_item.name}: quantity must be positive")
    if payment.discount < 0:
        raise InvalidSaleRequestError("discount", "discount cannot be negative")
    if payment.tax_percent < 0:
        raise InvalidSaleRequestError("tax_percent", "tax cannot be negative")
    if payment.points_to_redeem < 0:
        raise InvalidSaleRequestError("points_to_redeem", "cannot redeem negative points")
    if payment.wallet_to_redeem < 0:
        raise InvalidSaleRequestError("wallet_to_redeem", "cannot redeem a negative amount")


def _resolve_customer(
    state: RestaurantState,
    payment: PaymentDetails,
    sale_items: Sequence[SaleItem],
    total_amount: Decimal,
    now: datetime,
    trail: AuditTrail,
) -> Customer | None:
    """Find or create the customer, fold in the visit and apply loyalty."""
    phone = (payment.customer_phone or "").strip()
    if not phone:
        if payment.points_to_redeem or payment.wallet_to_redeem:
            raise InvalidSaleRequestError("customer_phone", "redemption requires a customer")
        return None

    loyalty = state.settings.loyalty
    if payment.wallet_to_redeem > 0 and not (
        loyalty.enabled and loyalty.program_type is LoyaltyProgramType.CASHBACK
    ):
        raise InvalidSaleRequestError(
            "wallet_to_redeem", "wallet redemption requires the cashback program",
        )

    existing = state.customer_by_phone(phone)
    customer = existing or new_customer(str(uuid4()), phone)
    if existing is None:
        trail.record(
            AuditAction.CREATE,
            AuditEntity.CUSTOMER,
            customer.id,
            f"Customer created for phone {phone}",
            after=customer,
        )

    visited = record_visit(customer, sale_items, total_amount, now)
    try:
        outcome = apply_loyalty(
            visited,
            total_amount,
            loyalty,
            points_to_redeem=payment.points_to_redeem,
            wallet_to_redeem=payment.wallet_to_redeem,
        )
    except ValueError as exc:
        field = "wallet_to_redeem" if payment.wallet_to_redeem else "points_to_redeem"
        raise InvalidSaleRequestError(field, str(exc)) from exc

    for change in outcome.changes:
        trail.record(
            AuditAction.UPDATE,
            AuditEntity.CUSTOMER,
            customer.id,
            change.details,
            before={change.field: change.before},
            after={change.field: change.after},
        )
    return outcome.customer


def plan_transaction(
    state: RestaurantState,
    cart: Sequence[CartLine],
    payment: PaymentDetails,
    now: datetime,
) -> TransactionPlan:
    """
    Compute the complete state after selling ``cart``.

    Preconditions:
        ``cart`` lines carry the menu item as displayed at checkout.

    Postconditions:
        The returned ``next_state`` contains the new sale, the deducted
        stock, the updated customer, the advanced invoice counter and every
        audit entry of the sale.  ``state`` is not modified.

    Raises:
        InvalidSaleRequestError, SaleBlockedError,
        StockConfirmationRequiredError, UnitConversionError.
    """
    _validate(cart, payment)

    inventory_by_id = state.inventory_by_id()
    prep_by_id = state.prep_items_by_id()

    sale_items = tuple(
        SaleItem(
            menu_item_id=line.menu_item.id,
            quantity=line.quantity,
            price_at_sale=line.menu_item.price,
            cost_at_sale=recipe_cost(line.menu_item.recipe, inventory_by_id, prep_by_id),
        )
        for line in cart
    )
    subtotal = sum((i.price_at_sale * i.quantity for i in sale_items), ZERO)
    payable = subtotal * (ONE + payment.tax_percent / HUNDRED) - payment.discount
    total_cost = sum((i.cost_at_sale * i.quantity for i in sale_items), ZERO)
    if payable < 0:
        raise InvalidSaleRequestError("discount", "discount exceeds the amount payable")
    if payment.wallet_to_redeem > payable:
        raise InvalidSaleRequestError(
            "wallet_to_redeem", "wallet redemption exceeds the amount payable",
        )
    total_amount = payable - payment.wallet_to_redeem

    deductions = calculate_deductions(cart, inventory_by_id, prep_by_id)
    check = evaluate_stock_policy(
        state.settings.stock_deduction_policy, inventory_by_id, prep_by_id, deductions,
    )
    if check.status is StockCheckStatus.BLOCKED:
        raise SaleBlockedError(check.insufficient_items)
    if check.status is StockCheckStatus.NEEDS_CONFIRMATION and not payment.confirm_insufficient_stock:
        raise StockConfirmationRequiredError(check.insufficient_items)

    invoice = next_invoice_number(state.invoice_counter, now.year)
    trail = AuditTrail(
        state.audit_logs,
        timestamp=now,
        user_id=payment.operator.id,
        user_name=payment.operator.full_name,
    )

    if check.insufficient_items:
        trail.record(
            AuditAction.TRANSACTION,
            AuditEntity.INVENTORY,
            None,
            "User confirmed sale despite shortage for: "
            + ", ".join(item.name for item in check.insufficient_items),
        )

    customer = _resolve_customer(state, payment, sale_items, total_amount, now, trail)

    inventory_updates = {}
    for item_id, amount in deductions.inventory.items():
        ingredient = inventory_by_id[item_id]
        after = replace(ingredient, current_stock=ingredient.current_stock - amount)
        inventory_updates[item_id] = after
        trail.record(
            AuditAction.TRANSACTION,
            AuditEntity.INVENTORY,
            item_id,
            f"{format_quantity(amount)} {ingredient.usage_unit} of {ingredient.name} "
            f"deducted for invoice {invoice.number}",
            before={"current_stock": ingredient.current_stock},
            after={"current_stock": after.current_stock},
        )
    inventory_shortage = any(i.current_stock < 0 for i in inventory_updates.values())

    prep_updates = {}
    drafts: list[TaskDraft] = []
    for prep_id, amount in deductions.prep.items():
        prep = prep_by_id[prep_id]
        after = replace(prep, on_hand=prep.on_hand - amount)
        prep_updates[prep_id] = after
        trail.record(
            AuditAction.TRANSACTION,
            AuditEntity.PREP,
            prep_id,
            f"{format_quantity(amount)} {prep.unit} of {prep.name} "
            f"deducted for invoice {invoice.number}",
            before={"on_hand": prep.on_hand},
            after={"on_hand": after.on_hand},
        )
        if prep.on_hand >= 0 and after.on_hand < 0:
            drafts.append(prep_shortage_draft(prep, prep.on_hand, after.on_hand, cart))

    open_shift = state.open_shift()
    sale = Sale(
        id=str(uuid4()),
        invoice_number=invoice.number,
        timestamp=now,
        items=sale_items,
        total_amount=total_amount,
        total_cost=total_cost,
        operator_id=payment.operator.id,
        operator_name=payment.operator.full_name,
        tax_percent=payment.tax_percent,
        discount=payment.discount + payment.wallet_to_redeem,
        payment_method=payment.payment_method,
        shift_id=payment.shift_id or (open_shift.id if open_shift else None),
        customer_id=customer.id if customer else None,
        customer_phone=customer.phone if customer else None,
        table_number=payment.table_number,
    )
    trail.record(
        AuditAction.CREATE,
        AuditEntity.SALE,
        sale.id,
        f"Sale {invoice.number} recorded for {format_quantity(total_amount)}",
        after=sale,
    )

    customers = state.customers
    if customer is not None:
        if state.customer_by_phone(customer.phone) is None:
            customers = customers + (customer,)
        else:
            customers = replace_by_id(customers, {customer.id: customer})

    next_state = replace(
        state,
        inventory=replace_by_id(state.inventory, inventory_updates),
        prep_items=replace_by_id(state.prep_items, prep_updates),
        sales=state.sales + (sale,),
        customers=customers,
        audit_logs=trail.entries,
        invoice_counter=invoice.counter,
    )
    return TransactionPlan(
        next_state=next_state,
        sale=sale,
        inventory_shortage=inventory_shortage,
        prep_shortage=bool(drafts),
        task_drafts=tuple(drafts),
    )


class TransactionEngine:
    """
    Processes POS checkouts against the store.

    Contract:
        Receives the store, a clock and optionally the task service via
        constructor injection.
    Guarantees:
        - The sale is published in exactly one ``store.publish`` call.
        - Prep-shortage tasks are created after the sale is committed; a
          failure there never undoes the sale.
    """

    def __init__(
        self,
        store: RestaurantStore,
        clock: Clock | None = None,
        task_service: ManagerTaskService | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._tasks = task_service or ManagerTaskService(store, self._clock)

    def check_stock_for_sale(self, cart: Sequence[CartLine]) -> StockCheck:
        """Pre-checkout check of ``cart`` under the configured policy."""
        state = self._store.state
        inventory_by_id = state.inventory_by_id()
        prep_by_id = state.prep_items_by_id()
        deductions = calculate_deductions(cart, inventory_by_id, prep_by_id)
        return evaluate_stock_policy(
            state.settings.stock_deduction_policy, inventory_by_id, prep_by_id, deductions,
        )

    def process_transaction(
        self,
        cart: Sequence[CartLine],
        payment: PaymentDetails,
    ) -> TransactionResult:
        """
        Commit one sale.

        Raises:
            InvalidSaleRequestError, SaleBlockedError,
            StockConfirmationRequiredError, UnitConversionError: nothing
            was published.
        """
        with LogContext.bind(actor_id=payment.operator.id):
            try:
                plan = plan_transaction(self._store.state, cart, payment, self._clock.now())
            except (SaleBlockedError, StockConfirmationRequiredError) as exc:
                logger.warning(
                    "sale_rejected_insufficient_stock",
                    extra={
                        "error_code": exc.code,
                        "insufficient_ids": [i.id for i in exc.insufficient_items],
                    },
                )
                raise

            self._store.publish(plan.next_state)

            with LogContext.bind(sale_id=plan.sale.id, invoice_number=plan.sale.invoice_number):
                logger.info(
                    "sale_committed",
                    extra={
                        "total_amount": plan.sale.total_amount,
                        "total_cost": plan.sale.total_cost,
                        "item_count": len(plan.sale.items),
                        "payment_method": plan.sale.payment_method.value,
                        "inventory_shortage": plan.inventory_shortage,
                        "prep_shortage": plan.prep_shortage,
                    },
                )
                created = (
                    self._tasks.create_tasks(plan.task_drafts, payment.operator)
                    if plan.task_drafts else ()
                )

        return TransactionResult(
            new_sale=plan.sale,
            inventory_shortage=plan.inventory_shortage,
            prep_shortage=plan.prep_shortage,
            created_tasks=created,
        )
