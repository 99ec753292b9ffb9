"""
Tests for atomic sale processing.

Every sale either commits completely (sale, stock, customer, invoice
counter and audit entries in one publish) or leaves the store untouched.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from restaurant_engines.deductions import StockCheckStatus
from restaurant_kernel.domain.audit import verify_audit_chain
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    Customer,
    LoyaltyProgramType,
    LoyaltySettings,
    PaymentMethod,
    RecipeSource,
    Shift,
    StockDeductionPolicy,
    TaskPriority,
)
from restaurant_kernel.exceptions import (
    InvalidSaleRequestError,
    SaleBlockedError,
    StockConfirmationRequiredError,
    UnitConversionError,
)
from restaurant_services.task_service import ManagerTaskService
from restaurant_services.transaction_service import PaymentDetails, TransactionEngine


@pytest.fixture
def ingredient_a(make_ingredient):
    return make_ingredient(
        id="ing-a", name="A", current_stock="100", min_threshold="50", cost_per_unit="10",
    )


@pytest.fixture
def menu_x(make_menu_item, recipe_line):
    return make_menu_item(
        id="menu-x", name="X", price="50000", recipe=(recipe_line("ing-a", "60", "gram"),),
    )


@pytest.fixture
def payment(cashier):
    return PaymentDetails(operator=cashier, payment_method=PaymentMethod.CASH)


def _engine(store, clock):
    return TransactionEngine(store, clock, ManagerTaskService(store, clock))


class TestSuccessfulSale:

    def test_sale_recorded_with_deduction(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        result = _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        state = store.state
        assert state.sales == (result.new_sale,)
        assert state.inventory[0].current_stock == Decimal("40")
        assert state.invoice_counter == 1
        assert result.new_sale.invoice_number == "FYR-2024-00001"
        assert result.new_sale.timestamp == deterministic_clock.now()
        assert result.inventory_shortage is False

    def test_price_and_cost_frozen_on_sale(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 2)), payment,
        ).new_sale

        item = sale.items[0]
        assert item.price_at_sale == Decimal("50000")
        # 60 g x 10 per gram
        assert item.cost_at_sale == Decimal("600")
        assert sale.total_cost == Decimal("1200")
        assert sale.total_cost == sum(i.cost_at_sale * i.quantity for i in sale.items)

    def test_total_applies_tax_then_discount(
        self, make_store, ingredient_a, menu_x, cart, cashier, deterministic_clock,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CARD,
            tax_percent=Decimal("9"),
            discount=Decimal("4500"),
        )
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 1)), payment,
        ).new_sale
        assert sale.total_amount == Decimal("50000")
        assert sale.payment_method is PaymentMethod.CARD

    def test_audit_entries_in_order(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        logs = store.state.audit_logs
        assert [(e.action, e.entity) for e in logs] == [
            (AuditAction.TRANSACTION, AuditEntity.INVENTORY),
            (AuditAction.CREATE, AuditEntity.SALE),
        ]
        assert logs[0].details == "60 gram of A deducted for invoice FYR-2024-00001"
        assert logs[0].before == {"current_stock": "100"}
        assert logs[0].after == {"current_stock": "40"}
        assert logs[1].user_name == payment.operator.full_name
        assert verify_audit_chain(logs)

    def test_invoice_numbers_increase(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        engine = _engine(store, deterministic_clock)
        numbers = [
            engine.process_transaction(cart((menu_x, 1)), payment).new_sale.invoice_number
            for _ in range(3)
        ]
        assert numbers == ["FYR-2024-00001", "FYR-2024-00002", "FYR-2024-00003"]

    def test_sale_tagged_with_open_shift(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        shift = Shift(id="shift-1", start_time=deterministic_clock.now(), starting_cash=Decimal("0"))
        store = make_store(inventory=[ingredient_a], menu=[menu_x], shifts=[shift])
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 1)), payment,
        ).new_sale
        assert sale.shift_id == "shift-1"

    def test_logs_sale_committed_with_context(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock, captured_logs,
    ):
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 1)), payment,
        ).new_sale

        committed = [r for r in captured_logs() if r["message"] == "sale_committed"]
        assert len(committed) == 1
        assert committed[0]["sale_id"] == sale.id
        assert committed[0]["invoice_number"] == sale.invoice_number
        assert committed[0]["actor_id"] == payment.operator.id


class TestValidation:

    def test_empty_cart_rejected(self, make_store, payment, deterministic_clock):
        store = make_store()
        with pytest.raises(InvalidSaleRequestError) as exc_info:
            _engine(store, deterministic_clock).process_transaction((), payment)
        assert exc_info.value.field == "cart"

    def test_non_positive_quantity_rejected(self, make_store, menu_x, cart, payment, deterministic_clock):
        store = make_store(menu=[menu_x])
        with pytest.raises(InvalidSaleRequestError):
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 0)), payment)

    def test_discount_larger_than_total_rejected(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        store = make_store(menu=[menu_x])
        payment = PaymentDetails(
            operator=cashier, payment_method=PaymentMethod.CASH, discount=Decimal("50001"),
        )
        with pytest.raises(InvalidSaleRequestError) as exc_info:
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)
        assert exc_info.value.field == "discount"
        assert store.state.sales == ()

    def test_redemption_without_customer_rejected(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        store = make_store(menu=[menu_x])
        payment = PaymentDetails(
            operator=cashier, payment_method=PaymentMethod.CASH, points_to_redeem=5,
        )
        with pytest.raises(InvalidSaleRequestError):
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)


class TestStockPolicies:

    def test_block_policy_leaves_state_unchanged(
        self, make_store, make_ingredient, menu_x, cart, payment, deterministic_clock,
    ):
        low = make_ingredient(id="ing-a", name="A", current_stock="50")
        store = make_store(
            policy=StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT,
            inventory=[low],
            menu=[menu_x],
        )
        before = store.state

        with pytest.raises(SaleBlockedError) as exc_info:
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        assert [i.id for i in exc_info.value.insufficient_items] == ["ing-a"]
        assert store.state is before
        assert store.state.inventory[0].current_stock == Decimal("50")
        assert store.state.sales == ()
        assert store.state.audit_logs == ()
        assert store.state.invoice_counter == 0

    def test_allow_negative_goes_negative(
        self, make_store, make_ingredient, menu_x, cart, payment, deterministic_clock,
    ):
        low = make_ingredient(id="ing-a", name="A", current_stock="50")
        store = make_store(inventory=[low], menu=[menu_x])
        result = _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        assert result.inventory_shortage is True
        assert store.state.inventory[0].current_stock == Decimal("-10")

    def test_confirmation_required(
        self, make_store, make_ingredient, menu_x, cart, payment, deterministic_clock, captured_logs,
    ):
        low = make_ingredient(id="ing-a", name="A", current_stock="50")
        store = make_store(
            policy=StockDeductionPolicy.ALLOW_BUT_REQUIRE_CONFIRMATION,
            inventory=[low],
            menu=[menu_x],
        )
        with pytest.raises(StockConfirmationRequiredError):
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        assert store.state.sales == ()
        assert any(r["message"] == "sale_rejected_insufficient_stock" for r in captured_logs())

    def test_confirmed_shortage_commits_and_is_audited(
        self, make_store, make_ingredient, menu_x, cart, payment, deterministic_clock,
    ):
        low = make_ingredient(id="ing-a", name="A", current_stock="50")
        store = make_store(
            policy=StockDeductionPolicy.ALLOW_BUT_REQUIRE_CONFIRMATION,
            inventory=[low],
            menu=[menu_x],
        )
        confirmed = replace(payment, confirm_insufficient_stock=True)
        _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), confirmed)

        first = store.state.audit_logs[0]
        assert first.action is AuditAction.TRANSACTION
        assert first.entity_id is None
        assert first.details == "User confirmed sale despite shortage for: A"
        assert store.state.inventory[0].current_stock == Decimal("-10")

    def test_unconvertible_recipe_unit_aborts_sale(
        self, make_store, make_ingredient, make_menu_item, recipe_line, cart, payment,
        deterministic_clock,
    ):
        milk = make_ingredient(id="ing-milk", name="Milk", current_stock="0", usage_unit="gram")
        latte = make_menu_item(
            id="menu-latte", name="Latte", recipe=(recipe_line("ing-milk", "200", "ml"),),
        )
        store = make_store(
            policy=StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT,
            inventory=[milk],
            menu=[latte],
        )
        before = store.state

        with pytest.raises(UnitConversionError) as exc_info:
            _engine(store, deterministic_clock).process_transaction(cart((latte, 1)), payment)

        assert exc_info.value.item_name == "Milk"
        assert store.state is before
        assert store.state.sales == ()
        assert store.state.audit_logs == ()
        assert store.state.invoice_counter == 0

    def test_check_stock_for_sale(
        self, make_store, make_ingredient, menu_x, cart, deterministic_clock,
    ):
        low = make_ingredient(id="ing-a", name="A", current_stock="50")
        store = make_store(
            policy=StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT, inventory=[low], menu=[menu_x],
        )
        check = _engine(store, deterministic_clock).check_stock_for_sale(cart((menu_x, 1)))
        assert check.status is StockCheckStatus.BLOCKED


class TestPrepShortage:

    def test_shortage_creates_high_priority_task(
        self, make_store, make_prep_item, make_menu_item, recipe_line, cart, payment,
        deterministic_clock,
    ):
        sauce = make_prep_item(id="prep-sauce", name="Sauce", on_hand="20")
        pasta = make_menu_item(
            id="menu-pasta",
            name="Pasta",
            recipe=(recipe_line("prep-sauce", "50", "gram", RecipeSource.PREP),),
        )
        store = make_store(prep_items=[sauce], menu=[pasta])
        result = _engine(store, deterministic_clock).process_transaction(cart((pasta, 1)), payment)

        assert result.prep_shortage is True
        assert store.state.prep_items[0].on_hand == Decimal("-30")
        assert [t.title for t in result.created_tasks] == ["Prep shortage: Sauce"]
        assert result.created_tasks[0].priority is TaskPriority.HIGH
        assert store.state.manager_tasks == result.created_tasks

    def test_already_negative_prep_raises_no_new_task(
        self, make_store, make_prep_item, make_menu_item, recipe_line, cart, payment,
        deterministic_clock,
    ):
        sauce = make_prep_item(id="prep-sauce", name="Sauce", on_hand="-5")
        pasta = make_menu_item(
            recipe=(recipe_line("prep-sauce", "50", "gram", RecipeSource.PREP),),
        )
        store = make_store(prep_items=[sauce], menu=[pasta])
        result = _engine(store, deterministic_clock).process_transaction(cart((pasta, 1)), payment)

        assert result.prep_shortage is False
        assert result.created_tasks == ()


class TestCustomersAndLoyalty:

    def test_new_customer_created(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        store = make_store(menu=[menu_x])
        payment = PaymentDetails(
            operator=cashier, payment_method=PaymentMethod.CASH, customer_phone="09120000000",
        )
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 1)), payment,
        ).new_sale

        (customer,) = store.state.customers
        assert customer.phone == "09120000000"
        assert customer.total_visits == 1
        assert customer.total_spent == Decimal("50000")
        assert sale.customer_id == customer.id
        assert store.state.audit_logs[0].entity is AuditEntity.CUSTOMER
        assert store.state.audit_logs[0].action is AuditAction.CREATE

    def test_points_clamped_at_zero(self, make_store, menu_x, cart, cashier, deterministic_clock):
        existing = Customer(id="c1", phone="0912", loyalty_points=3, total_visits=1)
        store = make_store(
            menu=[menu_x],
            customers=[existing],
            loyalty=LoyaltySettings(
                enabled=True,
                program_type=LoyaltyProgramType.POINTS,
                points_rate=Decimal("100000"),
            ),
        )
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CASH,
            customer_phone="0912",
            points_to_redeem=10,
        )
        _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        (customer,) = store.state.customers
        assert customer.loyalty_points == 0
        assert customer.total_visits == 2
        updates = [
            e for e in store.state.audit_logs
            if e.entity is AuditEntity.CUSTOMER and e.action is AuditAction.UPDATE
        ]
        assert updates[0].before == {"loyalty_points": 3}
        assert updates[0].after == {"loyalty_points": 0}

    def test_wallet_redemption_over_balance_rejected(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        existing = Customer(id="c1", phone="0912", wallet_balance=Decimal("1000"))
        store = make_store(
            menu=[menu_x],
            customers=[existing],
            loyalty=LoyaltySettings(enabled=True, program_type=LoyaltyProgramType.CASHBACK),
        )
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CASH,
            customer_phone="0912",
            wallet_to_redeem=Decimal("2000"),
        )
        with pytest.raises(InvalidSaleRequestError):
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)
        assert store.state.customers == (existing,)

    def test_wallet_redemption_reduces_amount_charged(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        existing = Customer(id="c1", phone="0912", wallet_balance=Decimal("8000"))
        store = make_store(
            menu=[menu_x],
            customers=[existing],
            loyalty=LoyaltySettings(
                enabled=True,
                program_type=LoyaltyProgramType.CASHBACK,
                cashback_percentage=Decimal("0"),
            ),
        )
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CASH,
            discount=Decimal("2000"),
            customer_phone="0912",
            wallet_to_redeem=Decimal("8000"),
        )
        sale = _engine(store, deterministic_clock).process_transaction(
            cart((menu_x, 1)), payment,
        ).new_sale

        assert sale.total_amount == Decimal("40000")
        assert sale.discount == Decimal("10000")
        assert store.state.customers[0].wallet_balance == Decimal("0")
        assert store.state.customers[0].total_spent == Decimal("40000")

    def test_wallet_redemption_over_payable_rejected(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        existing = Customer(id="c1", phone="0912", wallet_balance=Decimal("90000"))
        store = make_store(
            menu=[menu_x],
            customers=[existing],
            loyalty=LoyaltySettings(enabled=True, program_type=LoyaltyProgramType.CASHBACK),
        )
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CASH,
            customer_phone="0912",
            wallet_to_redeem=Decimal("50001"),
        )
        with pytest.raises(InvalidSaleRequestError) as exc_info:
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)
        assert exc_info.value.field == "wallet_to_redeem"
        assert store.state.sales == ()

    def test_points_redemption_below_minimum_purchase_rejected(
        self, make_store, menu_x, cart, cashier, deterministic_clock,
    ):
        existing = Customer(id="c1", phone="0912", loyalty_points=20)
        store = make_store(
            menu=[menu_x],
            customers=[existing],
            loyalty=LoyaltySettings(
                enabled=True,
                program_type=LoyaltyProgramType.POINTS,
                min_redeem_amount=Decimal("60000"),
            ),
        )
        payment = PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CASH,
            customer_phone="0912",
            points_to_redeem=5,
        )
        with pytest.raises(InvalidSaleRequestError) as exc_info:
            _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)

        assert exc_info.value.field == "points_to_redeem"
        assert store.state.customers == (existing,)
        assert store.state.invoice_counter == 0

    def test_cashback_credited(self, make_store, menu_x, cart, cashier, deterministic_clock):
        store = make_store(
            menu=[menu_x],
            loyalty=LoyaltySettings(
                enabled=True,
                program_type=LoyaltyProgramType.CASHBACK,
                cashback_percentage=Decimal("10"),
            ),
        )
        payment = PaymentDetails(
            operator=cashier, payment_method=PaymentMethod.CASH, customer_phone="0935",
        )
        _engine(store, deterministic_clock).process_transaction(cart((menu_x, 1)), payment)
        assert store.state.customers[0].wallet_balance == Decimal("5000")


class TestLowStockAfterSale:

    def test_hundred_minus_sixty_raises_one_low_stock_task(
        self, make_store, ingredient_a, menu_x, cart, payment, deterministic_clock,
    ):
        """Stock 100, threshold 50, a sale uses 60: exactly one 'Low stock: A' task."""
        store = make_store(inventory=[ingredient_a], menu=[menu_x])
        tasks = ManagerTaskService(store, deterministic_clock)
        engine = TransactionEngine(store, deterministic_clock, tasks)

        engine.process_transaction(cart((menu_x, 1)), payment)
        created = tasks.generate_tasks_from_rules()
        again = tasks.generate_tasks_from_rules()

        assert [t.title for t in created] == ["Low stock: A"]
        assert again == ()
        assert [t.title for t in store.state.manager_tasks] == ["Low stock: A"]
