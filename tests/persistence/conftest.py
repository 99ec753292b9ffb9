"""Fixtures shared by the persistence tests."""

from decimal import Decimal

import pytest

from restaurant_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from restaurant_kernel.domain.models import (
    ExpenseCategory,
    LoyaltySettings,
    PaymentMethod,
    RecipeSource,
    TaskCategory,
    TaskDraft,
    TaskPriority,
)
from restaurant_services.reporting_service import ReportingService
from restaurant_services.shift_service import ShiftService
from restaurant_services.task_service import ManagerTaskService
from restaurant_services.transaction_service import PaymentDetails, TransactionEngine


@pytest.fixture
def populated_state(
    make_store, make_ingredient, make_prep_item, make_menu_item, recipe_line, cart,
    cashier, deterministic_clock,
):
    """A state touched by every kind of record, built through the services."""
    milk = make_ingredient(
        id="ing-milk", name="Milk", current_stock="2", usage_unit="liter",
        cost_per_unit="40000", min_threshold="1",
    )
    syrup = make_prep_item(id="prep-syrup", name="Syrup", on_hand="500", cost_per_unit=Decimal("12.5"))
    latte = make_menu_item(
        id="menu-latte",
        name="Latte",
        price="85000",
        recipe=(
            recipe_line("ing-milk", "250", "ml"),
            recipe_line("prep-syrup", "20", "gram", RecipeSource.PREP),
        ),
    )
    store = make_store(
        loyalty=LoyaltySettings(enabled=True),
        inventory=[milk],
        prep_items=[syrup],
        menu=[latte],
    )

    shifts = ShiftService(store, deterministic_clock)
    shift = shifts.start_shift(Decimal("100000"), cashier)
    TransactionEngine(store, deterministic_clock).process_transaction(
        cart((latte, 2)),
        PaymentDetails(
            operator=cashier,
            payment_method=PaymentMethod.CARD,
            tax_percent=Decimal("9"),
            customer_phone="09120000000",
        ),
    )
    deterministic_clock.advance(3600)
    shifts.close_shift(shift.id, Decimal("100000"), Decimal("100000"), cashier)
    ReportingService(store, deterministic_clock).add_expense(
        "Electricity", Decimal("250000"), ExpenseCategory.UTILITIES,
    )
    ManagerTaskService(store, deterministic_clock).add_task(TaskDraft(
        title="Descale espresso machine",
        description="Monthly",
        category=TaskCategory.QUALITY,
        priority=TaskPriority.MEDIUM,
    ))
    return store.state


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite with the schema created; torn down after the test."""
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()
