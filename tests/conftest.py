"""
Pytest configuration and fixtures for the restaurant back-office tests.

Everything here is in-memory: stores are built from explicit
``RestaurantState`` snapshots and time comes from a ``DeterministicClock``.
Persistence tests that need a database use SQLite through
``init_engine_from_url`` and clean up with ``reset_engine``.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from restaurant_config.schema import RestaurantSettings
from restaurant_kernel.domain.clock import DeterministicClock
from restaurant_kernel.domain.models import (
    CartLine,
    Ingredient,
    LoyaltySettings,
    MenuItem,
    Operator,
    PrepItem,
    RecipeLine,
    RecipeSource,
    StockDeductionPolicy,
)
from restaurant_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from restaurant_services.state import RestaurantState, RestaurantStore

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture restaurant_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.process_transaction(...)
            logs = captured_logs()
            assert any(r["message"] == "sale_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("restaurant_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# ---------------------------------------------------------------------------
# Time and actors
# ---------------------------------------------------------------------------


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-06-15 12:00 UTC."""
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def cashier():
    return Operator(id="user-cashier", full_name="Cashier One")


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_ingredient():
    """Factory for Ingredient with gram usage unit and zero cost by default."""

    def _make(
        id="ing-a",
        name="A",
        current_stock="100",
        usage_unit="gram",
        cost_per_unit="0",
        min_threshold="0",
        **kwargs,
    ) -> Ingredient:
        return Ingredient(
            id=id,
            name=name,
            usage_unit=usage_unit,
            current_stock=Decimal(str(current_stock)),
            cost_per_unit=Decimal(str(cost_per_unit)),
            min_threshold=Decimal(str(min_threshold)),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_prep_item():
    """Factory for PrepItem measured in grams."""

    def _make(
        id="prep-sauce",
        name="Sauce",
        on_hand="0",
        unit="gram",
        par_level="0",
        station="cold",
        **kwargs,
    ) -> PrepItem:
        return PrepItem(
            id=id,
            name=name,
            station=station,
            par_level=Decimal(str(par_level)),
            on_hand=Decimal(str(on_hand)),
            unit=unit,
            **kwargs,
        )

    return _make


@pytest.fixture
def recipe_line():
    """Factory for RecipeLine; ``source`` defaults to inventory."""

    def _make(component_id, amount, unit="gram", source=RecipeSource.INVENTORY) -> RecipeLine:
        return RecipeLine(
            component_id=component_id,
            amount=Decimal(str(amount)),
            unit=unit,
            source=source,
        )

    return _make


@pytest.fixture
def make_menu_item():
    """Factory for MenuItem; ``recipe`` is a sequence of RecipeLine."""

    def _make(id="menu-x", name="X", price="100000", recipe=(), category="main", **kwargs) -> MenuItem:
        return MenuItem(
            id=id,
            name=name,
            category=category,
            price=Decimal(str(price)),
            recipe=tuple(recipe),
            **kwargs,
        )

    return _make


@pytest.fixture
def cart():
    """Build a cart from ``(menu_item, quantity)`` pairs."""

    def _make(*lines) -> tuple[CartLine, ...]:
        return tuple(CartLine(menu_item=item, quantity=qty) for item, qty in lines)

    return _make


@pytest.fixture
def make_store():
    """
    Factory for an in-memory RestaurantStore.

    Keyword arguments are RestaurantState fields; ``policy`` and ``loyalty``
    shortcut the matching settings.
    """

    def _make(
        policy=StockDeductionPolicy.ALLOW_NEGATIVE,
        loyalty: LoyaltySettings | None = None,
        repository=None,
        **state_fields,
    ) -> RestaurantStore:
        settings = RestaurantSettings(
            stock_deduction_policy=policy,
            loyalty=loyalty or LoyaltySettings(),
        )
        for key in (
            "inventory", "menu", "sales", "expenses", "suppliers", "waste_records",
            "shifts", "prep_items", "purchase_invoices", "audit_logs", "customers",
            "manager_tasks",
        ):
            if key in state_fields:
                state_fields[key] = tuple(state_fields[key])
        return RestaurantStore(RestaurantState(settings=settings, **state_fields), repository)

    return _make
