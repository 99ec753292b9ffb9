"""Tests for expenses, valuation, health checks and data reset."""

from dataclasses import replace
from decimal import Decimal

import pytest

from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    ExpenseCategory,
    PaymentMethod,
    StockDeductionPolicy,
)
from restaurant_kernel.exceptions import AuditChainBrokenError
from restaurant_services.reporting_service import ReportingService
from restaurant_services.transaction_service import PaymentDetails, TransactionEngine


class TestAddExpense:

    def test_records_and_audits(self, make_store, cashier, deterministic_clock):
        store = make_store()
        service = ReportingService(store, deterministic_clock)

        expense = service.add_expense(
            "June rent", Decimal("3000000"), ExpenseCategory.RENT, actor=cashier,
        )

        assert expense.date == deterministic_clock.now()
        assert store.state.expenses == (expense,)
        (entry,) = store.state.audit_logs
        assert (entry.action, entry.entity) == (AuditAction.CREATE, AuditEntity.EXPENSE)
        assert entry.details == "Created expense: June rent for 3000000"

    @pytest.mark.parametrize("title, amount", [("", "10"), ("Gas", "0"), ("Gas", "-5")])
    def test_invalid(self, make_store, title, amount):
        store = make_store()
        with pytest.raises(ValueError):
            ReportingService(store).add_expense(title, Decimal(amount))
        assert store.state.expenses == ()

    def test_flows_into_profit_and_loss(self, make_store, deterministic_clock):
        service = ReportingService(make_store(), deterministic_clock)
        service.add_expense("Ads", Decimal("7000"), ExpenseCategory.MARKETING)

        report = service.profit_and_loss()
        assert report.operating_expenses == Decimal("7000")
        assert report.net_profit == Decimal("-7000")


class TestInventoryValue:

    def test_sums_active_items(self, make_store, make_ingredient):
        store = make_store(inventory=[
            make_ingredient(
                id="i1", current_stock="1000", cost_per_unit="100000",
                purchase_unit="kg", conversion_rate=Decimal("1000"),
            ),
            make_ingredient(id="i2", current_stock="-10", cost_per_unit="10"),
            make_ingredient(id="i3", current_stock="50", cost_per_unit="10", is_deleted=True),
        ])
        assert ReportingService(store).inventory_value() == Decimal("99900")

    def test_empty(self, make_store):
        assert ReportingService(make_store()).inventory_value() == 0


class TestDataHealthAndAudit:

    def test_data_health(self, make_store, make_menu_item):
        store = make_store(menu=[make_menu_item(id="m1")])
        (issue,) = ReportingService(store).data_health()
        assert issue.id == "menu-no-recipe-m1"

    def test_verify_audit_trail_detects_tampering(self, make_store, deterministic_clock):
        store = make_store()
        service = ReportingService(store, deterministic_clock)
        service.add_expense("Gas", Decimal("100"))
        service.add_expense("Water", Decimal("200"))
        assert service.verify_audit_trail()

        first, second = store.state.audit_logs
        tampered = replace(first, details="Created expense: Gas for 1")
        store.publish(replace(store.state, audit_logs=(tampered, second)))

        with pytest.raises(AuditChainBrokenError) as exc_info:
            service.verify_audit_trail()
        assert exc_info.value.audit_log_id == first.id


class TestResetData:

    def test_keeps_audit_counter_and_settings(
        self, make_store, make_ingredient, make_menu_item, cart, cashier, deterministic_clock,
    ):
        item = make_menu_item(id="m1", price="1000")
        store = make_store(
            policy=StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT,
            inventory=[make_ingredient()],
            menu=[item],
        )
        TransactionEngine(store, deterministic_clock).process_transaction(
            cart((item, 1)), PaymentDetails(operator=cashier, payment_method=PaymentMethod.CASH),
        )
        audit_before = store.state.audit_logs

        ReportingService(store, deterministic_clock).reset_data(cashier)

        state = store.state
        assert state.inventory == state.menu == state.sales == ()
        assert state.invoice_counter == 1
        assert state.settings.stock_deduction_policy is StockDeductionPolicy.BLOCK_SALE_IF_INSUFFICIENT
        assert state.audit_logs[:-1] == audit_before
        last = state.audit_logs[-1]
        assert (last.action, last.entity) == (AuditAction.DELETE, AuditEntity.DATA_HEALTH)
        assert last.entity_id is None

    def test_reset_is_logged(self, make_store, captured_logs):
        ReportingService(make_store()).reset_data()
        (record,) = [r for r in captured_logs() if r["message"] == "application_data_reset"]
        assert record["level"] == "WARNING"
        assert record["actor_id"] == "system"


class TestDailyBrief:

    def test_uses_clock_and_current_state(
        self, make_store, make_ingredient, make_menu_item, cart, cashier, deterministic_clock,
        captured_logs,
    ):
        item = make_menu_item(id="m1", name="Tea", price="1000")
        store = make_store(
            inventory=[make_ingredient(id="ing-tea", name="Tea leaves", current_stock="0", min_threshold="5")],
            menu=[item],
        )
        TransactionEngine(store, deterministic_clock).process_transaction(
            cart((item, 2)), PaymentDetails(operator=cashier, payment_method=PaymentMethod.CASH),
        )

        brief = ReportingService(store, deterministic_clock).daily_brief()

        assert brief.date == deterministic_clock.now().replace(hour=0)
        assert brief.sales_today_total == Decimal("2000")
        assert brief.sales_today_count == 1
        assert [(t.menu_item.id, t.quantity) for t in brief.top_selling_today] == [("m1", 2)]
        assert [i.id for i in brief.low_stock_items] == ["ing-tea"]

        (record,) = [r for r in captured_logs() if r["message"] == "daily_brief_generated"]
        assert record["action_ids"] == ["top-profit", "low-stock"]

    def test_does_not_touch_store(self, make_store, deterministic_clock):
        store = make_store()
        before = store.state
        ReportingService(store, deterministic_clock).daily_brief()
        assert store.state is before
