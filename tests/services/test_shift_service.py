"""Tests for opening, closing and reconciling shifts."""

from decimal import Decimal

import pytest

from restaurant_kernel.domain.audit import verify_audit_chain
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    PaymentMethod,
    ShiftStatus,
)
from restaurant_kernel.exceptions import ShiftAlreadyOpenError, ShiftNotOpenError
from restaurant_services.shift_service import ShiftService
from restaurant_services.transaction_service import PaymentDetails, TransactionEngine


@pytest.fixture
def setup(make_store, make_menu_item, deterministic_clock):
    item = make_menu_item(id="menu-tea", name="Tea", price="50000")
    store = make_store(menu=[item])
    return store, ShiftService(store, deterministic_clock), item


class TestStartShift:

    def test_opens_shift(self, setup, cashier, deterministic_clock):
        store, shifts, _ = setup
        shift = shifts.start_shift(Decimal("100000"), cashier)

        assert shift.status is ShiftStatus.OPEN
        assert shift.start_time == deterministic_clock.now()
        assert shift.operator_name == cashier.full_name
        assert shifts.current_shift() == shift

        (entry,) = store.state.audit_logs
        assert (entry.action, entry.entity) == (AuditAction.CREATE, AuditEntity.SHIFT)
        assert entry.details == "Shift started with starting cash 100000"

    def test_only_one_open_shift(self, setup, cashier):
        _, shifts, _ = setup
        first = shifts.start_shift(Decimal("0"), cashier)

        with pytest.raises(ShiftAlreadyOpenError) as exc_info:
            shifts.start_shift(Decimal("0"), cashier)
        assert exc_info.value.open_shift_id == first.id

    def test_negative_starting_cash_rejected(self, setup, cashier):
        _, shifts, _ = setup
        with pytest.raises(ValueError):
            shifts.start_shift(Decimal("-1"), cashier)


class TestCloseShift:

    def _sell(self, store, clock, item, cart, cashier, method):
        engine = TransactionEngine(store, clock)
        engine.process_transaction(
            cart((item, 1)), PaymentDetails(operator=cashier, payment_method=method),
        )

    def test_discrepancy_of_minus_five_thousand(
        self, setup, cart, cashier, deterministic_clock, captured_logs,
    ):
        store, shifts, tea = setup
        shift = shifts.start_shift(Decimal("100000"), cashier)
        self._sell(store, deterministic_clock, tea, cart, cashier, PaymentMethod.CASH)
        self._sell(store, deterministic_clock, tea, cart, cashier, PaymentMethod.CARD)
        deterministic_clock.advance(8 * 3600)

        closed = shifts.close_shift(shift.id, Decimal("145000"), Decimal("0"), cashier)

        assert closed.status is ShiftStatus.CLOSED
        assert closed.expected_cash_sales == Decimal("150000")
        assert closed.card_sales == Decimal("50000")
        assert closed.discrepancy == Decimal("-5000")
        assert closed.end_time == deterministic_clock.now()
        assert shifts.current_shift() is None

        last = store.state.audit_logs[-1]
        assert last.action is AuditAction.SHIFT_CLOSE
        assert last.before["status"] == "open"
        assert last.after["discrepancy"] == "-5000"
        assert verify_audit_chain(store.state.audit_logs)

        closed_logs = [r for r in captured_logs() if r["message"] == "shift_closed"]
        assert closed_logs[0]["level"] == "WARNING"
        assert closed_logs[0]["shift_id"] == shift.id

    def test_running_totals(self, setup, cart, cashier, deterministic_clock):
        store, shifts, tea = setup
        shift = shifts.start_shift(Decimal("0"), cashier)
        self._sell(store, deterministic_clock, tea, cart, cashier, PaymentMethod.ONLINE)

        totals = shifts.running_totals(shift.id)
        assert totals.online == Decimal("50000")
        assert totals.cash == 0

    def test_closing_unknown_shift(self, setup):
        _, shifts, _ = setup
        with pytest.raises(ShiftNotOpenError):
            shifts.close_shift("nope", Decimal("0"), Decimal("0"))

    def test_closing_twice(self, setup, cashier):
        _, shifts, _ = setup
        shift = shifts.start_shift(Decimal("0"), cashier)
        shifts.close_shift(shift.id, Decimal("0"), Decimal("0"))

        with pytest.raises(ShiftNotOpenError):
            shifts.close_shift(shift.id, Decimal("0"), Decimal("0"))

    def test_balanced_close_logs_info(self, setup, cashier, captured_logs):
        _, shifts, _ = setup
        shift = shifts.start_shift(Decimal("1000"), cashier)
        shifts.close_shift(shift.id, Decimal("1000"), Decimal("1000"))

        closed_logs = [r for r in captured_logs() if r["message"] == "shift_closed"]
        assert closed_logs[0]["level"] == "INFO"
