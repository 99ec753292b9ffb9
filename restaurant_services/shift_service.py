"""
restaurant_services.shift_service -- Shift open/close lifecycle.

Responsibility:
    Open a cashier shift with its starting cash and close it with a cash
    count, recording the reconciliation computed by
    ``restaurant_engines.shifts``.

Invariants enforced:
    - At most one shift is open at a time.
    - A closed shift is never reopened or closed again.
    - Opening audits ``CREATE SHIFT``; closing audits ``SHIFT_CLOSE SHIFT``
      with the full before and after records.

Failure modes:
    - ShiftAlreadyOpenError: ``start_shift`` while another shift is open.
    - ShiftNotOpenError: ``close_shift`` on an unknown or closed shift.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

from restaurant_engines.shifts import ShiftTotals, aggregate_shift_sales, reconcile_shift
from restaurant_kernel.domain.audit import AuditTrail
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    Operator,
    Shift,
    ShiftStatus,
)
from restaurant_kernel.domain.values import format_quantity
from restaurant_kernel.exceptions import ShiftAlreadyOpenError, ShiftNotOpenError
from restaurant_kernel.logging_config import LogContext, get_logger
from restaurant_services.state import SYSTEM_OPERATOR, RestaurantStore, replace_by_id

logger = get_logger("services.shift")


class ShiftService:
    """Opens and closes shifts against the store."""

    def __init__(self, store: RestaurantStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def current_shift(self) -> Shift | None:
        return self._store.state.open_shift()

    def running_totals(self, shift_id: str) -> ShiftTotals:
        """Sales so far in ``shift_id`` by payment method."""
        return aggregate_shift_sales(shift_id, self._store.state.sales)

    def start_shift(self, starting_cash: Decimal, operator: Operator) -> Shift:
        """
        Open a new shift.

        Raises:
            ShiftAlreadyOpenError: A shift is already open.
            ValueError: ``starting_cash`` is negative.
        """
        state = self._store.state
        current = state.open_shift()
        if current is not None:
            raise ShiftAlreadyOpenError(current.id)
        if starting_cash < 0:
            raise ValueError("starting_cash cannot be negative")

        now = self._clock.now()
        shift = Shift(
            id=str(uuid4()),
            start_time=now,
            starting_cash=starting_cash,
            status=ShiftStatus.OPEN,
            operator_name=operator.full_name,
        )
        trail = AuditTrail(
            state.audit_logs, timestamp=now, user_id=operator.id, user_name=operator.full_name,
        )
        trail.record(
            AuditAction.CREATE,
            AuditEntity.SHIFT,
            shift.id,
            f"Shift started with starting cash {format_quantity(starting_cash)}",
            after=shift,
        )
        self._store.publish(replace(
            state, shifts=state.shifts + (shift,), audit_logs=trail.entries,
        ))
        logger.info("shift_started", extra={"shift_id": shift.id, "starting_cash": starting_cash})
        return shift

    def close_shift(
        self,
        shift_id: str,
        actual_cash: Decimal,
        bank_deposit: Decimal,
        operator: Operator | None = None,
    ) -> Shift:
        """
        Close ``shift_id`` with the counted cash.

        Postconditions:
            The shift is CLOSED with expected cash, card and online totals,
            bank deposit and ``discrepancy = actual_cash - expected``.

        Raises:
            ShiftNotOpenError: No open shift has ``shift_id``.
        """
        state = self._store.state
        shift = next(
            (s for s in state.shifts if s.id == shift_id and s.status is ShiftStatus.OPEN),
            None,
        )
        if shift is None:
            raise ShiftNotOpenError(shift_id)

        now = self._clock.now()
        closed = reconcile_shift(shift, state.sales, actual_cash, bank_deposit, now)

        actor = operator or SYSTEM_OPERATOR
        trail = AuditTrail(
            state.audit_logs, timestamp=now, user_id=actor.id, user_name=actor.full_name,
        )
        trail.record(
            AuditAction.SHIFT_CLOSE,
            AuditEntity.SHIFT,
            shift.id,
            f"Shift closed with discrepancy {format_quantity(closed.discrepancy)}",
            before=shift,
            after=closed,
        )
        self._store.publish(replace(
            state,
            shifts=replace_by_id(state.shifts, {shift.id: closed}),
            audit_logs=trail.entries,
        ))

        with LogContext.bind(shift_id=shift.id):
            log = logger.warning if closed.discrepancy else logger.info
            log(
                "shift_closed",
                extra={
                    "expected_cash": closed.expected_cash_sales,
                    "actual_cash": actual_cash,
                    "discrepancy": closed.discrepancy,
                },
            )
        return closed
