"""
restaurant_services.reporting_service -- Expenses, P&L, data health and resets.

Responsibility:
    Record operating expenses, produce the profit and loss statement and the
    inventory valuation, run data health checks, build the daily brief,
    verify the audit trail and reset business data.

Invariants enforced:
    - Expenses need a title and a positive amount.
    - ``reset_data`` keeps settings, the audit trail and the invoice
      counter, and is itself audited.

Failure modes:
    - ValueError: invalid expense.
    - AuditChainBrokenError: from ``verify_audit_trail`` on tampering.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from restaurant_engines.costing import inventory_item_value
from restaurant_engines.daily_brief import DailyBrief, generate_daily_brief
from restaurant_engines.data_health import HealthIssue, run_data_health_checks
from restaurant_engines.reporting import ProfitAndLoss, profit_and_loss
from restaurant_kernel.domain.audit import AuditTrail, verify_audit_chain
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    Expense,
    ExpenseCategory,
    Operator,
)
from restaurant_kernel.domain.values import ZERO, format_quantity
from restaurant_kernel.logging_config import get_logger
from restaurant_services.state import SYSTEM_OPERATOR, RestaurantStore, reset_state

logger = get_logger("services.reporting")


class ReportingService:
    """Back-office reporting over the current state."""

    def __init__(self, store: RestaurantStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def add_expense(
        self,
        title: str,
        amount: Decimal,
        category: ExpenseCategory = ExpenseCategory.OTHER,
        date: datetime | None = None,
        description: str | None = None,
        actor: Operator | None = None,
    ) -> Expense:
        """
        Record an operating expense.

        Raises:
            ValueError: Empty title or non-positive amount.
        """
        if not title or not title.strip():
            raise ValueError("expense title is required")
        if amount <= 0:
            raise ValueError("expense amount must be positive")

        state = self._store.state
        now = self._clock.now()
        expense = Expense(
            id=str(uuid4()),
            title=title,
            amount=amount,
            category=category,
            date=date or now,
            description=description,
        )
        actor = actor or SYSTEM_OPERATOR
        trail = AuditTrail(
            state.audit_logs, timestamp=now, user_id=actor.id, user_name=actor.full_name,
        )
        trail.record(
            AuditAction.CREATE,
            AuditEntity.EXPENSE,
            expense.id,
            f"Created expense: {title} for {format_quantity(amount)}",
            after=expense,
        )
        self._store.publish(replace(
            state, expenses=state.expenses + (expense,), audit_logs=trail.entries,
        ))
        logger.info(
            "expense_recorded",
            extra={"expense_id": expense.id, "amount": amount, "category": category.value},
        )
        return expense

    def profit_and_loss(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ProfitAndLoss:
        state = self._store.state
        return profit_and_loss(state.sales, state.expenses, state.waste_records, start, end)

    def inventory_value(self) -> Decimal:
        """Value of all active stock at current cost per usage unit."""
        return sum(
            (inventory_item_value(i) for i in self._store.state.inventory if not i.is_deleted),
            ZERO,
        )

    def data_health(self) -> tuple[HealthIssue, ...]:
        state = self._store.state
        issues = run_data_health_checks(state.menu, state.inventory, state.prep_items)
        logger.info("data_health_checked", extra={"issue_count": len(issues)})
        return issues

    def daily_brief(self) -> DailyBrief:
        """The daily brief for the clock's current day."""
        state = self._store.state
        brief = generate_daily_brief(
            state.sales, state.menu, state.inventory, state.waste_records, now=self._clock.now(),
        )
        logger.info(
            "daily_brief_generated",
            extra={
                "brief_date": brief.date.isoformat(),
                "sales_today_total": brief.sales_today_total,
                "action_ids": [a.id for a in brief.recommended_actions],
            },
        )
        return brief

    def verify_audit_trail(self) -> bool:
        return verify_audit_chain(self._store.state.audit_logs)

    def reset_data(self, actor: Operator | None = None) -> None:
        """Wipe business data back to empty defaults."""
        state = self._store.state
        actor = actor or SYSTEM_OPERATOR
        trail = AuditTrail(
            state.audit_logs,
            timestamp=self._clock.now(),
            user_id=actor.id,
            user_name=actor.full_name,
        )
        trail.record(
            AuditAction.DELETE,
            AuditEntity.DATA_HEALTH,
            None,
            "All application data has been reset.",
        )
        self._store.publish(replace(reset_state(state), audit_logs=trail.entries))
        logger.warning("application_data_reset", extra={"actor_id": actor.id})
