"""
restaurant_services.state -- Application state snapshot and store.

Responsibility:
    ``RestaurantState`` is the single owner of every collection: inventory,
    menu, sales, customers, shifts, audit logs, manager tasks and the rest.
    ``RestaurantStore`` holds the current snapshot and replaces it
    atomically.

Architecture position:
    Services -- imperative shell.  Every service action reads
    ``store.state``, builds the complete next state with pure functions and
    calls ``store.publish()`` exactly once.

Invariants enforced:
    - Snapshots are frozen; collections are tuples.  A published state is
      never mutated, so readers holding an old snapshot stay consistent.
    - ``publish`` is the only way the current state changes.
    - When a repository is attached, every published state is saved.

Failure modes:
    - Repository save errors propagate from ``publish`` after the in-memory
      swap; the store keeps the new state.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, TypeVar

from restaurant_config.schema import RestaurantSettings
from restaurant_kernel.domain.models import (
    AuditLog,
    Customer,
    Expense,
    Ingredient,
    ManagerTask,
    MenuItem,
    Operator,
    PrepItem,
    PurchaseInvoice,
    Sale,
    Shift,
    ShiftStatus,
    Supplier,
    WasteRecord,
)
from restaurant_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from restaurant_services.persistence.repository import AppRepository

logger = get_logger("services.state")

T = TypeVar("T")


@dataclass(frozen=True)
class RestaurantState:
    """One immutable snapshot of the whole application."""

    inventory: tuple[Ingredient, ...] = ()
    menu: tuple[MenuItem, ...] = ()
    sales: tuple[Sale, ...] = ()
    expenses: tuple[Expense, ...] = ()
    suppliers: tuple[Supplier, ...] = ()
    waste_records: tuple[WasteRecord, ...] = ()
    shifts: tuple[Shift, ...] = ()
    prep_items: tuple[PrepItem, ...] = ()
    purchase_invoices: tuple[PurchaseInvoice, ...] = ()
    audit_logs: tuple[AuditLog, ...] = ()
    customers: tuple[Customer, ...] = ()
    manager_tasks: tuple[ManagerTask, ...] = ()
    invoice_counter: int = 0
    settings: RestaurantSettings = field(default_factory=RestaurantSettings)

    def inventory_by_id(self) -> dict[str, Ingredient]:
        return {item.id: item for item in self.inventory}

    def prep_items_by_id(self) -> dict[str, PrepItem]:
        return {item.id: item for item in self.prep_items}

    def menu_by_id(self) -> dict[str, MenuItem]:
        return {item.id: item for item in self.menu}

    def customer_by_phone(self, phone: str) -> Customer | None:
        for customer in self.customers:
            if customer.phone == phone and not customer.is_deleted:
                return customer
        return None

    def open_shift(self) -> Shift | None:
        for shift in self.shifts:
            if shift.status is ShiftStatus.OPEN:
                return shift
        return None


def replace_by_id(items: Iterable[T], updates: Mapping[str, T]) -> tuple[T, ...]:
    """``items`` with every element whose id is in ``updates`` swapped in place."""
    return tuple(updates.get(item.id, item) for item in items)  # type: ignore[attr-defined]


def reset_state(state: RestaurantState) -> RestaurantState:
    """
    The state after a data reset.

    Business data returns to empty defaults.  Settings, the audit trail and
    the invoice counter survive, so invoice numbers never repeat and the
    reset itself stays auditable.
    """
    return RestaurantState(
        audit_logs=state.audit_logs,
        invoice_counter=state.invoice_counter,
        settings=state.settings,
    )


class RestaurantStore:
    """
    Holds the current ``RestaurantState``.

    Contract:
        ``state`` always returns a complete snapshot; ``publish`` swaps it.
    Guarantees:
        - When constructed with a repository, each published state is saved
          before ``publish`` returns.
    Non-goals:
        - No locking.  The store assumes a single writer.
    """

    def __init__(
        self,
        state: RestaurantState | None = None,
        repository: AppRepository | None = None,
    ):
        self._state = state or RestaurantState()
        self._repository = repository

    @classmethod
    def from_repository(
        cls,
        repository: AppRepository,
        default_settings: RestaurantSettings | None = None,
    ) -> RestaurantStore:
        """Open a store on the repository's saved state, or a fresh one."""
        state = repository.load()
        if state is None:
            logger.info("state_initialized_empty")
            state = RestaurantState(settings=default_settings or RestaurantSettings())
        return cls(state, repository)

    @property
    def state(self) -> RestaurantState:
        return self._state

    def publish(self, next_state: RestaurantState) -> RestaurantState:
        previous = self._state
        self._state = next_state
        logger.debug(
            "state_published",
            extra={
                "sale_count": len(next_state.sales),
                "audit_log_count": len(next_state.audit_logs),
                "new_audit_entries": len(next_state.audit_logs) - len(previous.audit_logs),
                "invoice_counter": next_state.invoice_counter,
            },
        )
        if self._repository is not None:
            self._repository.save(next_state)
        return next_state

    def update_settings(self, settings: RestaurantSettings) -> RestaurantState:
        return self.publish(replace(self._state, settings=settings))


SYSTEM_OPERATOR = Operator(id="system", full_name="System")
