"""
Typed exception hierarchy for the restaurant kernel.

Every error is a typed class with a machine-readable ``code`` class attribute
and carries its context as structured attributes, so callers catch by type and
read fields instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RestaurantKernelError (base)
    |
    +-- SaleError
    |   +-- InvalidSaleRequestError
    |   +-- SaleBlockedError
    |   +-- StockConfirmationRequiredError
    |
    +-- ShiftError
    |   +-- ShiftAlreadyOpenError
    |   +-- ShiftNotOpenError
    |
    +-- TaskError
    |   +-- TaskNotFoundError
    |   +-- InvalidTaskError
    |
    +-- InventoryError
    |   +-- EntityNotFoundError
    |   +-- InvalidInventoryOperationError
    |   +-- UnitConversionError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- PersistenceError
    |   +-- StateLoadError
    |   +-- UnsupportedSchemaVersionError
    |   +-- BackupValidationError
    |
    +-- InvoiceIngestionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                           | When Raised
------------|--------------------------------|--------------------------------------
Sale        | INVALID_SALE_REQUEST           | Empty cart, bad quantity/discount/tax
            | SALE_BLOCKED                   | BLOCK policy and stock would go short
            | STOCK_CONFIRMATION_REQUIRED    | Confirmation policy, shortfall, no ack
------------|--------------------------------|--------------------------------------
Shift       | SHIFT_ALREADY_OPEN             | start_shift while a shift is open
            | SHIFT_NOT_OPEN                 | close_shift on unknown/closed shift
------------|--------------------------------|--------------------------------------
Task        | TASK_NOT_FOUND                 | update on unknown task id
            | INVALID_TASK                   | Task draft without a title
------------|--------------------------------|--------------------------------------
Inventory   | ENTITY_NOT_FOUND               | Ingredient/prep/menu id not found
            | INVALID_INVENTORY_OPERATION    | Waste > stock, non-positive amounts
            | UNIT_CONVERSION_FAILED         | No conversion path between units
------------|--------------------------------|--------------------------------------
Audit       | AUDIT_CHAIN_BROKEN             | Hash chain validation failed
------------|--------------------------------|--------------------------------------
Persistence | STATE_LOAD_FAILED              | Stored state is corrupt/unreadable
            | UNSUPPORTED_SCHEMA_VERSION     | Stored version newer than supported
            | BACKUP_VALIDATION_FAILED       | Backup file missing required data
------------|--------------------------------|--------------------------------------
Ingestion   | INVOICE_INGESTION_FAILED       | OCR payload malformed
"""

from collections.abc import Sequence
from typing import Any


class RestaurantKernelError(Exception):
    """
    Base exception for all restaurant kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "RESTAURANT_KERNEL_ERROR"


# Sale-related exceptions


class SaleError(RestaurantKernelError):
    """Base exception for sale processing errors."""

    code: str = "SALE_ERROR"


class InvalidSaleRequestError(SaleError):
    """The sale request failed validation before any state was touched."""

    code: str = "INVALID_SALE_REQUEST"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid sale request ({field}): {reason}")


class SaleBlockedError(SaleError):
    """
    The BLOCK_SALE_IF_INSUFFICIENT policy rejected the sale.

    ``insufficient_items`` lists every component that would go short.
    """

    code: str = "SALE_BLOCKED"

    def __init__(self, insufficient_items: Sequence[Any]):
        self.insufficient_items = tuple(insufficient_items)
        names = ", ".join(item.name for item in self.insufficient_items)
        super().__init__(f"Sale blocked by insufficient stock: {names}")


class StockConfirmationRequiredError(SaleError):
    """The sale would leave stock short and the operator has not confirmed it."""

    code: str = "STOCK_CONFIRMATION_REQUIRED"

    def __init__(self, insufficient_items: Sequence[Any]):
        self.insufficient_items = tuple(insufficient_items)
        names = ", ".join(item.name for item in self.insufficient_items)
        super().__init__(f"Confirmation required for insufficient stock: {names}")


# Shift-related exceptions


class ShiftError(RestaurantKernelError):
    """Base exception for shift errors."""

    code: str = "SHIFT_ERROR"


class ShiftAlreadyOpenError(ShiftError):
    """A shift is already open; only one may be open at a time."""

    code: str = "SHIFT_ALREADY_OPEN"

    def __init__(self, open_shift_id: str):
        self.open_shift_id = open_shift_id
        super().__init__(f"Shift already open: {open_shift_id}")


class ShiftNotOpenError(ShiftError):
    """No open shift with the given id."""

    code: str = "SHIFT_NOT_OPEN"

    def __init__(self, shift_id: str):
        self.shift_id = shift_id
        super().__init__(f"No open shift with id {shift_id}")


# Task-related exceptions


class TaskError(RestaurantKernelError):
    """Base exception for manager task errors."""

    code: str = "TASK_ERROR"


class TaskNotFoundError(TaskError):

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Manager task not found: {task_id}")


class InvalidTaskError(TaskError):

    code: str = "INVALID_TASK"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid manager task: {reason}")


# Inventory-related exceptions


class InventoryError(RestaurantKernelError):
    """Base exception for inventory, prep and catalog errors."""

    code: str = "INVENTORY_ERROR"


class EntityNotFoundError(InventoryError):
    """Referenced entity does not exist in the current state."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidInventoryOperationError(InventoryError):
    """An inventory mutation was rejected by its preconditions."""

    code: str = "INVALID_INVENTORY_OPERATION"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Invalid {operation}: {reason}")


class UnitConversionError(InventoryError):
    """No conversion path exists between two units."""

    code: str = "UNIT_CONVERSION_FAILED"

    def __init__(self, from_unit: str, to_unit: str, item_name: str | None = None):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.item_name = item_name
        target = f" for {item_name}" if item_name else ""
        super().__init__(
            f"Cannot convert {from_unit!r} to {to_unit!r}{target}"
        )


# Audit-related exceptions


class AuditError(RestaurantKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_log_id: str, expected_hash: str, actual_hash: str):
        self.audit_log_id = audit_log_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_log_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Persistence-related exceptions


class PersistenceError(RestaurantKernelError):
    """Base exception for state persistence errors."""

    code: str = "PERSISTENCE_ERROR"


class StateLoadError(PersistenceError):
    """Stored state could not be decoded."""

    code: str = "STATE_LOAD_FAILED"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to load state from {source}: {reason}")


class UnsupportedSchemaVersionError(PersistenceError):
    """Stored state was written by a newer schema than this build supports."""

    code: str = "UNSUPPORTED_SCHEMA_VERSION"

    def __init__(self, schema_version: int, supported_version: int):
        self.schema_version = schema_version
        self.supported_version = supported_version
        super().__init__(
            f"Unsupported schema version {schema_version} "
            f"(max supported {supported_version})"
        )


class BackupValidationError(PersistenceError):
    """A backup document is missing required sections or fields."""

    code: str = "BACKUP_VALIDATION_FAILED"

    def __init__(self, errors: Sequence[str]):
        self.errors = tuple(errors)
        super().__init__("Invalid backup: " + "; ".join(self.errors))


# Invoice ingestion exceptions


class InvoiceIngestionError(RestaurantKernelError):
    """The OCR reader returned a payload that cannot be normalized."""

    code: str = "INVOICE_INGESTION_FAILED"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invoice ingestion failed: {reason}")
