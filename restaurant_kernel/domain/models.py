"""
Restaurant domain models (``restaurant_kernel.domain.models``).

Responsibility
--------------
Frozen value objects for the nouns of the restaurant back office: ingredients,
prep (batch) items, menu items and their recipes, sales, customers, shifts,
audit log entries, manager tasks, waste records, expenses, suppliers and
purchase invoices.

Architecture
------------
Layer: **Kernel > Domain** -- pure data, zero I/O.  Every dataclass is
``frozen=True`` and every collection field is a tuple, so a published
``RestaurantState`` snapshot can be shared freely and never mutated in place.
Updates use ``dataclasses.replace``.

Invariants
----------
- Money and stock quantities are ``Decimal``; cart quantities, visit counts
  and loyalty points are ``int``.  Never ``float``.
- Entities reference each other by id only.
- ``Sale.items`` freeze ``price_at_sale`` and ``cost_at_sale`` at commit time;
  later menu or inventory changes never alter historical sales.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RecipeSource(str, Enum):
    """Where a recipe component is drawn from."""
    INVENTORY = "inventory"
    PREP = "prep"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    VOID = "void"


class SaleStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"


class CustomerSegment(str, Enum):
    NEW = "new"
    LOYAL = "loyal"
    VIP = "vip"
    SLIPPING = "slipping"
    CHURNED = "churned"


class ShiftStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    WASTE = "WASTE"
    SHIFT_CLOSE = "SHIFT_CLOSE"
    INVOICE_ADD = "INVOICE_ADD"
    TRANSACTION = "TRANSACTION"


class AuditEntity(str, Enum):
    MENU = "MENU"
    INVENTORY = "INVENTORY"
    EXPENSE = "EXPENSE"
    SHIFT = "SHIFT"
    USER = "USER"
    INVOICE = "INVOICE"
    PREP = "PREP"
    ACTION_CENTER = "ACTION_CENTER"
    DATA_HEALTH = "DATA_HEALTH"
    SALE = "SALE"
    CUSTOMER = "CUSTOMER"


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    DISMISSED = "dismissed"

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.OPEN, TaskStatus.IN_PROGRESS)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskCategory(str, Enum):
    SALES = "sales"
    INVENTORY = "inventory"
    PROCUREMENT = "procurement"
    STAFF = "staff"
    QUALITY = "quality"
    FINANCE = "finance"
    OTHER = "other"


class TaskSource(str, Enum):
    MANUAL = "manual"
    RULE = "rule"
    AI = "ai"
    COPILOT = "copilot"


class EvidenceType(str, Enum):
    METRIC = "metric"
    LINK = "link"
    TEXT = "text"


class StockDeductionPolicy(str, Enum):
    """How a sale reacts when it would drive stock below zero."""
    ALLOW_NEGATIVE = "ALLOW_NEGATIVE"
    BLOCK_SALE_IF_INSUFFICIENT = "BLOCK_SALE_IF_INSUFFICIENT"
    ALLOW_BUT_REQUIRE_CONFIRMATION = "ALLOW_BUT_REQUIRE_CONFIRMATION"


class LoyaltyProgramType(str, Enum):
    POINTS = "points"
    CASHBACK = "cashback"


class ExpenseCategory(str, Enum):
    RENT = "rent"
    SALARY = "salary"
    UTILITIES = "utilities"
    MARKETING = "marketing"
    MAINTENANCE = "maintenance"
    OTHER = "other"


class SubscriptionTier(str, Enum):
    FREE_TRIAL = "free_trial"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class InvoicePaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"


# ---------------------------------------------------------------------------
# Inventory, prep and menu
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseRecord:
    """One restock event; ``cost_per_unit`` is per purchase unit."""
    date: datetime
    quantity: Decimal
    cost_per_unit: Decimal


@dataclass(frozen=True)
class CustomUnitConversion:
    """Item-specific conversion: one ``from_unit`` equals ``factor`` ``to_unit``."""
    from_unit: str
    to_unit: str
    factor: Decimal


@dataclass(frozen=True)
class Ingredient:
    """
    A raw inventory item.

    ``current_stock`` and ``min_threshold`` are in ``usage_unit``;
    ``cost_per_unit`` is the price of one ``purchase_unit``, and
    ``conversion_rate`` is how many usage units one purchase unit holds.
    Stock may be negative under the ALLOW_NEGATIVE policy.
    """
    id: str
    name: str
    usage_unit: str
    current_stock: Decimal
    cost_per_unit: Decimal
    min_threshold: Decimal = ZERO
    purchase_unit: str | None = None
    conversion_rate: Decimal | None = None
    supplier_id: str | None = None
    purchase_history: tuple[PurchaseRecord, ...] = ()
    custom_unit_conversions: tuple[CustomUnitConversion, ...] = ()
    is_deleted: bool = False

    @property
    def safe_conversion_rate(self) -> Decimal:
        return self.conversion_rate or Decimal("1")


@dataclass(frozen=True)
class RecipeLine:
    """One component of a recipe, in ``unit``."""
    component_id: str
    amount: Decimal
    unit: str
    source: RecipeSource = RecipeSource.INVENTORY


@dataclass(frozen=True)
class PrepItem:
    """
    A batch-produced intermediate (sauce, dough) consumed by menu recipes.

    ``on_hand`` and ``par_level`` are in ``unit``.  ``recipe`` describes one
    batch of ``batch_size`` units.  ``cost_per_unit`` is per ``unit``.
    """
    id: str
    name: str
    station: str
    par_level: Decimal
    on_hand: Decimal
    unit: str
    recipe: tuple[RecipeLine, ...] = ()
    batch_size: Decimal | None = None
    cost_per_unit: Decimal | None = None


@dataclass(frozen=True)
class MenuItem:
    id: str
    name: str
    category: str
    price: Decimal
    recipe: tuple[RecipeLine, ...] = ()
    image_url: str | None = None
    is_deleted: bool = False


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    category: str
    phone_number: str
    is_deleted: bool = False


# ---------------------------------------------------------------------------
# Sales and customers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CartLine:
    """A transient POS cart line; never persisted."""
    menu_item: MenuItem
    quantity: int


@dataclass(frozen=True)
class SaleItem:
    menu_item_id: str
    quantity: int
    price_at_sale: Decimal
    cost_at_sale: Decimal


@dataclass(frozen=True)
class Operator:
    """The cashier/server acting on the POS."""
    id: str
    full_name: str


@dataclass(frozen=True)
class Sale:
    """
    A committed sale.

    ``total_amount`` = subtotal x (1 + tax_percent/100) - discount, where
    ``discount`` includes any wallet credit redeemed.
    ``total_cost`` = sum of cost_at_sale x quantity over ``items``.
    """
    id: str
    invoice_number: str
    timestamp: datetime
    items: tuple[SaleItem, ...]
    total_amount: Decimal
    total_cost: Decimal
    operator_id: str
    operator_name: str
    tax_percent: Decimal = ZERO
    discount: Decimal = ZERO
    payment_method: PaymentMethod = PaymentMethod.CASH
    shift_id: str | None = None
    customer_id: str | None = None
    customer_phone: str | None = None
    table_number: str | None = None
    status: SaleStatus = SaleStatus.DELIVERED


@dataclass(frozen=True)
class FavoriteItem:
    item_id: str
    count: int


@dataclass(frozen=True)
class Customer:
    """
    A customer identified by phone number.

    ``last_visit`` is None until the first completed sale.
    """
    id: str
    phone: str
    total_visits: int = 0
    total_spent: Decimal = ZERO
    last_visit: datetime | None = None
    average_order_value: Decimal = ZERO
    loyalty_points: int = 0
    wallet_balance: Decimal = ZERO
    favorite_items: tuple[FavoriteItem, ...] = ()
    segment: CustomerSegment = CustomerSegment.NEW
    full_name: str | None = None
    is_deleted: bool = False


@dataclass(frozen=True)
class InsufficientItem:
    """A stock component that a sale would drive below zero."""
    id: str
    name: str
    required: Decimal
    available: Decimal
    unit: str
    source: RecipeSource

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available


# ---------------------------------------------------------------------------
# Shifts, expenses, waste, purchasing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Shift:
    """
    A cashier shift.

    The reconciliation fields stay None until the shift is closed.
    """
    id: str
    start_time: datetime
    starting_cash: Decimal
    status: ShiftStatus = ShiftStatus.OPEN
    operator_name: str | None = None
    end_time: datetime | None = None
    expected_cash_sales: Decimal | None = None
    actual_cash_sales: Decimal | None = None
    card_sales: Decimal | None = None
    online_sales: Decimal | None = None
    bank_deposit: Decimal | None = None
    discrepancy: Decimal | None = None


@dataclass(frozen=True)
class Expense:
    id: str
    title: str
    amount: Decimal
    category: ExpenseCategory
    date: datetime
    description: str | None = None


@dataclass(frozen=True)
class WasteRecord:
    """Recorded spoilage; ``cost_loss`` is valued at the time of recording."""
    id: str
    item_id: str
    item_name: str
    item_source: RecipeSource
    amount: Decimal
    unit: str
    cost_loss: Decimal
    reason: str
    date: datetime


@dataclass(frozen=True)
class InvoiceLine:
    name: str
    quantity: Decimal
    unit: str
    cost_per_unit: Decimal


@dataclass(frozen=True)
class PurchaseInvoice:
    id: str
    invoice_date: datetime
    total_amount: Decimal
    status: InvoicePaymentStatus
    items: tuple[InvoiceLine, ...]
    supplier_id: str | None = None
    invoice_number: str | None = None


@dataclass(frozen=True)
class ProcessedInvoiceItem:
    """
    An OCR-extracted invoice line after unit normalization and inventory
    matching.  ``matched_id`` is set exactly when ``is_new`` is False.
    """
    name: str
    quantity: Decimal
    unit: str
    cost_per_unit: Decimal
    is_new: bool
    matched_id: str | None = None


# ---------------------------------------------------------------------------
# Audit and manager tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLog:
    """
    One append-only audit entry.

    ``seq`` is the 1-based position in the trail; ``hash`` chains this entry
    to ``prev_hash`` so tampering with any earlier entry is detectable.
    """
    id: str
    seq: int
    timestamp: datetime
    user_id: str | None
    user_name: str
    action: AuditAction
    entity: AuditEntity
    entity_id: str | None
    details: str
    before: Any = None
    after: Any = None
    prev_hash: str | None = None
    hash: str = ""


@dataclass(frozen=True)
class EvidenceItem:
    type: EvidenceType
    label: str
    value: str
    view: str | None = None


@dataclass(frozen=True)
class TaskDraft:
    """A manager task that has been proposed but not yet created."""
    title: str
    description: str
    category: TaskCategory
    priority: TaskPriority
    source: TaskSource = TaskSource.MANUAL
    evidence: tuple[EvidenceItem, ...] = ()
    due_at: datetime | None = None
    assigned_to_user_id: str | None = None


@dataclass(frozen=True)
class ManagerTask:
    id: str
    title: str
    description: str
    category: TaskCategory
    priority: TaskPriority
    status: TaskStatus
    source: TaskSource
    created_at: datetime
    updated_at: datetime
    evidence: tuple[EvidenceItem, ...] = ()
    due_at: datetime | None = None
    created_by_user_id: str | None = None
    assigned_to_user_id: str | None = None


# ---------------------------------------------------------------------------
# Settings value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoyaltySettings:
    """
    Loyalty program configuration.

    ``cashback_percentage`` is a percent of the sale total credited to the
    wallet; ``points_rate`` is the currency amount that earns one point.
    ``min_redeem_amount`` is the smallest purchase on which wallet credit
    or points may be redeemed.
    """
    enabled: bool = False
    program_type: LoyaltyProgramType = LoyaltyProgramType.CASHBACK
    cashback_percentage: Decimal = Decimal("5")
    points_rate: Decimal = Decimal("10000")
    min_redeem_amount: Decimal = ZERO

    def __post_init__(self):
        if self.cashback_percentage < 0 or self.cashback_percentage > 100:
            raise ValueError("cashback_percentage must be between 0 and 100")
        if self.points_rate <= 0:
            raise ValueError("points_rate must be positive")
        if self.min_redeem_amount < 0:
            raise ValueError("min_redeem_amount cannot be negative")


@dataclass(frozen=True)
class SubscriptionStatus:
    tier: SubscriptionTier = SubscriptionTier.FREE_TRIAL
    start_date: datetime | None = None
    expiry_date: datetime | None = None
    is_active: bool = False
