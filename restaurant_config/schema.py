"""
Restaurant settings schema.

The YAML settings files under ``restaurant_config/sets/`` are parsed into
these frozen dataclasses by the loader.  The same ``RestaurantSettings``
object travels inside ``RestaurantState`` and is persisted with it, so a
restored backup carries the policy that governed its sales.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from restaurant_kernel.domain.models import (
    LoyaltySettings,
    StockDeductionPolicy,
    SubscriptionStatus,
)

DEFAULT_RESTAURANT_NAME = "فودیار"
DEFAULT_CURRENCY_UNIT = "تومان"


@dataclass(frozen=True)
class RestaurantSettings:
    """Restaurant-wide settings."""

    restaurant_name: str = DEFAULT_RESTAURANT_NAME
    currency_unit: str = DEFAULT_CURRENCY_UNIT
    tax_rate: Decimal = Decimal("0")
    address: str | None = None
    phone_number: str | None = None
    stock_deduction_policy: StockDeductionPolicy = StockDeductionPolicy.ALLOW_NEGATIVE
    loyalty: LoyaltySettings = field(default_factory=LoyaltySettings)
    subscription: SubscriptionStatus = field(default_factory=SubscriptionStatus)

    def __post_init__(self):
        if not self.restaurant_name or not self.restaurant_name.strip():
            raise ValueError("restaurant_name is required")
        if not self.currency_unit:
            raise ValueError("currency_unit is required")
        if self.tax_rate < 0 or self.tax_rate > 100:
            raise ValueError("tax_rate must be between 0 and 100")
