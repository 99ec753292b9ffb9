"""
Settings loader (``restaurant_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into ``RestaurantSettings``.
Runtime callers go through ``restaurant_config.get_active_settings()``.

Architecture position
---------------------
**Config layer**.  Depends on ``restaurant_kernel`` value types only.

Invariants enforced
-------------------
* Numbers are parsed into ``Decimal`` from their YAML text; floats never
  reach a settings object.
* Unknown enum values fail loudly with ``ValueError``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, time, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from restaurant_config.schema import RestaurantSettings
from restaurant_kernel.domain.models import (
    LoyaltyProgramType,
    LoyaltySettings,
    StockDeductionPolicy,
    SubscriptionStatus,
    SubscriptionTier,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    """YAML scalars arrive as int, float or str; go through ``str`` so 0.1 stays 0.1."""
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse number from {value!r}")
    return Decimal(str(value))


def parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_datetime(datetime.fromisoformat(value))
    raise ValueError(f"Cannot parse datetime from {value!r}")


def parse_loyalty(data: dict[str, Any] | None) -> LoyaltySettings:
    """Parse a LoyaltySettings from a dict; missing keys take defaults."""
    if not data:
        return LoyaltySettings()
    defaults = LoyaltySettings()
    return LoyaltySettings(
        enabled=bool(data.get("enabled", defaults.enabled)),
        program_type=LoyaltyProgramType(data.get("program_type", defaults.program_type.value)),
        cashback_percentage=parse_decimal(
            data.get("cashback_percentage", defaults.cashback_percentage)
        ),
        points_rate=parse_decimal(data.get("points_rate", defaults.points_rate)),
        min_redeem_amount=parse_decimal(
            data.get("min_redeem_amount", defaults.min_redeem_amount)
        ),
    )


def parse_subscription(data: dict[str, Any] | None) -> SubscriptionStatus:
    """Parse a SubscriptionStatus from a dict."""
    if not data:
        return SubscriptionStatus()
    return SubscriptionStatus(
        tier=SubscriptionTier(data.get("tier", SubscriptionTier.FREE_TRIAL.value)),
        start_date=parse_datetime(data.get("start_date")),
        expiry_date=parse_datetime(data.get("expiry_date")),
        is_active=bool(data.get("is_active", False)),
    )


def parse_settings(data: dict[str, Any]) -> RestaurantSettings:
    """
    Parse a ``RestaurantSettings`` from the ``settings`` section of a file.

    Raises:
        ValueError: On unknown enum values or out-of-range numbers.
    """
    defaults = RestaurantSettings()
    return RestaurantSettings(
        restaurant_name=data.get("restaurant_name", defaults.restaurant_name),
        currency_unit=data.get("currency_unit", defaults.currency_unit),
        tax_rate=parse_decimal(data.get("tax_rate", defaults.tax_rate)),
        address=data.get("address"),
        phone_number=data.get("phone_number"),
        stock_deduction_policy=StockDeductionPolicy(
            data.get("stock_deduction_policy", defaults.stock_deduction_policy.value)
        ),
        loyalty=parse_loyalty(data.get("loyalty")),
        subscription=parse_subscription(data.get("subscription")),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON of ``data``; identifies a settings file."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
