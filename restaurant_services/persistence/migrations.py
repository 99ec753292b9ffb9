"""
restaurant_services.persistence.migrations -- Forward migrations of stored state.

Each migration upgrades an encoded state payload from the version before
it.  ``migrate`` applies every step newer than the stored version, in
order, on a copy of the payload.

History:
    3 -- settings gained ``stockDeductionPolicy`` (default ALLOW_NEGATIVE).
    4 -- settings gained ``subscription`` (free trial, inactive).
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

from restaurant_kernel.domain.models import StockDeductionPolicy, SubscriptionTier
from restaurant_kernel.exceptions import UnsupportedSchemaVersionError
from restaurant_kernel.logging_config import get_logger

logger = get_logger("persistence.migrations")

CURRENT_SCHEMA_VERSION = 4

Payload = dict[str, Any]


def _settings(payload: Payload) -> dict[str, Any]:
    settings = payload.get("settings")
    if not isinstance(settings, dict):
        settings = payload["settings"] = {}
    return settings


def _add_stock_deduction_policy(payload: Payload) -> Payload:
    _settings(payload).setdefault(
        "stockDeductionPolicy", StockDeductionPolicy.ALLOW_NEGATIVE.value,
    )
    return payload


def _add_subscription(payload: Payload) -> Payload:
    _settings(payload).setdefault("subscription", {
        "tier": SubscriptionTier.FREE_TRIAL.value,
        "startDate": None,
        "expiryDate": None,
        "isActive": False,
    })
    return payload


_MIGRATIONS: tuple[tuple[int, Callable[[Payload], Payload]], ...] = (
    (3, _add_stock_deduction_policy),
    (4, _add_subscription),
)


def migrate(payload: Payload, version: int) -> Payload:
    """
    Upgrade ``payload`` written at ``version`` to the current schema.

    Raises:
        UnsupportedSchemaVersionError: ``version`` is newer than this build.
    """
    if version > CURRENT_SCHEMA_VERSION:
        raise UnsupportedSchemaVersionError(version, CURRENT_SCHEMA_VERSION)

    migrated = copy.deepcopy(payload)
    for target, step in _MIGRATIONS:
        if version < target:
            migrated = step(migrated)
            logger.info(
                "state_migrated",
                extra={"from_version": version, "to_version": target, "migration": step.__name__},
            )
    return migrated
