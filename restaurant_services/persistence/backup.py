"""
restaurant_services.persistence.backup -- Portable backup files.

A backup is ``{"schemaVersion": 2, "exportedAt": ..., "data": {...}}`` where
``data`` is the encoded state.  Validation checks the envelope, the required
sections and the minimal fields of inventory, menu, sales and settings
before anything is decoded.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from restaurant_kernel.exceptions import BackupValidationError
from restaurant_kernel.logging_config import get_logger
from restaurant_services.persistence.codec import decode_state, encode_state
from restaurant_services.persistence.migrations import migrate
from restaurant_services.state import RestaurantState

logger = get_logger("persistence.backup")

BACKUP_SCHEMA_VERSION = 2

REQUIRED_LIST_SECTIONS = (
    "inventory", "menu", "sales", "expenses", "suppliers", "shifts", "wasteRecords",
)
_MINIMAL_FIELDS = {
    "inventory": ("id", "name", "currentStock"),
    "menu": ("id", "name", "price"),
    "sales": ("id", "timestamp", "totalAmount"),
}
_SETTINGS_FIELDS = ("restaurantName", "taxRate")


def export_backup(state: RestaurantState, exported_at: datetime) -> dict[str, Any]:
    return {
        "schemaVersion": BACKUP_SCHEMA_VERSION,
        "exportedAt": exported_at.isoformat(),
        "data": encode_state(state),
    }


def validate_backup(document: Any) -> None:
    """
    Check that ``document`` is a restorable backup.

    Raises:
        BackupValidationError: Listing every problem found.
    """
    if not isinstance(document, Mapping) or "schemaVersion" not in document or "data" not in document:
        raise BackupValidationError(["backup must contain schemaVersion and data"])
    if document["schemaVersion"] != BACKUP_SCHEMA_VERSION:
        raise BackupValidationError([
            f"unsupported backup version {document['schemaVersion']!r}; "
            f"only version {BACKUP_SCHEMA_VERSION} is accepted",
        ])
    content = document["data"]
    if not isinstance(content, Mapping):
        raise BackupValidationError(["data section is missing or not an object"])

    errors: list[str] = []
    settings = content.get("settings")
    if not isinstance(settings, Mapping):
        errors.append("required section 'settings' is missing or not an object")
    elif any(key not in settings for key in _SETTINGS_FIELDS):
        errors.append("settings must contain " + ", ".join(_SETTINGS_FIELDS))

    for section in REQUIRED_LIST_SECTIONS:
        if not isinstance(content.get(section), list):
            errors.append(f"required section '{section}' is missing or not a list")

    for section, required in _MINIMAL_FIELDS.items():
        records = content.get(section)
        if not isinstance(records, list):
            continue
        if any(not isinstance(r, Mapping) or any(k not in r for k in required) for r in records):
            errors.append(f"every {section} record needs " + ", ".join(required))

    if errors:
        logger.warning("backup_rejected", extra={"errors": errors})
        raise BackupValidationError(errors)


def restore_backup(current: RestaurantState, document: Any) -> RestaurantState:
    """
    The state described by a backup, replacing ``current``.

    The invoice counter never moves backwards, so invoice numbers minted
    after ``current`` was saved are not reissued.

    Raises:
        BackupValidationError: The document fails validation.
        StateLoadError: A section passes validation but does not decode.
    """
    validate_backup(document)
    # Backups carry no state version; every migration step only fills gaps
    payload = migrate(dict(document["data"]), 0)
    restored = decode_state(payload, source="backup")
    restored = replace(
        restored, invoice_counter=max(restored.invoice_counter, current.invoice_counter),
    )
    logger.info(
        "backup_restored",
        extra={
            "sale_count": len(restored.sales),
            "inventory_count": len(restored.inventory),
            "invoice_counter": restored.invoice_counter,
        },
    )
    return restored
