"""
restaurant_services.invoice_ingestion -- OCR invoice payload boundary.

Responsibility:
    Wraps an external invoice reader (an OCR or vision model) and turns its
    loosely-typed output into ``ProcessedInvoiceItem`` lines: validated,
    with normalized units, and matched against current inventory.

Architecture position:
    Services -- external boundary.  The reader is called before anything
    touches the store; the reviewed lines are then booked by
    ``InventoryService.confirm_purchase_invoice``.

Invariants enforced:
    - Quantities and costs become ``Decimal``; quantities must be positive
      and costs non-negative.
    - A line is matched to the first active ingredient whose name contains,
      or is contained in, the line name (case-insensitive, trimmed).
      ``matched_id`` is set exactly when ``is_new`` is False.

Failure modes:
    - InvoiceIngestionError: the payload is not JSON, has no item list, or
      a line is missing a required field or has an invalid number.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import Ingredient, ProcessedInvoiceItem
from restaurant_kernel.domain.units import conversion_factor, normalize_unit
from restaurant_kernel.exceptions import InvoiceIngestionError
from restaurant_kernel.logging_config import get_logger
from restaurant_services.state import RestaurantStore

logger = get_logger("services.invoice_ingestion")

_CODE_FENCE = re.compile(r"```(?:json)?")
_REQUIRED_FIELDS = ("name", "quantity", "unit", "costPerUnit")


class InvoiceReader(Protocol):
    """An external service that reads a purchase invoice image."""

    def read_invoice(
        self,
        image: bytes,
        mime_type: str,
        inventory_names: Sequence[str],
    ) -> Mapping[str, Any] | str:
        """Raw extraction: ``{"invoiceDate": ..., "items": [...]}`` or its JSON text."""
        ...


@dataclass(frozen=True)
class ExtractedInvoice:
    invoice_date: datetime | None
    items: tuple[ProcessedInvoiceItem, ...]


def _parse_payload(raw: Mapping[str, Any] | str) -> Mapping[str, Any]:
    if isinstance(raw, str):
        text = _CODE_FENCE.sub("", raw).strip()
        if not text:
            raise InvoiceIngestionError("empty response")
        try:
            raw = json.loads(text, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise InvoiceIngestionError(f"response is not JSON: {exc.msg}") from exc
    if not isinstance(raw, Mapping):
        raise InvoiceIngestionError("response is not an object")
    return raw


def _number(line: Mapping[str, Any], key: str, index: int) -> Decimal:
    value = line[key]
    if isinstance(value, bool):
        raise InvoiceIngestionError(f"item {index}: {key} is not a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise InvoiceIngestionError(f"item {index}: {key} is not a number") from exc
    if not number.is_finite():
        raise InvoiceIngestionError(f"item {index}: {key} is not a finite number")
    return number


def _parse_invoice_date(value: Any, tz) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning("invoice_date_unparseable", extra={"raw_date": str(value)})
        return None
    return datetime.combine(parsed, time.min, tzinfo=tz)


def match_inventory(name: str, inventory: Iterable[Ingredient]) -> Ingredient | None:
    """First active ingredient whose name overlaps ``name`` either way."""
    needle = name.strip().lower()
    if not needle:
        return None
    for ingredient in inventory:
        if ingredient.is_deleted:
            continue
        candidate = ingredient.name.strip().lower()
        if candidate and (candidate in needle or needle in candidate):
            return ingredient
    return None


def normalize_invoice_payload(
    raw: Mapping[str, Any] | str,
    inventory: Sequence[Ingredient],
    tz=None,
) -> ExtractedInvoice:
    """
    Validate and normalize a reader payload.

    Args:
        raw: The reader's output, as a mapping or JSON text (optionally
            wrapped in a markdown code fence).
        inventory: Current inventory for name matching.
        tz: Timezone for the invoice date; UTC-naive dates get this tzinfo.

    Raises:
        InvoiceIngestionError: Malformed payload.
    """
    payload = _parse_payload(raw)
    raw_items = payload.get("items")
    if raw_items is None:
        return ExtractedInvoice(invoice_date=None, items=())
    if not isinstance(raw_items, list):
        raise InvoiceIngestionError("items is not a list")

    items: list[ProcessedInvoiceItem] = []
    for index, line in enumerate(raw_items):
        if not isinstance(line, Mapping):
            raise InvoiceIngestionError(f"item {index} is not an object")
        missing = [key for key in _REQUIRED_FIELDS if line.get(key) is None]
        if missing:
            raise InvoiceIngestionError(f"item {index} is missing {', '.join(missing)}")

        name = str(line["name"]).strip()
        quantity = _number(line, "quantity", index)
        cost = _number(line, "costPerUnit", index)
        if not name:
            raise InvoiceIngestionError(f"item {index} has an empty name")
        if quantity <= 0:
            raise InvoiceIngestionError(f"item {index}: quantity must be positive")
        if cost < 0:
            raise InvoiceIngestionError(f"item {index}: cost cannot be negative")

        match = match_inventory(name, inventory)
        items.append(ProcessedInvoiceItem(
            name=name,
            quantity=quantity,
            unit=normalize_unit(str(line["unit"])),
            cost_per_unit=cost,
            is_new=match is None,
            matched_id=match.id if match else None,
        ))

    return ExtractedInvoice(
        invoice_date=_parse_invoice_date(payload.get("invoiceDate"), tz),
        items=tuple(items),
    )


def unit_errors(
    items: Sequence[ProcessedInvoiceItem],
    inventory: Sequence[Ingredient],
) -> dict[int, str]:
    """Matched lines whose unit cannot be converted to the ingredient's usage unit."""
    by_id = {i.id: i for i in inventory}
    errors: dict[int, str] = {}
    for index, item in enumerate(items):
        if item.is_new or item.matched_id is None:
            continue
        ingredient = by_id.get(item.matched_id)
        if ingredient is None:
            continue
        if conversion_factor(item.unit, ingredient.usage_unit, ingredient.custom_unit_conversions) is None:
            errors[index] = (
                f"No conversion from {item.unit!r} to {ingredient.usage_unit!r} for {ingredient.name}"
            )
    return errors


class InvoiceIngestionService:
    """Reads an invoice image through ``reader`` and normalizes the result."""

    def __init__(self, store: RestaurantStore, reader: InvoiceReader, clock: Clock | None = None):
        self._store = store
        self._reader = reader
        self._clock = clock or SystemClock()

    def extract(self, image: bytes, mime_type: str) -> ExtractedInvoice:
        inventory = tuple(i for i in self._store.state.inventory if not i.is_deleted)
        raw = self._reader.read_invoice(image, mime_type, [i.name for i in inventory])
        extracted = normalize_invoice_payload(raw, inventory, tz=self._clock.now().tzinfo)
        logger.info(
            "invoice_extracted",
            extra={
                "item_count": len(extracted.items),
                "matched_count": sum(1 for i in extracted.items if not i.is_new),
            },
        )
        return extracted
