"""
restaurant_engines.customers -- Customer segmentation and loyalty.

Responsibility:
    Classify customers into RFM segments, fold a completed sale into a
    customer's visit statistics and favorites, and apply the loyalty program
    (cashback to the wallet, or points earned and redeemed).

Architecture position:
    Engines -- pure, zero I/O.  ``now`` is always passed in.  The transaction
    engine calls ``record_visit`` then ``apply_loyalty`` while planning a sale.

Invariants enforced:
    - Segmentation order is strict: churned (>90 days), slipping (>45 days),
      vip (total spent > 3,000,000), new (<= 2 visits), loyal (> 2 visits).
      A lapsed high spender is churned, never vip.
    - ``loyalty_points`` never goes below zero.
    - ``wallet_balance`` never goes below zero: redemption beyond the
      balance is rejected.
    - Each balance that changes produces exactly one ``LoyaltyChange``.

Failure modes:
    - ValueError from ``apply_loyalty`` when asked to redeem more wallet
      credit than the customer holds, a negative redemption, or any
      redemption on a purchase below ``min_redeem_amount``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from restaurant_engines.tracer import traced_engine
from restaurant_kernel.domain.models import (
    Customer,
    CustomerSegment,
    FavoriteItem,
    LoyaltyProgramType,
    LoyaltySettings,
    SaleItem,
)
from restaurant_kernel.domain.values import HUNDRED, ZERO, floor_int, round_currency
from restaurant_kernel.logging_config import get_logger

logger = get_logger("engines.customers")

CHURNED_AFTER_DAYS = 90
SLIPPING_AFTER_DAYS = 45
VIP_SPEND_THRESHOLD = Decimal("3000000")
NEW_CUSTOMER_MAX_VISITS = 2

_SECONDS_PER_DAY = 86400


def determine_segment(customer: Customer, now: datetime) -> CustomerSegment:
    """
    RFM segment of ``customer`` as of ``now``.

    A customer with no recorded visit skips the recency rules.
    """
    if customer.last_visit is not None:
        days_since = (now - customer.last_visit).total_seconds() / _SECONDS_PER_DAY
        if days_since > CHURNED_AFTER_DAYS:
            return CustomerSegment.CHURNED
        if days_since > SLIPPING_AFTER_DAYS:
            return CustomerSegment.SLIPPING

    if customer.total_spent > VIP_SPEND_THRESHOLD:
        return CustomerSegment.VIP
    if customer.total_visits <= NEW_CUSTOMER_MAX_VISITS:
        return CustomerSegment.NEW
    return CustomerSegment.LOYAL


def new_customer(customer_id: str, phone: str) -> Customer:
    """Zero-statistics customer for a phone number seen for the first time."""
    return Customer(id=customer_id, phone=phone)


def _tally_favorites(
    favorites: tuple[FavoriteItem, ...],
    sale_items: Iterable[SaleItem],
) -> tuple[FavoriteItem, ...]:
    counts: dict[str, int] = {f.item_id: f.count for f in favorites}
    for item in sale_items:
        counts[item.menu_item_id] = counts.get(item.menu_item_id, 0) + item.quantity
    return tuple(FavoriteItem(item_id=k, count=v) for k, v in counts.items())


@traced_engine("customers.record_visit", "1.0")
def record_visit(
    customer: Customer,
    sale_items: Iterable[SaleItem],
    total_amount: Decimal,
    now: datetime,
) -> Customer:
    """
    Fold one completed sale into the customer's statistics.

    Postconditions:
        visits + 1, total spent + ``total_amount``, last visit = ``now``,
        average order value recomputed, favorites tallied by quantity and
        the segment recomputed.
    """
    visits = customer.total_visits + 1
    spent = customer.total_spent + total_amount
    updated = replace(
        customer,
        total_visits=visits,
        total_spent=spent,
        last_visit=now,
        average_order_value=spent / visits,
        favorite_items=_tally_favorites(customer.favorite_items, sale_items),
    )
    return replace(updated, segment=determine_segment(updated, now))


@dataclass(frozen=True)
class LoyaltyChange:
    """One balance that moved during a sale, for the audit trail."""
    field: str
    before: Decimal | int
    after: Decimal | int
    details: str


@dataclass(frozen=True)
class LoyaltyOutcome:
    customer: Customer
    changes: tuple[LoyaltyChange, ...] = ()


def _check_redeem_eligible(purchase_amount: Decimal, loyalty: LoyaltySettings) -> None:
    if purchase_amount < loyalty.min_redeem_amount:
        raise ValueError(
            f"purchase {purchase_amount} is below the minimum {loyalty.min_redeem_amount} for redemption"
        )


def _apply_wallet_redemption(
    customer: Customer,
    wallet_to_redeem: Decimal,
) -> tuple[Customer, LoyaltyChange | None]:
    if wallet_to_redeem < 0:
        raise ValueError("wallet redemption cannot be negative")
    if wallet_to_redeem == 0:
        return customer, None
    if wallet_to_redeem > customer.wallet_balance:
        raise ValueError(
            f"wallet redemption {wallet_to_redeem} exceeds balance {customer.wallet_balance}"
        )
    after = customer.wallet_balance - wallet_to_redeem
    change = LoyaltyChange(
        field="wallet_balance",
        before=customer.wallet_balance,
        after=after,
        details=f"{wallet_to_redeem} redeemed from customer wallet.",
    )
    return replace(customer, wallet_balance=after), change


@traced_engine("customers.loyalty", "1.0", fingerprint_fields=("total_amount", "points_to_redeem", "wallet_to_redeem"))
def apply_loyalty(
    customer: Customer,
    total_amount: Decimal,
    loyalty: LoyaltySettings | None,
    points_to_redeem: int = 0,
    wallet_to_redeem: Decimal = ZERO,
) -> LoyaltyOutcome:
    """
    Apply the loyalty program to one sale.

    ``total_amount`` is what the customer is charged, after any wallet
    credit.  The purchase amount checked against ``min_redeem_amount`` is
    ``total_amount + wallet_to_redeem``.

    Preconditions:
        ``points_to_redeem`` and ``wallet_to_redeem`` are non-negative.

    Postconditions:
        - Disabled or missing program: customer unchanged, no changes.
        - Cashback: ``round(total x pct / 100)`` is credited to the wallet
          when positive.  A wallet redemption is debited first.
        - Points: ``floor(total / points_rate)`` is earned (0 for a
          non-positive total) and ``points = max(0, points + earned - used)``
          whenever earned or used is positive.

    Raises:
        ValueError: Wallet redemption is negative or exceeds the balance,
            or a redemption is asked for on a purchase below
            ``min_redeem_amount``.
    """
    if loyalty is None or not loyalty.enabled:
        return LoyaltyOutcome(customer=customer)

    changes: list[LoyaltyChange] = []
    updated = customer
    if points_to_redeem > 0 or wallet_to_redeem > 0:
        _check_redeem_eligible(total_amount + wallet_to_redeem, loyalty)

    if loyalty.program_type is LoyaltyProgramType.CASHBACK:
        updated, redemption = _apply_wallet_redemption(updated, wallet_to_redeem)
        if redemption is not None:
            changes.append(redemption)

        if loyalty.cashback_percentage > 0:
            cashback = round_currency(total_amount * loyalty.cashback_percentage / HUNDRED)
            if cashback > 0:
                after = updated.wallet_balance + cashback
                changes.append(LoyaltyChange(
                    field="wallet_balance",
                    before=updated.wallet_balance,
                    after=after,
                    details=f"{cashback} cashback credited to customer wallet.",
                ))
                updated = replace(updated, wallet_balance=after)

    elif loyalty.program_type is LoyaltyProgramType.POINTS and loyalty.points_rate > 0:
        earned = floor_int(total_amount / loyalty.points_rate) if total_amount > 0 else 0
        used = max(0, points_to_redeem)
        if earned > 0 or used > 0:
            after_points = max(0, updated.loyalty_points + earned - used)
            parts = []
            if earned > 0:
                parts.append(f"{earned} points earned.")
            if used > 0:
                parts.append(f"{used} points redeemed.")
            changes.append(LoyaltyChange(
                field="loyalty_points",
                before=updated.loyalty_points,
                after=after_points,
                details=" ".join(parts),
            ))
            updated = replace(updated, loyalty_points=after_points)

    if changes:
        logger.info(
            "loyalty_applied",
            extra={
                "customer_id": customer.id,
                "program_type": loyalty.program_type.value,
                "change_count": len(changes),
            },
        )
    return LoyaltyOutcome(customer=updated, changes=tuple(changes))
