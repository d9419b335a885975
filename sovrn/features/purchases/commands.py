"""
Checkout event classification.

plan_commands is pure: it turns a verified CheckoutEvent into the inserts
that record it, without touching the database or the payment provider.

Canonical checkout metadata:
    type        "listing" | "dataset" (inferred from the id when absent)
    listing_id  single-item listing being bought
    dataset_id  pooled dataset being bought
    user_id     purchaser (required)
    quantity    dataset units, defaults to 1, clamped to 1..MAX_QUANTITY
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Union

from sovrn.core.errors import MalformedEventError
from sovrn.features.purchases.provider import CheckoutEvent

PURCHASE_TYPE_LISTING = "listing"
PURCHASE_TYPE_DATASET = "dataset"

MIN_QUANTITY = 1
MAX_QUANTITY = 100
DEFAULT_CURRENCY = "usd"


@dataclass(frozen=True)
class RecordPurchase:
    user_id: str
    listing_id: str
    session_id: str


@dataclass(frozen=True)
class RecordLedgerEntry:
    listing_id: str
    buyer_id: str
    amount_cents: int
    currency: str
    session_id: str


@dataclass(frozen=True)
class RecordDatasetSale:
    dataset_id: str
    buyer_id: str
    quantity: int
    gross_cents: int
    currency: str
    session_id: str


Command = Union[RecordPurchase, RecordLedgerEntry, RecordDatasetSale]


def parse_quantity(raw: Any, max_quantity: int = MAX_QUANTITY) -> int:
    """Quantity from checkout metadata: 1 when absent or non-numeric, then clamped."""
    try:
        quantity = int(str(raw).strip())
    except (TypeError, ValueError):
        return MIN_QUANTITY
    return max(MIN_QUANTITY, min(quantity, max_quantity))


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def classify(event: CheckoutEvent) -> str:
    """Return the purchase type of a completed checkout, or raise MalformedEventError."""
    metadata = event.metadata or {}
    dataset_id = _clean(metadata.get("dataset_id"))
    listing_id = _clean(metadata.get("listing_id"))

    if not dataset_id and not listing_id:
        raise MalformedEventError("Checkout metadata has neither dataset_id nor listing_id")

    kind = (_clean(metadata.get("type")) or "").lower()
    if not kind:
        return PURCHASE_TYPE_DATASET if dataset_id else PURCHASE_TYPE_LISTING
    if kind == PURCHASE_TYPE_DATASET and dataset_id:
        return kind
    if kind == PURCHASE_TYPE_LISTING and listing_id:
        return kind
    if kind in (PURCHASE_TYPE_DATASET, PURCHASE_TYPE_LISTING):
        raise MalformedEventError(f"Checkout metadata type '{kind}' has no {kind}_id")
    raise MalformedEventError(f"Unknown purchase type '{kind}'")


def plan_commands(
    event: CheckoutEvent,
    max_quantity: int = MAX_QUANTITY,
    default_currency: str = DEFAULT_CURRENCY,
) -> List[Command]:
    """
    Map a completed checkout to the inserts that record it.

    The first command carries the idempotency key (its session id); all
    commands in the list must be applied in one database transaction.

    Raises:
        MalformedEventError: If purchaser, item, session or amount is missing
    """
    kind = classify(event)
    metadata = event.metadata or {}

    user_id = _clean(metadata.get("user_id"))
    if not user_id:
        raise MalformedEventError("Checkout metadata is missing user_id")
    if not event.session_id:
        raise MalformedEventError("Checkout event is missing the session id")
    # The charged amount is authoritative; catalog prices may have changed since checkout
    if event.amount_total is None or event.amount_total < 0:
        raise MalformedEventError("Checkout event is missing a valid amount_total")

    currency = (event.currency or default_currency).lower()

    if kind == PURCHASE_TYPE_DATASET:
        return [
            RecordDatasetSale(
                dataset_id=_clean(metadata.get("dataset_id")),
                buyer_id=user_id,
                quantity=parse_quantity(metadata.get("quantity"), max_quantity),
                gross_cents=event.amount_total,
                currency=currency,
                session_id=event.session_id,
            )
        ]

    listing_id = _clean(metadata.get("listing_id"))
    return [
        RecordPurchase(user_id=user_id, listing_id=listing_id, session_id=event.session_id),
        RecordLedgerEntry(
            listing_id=listing_id,
            buyer_id=user_id,
            amount_cents=event.amount_total,
            currency=currency,
            session_id=event.session_id,
        ),
    ]
