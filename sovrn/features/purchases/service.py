"""
Purchase service orchestrator.

Coordinates:
- Provider and reconciler construction from settings
- Checkout session creation for listings and datasets
- Session lookup for the post-checkout success page

All Stripe-specific code is in stripe_provider.py.
"""
from typing import Any, Dict, Optional

from sqlalchemy import select

from sovrn.core.config import settings
from sovrn.core.database import datasets, get_db_session, listings
from sovrn.core.errors import NotFoundError, PaymentsDisabledError, ValidationError
from sovrn.core.logging import log_event
from sovrn.features.purchases.commands import (
    PURCHASE_TYPE_DATASET,
    PURCHASE_TYPE_LISTING,
    parse_quantity,
)
from sovrn.features.purchases.provider import CheckoutLineItem, CheckoutSession, PaymentProvider
from sovrn.features.purchases.reconciler import PurchaseReconciler
from sovrn.features.purchases.store import SqlPurchaseStore
from sovrn.features.purchases.stripe_provider import StripeProvider
from sovrn.features.revenue.allocator import RevenueAllocator


def payments_enabled() -> bool:
    """Check if checkout is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> PaymentProvider:
    return StripeProvider(
        secret_key=settings.STRIPE_SECRET_KEY,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )


def build_reconciler(provider: Optional[PaymentProvider] = None) -> PurchaseReconciler:
    return PurchaseReconciler(
        provider=provider or get_provider(),
        store=SqlPurchaseStore(),
        allocator=RevenueAllocator(),
        max_quantity=settings.MAX_QUANTITY,
        default_currency=settings.DEFAULT_CURRENCY,
    )


def _success_url() -> str:
    return f"{settings.SITE_URL}/success?session_id={{CHECKOUT_SESSION_ID}}"


def _cancel_url() -> str:
    return f"{settings.SITE_URL}/cancel"


def _load_listing(listing_id: str):
    with get_db_session() as session:
        row = session.execute(select(listings).where(listings.c.id == listing_id)).fetchone()
    if row is None or row.is_flagged:
        raise NotFoundError(f"Listing {listing_id} not found")
    return row


def _load_dataset(dataset_id: str):
    with get_db_session() as session:
        row = session.execute(select(datasets).where(datasets.c.id == dataset_id)).fetchone()
    if row is None or not row.is_active:
        raise NotFoundError(f"Dataset {dataset_id} not found")
    return row


def start_checkout(
    user_id: str,
    *,
    listing_id: Optional[str] = None,
    dataset_id: Optional[str] = None,
    quantity: Optional[int] = None,
    provider: Optional[PaymentProvider] = None,
) -> CheckoutSession:
    """
    Start a hosted checkout for one listing or some units of a dataset.

    The session metadata carries everything the webhook needs to record the
    purchase; the webhook never re-reads the catalog price.

    Raises:
        PaymentsDisabledError: If Stripe is not configured
        ValidationError: If not exactly one of listing_id / dataset_id is given
        NotFoundError: If the item does not exist or is unavailable
        PaymentProviderError: If the provider rejects the session
    """
    if provider is None:
        if not payments_enabled():
            raise PaymentsDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        provider = get_provider()

    if bool(listing_id) == bool(dataset_id):
        raise ValidationError("Provide exactly one of listing_id or dataset_id")

    if listing_id:
        listing = _load_listing(listing_id)
        line_item = CheckoutLineItem(
            name=listing.title,
            description=listing.description,
            unit_amount=listing.price_cents,
            currency=listing.currency,
        )
        metadata = {"type": PURCHASE_TYPE_LISTING, "listing_id": listing.id, "user_id": user_id}
    else:
        dataset = _load_dataset(dataset_id)
        units = parse_quantity(quantity, settings.MAX_QUANTITY)
        line_item = CheckoutLineItem(
            name=dataset.name,
            description=dataset.description,
            unit_amount=dataset.unit_price_cents,
            currency=dataset.currency,
            quantity=units,
        )
        metadata = {
            "type": PURCHASE_TYPE_DATASET,
            "dataset_id": dataset.id,
            "user_id": user_id,
            "quantity": str(units),
        }

    session = provider.create_checkout_session(
        line_item=line_item,
        success_url=_success_url(),
        cancel_url=_cancel_url(),
        metadata=metadata,
    )
    log_event(
        "info",
        "checkout.session_created",
        user_id=user_id,
        session_id=session.id,
        extra={"purchase_type": metadata["type"]},
    )
    return session


def describe_session(session_id: str, provider: Optional[PaymentProvider] = None) -> Dict[str, Any]:
    """
    Resolve a checkout session to the item it paid for.

    Returns:
        {"session_id", "payment_status", "purchase_type", "item": {...}}
    """
    if provider is None:
        if not payments_enabled():
            raise PaymentsDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        provider = get_provider()

    session = provider.retrieve_session(session_id)
    metadata = session.metadata or {}
    dataset_id = metadata.get("dataset_id")
    listing_id = metadata.get("listing_id")

    if metadata.get("type") == PURCHASE_TYPE_DATASET or (dataset_id and not listing_id):
        if not dataset_id:
            raise ValidationError("Checkout session has no dataset_id")
        with get_db_session() as db:
            row = db.execute(select(datasets).where(datasets.c.id == dataset_id)).fetchone()
        if row is None:
            raise NotFoundError(f"Dataset {dataset_id} not found")
        purchase_type = PURCHASE_TYPE_DATASET
        item = {
            "id": row.id,
            "slug": row.slug,
            "name": row.name,
            "description": row.description,
            "unit_price_cents": row.unit_price_cents,
            "quantity": parse_quantity(metadata.get("quantity"), settings.MAX_QUANTITY),
        }
    elif listing_id:
        with get_db_session() as db:
            row = db.execute(select(listings).where(listings.c.id == listing_id)).fetchone()
        if row is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        purchase_type = PURCHASE_TYPE_LISTING
        item = {
            "id": row.id,
            "title": row.title,
            "description": row.description,
            "price_cents": row.price_cents,
        }
    else:
        raise ValidationError("Checkout session has no purchase metadata")

    return {
        "session_id": session.id,
        "payment_status": session.payment_status,
        "purchase_type": purchase_type,
        "item": item,
    }
