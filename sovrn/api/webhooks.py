"""
Payment webhook routes.

- POST /api/webhooks/stripe: reconcile checkout.session.completed events

Status contract for the payment provider:
    200  recorded, duplicate delivery, or ignored event type
    400  bad signature or malformed metadata (redelivery will not help)
    503  store failure or webhook secret not configured (provider redelivers)
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from sovrn.core.config import settings
from sovrn.core.errors import PaymentsDisabledError
from sovrn.features.purchases.reconciler import PurchaseReconciler
from sovrn.features.purchases.service import build_reconciler


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_reconciler() -> PurchaseReconciler:
    return build_reconciler()


def get_webhook_secret() -> Optional[str]:
    return settings.STRIPE_WEBHOOK_SECRET


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    reconciler: Annotated[PurchaseReconciler, Depends(get_reconciler)],
    secret: Annotated[Optional[str], Depends(get_webhook_secret)],
    stripe_signature: Annotated[Optional[str], Header()] = None,
):
    """
    Handle Stripe webhook events.

    The raw body is read untouched; signature verification needs the exact bytes.

    Returns:
        {"received": true, "status": "recorded" | "duplicate" | "ignored", ...}
    """
    if not secret:
        raise PaymentsDisabledError("Stripe webhook secret is not configured")

    body = await request.body()
    outcome = await run_in_threadpool(reconciler.handle, body, stripe_signature, secret)
    return {"received": True, **outcome.to_dict()}
