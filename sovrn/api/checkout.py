"""
Checkout API routes.

- POST /api/checkout/sessions: Create a hosted checkout session
- GET  /api/checkout/sessions/{session_id}: Resolve a session to the purchased item
"""
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from sovrn.features.purchases.service import describe_session, start_checkout


router = APIRouter(prefix="/api/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session for a listing or a dataset."""
    listing_id: Optional[str] = None
    dataset_id: Optional[str] = None
    quantity: Optional[int] = None


class CheckoutResponse(BaseModel):
    """Response with checkout session id and URL."""
    id: str
    url: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    payment_status: Optional[str] = None
    purchase_type: str
    item: Dict[str, Any]


@router.post("/sessions", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    user_id: Annotated[str, Header(alias="X-User-Id")],
):
    """
    Create Stripe checkout session.

    Errors:
        503: Payments disabled (STRIPE_SECRET_KEY not set)
        400: Neither or both of listing_id / dataset_id
        404: Item not found or unavailable
        502: Stripe API error
    """
    session = await run_in_threadpool(
        start_checkout,
        user_id,
        listing_id=body.listing_id,
        dataset_id=body.dataset_id,
        quantity=body.quantity,
    )
    return {"id": session.id, "url": session.url}


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_checkout_session(session_id: str):
    """Look up what a completed checkout session paid for (success page)."""
    return await run_in_threadpool(describe_session, session_id)
