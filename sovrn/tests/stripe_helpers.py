"""Builders for signed Stripe webhook deliveries and fake Stripe objects."""
import hashlib
import hmac
import json
import time

WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs webhook deliveries."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def checkout_event(
    metadata: dict,
    *,
    event_id: str = "evt_test_1",
    session_id: str = "cs_test_1",
    amount_total=900,
    currency: str = "usd",
    event_type: str = "checkout.session.completed",
) -> bytes:
    """Serialized Stripe event wrapping a checkout session."""
    event = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "amount_total": amount_total,
                "currency": currency,
                "payment_status": "paid",
                "metadata": metadata,
            }
        },
    }
    return json.dumps(event).encode("utf-8")


class FakeStripeSession:
    """Attribute-style stand-in for stripe.checkout.Session."""

    def __init__(self, id: str, url: str = None, metadata: dict = None, payment_status: str = "unpaid",
                 amount_total: int = None, currency: str = "usd"):
        self.id = id
        self.url = url
        self.metadata = metadata or {}
        self.payment_status = payment_status
        self.amount_total = amount_total
        self.currency = currency
