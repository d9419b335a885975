"""
Stripe payment provider implementation.

Implements PaymentProvider using the Stripe SDK. Credentials are passed per
call instead of being set on the global stripe module.
"""
import json
from typing import Dict, Any, Optional

import stripe

from sovrn.core.errors import (
    AuthenticationError,
    MalformedEventError,
    PaymentProviderError,
    PaymentsDisabledError,
)
from sovrn.features.purchases.provider import (
    CheckoutEvent,
    CheckoutLineItem,
    CheckoutSession,
)

DEFAULT_TOLERANCE_SECONDS = 300


def _plain(obj: Any) -> Dict[str, Any]:
    """Copy a Stripe object (or dict) into a plain dict, one level deep."""
    if not obj:
        return {}
    return {key: obj[key] for key in obj.keys()}


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class StripeProvider:
    """Stripe implementation of the PaymentProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, tolerance: int = DEFAULT_TOLERANCE_SECONDS):
        """
        Args:
            secret_key: Stripe secret key, required for API calls only
            tolerance: Max age in seconds of a signed webhook timestamp
        """
        self.secret_key = secret_key
        self.tolerance = tolerance

    def _require_key(self) -> str:
        if not self.secret_key:
            raise PaymentsDisabledError("STRIPE_SECRET_KEY not configured")
        return self.secret_key

    def verify_event(self, payload: bytes, sig_header: Optional[str], secret: Optional[str]) -> CheckoutEvent:
        """Verify Stripe webhook signature and parse event."""
        if not secret:
            raise AuthenticationError("Webhook secret not configured")
        if not sig_header:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticationError(f"Invalid payload: {e}")

        try:
            stripe.WebhookSignature.verify_header(text, sig_header, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise AuthenticationError(f"Invalid signature: {e}")

        try:
            event = json.loads(text)
        except ValueError as e:
            raise MalformedEventError(f"Invalid payload: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Any) -> CheckoutEvent:
        """Parse a Stripe event into a normalized CheckoutEvent."""
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise MalformedEventError("Event payload is missing id or type")

        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            obj = {}

        metadata = obj.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        currency = obj.get("currency")
        return CheckoutEvent(
            event_id=event["id"],
            event_type=event["type"],
            session_id=obj.get("id"),
            amount_total=_as_int(obj.get("amount_total")),
            currency=currency.lower() if isinstance(currency, str) else None,
            payment_status=obj.get("payment_status"),
            metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
        )

    def create_checkout_session(
        self,
        line_item: CheckoutLineItem,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """Create Stripe checkout session in one-off payment mode."""
        product_data: Dict[str, Any] = {"name": line_item.name}
        if line_item.description:
            product_data["description"] = line_item.description

        try:
            session = stripe.checkout.Session.create(
                api_key=self._require_key(),
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": line_item.currency,
                            "product_data": product_data,
                            "unit_amount": line_item.unit_amount,
                        },
                        "quantity": line_item.quantity,
                    }
                ],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe checkout session creation failed: {e}")

        return self._to_session(session)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        """Retrieve Stripe checkout session."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._require_key())
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe checkout session lookup failed: {e}")

        return self._to_session(session)

    def _to_session(self, session: Any) -> CheckoutSession:
        metadata = _plain(getattr(session, "metadata", None))
        return CheckoutSession(
            id=session.id,
            url=getattr(session, "url", None),
            payment_status=getattr(session, "payment_status", None),
            amount_total=_as_int(getattr(session, "amount_total", None)),
            currency=getattr(session, "currency", None),
            metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
        )
