"""
Payment provider protocol.

Defines the interface the marketplace needs from a hosted checkout provider
(Stripe, or a fake in tests). The reconciler only ever calls verify_event;
checkout creation and session lookup serve the buyer-facing pages.
"""
from typing import Protocol, Dict, Optional
from dataclasses import dataclass, field


CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutEvent:
    """A verified payment notification, normalized from the provider payload."""
    event_id: str
    event_type: str
    session_id: Optional[str] = None
    amount_total: Optional[int] = None  # minor currency units
    currency: Optional[str] = None
    payment_status: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutLineItem:
    """What the buyer is charged for on the hosted checkout page."""
    name: str
    unit_amount: int  # minor currency units
    currency: str
    quantity: int = 1
    description: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - Webhook signature verification and parsing
    - Checkout session creation
    - Checkout session retrieval
    """

    def verify_event(self, payload: bytes, sig_header: Optional[str], secret: Optional[str]) -> CheckoutEvent:
        """
        Verify a webhook signature over the raw payload and parse the event.

        Raises:
            AuthenticationError: If the header or secret is missing, or the
                signature does not match the payload
            MalformedEventError: If the verified payload is not an event
        """
        ...

    def create_checkout_session(
        self,
        line_item: CheckoutLineItem,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a one-off payment checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        """
        Fetch an existing checkout session.

        Raises:
            PaymentProviderError: If the session cannot be retrieved
        """
        ...
