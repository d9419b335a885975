"""
Checkout completion reconciliation.

Turns a signed checkout.session.completed notification into durable
purchase state, exactly once per checkout session:

1. Verify the signature (AuthenticationError, nothing written)
2. Classify and plan the inserts (MalformedEventError, nothing written)
3. Insert-if-absent against the session-id unique constraints
   (PersistenceError leaves nothing committed so the provider redelivers)
4. For dataset sales, allocate revenue to contributors. Allocation
   failures are logged and reported but never fail the acknowledgment:
   the sale is already durable and the recovery job retries allocation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sovrn.core.errors import AppError
from sovrn.core.logging import log_event
from sovrn.features.purchases.commands import (
    DEFAULT_CURRENCY,
    MAX_QUANTITY,
    PURCHASE_TYPE_DATASET,
    PURCHASE_TYPE_LISTING,
    RecordDatasetSale,
    plan_commands,
)
from sovrn.features.purchases.provider import CHECKOUT_COMPLETED, CheckoutEvent, PaymentProvider
from sovrn.features.purchases.store import PurchaseStore
from sovrn.features.revenue.allocator import AllocationResult, RevenueAllocator

OUTCOME_RECORDED = "recorded"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


@dataclass
class ReconcileOutcome:
    status: str
    event_id: str
    event_type: str
    purchase_type: Optional[str] = None
    session_id: Optional[str] = None
    record_id: Optional[int] = None
    allocation: Optional[AllocationResult] = None
    allocation_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "purchase_type": self.purchase_type,
            "session_id": self.session_id,
            "record_id": self.record_id,
            "allocation": self.allocation.to_dict() if self.allocation else None,
            "allocation_error": self.allocation_error,
        }


class PurchaseReconciler:
    """Reconciles verified checkout events with the purchase store."""

    def __init__(
        self,
        provider: PaymentProvider,
        store: PurchaseStore,
        allocator: RevenueAllocator,
        max_quantity: int = MAX_QUANTITY,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self.provider = provider
        self.store = store
        self.allocator = allocator
        self.max_quantity = max_quantity
        self.default_currency = default_currency

    def handle(self, payload: bytes, sig_header: Optional[str], secret: Optional[str]) -> ReconcileOutcome:
        """Verify a raw webhook delivery and reconcile it."""
        event = self.provider.verify_event(payload, sig_header, secret)
        return self.reconcile(event)

    def reconcile(self, event: CheckoutEvent) -> ReconcileOutcome:
        if event.event_type != CHECKOUT_COMPLETED:
            log_event("info", "checkout.event_ignored", event_id=event.event_id, extra={"event_type": event.event_type})
            return ReconcileOutcome(OUTCOME_IGNORED, event.event_id, event.event_type)

        commands = plan_commands(event, self.max_quantity, self.default_currency)
        primary = commands[0]
        purchase_type = PURCHASE_TYPE_DATASET if isinstance(primary, RecordDatasetSale) else PURCHASE_TYPE_LISTING

        result = self.store.apply(commands)
        outcome = ReconcileOutcome(
            status=OUTCOME_RECORDED if result.created else OUTCOME_DUPLICATE,
            event_id=event.event_id,
            event_type=event.event_type,
            purchase_type=purchase_type,
            session_id=event.session_id,
            record_id=result.record_id,
        )
        log_event(
            "info",
            f"checkout.{outcome.status}",
            event_id=event.event_id,
            session_id=event.session_id,
            user_id=event.metadata.get("user_id"),
            extra={"purchase_type": purchase_type, "record_id": result.record_id},
        )

        if purchase_type == PURCHASE_TYPE_DATASET and result.created:
            self._allocate(outcome)
        return outcome

    def _allocate(self, outcome: ReconcileOutcome) -> None:
        try:
            outcome.allocation = self.allocator.allocate(outcome.record_id)
        except Exception as e:
            outcome.allocation_error = e.message if isinstance(e, AppError) else str(e)
            log_event(
                "error",
                "revenue.allocation_failed",
                event_id=outcome.event_id,
                session_id=outcome.session_id,
                error_code=getattr(e, "code", "allocation_failed"),
                exc_info=True,
                extra={"sale_id": outcome.record_id},
            )
