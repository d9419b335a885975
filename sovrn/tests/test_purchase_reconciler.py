"""
Test checkout reconciliation end to end (signed payload -> rows).

Signatures are verified by the real stripe library, rows land in the test
database, and failures are injected with Mock.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import OperationalError

from sovrn.core.config import settings
from sovrn.core.database import (
    dataset_sales,
    get_db_session,
    purchases,
    revenue_allocations,
    revenue_shares,
    transactions,
)
from sovrn.core.errors import AllocationError, AuthenticationError, MalformedEventError, PersistenceError
from sovrn.features.purchases.reconciler import PurchaseReconciler
from sovrn.features.purchases.service import build_reconciler
from sovrn.features.purchases.store import SqlPurchaseStore
from sovrn.features.purchases.stripe_provider import StripeProvider
from sovrn.features.revenue.allocator import RevenueAllocator
from sovrn.features.revenue.portfolio import get_balance
from sovrn.features.revenue.recovery_job import allocate_pending_sales
from sovrn.tests.stripe_helpers import WEBHOOK_SECRET, checkout_event, sign_payload

DATASET_METADATA = {"type": "dataset", "dataset_id": "D1", "user_id": "U1", "quantity": "3"}
LISTING_METADATA = {"type": "listing", "listing_id": "L1", "user_id": "U2"}


def _count(table):
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(table)).scalar()


def _reconciler(store=None, allocator=None):
    return PurchaseReconciler(
        provider=StripeProvider(secret_key=None),
        store=store or SqlPurchaseStore(),
        allocator=allocator or RevenueAllocator(),
    )


def _deliver(reconciler, body):
    return reconciler.handle(body, sign_payload(body), WEBHOOK_SECRET)


@pytest.fixture
def pooled_dataset(add_dataset, add_contributor):
    add_dataset("D1", unit_price_cents=300)
    add_contributor("D1", "seller_a", weight=1)
    add_contributor("D1", "seller_b", weight=3)


def test_dataset_sale_is_recorded_and_allocated(pooled_dataset):
    outcome = _deliver(_reconciler(), checkout_event(DATASET_METADATA, amount_total=900))

    assert outcome.status == "recorded"
    assert outcome.purchase_type == "dataset"
    assert outcome.allocation.status == "allocated"
    assert outcome.allocation_error is None

    with get_db_session() as session:
        sale = session.execute(select(dataset_sales)).fetchone()
    assert sale.id == outcome.record_id
    assert (sale.dataset_id, sale.buyer_id, sale.quantity, sale.gross_cents) == ("D1", "U1", 3, 900)
    assert sale.session_id == "cs_test_1"

    assert get_balance("seller_a") == 225
    assert get_balance("seller_b") == 675


def test_replayed_delivery_is_a_duplicate(pooled_dataset):
    reconciler = _reconciler()
    body = checkout_event(DATASET_METADATA, amount_total=900)

    first = _deliver(reconciler, body)
    outcomes = [_deliver(reconciler, body) for _ in range(3)]

    assert all(o.status == "duplicate" for o in outcomes)
    assert all(o.record_id == first.record_id for o in outcomes)
    assert all(o.allocation is None for o in outcomes)
    assert _count(dataset_sales) == 1
    assert _count(revenue_allocations) == 1
    assert _count(revenue_shares) == 2
    assert get_balance("seller_a") == 225
    assert get_balance("seller_b") == 675


def test_redelivery_with_new_event_id_is_still_a_duplicate(pooled_dataset):
    reconciler = _reconciler()
    _deliver(reconciler, checkout_event(DATASET_METADATA, event_id="evt_1"))

    outcome = _deliver(reconciler, checkout_event(DATASET_METADATA, event_id="evt_2"))

    assert outcome.status == "duplicate"
    assert _count(dataset_sales) == 1


def test_listing_purchase_writes_purchase_and_ledger_entry(add_listing):
    add_listing("L1", price_cents=1500)

    outcome = _deliver(_reconciler(), checkout_event(LISTING_METADATA, amount_total=1500, session_id="cs_listing"))

    assert outcome.status == "recorded"
    assert outcome.purchase_type == "listing"
    assert outcome.allocation is None
    with get_db_session() as session:
        purchase = session.execute(select(purchases)).fetchone()
        entry = session.execute(select(transactions)).fetchone()
    assert (purchase.user_id, purchase.listing_id, purchase.session_id) == ("U2", "L1", "cs_listing")
    assert (entry.buyer_id, entry.amount_cents, entry.currency) == ("U2", 1500, "usd")
    assert _count(dataset_sales) == 0


def test_listing_replay_writes_nothing_new(add_listing):
    add_listing("L1")
    reconciler = _reconciler()
    body = checkout_event(LISTING_METADATA, amount_total=1500)

    _deliver(reconciler, body)
    outcome = _deliver(reconciler, body)

    assert outcome.status == "duplicate"
    assert _count(purchases) == 1
    assert _count(transactions) == 1


def test_listing_pair_is_atomic_on_conflict(add_listing):
    add_listing("L1")
    # Orphan ledger row for the same session blocks the pair
    with get_db_session() as session:
        session.execute(
            insert(transactions).values(
                listing_id="L1", buyer_id="U9", amount_cents=1, currency="usd", session_id="cs_test_1"
            )
        )

    with pytest.raises(PersistenceError):
        _deliver(_reconciler(), checkout_event(LISTING_METADATA, amount_total=1500))

    assert _count(purchases) == 0
    assert _count(transactions) == 1


def test_tampered_delivery_writes_nothing(pooled_dataset):
    body = checkout_event(DATASET_METADATA, amount_total=900)
    header = sign_payload(body)

    with pytest.raises(AuthenticationError):
        _reconciler().handle(body.replace(b"900", b"9"), header, WEBHOOK_SECRET)

    assert _count(dataset_sales) == 0


def test_missing_identifiers_write_nothing(pooled_dataset):
    body = checkout_event({"type": "dataset", "user_id": "U1"})

    with pytest.raises(MalformedEventError):
        _deliver(_reconciler(), body)

    assert _count(dataset_sales) == 0
    assert _count(purchases) == 0


def test_other_event_types_are_ignored(pooled_dataset):
    body = checkout_event(DATASET_METADATA, event_type="checkout.session.expired")

    outcome = _deliver(_reconciler(), body)

    assert outcome.status == "ignored"
    assert outcome.event_type == "checkout.session.expired"
    assert _count(dataset_sales) == 0


def test_store_failure_raises_persistence_error(pooled_dataset):
    session = Mock()
    session.execute.side_effect = OperationalError("INSERT", {}, Exception("connection reset"))
    store = SqlPurchaseStore(session_factory=lambda: session)
    allocator = Mock()

    with pytest.raises(PersistenceError):
        _deliver(_reconciler(store=store, allocator=allocator), checkout_event(DATASET_METADATA))

    session.rollback.assert_called_once()
    session.close.assert_called_once()
    allocator.allocate.assert_not_called()
    assert _count(dataset_sales) == 0


def test_allocation_failure_does_not_fail_the_sale(pooled_dataset, caplog):
    allocator = Mock()
    allocator.allocate.side_effect = AllocationError("allocation store unavailable")
    reconciler = _reconciler(allocator=allocator)
    body = checkout_event(DATASET_METADATA, amount_total=900)

    with caplog.at_level("ERROR", logger="sovrn"):
        outcome = _deliver(reconciler, body)

    assert outcome.status == "recorded"
    assert outcome.allocation is None
    assert outcome.allocation_error == "allocation store unavailable"
    assert _count(dataset_sales) == 1
    assert _count(revenue_allocations) == 0
    assert any(r.getMessage() == "revenue.allocation_failed" for r in caplog.records)

    # Redelivery is a duplicate and does not retry allocation
    assert _deliver(reconciler, body).status == "duplicate"
    allocator.allocate.assert_called_once_with(outcome.record_id)

    # The recovery job allocates it later
    report = allocate_pending_sales()
    assert report["allocated"] == 1
    assert get_balance("seller_a") + get_balance("seller_b") == 900


def test_unexpected_allocator_exception_is_contained(pooled_dataset):
    allocator = Mock()
    allocator.allocate.side_effect = RuntimeError("boom")

    outcome = _deliver(_reconciler(allocator=allocator), checkout_event(DATASET_METADATA))

    assert outcome.status == "recorded"
    assert outcome.allocation_error == "boom"


def test_sale_without_contributors_is_recorded(add_dataset):
    add_dataset("D1")

    outcome = _deliver(_reconciler(), checkout_event(DATASET_METADATA, amount_total=900))

    assert outcome.status == "recorded"
    assert outcome.allocation.status == "no_contributors"
    assert _count(revenue_shares) == 0


def test_outcome_serializes_allocation(pooled_dataset):
    outcome = _deliver(_reconciler(), checkout_event(DATASET_METADATA, amount_total=900))

    data = outcome.to_dict()

    assert data["status"] == "recorded"
    assert data["allocation"]["allocated_cents"] == 900
    assert [s["share_cents"] for s in data["allocation"]["shares"]] == [225, 675]


def test_configured_currency_applies_to_events_without_one(add_dataset, monkeypatch):
    add_dataset("D1")
    monkeypatch.setattr(settings, "DEFAULT_CURRENCY", "eur")
    reconciler = build_reconciler(provider=StripeProvider())

    _deliver(reconciler, checkout_event(DATASET_METADATA, currency=None))

    with get_db_session() as session:
        assert session.execute(select(dataset_sales.c.currency)).scalar() == "eur"


def test_simultaneous_deliveries_record_one_sale(pooled_dataset):
    reconciler = _reconciler()
    body = checkout_event(DATASET_METADATA, amount_total=900)
    barrier = threading.Barrier(4)

    def deliver():
        barrier.wait()
        return _deliver(reconciler, body)

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = [future.result() for future in [pool.submit(deliver) for _ in range(4)]]

    assert sorted(o.status for o in outcomes) == ["duplicate", "duplicate", "duplicate", "recorded"]
    assert len({o.record_id for o in outcomes}) == 1
    assert _count(dataset_sales) == 1
    assert _count(revenue_allocations) == 1
    assert get_balance("seller_a") + get_balance("seller_b") == 900
