"""
Revenue allocation for pooled dataset sales.

A sale's gross amount is split across the dataset's active contributors in
proportion to their weights. Shares are integers in minor currency units and
always sum to the gross amount (largest-remainder method). Each sale is
allocated at most once: revenue_allocations has UNIQUE(sale_id), and the
batch row, share rows and balance credits commit together.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from sqlalchemy import func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sovrn.core.database import (
    dataset_contributions,
    dataset_sales,
    get_session_factory,
    revenue_allocations,
    revenue_shares,
    user_balances,
)
from sovrn.core.errors import AllocationError
from sovrn.core.logging import log_event

logger = logging.getLogger("sovrn")

STATUS_ALLOCATED = "allocated"
STATUS_NO_CONTRIBUTORS = "no_contributors"
STATUS_ALREADY_ALLOCATED = "already_allocated"


def split_revenue(gross_cents: int, weights: Sequence[int]) -> List[int]:
    """
    Split gross_cents proportionally to weights.

    Every share starts at floor(gross * w / W); the units left over go one
    each to the largest fractional remainders, ties to the earlier weight.

    >>> split_revenue(900, [1, 3])
    [225, 675]
    >>> split_revenue(10, [1, 1, 1])
    [4, 3, 3]
    """
    if gross_cents < 0:
        raise ValueError("gross_cents must be non-negative")
    if not weights:
        raise ValueError("weights must not be empty")
    if any(w <= 0 for w in weights):
        raise ValueError("weights must be positive")

    total = sum(weights)
    shares = []
    remainders = []
    for index, weight in enumerate(weights):
        share, remainder = divmod(gross_cents * weight, total)
        shares.append(share)
        remainders.append((remainder, index))

    leftover = gross_cents - sum(shares)
    for _, index in sorted(remainders, key=lambda item: (-item[0], item[1]))[:leftover]:
        shares[index] += 1
    return shares


@dataclass(frozen=True)
class ContributorShare:
    user_id: str
    weight: int
    share_cents: int


@dataclass
class AllocationResult:
    sale_id: int
    dataset_id: Optional[str]
    status: str
    gross_cents: int = 0
    shares: List[ContributorShare] = field(default_factory=list)

    @property
    def allocated_cents(self) -> int:
        return sum(share.share_cents for share in self.shares)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "dataset_id": self.dataset_id,
            "status": self.status,
            "gross_cents": self.gross_cents,
            "allocated_cents": self.allocated_cents,
            "shares": [
                {"user_id": s.user_id, "weight": s.weight, "share_cents": s.share_cents}
                for s in self.shares
            ],
        }


class RevenueAllocator:
    """Distributes dataset sales to contributors and credits their balances."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    def _open(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    def allocate(self, sale_id: int) -> AllocationResult:
        """
        Allocate one sale. Safe to call repeatedly and concurrently.

        Returns:
            AllocationResult with status allocated, no_contributors or
            already_allocated

        Raises:
            AllocationError: If the sale does not exist or the store fails
        """
        session = self._open()
        try:
            sale = session.execute(
                select(dataset_sales).where(dataset_sales.c.id == sale_id)
            ).fetchone()
            if sale is None:
                raise AllocationError(f"Dataset sale {sale_id} not found")

            if self._batch_exists(session, sale_id):
                return AllocationResult(sale_id, sale.dataset_id, STATUS_ALREADY_ALLOCATED, sale.gross_cents)

            contributors = self._snapshot_contributors(session, sale.dataset_id)
            if not contributors:
                self._insert_batch(session, sale, STATUS_NO_CONTRIBUTORS, [])
                session.commit()
                log_event(
                    "warning",
                    "revenue.no_contributors",
                    extra={"sale_id": sale_id, "dataset_id": sale.dataset_id, "gross_cents": sale.gross_cents},
                )
                return AllocationResult(sale_id, sale.dataset_id, STATUS_NO_CONTRIBUTORS, sale.gross_cents)

            amounts = split_revenue(sale.gross_cents, [weight for _, weight in contributors])
            shares = [
                ContributorShare(user_id=user_id, weight=weight, share_cents=amount)
                for (user_id, weight), amount in zip(contributors, amounts)
            ]

            self._insert_batch(session, sale, STATUS_ALLOCATED, shares)
            for share in shares:
                session.execute(
                    insert(revenue_shares).values(
                        sale_id=sale_id,
                        dataset_id=sale.dataset_id,
                        user_id=share.user_id,
                        weight=share.weight,
                        share_cents=share.share_cents,
                    )
                )
                if share.share_cents:
                    self._credit(session, share.user_id, share.share_cents)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            # A concurrent allocation of the same sale won the batch row
            if self._batch_exists(session, sale_id):
                return AllocationResult(sale_id, None, STATUS_ALREADY_ALLOCATED)
            raise AllocationError(f"Allocation for sale {sale_id} conflicted: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise AllocationError(f"Allocation for sale {sale_id} failed: {e}") from e
        finally:
            session.close()

        log_event(
            "info",
            "revenue.allocated",
            extra={
                "sale_id": sale_id,
                "dataset_id": sale.dataset_id,
                "gross_cents": sale.gross_cents,
                "contributors": len(shares),
            },
        )
        return AllocationResult(sale_id, sale.dataset_id, STATUS_ALLOCATED, sale.gross_cents, shares)

    def _batch_exists(self, session: Session, sale_id: int) -> bool:
        try:
            row = session.execute(
                select(revenue_allocations.c.id).where(revenue_allocations.c.sale_id == sale_id)
            ).fetchone()
        except SQLAlchemyError as e:
            raise AllocationError(f"Allocation lookup for sale {sale_id} failed: {e}") from e
        return row is not None

    def _snapshot_contributors(self, session: Session, dataset_id: str) -> List[tuple]:
        rows = session.execute(
            select(dataset_contributions.c.user_id, dataset_contributions.c.weight)
            .where(
                dataset_contributions.c.dataset_id == dataset_id,
                dataset_contributions.c.is_active.is_(True),
                dataset_contributions.c.weight > 0,
            )
            .order_by(dataset_contributions.c.user_id)
        ).fetchall()
        return [(row.user_id, int(row.weight)) for row in rows]

    def _insert_batch(self, session: Session, sale, status: str, shares: List[ContributorShare]) -> None:
        session.execute(
            insert(revenue_allocations).values(
                sale_id=sale.id,
                dataset_id=sale.dataset_id,
                status=status,
                gross_cents=sale.gross_cents,
                allocated_cents=sum(s.share_cents for s in shares),
                contributor_count=len(shares),
                total_weight=sum(s.weight for s in shares),
            )
        )

    def _credit(self, session: Session, user_id: str, amount_cents: int) -> None:
        # INSERT .. ON CONFLICT (user_id) DO UPDATE: concurrent first credits for a user cannot collide
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            upsert = postgresql.insert(user_balances)
        elif dialect == "sqlite":
            upsert = sqlite.insert(user_balances)
        else:
            raise AllocationError(f"Balance upsert is not supported on {dialect}")

        session.execute(
            upsert.values(user_id=user_id, balance_cents=amount_cents).on_conflict_do_update(
                index_elements=[user_balances.c.user_id],
                set_={
                    "balance_cents": user_balances.c.balance_cents + amount_cents,
                    "updated_at": func.now(),
                },
            )
        )
