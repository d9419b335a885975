"""Contributor earnings: running balance and recent revenue shares."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select

from sovrn.core.database import datasets, get_db_session, revenue_shares, user_balances

RECENT_SHARES_LIMIT = 20


def _iso(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def get_balance(user_id: str) -> int:
    with get_db_session() as session:
        row = session.execute(
            select(user_balances.c.balance_cents).where(user_balances.c.user_id == user_id)
        ).fetchone()
    return int(row[0]) if row else 0


def get_portfolio(user_id: str, limit: int = RECENT_SHARES_LIMIT) -> Dict[str, Any]:
    """
    Returns:
        {
            "user_id": str,
            "balance_cents": int,
            "recent_shares": [{sale_id, dataset_id, dataset_name, share_cents, created_at}]
        }
    """
    with get_db_session() as session:
        rows = session.execute(
            select(
                revenue_shares.c.sale_id,
                revenue_shares.c.dataset_id,
                datasets.c.name,
                revenue_shares.c.share_cents,
                revenue_shares.c.created_at,
            )
            .select_from(revenue_shares.outerjoin(datasets, datasets.c.id == revenue_shares.c.dataset_id))
            .where(revenue_shares.c.user_id == user_id)
            .order_by(revenue_shares.c.created_at.desc(), revenue_shares.c.id.desc())
            .limit(limit)
        ).fetchall()

    return {
        "user_id": user_id,
        "balance_cents": get_balance(user_id),
        "recent_shares": [
            {
                "sale_id": row.sale_id,
                "dataset_id": row.dataset_id,
                "dataset_name": row.name,
                "share_cents": row.share_cents,
                "created_at": _iso(row.created_at),
            }
            for row in rows
        ],
    }
