"""
Dataset contributor membership.

Sellers join or leave a pooled dataset's contributor set. Leaving is a soft
deactivation; the row (and its weight) is kept so rejoining restores it.
Allocation reads memberships only at sale time.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sovrn.core.database import dataset_contributions, datasets, get_db_session
from sovrn.core.errors import NotFoundError, ValidationError
from sovrn.core.logging import log_event

DEFAULT_WEIGHT = 1


def _membership(dataset_id: str, user_id: str, row) -> Dict[str, Any]:
    return {
        "dataset_id": dataset_id,
        "user_id": user_id,
        "is_active": bool(row.is_active) if row else False,
        "weight": int(row.weight) if row else None,
    }


def _require_dataset(session: Session, dataset_id: str) -> None:
    found = session.execute(select(datasets.c.id).where(datasets.c.id == dataset_id)).fetchone()
    if not found:
        raise NotFoundError(f"Dataset {dataset_id} not found")


def _fetch(session: Session, dataset_id: str, user_id: str):
    return session.execute(
        select(dataset_contributions.c.is_active, dataset_contributions.c.weight).where(
            dataset_contributions.c.dataset_id == dataset_id,
            dataset_contributions.c.user_id == user_id,
        )
    ).fetchone()


def get_contribution(dataset_id: str, user_id: str) -> Dict[str, Any]:
    with get_db_session() as session:
        _require_dataset(session, dataset_id)
        row = _fetch(session, dataset_id, user_id)
    return _membership(dataset_id, user_id, row)


def set_contribution(dataset_id: str, user_id: str, active: bool, weight: Optional[int] = None) -> Dict[str, Any]:
    """Start (upsert active) or stop (soft-deactivate) contributing to a dataset."""
    if weight is not None and weight <= 0:
        raise ValidationError("weight must be positive")

    with get_db_session() as session:
        _require_dataset(session, dataset_id)
        values: Dict[str, Any] = {"is_active": active}
        if weight is not None:
            values["weight"] = weight

        updated = session.execute(
            update(dataset_contributions)
            .where(
                dataset_contributions.c.dataset_id == dataset_id,
                dataset_contributions.c.user_id == user_id,
            )
            .values(**values)
        )
        if updated.rowcount == 0 and active:
            try:
                session.execute(
                    insert(dataset_contributions).values(
                        dataset_id=dataset_id,
                        user_id=user_id,
                        is_active=True,
                        weight=weight or DEFAULT_WEIGHT,
                    )
                )
                session.commit()
            except IntegrityError:
                # Joined concurrently; the row exists now
                session.rollback()
                session.execute(
                    update(dataset_contributions)
                    .where(
                        dataset_contributions.c.dataset_id == dataset_id,
                        dataset_contributions.c.user_id == user_id,
                    )
                    .values(**values)
                )
        session.commit()
        row = _fetch(session, dataset_id, user_id)

    log_event(
        "info",
        "contribution.updated",
        user_id=user_id,
        extra={"dataset_id": dataset_id, "is_active": active},
    )
    return _membership(dataset_id, user_id, row)


def toggle_contribution(dataset_id: str, user_id: str) -> Dict[str, Any]:
    current = get_contribution(dataset_id, user_id)
    return set_contribution(dataset_id, user_id, active=not current["is_active"])
