"""
Purchase persistence.

Applies planned commands as an atomic insert-if-absent. Idempotency comes
from the session-id unique constraints on purchases, transactions and
dataset_sales; a constraint violation is resolved by looking up the row that
won, never by a read-before-write.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol, Sequence

from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sovrn.core.database import dataset_sales, get_session_factory, purchases, transactions
from sovrn.core.errors import PersistenceError
from sovrn.features.purchases.commands import (
    Command,
    RecordDatasetSale,
    RecordLedgerEntry,
    RecordPurchase,
)

logger = logging.getLogger("sovrn")

_TABLES = {
    RecordPurchase: purchases,
    RecordLedgerEntry: transactions,
    RecordDatasetSale: dataset_sales,
}

# Columns of each unique constraint used as the idempotency key
_IDEMPOTENCY_KEYS = {
    RecordPurchase: ("session_id",),
    RecordLedgerEntry: ("session_id",),
    RecordDatasetSale: ("session_id", "dataset_id"),
}


@dataclass(frozen=True)
class StoreResult:
    record_id: int
    created: bool


class PurchaseStore(Protocol):
    def apply(self, commands: Sequence[Command]) -> StoreResult:
        """
        Insert every command in one transaction.

        Returns the id of the first command's row and whether it was created
        now (False when an earlier delivery already recorded it).

        Raises:
            PersistenceError: If nothing could be committed
        """
        ...


class SqlPurchaseStore:
    """PurchaseStore backed by the SQLAlchemy tables in sovrn.core.database."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    def _open(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    def apply(self, commands: Sequence[Command]) -> StoreResult:
        if not commands:
            raise ValueError("No commands to apply")
        primary = commands[0]

        session = self._open()
        try:
            record_id = None
            for command in commands:
                result = session.execute(insert(_TABLES[type(command)]).values(**asdict(command)))
                if record_id is None:
                    record_id = result.inserted_primary_key[0]
            session.commit()
            return StoreResult(record_id=record_id, created=True)
        except IntegrityError as e:
            session.rollback()
            existing_id = self._find_existing(session, primary)
            if existing_id is None:
                raise PersistenceError(f"Failed to record {type(primary).__name__}: {e.orig}") from e
            logger.info(
                "purchase.duplicate",
                extra={"session_id": primary.session_id, "record_id": existing_id},
            )
            return StoreResult(record_id=existing_id, created=False)
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to record {type(primary).__name__}: {e}") from e
        finally:
            session.close()

    def _find_existing(self, session: Session, command: Command) -> Optional[int]:
        table = _TABLES[type(command)]
        conditions = [table.c[column] == getattr(command, column) for column in _IDEMPOTENCY_KEYS[type(command)]]
        try:
            row = session.execute(select(table.c.id).where(and_(*conditions))).fetchone()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up {table.name} after conflict: {e}") from e
        return row[0] if row else None
