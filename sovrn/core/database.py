"""
Database engine, sessions and marketplace tables.

Idempotency of purchase recording and revenue allocation rests on the unique
constraints declared here; code relies on IntegrityError instead of
read-before-write checks.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool
from sqlalchemy.sql import false, func, true

from sovrn.core.config import settings

logger = logging.getLogger("sovrn")

metadata = MetaData()

# Pool sizing for server databases (SQLite uses SQLAlchemy's own pool)
POOL_OPTIONS = {
    "poolclass": QueuePool,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_database_url(cfg=None) -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL so test runs never hit production."""
    cfg = cfg or settings
    return cfg.TEST_DATABASE_URL or cfg.DATABASE_URL


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)create the engine and session factory, disposing any previous engine."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in environment or .env file.")

    if _engine is not None:
        _engine.dispose()

    if make_url(url).get_backend_name() == "sqlite":
        # Pooled connections are shared by the request threadpool
        options = {"connect_args": {"check_same_thread": False}}
    else:
        options = POOL_OPTIONS
    _engine = create_engine(url, echo=False, **options)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Session that commits on exit and rolls back if the block raises."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing tables are left as they are."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    metadata.drop_all(bind=get_engine())


def reset_database() -> None:
    """Drop and recreate every table. Development and tests only."""
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
    return True


# Catalog: single-item listings uploaded by sellers
listings = Table(
    'listings',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('seller_id', String(100), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('price_cents', Integer, nullable=False),
    Column('currency', String(10), nullable=False, server_default='usd'),
    Column('is_flagged', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Catalog: pooled datasets
datasets = Table(
    'datasets',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('slug', String(200), nullable=False, unique=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('unit_price_cents', Integer, nullable=False),
    Column('currency', String(10), nullable=False, server_default='usd'),
    Column('is_active', Boolean, nullable=False, server_default=true(), index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Single-item purchases (one per checkout session)
purchases = Table(
    'purchases',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('listing_id', String(100), nullable=False, index=True),
    Column('session_id', String(255), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('session_id', name='uq_purchases_session_id'),
    Index('idx_purchases_user_created', 'user_id', 'created_at'),
)

# Ledger entry for each listing purchase, written with its purchase row
transactions = Table(
    'transactions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('listing_id', String(100), nullable=False, index=True),
    Column('buyer_id', String(100), nullable=False, index=True),
    Column('amount_cents', Integer, nullable=False),
    Column('currency', String(10), nullable=False),
    Column('session_id', String(255), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('session_id', name='uq_transactions_session_id'),
)

# Pooled dataset sales (one per checkout session per dataset)
dataset_sales = Table(
    'dataset_sales',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('dataset_id', String(100), nullable=False, index=True),
    Column('buyer_id', String(100), nullable=False, index=True),
    Column('quantity', Integer, nullable=False),
    Column('gross_cents', Integer, nullable=False),
    Column('currency', String(10), nullable=False),
    Column('session_id', String(255), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('session_id', 'dataset_id', name='uq_dataset_sales_session_dataset'),
    Index('idx_dataset_sales_dataset_created', 'dataset_id', 'created_at'),
)

# Contributor pool membership (toggled by sellers)
dataset_contributions = Table(
    'dataset_contributions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('dataset_id', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('weight', Integer, nullable=False, server_default='1'),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('dataset_id', 'user_id', name='uq_dataset_contributions_dataset_user'),
    Index('idx_dataset_contributions_dataset_active', 'dataset_id', 'is_active'),
)

# One allocation batch per sale
revenue_allocations = Table(
    'revenue_allocations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('sale_id', Integer, ForeignKey('dataset_sales.id'), nullable=False),
    Column('dataset_id', String(100), nullable=False, index=True),
    Column('status', String(50), nullable=False),  # allocated, no_contributors
    Column('gross_cents', Integer, nullable=False),
    Column('allocated_cents', Integer, nullable=False),
    Column('contributor_count', Integer, nullable=False),
    Column('total_weight', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('sale_id', name='uq_revenue_allocations_sale_id'),
)

# Per-contributor shares; weight is the snapshot used at allocation time
revenue_shares = Table(
    'revenue_shares',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('sale_id', Integer, ForeignKey('dataset_sales.id'), nullable=False, index=True),
    Column('dataset_id', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('weight', Integer, nullable=False),
    Column('share_cents', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('sale_id', 'user_id', name='uq_revenue_shares_sale_user'),
    Index('idx_revenue_shares_user_created', 'user_id', 'created_at'),
)

# Running credited balance per contributor
user_balances = Table(
    'user_balances',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('balance_cents', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)
