# sovrn/conftest.py
import pytest

from sovrn.core.config import settings

from sovrn.tests.stripe_helpers import WEBHOOK_SECRET


@pytest.fixture(scope="session")
def db_url():
    """
    Provide the database URL for tests.

    Returns TEST_DATABASE_URL when set (e.g. a Postgres test database),
    otherwise None so each test gets its own SQLite file.
    """
    return settings.TEST_DATABASE_URL


@pytest.fixture(scope="function", autouse=True)
def database(db_url, tmp_path):
    """
    Create all tables before each test and drop them afterwards.
    """
    from sovrn.core.database import init_engine, create_all_tables, drop_all_tables

    init_engine(db_url or f"sqlite:///{tmp_path / 'sovrn_test.db'}")
    create_all_tables()
    yield
    drop_all_tables()


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET



@pytest.fixture
def add_dataset():
    """Factory: insert a pooled dataset into the catalog."""
    from sqlalchemy import insert
    from sovrn.core.database import get_db_session, datasets

    def _add(dataset_id: str = "D1", unit_price_cents: int = 300, is_active: bool = True, name: str = None):
        with get_db_session() as session:
            session.execute(
                insert(datasets).values(
                    id=dataset_id,
                    slug=dataset_id.lower(),
                    name=name or f"Dataset {dataset_id}",
                    description="Pooled dataset",
                    unit_price_cents=unit_price_cents,
                    currency="usd",
                    is_active=is_active,
                )
            )
        return dataset_id

    return _add


@pytest.fixture
def add_listing():
    """Factory: insert a single-item listing into the catalog."""
    from sqlalchemy import insert
    from sovrn.core.database import get_db_session, listings

    def _add(listing_id: str = "L1", price_cents: int = 1500, is_flagged: bool = False):
        with get_db_session() as session:
            session.execute(
                insert(listings).values(
                    id=listing_id,
                    seller_id="seller_1",
                    title=f"Listing {listing_id}",
                    description="Single file",
                    price_cents=price_cents,
                    currency="usd",
                    is_flagged=is_flagged,
                )
            )
        return listing_id

    return _add


@pytest.fixture
def add_contributor():
    """Factory: add a contributor membership row."""
    from sqlalchemy import insert
    from sovrn.core.database import get_db_session, dataset_contributions

    def _add(dataset_id: str, user_id: str, weight: int = 1, is_active: bool = True):
        with get_db_session() as session:
            session.execute(
                insert(dataset_contributions).values(
                    dataset_id=dataset_id,
                    user_id=user_id,
                    weight=weight,
                    is_active=is_active,
                )
            )

    return _add
