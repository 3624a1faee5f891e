"""
Pytest fixtures for testing
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from billflow.application.notifications import wait_for_notifications
from billflow.infrastructure.db.session import Base
from billflow.infrastructure.db.models import Category, ExchangeRate, SubscriptionModel
from billflow.infrastructure.db.schema import seed_reference_data


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient, thread pools)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def seeded(db_session):
    """Reference rows (categories, notification settings, default CNY rates)."""
    seed_reference_data(db_session, "CNY")
    db_session.commit()
    return db_session


@pytest.fixture
def category(db_session):
    c = Category(value="video", label="Video Streaming")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def add_rate(db_session):
    """Factory: store an exchange rate row."""
    def _add(from_currency: str, to_currency: str, rate) -> ExchangeRate:
        row = ExchangeRate(from_currency=from_currency, to_currency=to_currency, rate=Decimal(str(rate)))
        db_session.add(row)
        db_session.commit()
        return row
    return _add


@pytest.fixture
def add_subscription(db_session):
    """Factory: insert a subscription row directly, without generating its ledger."""
    def _add(**overrides) -> SubscriptionModel:
        values = dict(
            name="Netflix",
            plan="Premium",
            billing_cycle="monthly",
            amount=Decimal("10.00"),
            currency="CNY",
            start_date=date(2024, 1, 10),
            next_billing_date=date(2024, 3, 10),
            last_billing_date=date(2024, 2, 10),
            status="active",
            renewal_type="manual",
        )
        values.update(overrides)
        sub = SubscriptionModel(**values)
        db_session.add(sub)
        db_session.commit()
        return sub
    return _add


@pytest.fixture(autouse=True)
def drain_notifications():
    """Background notification sends never outlive the test that queued them."""
    yield
    wait_for_notifications(timeout=5)
