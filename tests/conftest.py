"""
Test configuration and fixtures.

Provides:
- In-memory SQLite engine with working SAVEPOINTs
- Database session with savepoint (rollback after each test)
- Organization and source-row factories
- HTTPX AsyncClient with get_db overridden and the internal secret set
"""
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

# Settings are read at import time; point them at SQLite before importing orgops
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_SECRET"] = ""
os.environ["SENTRY_DSN"] = ""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from orgops.core.config import settings
from orgops.core.deps import get_db
from orgops.db.base import Base
from orgops.db.models import AutomationRule, Organization
from orgops.main import app

INTERNAL_SECRET = "test-internal-secret"


# =============================================================================
# Engine (one shared in-memory database)
# =============================================================================

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    # pysqlite's own BEGIN handling breaks SAVEPOINT; let SQLAlchemy emit it
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


Base.metadata.create_all(engine)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session with savepoint for test isolation.

    App code may call commit()/rollback(); those only touch a savepoint,
    and the outer transaction is rolled back after the test.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


def make_org(db: Session, name: str = "Test Organization") -> Organization:
    org = Organization(
        id=uuid.uuid4(),
        name=name,
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
    )
    db.add(org)
    db.flush()
    return org


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    return make_org(db)


@pytest.fixture(scope="function")
def other_org(db: Session) -> Organization:
    """A second tenant for isolation tests."""
    return make_org(db, name="Other Organization")


@pytest.fixture(scope="function")
def make_rule(db: Session):
    """Factory for stored automation rules."""

    def _make_rule(
        org: Organization,
        name: str,
        trigger_events: list,
        filters=None,
        is_active: bool = True,
    ) -> AutomationRule:
        rule = AutomationRule(
            id=uuid.uuid4(),
            organization_id=org.id,
            name=name,
            trigger_events=trigger_events,
            filters=filters,
            actions=[{"type": "notify_staff", "config": {"channel": "email"}}],
            is_active=is_active,
        )
        db.add(rule)
        db.flush()
        return rule

    return _make_rule


@pytest.fixture(scope="function")
def now() -> datetime:
    """Fixed scan clock."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient for the internal endpoints, with the X-Internal-Secret header.
    """
    monkeypatch.setattr(settings, "INTERNAL_SECRET", INTERNAL_SECRET)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Internal-Secret": INTERNAL_SECRET},
    ) as c:
        yield c

    app.dependency_overrides.clear()
