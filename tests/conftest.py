"""
Shared pytest fixtures for the negotiation service tests.

Provides stable party ids, a builder for transient ``Negotiation`` objects
(no database needed), and an in-memory SQLite session for tests that
exercise the store against real SQL.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.models import Base, Negotiation, NegotiationStatus, OfferAction
from src.services import offerHistory


# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

BUYER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
SELLER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OUTSIDER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
PRODUCT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_PRODUCT_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Transient negotiation builder
# ---------------------------------------------------------------------------


def make_negotiation(**overrides) -> Negotiation:
    """Build a negotiation in memory with a seeded opening offer.

    Defaults describe a fresh PENDING negotiation: the buyer offered
    500.00 for 10 units and nobody holds the lock.
    """
    fields = {
        "id": uuid.uuid4(),
        "product_id": PRODUCT_ID,
        "buyer_id": BUYER_ID,
        "seller_id": SELLER_ID,
        "status": NegotiationStatus.PENDING,
        "proposed_price": Decimal("500.00"),
        "proposed_quantity": 10,
        "last_offer_by": BUYER_ID,
        "lock_owner": None,
        "lock_acquired_at": None,
        "lock_ttl_seconds": 300,
        "created_at": T0,
        "updated_at": T0,
        "history": [],
    }
    fields.update(overrides)
    negotiation = Negotiation(**fields)
    if not negotiation.history:
        offerHistory.append_entry(
            negotiation,
            action=OfferAction.OFFERED,
            offer_by=BUYER_ID,
            price=Decimal("500.00"),
            quantity=10,
            message=None,
            now=T0,
        )
    return negotiation


@pytest.fixture
def negotiation() -> Negotiation:
    """A fresh PENDING negotiation awaiting the seller's response."""
    return make_negotiation()


# ---------------------------------------------------------------------------
# Async SQLite session
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    """One in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions on a file-backed database, each with its own connection.

    Unlike ``db_session`` this lets a test hold two independent sessions,
    e.g. a writer with a stale copy of a row and the writer that changed it.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'negotiations.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession`` bound to a Postgres engine.

    Individual tests configure ``mock_db.execute.side_effect`` to control
    query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.bind = MagicMock()
    session.bind.dialect.name = "postgresql"
    return session
