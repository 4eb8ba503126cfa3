"""Shared fixtures for integration tests requiring live infrastructure."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenant_gate.auth.rate_limiter import RedisCounterStore
from tenant_gate.config import get_settings
from tenant_gate.storage.firm_repository import FirmRepository
from tenant_gate.storage.orm import Branch, Firm

# ── Engine ─────────────────────────────────────────────────────────


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine from settings."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=5,
        max_overflow=0,
    )
    yield engine
    await engine.dispose()


# ── Session factory ────────────────────────────────────────────────


@pytest.fixture()
def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Session with savepoint rollback ───────────────────────────────


@pytest.fixture()
async def db_session(
    async_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Provide a session wrapped in a transaction, rolled back after test.

    Suitable for repository tests that use ``flush()`` but NOT ``commit()``.
    Tests that race two writers should use ``committed_firm`` instead.
    """
    async with async_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture()
async def seed_firm(db_session: AsyncSession) -> Firm:
    """A DRAFT firm with a fresh 14-day trial (rolled back)."""
    return await FirmRepository(db_session).create(
        name=f"test-firm-{uuid.uuid4().hex[:8]}",
        now=datetime.now(UTC),
        trial_days=14,
    )


# ── Committed seeds (real commit + DELETE cleanup) ─────────────────


@pytest.fixture()
async def committed_firm(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[uuid.UUID]:
    """Create a committed DRAFT firm; deletes it (and branches) afterwards."""
    async with session_factory() as session:
        firm = await FirmRepository(session).create(
            name=f"test-firm-{uuid.uuid4().hex[:8]}",
            now=datetime.now(UTC),
            trial_days=14,
        )
        await session.commit()
        firm_id = firm.id

    yield firm_id

    async with session_factory() as session:
        await session.execute(Branch.__table__.delete().where(Branch.firm_id == firm_id))
        await session.execute(Firm.__table__.delete().where(Firm.id == firm_id))
        await session.commit()


# ── Redis ──────────────────────────────────────────────────────────


@pytest.fixture()
async def redis_store() -> AsyncGenerator[RedisCounterStore]:
    """Open a RedisCounterStore against the configured Redis."""
    async with RedisCounterStore(get_settings().redis_url, socket_timeout=2.0) as store:
        yield store
