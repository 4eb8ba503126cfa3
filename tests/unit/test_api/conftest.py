"""Fixtures for API tests: app wired to in-memory collaborators."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from tenant_gate.api.app import app
from tenant_gate.api.deps import (
    get_firm_repository,
    get_identity_verifier,
    get_rate_limiter,
    get_session,
)
from tenant_gate.auth.rate_limiter import InMemoryCounterStore, RateLimiter
from tenant_gate.auth.tokens import IdentityVerifier
from tests.fakes import FakeFirmStore, TokenFactory

SECRET = "api-test-secret-api-test-secret-000001"


@pytest.fixture()
def store() -> FakeFirmStore:
    return FakeFirmStore()


@pytest.fixture()
def verifier() -> IdentityVerifier:
    return IdentityVerifier(SECRET)


@pytest.fixture()
def limiter() -> RateLimiter:
    return RateLimiter(InMemoryCounterStore())


@pytest.fixture()
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture()
async def client(
    store: FakeFirmStore,
    verifier: IdentityVerifier,
    limiter: RateLimiter,
    mock_session: AsyncMock,
) -> AsyncGenerator[AsyncClient]:
    app.dependency_overrides[get_session] = lambda: mock_session
    app.dependency_overrides[get_firm_repository] = lambda: store
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def tokens(verifier: IdentityVerifier) -> TokenFactory:
    return TokenFactory(verifier)
