"""FastAPI dependency injection."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Coroutine
from typing import Any, cast

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_gate.arbiter import AccessRequest, AuthorizedContext, RequestArbiter, RoutePolicy
from tenant_gate.auth.rate_limiter import RateDecision, RateLimiter
from tenant_gate.auth.tenancy import TenancyGuard
from tenant_gate.auth.tokens import IdentityVerifier
from tenant_gate.config import settings
from tenant_gate.firms.lifecycle import FirmLifecycle
from tenant_gate.firms.subscription import SubscriptionGate
from tenant_gate.storage.database import get_session
from tenant_gate.storage.firm_repository import FirmRepository

__all__ = [
    "authorize",
    "get_firm_repository",
    "get_identity_verifier",
    "get_rate_limiter",
    "get_session",
]

_get_session = Depends(get_session)


async def get_identity_verifier(request: Request) -> IdentityVerifier:
    """Retrieve IdentityVerifier from app state.

    Initialized during lifespan startup.
    """
    return cast(IdentityVerifier, request.app.state.identity_verifier)


async def get_rate_limiter(request: Request) -> RateLimiter:
    """Retrieve RateLimiter from app state.

    Initialized during lifespan startup.
    """
    return cast(RateLimiter, request.app.state.rate_limiter)


async def get_firm_repository(session: AsyncSession = _get_session) -> FirmRepository:
    return FirmRepository(session)


def _path_uuid(request: Request, name: str) -> uuid.UUID | None:
    """Read a scope hint from the path. Query strings are never consulted."""
    raw = request.path_params.get(name)
    if raw is None:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid {name}") from exc


_verifier_dep = Depends(get_identity_verifier)
_limiter_dep = Depends(get_rate_limiter)
_repo_dep = Depends(get_firm_repository)


def authorize(
    policy: RoutePolicy,
) -> Callable[..., Coroutine[Any, Any, AuthorizedContext]]:
    """Dependency factory: run the RequestArbiter for ``policy``.

    Usage as parameter dependency (returns AuthorizedContext)::

        async def endpoint(
            ctx: AuthorizedContext = Depends(authorize(FIRM_READ)),
        ): ...

    Raises:
        AccessDenied: converted to the matching status by the app handler.
    """

    async def _authorize(
        request: Request,
        verifier: IdentityVerifier = _verifier_dep,
        limiter: RateLimiter = _limiter_dep,
        repo: FirmRepository = _repo_dep,
    ) -> AuthorizedContext:
        timeout = settings.store_timeout_seconds
        arbiter = RequestArbiter(
            verifier,
            limiter,
            TenancyGuard(repo, timeout_seconds=timeout),
            subscriptions=SubscriptionGate(repo, timeout_seconds=timeout),
            lifecycle=FirmLifecycle(repo, timeout_seconds=timeout),
        )
        access = AccessRequest(
            authorization=request.headers.get("Authorization"),
            client_host=request.client.host if request.client else None,
            tenant_id=_path_uuid(request, "firm_id"),
            branch_id=_path_uuid(request, "branch_id"),
        )

        def _record(decision: RateDecision) -> None:
            request.state.rate_decision = decision
            request.state.rate_limiter = limiter

        return await arbiter.authorize(access, policy, on_rate_decision=_record)

    return _authorize
