"""Subscription status endpoints."""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from tenant_gate.api.deps import authorize, get_firm_repository
from tenant_gate.api.schemas import FirmSubscriptionResponse, SubscriptionResponse
from tenant_gate.arbiter import AuthorizedContext, RoutePolicy
from tenant_gate.auth.principal import Role
from tenant_gate.config import settings
from tenant_gate.firms.subscription import (
    SubscriptionGate,
    SubscriptionInfo,
    derive_subscription,
)
from tenant_gate.storage.firm_repository import FirmRepository

router = APIRouter(tags=["subscription"])

OWN_STATUS = RoutePolicy(
    route_key="subscription:status",
    rate_profile=settings.rate_limit_api,
    tenant_scoped=True,
)
FIRM_STATUS = RoutePolicy(
    route_key="subscription:status:firm",
    rate_profile=settings.rate_limit_api,
    tenant_scoped=True,
)
ALL_STATUSES = RoutePolicy(
    route_key="subscription:all",
    rate_profile=settings.rate_limit_api,
    roles=frozenset({Role.PLATFORM_ADMIN}),
)

RepoDep = Annotated[FirmRepository, Depends(get_firm_repository)]
OwnStatusDep = Annotated[AuthorizedContext, Depends(authorize(OWN_STATUS))]
FirmStatusDep = Annotated[AuthorizedContext, Depends(authorize(FIRM_STATUS))]
AllStatusesDep = Annotated[AuthorizedContext, Depends(authorize(ALL_STATUSES))]


def _response(info: SubscriptionInfo) -> SubscriptionResponse:
    return SubscriptionResponse(**asdict(info))


async def _refresh(repo: FirmRepository, firm_id: uuid.UUID) -> SubscriptionResponse:
    gate = SubscriptionGate(repo, timeout_seconds=settings.store_timeout_seconds)
    info = await gate.check_and_update_trial_status(firm_id)
    return _response(info)


@router.get("/subscription/status")
async def own_subscription_status(
    ctx: OwnStatusDep,
    repo: RepoDep,
) -> SubscriptionResponse:
    """Subscription of the caller's own firm.

    Persists the trial expiry the first time it is observed.
    """
    if ctx.scope is None or ctx.scope.tenant_id is None:
        raise HTTPException(status_code=400, detail="No firm associated with this user")
    return await _refresh(repo, ctx.scope.tenant_id)


@router.get("/subscription/status/{firm_id}")
async def firm_subscription_status(
    firm_id: uuid.UUID,
    ctx: FirmStatusDep,
    repo: RepoDep,
) -> SubscriptionResponse:
    """Subscription of a specific firm: own firm, or any firm for admins."""
    return await _refresh(repo, firm_id)


@router.get("/subscription/all")
async def all_subscriptions(
    ctx: AllStatusesDep,
    repo: RepoDep,
) -> list[FirmSubscriptionResponse]:
    """Every firm's derived subscription (platform admins only)."""
    now = datetime.now(UTC)
    return [
        FirmSubscriptionResponse(name=name, **asdict(derive_subscription(record, now)))
        for name, record in await repo.list_subscriptions()
    ]
