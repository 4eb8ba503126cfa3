"""Firm storefront, scoped reads and lifecycle moderation endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException
from tenant_gate.api.deps import authorize, get_firm_repository
from tenant_gate.api.schemas import (
    BranchResponse,
    FirmStateResponse,
    PublicFirmListResponse,
    PublicFirmResponse,
    RejectRequest,
    TransitionResponse,
)
from tenant_gate.arbiter import AuthorizedContext, IdentityMode, RoutePolicy
from tenant_gate.auth.principal import TENANT_ROLES
from tenant_gate.config import settings
from tenant_gate.firms.lifecycle import FirmLifecycle, FirmState, Transition
from tenant_gate.storage.firm_repository import FirmRepository

logger = structlog.get_logger()

router = APIRouter(tags=["firms"])

PUBLIC_LIST = RoutePolicy(
    route_key="firms:public",
    rate_profile=settings.rate_limit_api,
    identity=IdentityMode.OPTIONAL,
)
FIRM_READ = RoutePolicy(
    route_key="firms:read",
    rate_profile=settings.rate_limit_api,
    tenant_scoped=True,
)
BRANCH_READ = RoutePolicy(
    route_key="firms:branch:read",
    rate_profile=settings.rate_limit_api,
    tenant_scoped=True,
)


def _transition_policy(transition: Transition) -> RoutePolicy:
    # Only the owner's own submission is tenant-operational and therefore
    # entitlement-gated; moderation by platform admins is not.
    return RoutePolicy(
        route_key=f"firms:{transition}",
        rate_profile=settings.rate_limit_strict,
        tenant_scoped=True,
        requires_subscription=transition == Transition.SUBMIT_FOR_REVIEW,
        transition=transition,
    )


RepoDep = Annotated[FirmRepository, Depends(get_firm_repository)]
PublicDep = Annotated[AuthorizedContext, Depends(authorize(PUBLIC_LIST))]
FirmReadDep = Annotated[AuthorizedContext, Depends(authorize(FIRM_READ))]
BranchReadDep = Annotated[AuthorizedContext, Depends(authorize(BRANCH_READ))]
SubmitDep = Annotated[
    AuthorizedContext,
    Depends(authorize(_transition_policy(Transition.SUBMIT_FOR_REVIEW))),
]
ApproveDep = Annotated[
    AuthorizedContext, Depends(authorize(_transition_policy(Transition.APPROVE)))
]
RejectDep = Annotated[
    AuthorizedContext, Depends(authorize(_transition_policy(Transition.REJECT)))
]
SuspendDep = Annotated[
    AuthorizedContext, Depends(authorize(_transition_policy(Transition.SUSPEND)))
]
ReactivateDep = Annotated[
    AuthorizedContext, Depends(authorize(_transition_policy(Transition.REACTIVATE)))
]


def _state_response(state: FirmState) -> FirmStateResponse:
    return FirmStateResponse(
        id=state.firm_id,
        status=state.status,
        is_visible_in_client_app=state.is_visible_to_clients,
        submitted_at=state.submitted_at,
        approved_at=state.approved_at,
        rejection_reason=state.rejection_reason,
    )


def _lifecycle(repo: FirmRepository) -> FirmLifecycle:
    return FirmLifecycle(repo, timeout_seconds=settings.store_timeout_seconds)


async def _apply(
    repo: FirmRepository,
    firm_id: uuid.UUID,
    transition: Transition,
    message: str,
    *,
    reason: str | None = None,
) -> TransitionResponse:
    try:
        state = await _lifecycle(repo).transition(firm_id, transition, reason=reason)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransitionResponse(firm=_state_response(state), message=message)


@router.get("/firms/public")
async def list_public_firms(
    ctx: PublicDep,
    repo: RepoDep,
) -> PublicFirmListResponse:
    """Firms visible in the client app.

    Subscription state does not affect this listing; visibility is
    governed by the firm lifecycle alone.
    """
    firms = await repo.list_public()
    own_firm = (
        ctx.principal.tenant_id
        if ctx.principal is not None and ctx.principal.role in TENANT_ROLES
        else None
    )
    items = [
        PublicFirmResponse(id=firm.id, name=firm.name, is_own=firm.id == own_firm)
        for firm in firms
    ]
    return PublicFirmListResponse(items=items, total=len(items))


@router.get("/firms/{firm_id}")
async def get_firm(
    firm_id: uuid.UUID,
    ctx: FirmReadDep,
    repo: RepoDep,
) -> FirmStateResponse:
    """Lifecycle state of a firm within the caller's scope."""
    state = await _lifecycle(repo).get(firm_id)
    return _state_response(state)


@router.get("/firms/{firm_id}/branches/{branch_id}")
async def get_branch(
    firm_id: uuid.UUID,
    branch_id: uuid.UUID,
    ctx: BranchReadDep,
    repo: RepoDep,
) -> BranchResponse:
    branch = await repo.get_branch(branch_id)
    if branch is None or branch.firm_id != firm_id:
        raise HTTPException(status_code=404, detail="Branch not found")
    return BranchResponse.model_validate(branch)


@router.patch("/firms/{firm_id}/submit-for-review")
async def submit_for_review(
    firm_id: uuid.UUID,
    ctx: SubmitDep,
    repo: RepoDep,
) -> TransitionResponse:
    """Firm owner submits their own DRAFT firm for moderation."""
    return await _apply(
        repo,
        firm_id,
        Transition.SUBMIT_FOR_REVIEW,
        "Firm submitted for review. Awaiting platform approval.",
    )


@router.patch("/firms/{firm_id}/approve")
async def approve_firm(
    firm_id: uuid.UUID,
    ctx: ApproveDep,
    repo: RepoDep,
) -> TransitionResponse:
    return await _apply(
        repo,
        firm_id,
        Transition.APPROVE,
        "Firm approved and is now visible to clients.",
    )


@router.patch("/firms/{firm_id}/reject")
async def reject_firm(
    firm_id: uuid.UUID,
    body: RejectRequest,
    ctx: RejectDep,
    repo: RepoDep,
) -> TransitionResponse:
    """Return a PENDING_REVIEW firm to DRAFT with a reason."""
    return await _apply(
        repo,
        firm_id,
        Transition.REJECT,
        "Firm rejected and returned to draft status.",
        reason=body.reason,
    )


@router.patch("/firms/{firm_id}/suspend")
async def suspend_firm(
    firm_id: uuid.UUID,
    ctx: SuspendDep,
    repo: RepoDep,
) -> TransitionResponse:
    return await _apply(
        repo,
        firm_id,
        Transition.SUSPEND,
        "Firm suspended and hidden from clients.",
    )


@router.patch("/firms/{firm_id}/reactivate")
async def reactivate_firm(
    firm_id: uuid.UUID,
    ctx: ReactivateDep,
    repo: RepoDep,
) -> TransitionResponse:
    return await _apply(
        repo,
        firm_id,
        Transition.REACTIVATE,
        "Firm reactivated and visible to clients again.",
    )
