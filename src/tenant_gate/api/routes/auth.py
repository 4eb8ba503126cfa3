"""Token introspection endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from tenant_gate.api.deps import authorize, get_identity_verifier
from tenant_gate.api.schemas import PrincipalResponse, TokenVerifyRequest
from tenant_gate.arbiter import AuthorizedContext, IdentityMode, RoutePolicy
from tenant_gate.auth.tokens import IdentityVerifier
from tenant_gate.config import settings

router = APIRouter(tags=["auth"])

# Keyed by client address; failed verifications are refunded so a
# dashboard holding a stale token can recover once it has a fresh one.
VERIFY_POLICY = RoutePolicy(
    route_key="auth:verify",
    rate_profile=settings.rate_limit_auth,
    identity=IdentityMode.NONE,
)

VerifierDep = Annotated[IdentityVerifier, Depends(get_identity_verifier)]
VerifyDep = Annotated[AuthorizedContext, Depends(authorize(VERIFY_POLICY))]


@router.post("/auth/verify")
async def verify_token(
    body: TokenVerifyRequest,
    _ctx: VerifyDep,
    verifier: VerifierDep,
) -> PrincipalResponse:
    """Validate a token and return the principal it carries.

    Responds 401 with the failure reason for missing, malformed,
    expired or badly signed tokens.
    """
    principal = verifier.verify(body.token)
    return PrincipalResponse.model_validate(principal)
