"""Single pass/fail verdict per inbound request.

Checks run cheapest and most decisive first and short-circuit on the first
denial:

    identity → rate limit → roles/tenancy → subscription → lifecycle guard
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from tenant_gate.auth.principal import Principal, Role, TenantScope
from tenant_gate.auth.rate_limiter import RateDecision, RateLimiter
from tenant_gate.auth.tenancy import TenancyGuard
from tenant_gate.auth.tokens import BEARER_PREFIX, IdentityVerifier, extract_bearer
from tenant_gate.config import RateLimitProfile
from tenant_gate.errors import Forbidden, RateLimited, SubscriptionRequired
from tenant_gate.firms.lifecycle import (
    TRANSITION_ROLES,
    FirmLifecycle,
    FirmState,
    Transition,
)
from tenant_gate.firms.subscription import SubscriptionGate, SubscriptionInfo
from tenant_gate.logging_config import bind_principal

logger = structlog.get_logger()


class IdentityMode(StrEnum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    NONE = "none"


@dataclass(frozen=True)
class RoutePolicy:
    """What a route demands before its handler may run."""

    route_key: str
    rate_profile: RateLimitProfile | None = None
    identity: IdentityMode = IdentityMode.REQUIRED
    roles: frozenset[Role] | None = None
    tenant_scoped: bool = False
    requires_subscription: bool = False
    transition: Transition | None = None

    @property
    def allowed_roles(self) -> frozenset[Role] | None:
        if self.transition is None:
            return self.roles
        transition_roles = TRANSITION_ROLES[self.transition]
        return transition_roles if self.roles is None else self.roles & transition_roles


@dataclass(frozen=True)
class AccessRequest:
    """The parts of an HTTP request the arbiter looks at.

    ``tenant_id``/``branch_id`` come from the client and are hints only.
    """

    authorization: str | None = None
    client_host: str | None = None
    tenant_id: uuid.UUID | None = None
    branch_id: uuid.UUID | None = None


@dataclass(frozen=True)
class AuthorizedContext:
    principal: Principal | None
    scope: TenantScope | None = None
    rate: RateDecision | None = None
    subscription: SubscriptionInfo | None = None
    firm_state: FirmState | None = None


class RequestArbiter:
    """Compose identity, rate, tenancy, entitlement and lifecycle checks.

    Subscription and lifecycle gates are optional collaborators; a policy
    that needs one the arbiter was not given is a programming error.
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        limiter: RateLimiter,
        tenancy: TenancyGuard,
        *,
        subscriptions: SubscriptionGate | None = None,
        lifecycle: FirmLifecycle | None = None,
    ) -> None:
        self._verifier = verifier
        self._limiter = limiter
        self._tenancy = tenancy
        self._subscriptions = subscriptions
        self._lifecycle = lifecycle

    def _identify(self, request: AccessRequest, mode: IdentityMode) -> Principal | None:
        if mode == IdentityMode.NONE:
            return None
        if mode == IdentityMode.OPTIONAL:
            header = request.authorization or ""
            if not header.startswith(BEARER_PREFIX):
                return None
            return self._verifier.verify_optional(header[len(BEARER_PREFIX) :].strip())
        return self._verifier.verify(extract_bearer(request.authorization))

    async def authorize(
        self,
        request: AccessRequest,
        policy: RoutePolicy,
        *,
        on_rate_decision: Callable[[RateDecision], None] | None = None,
    ) -> AuthorizedContext:
        """Run the pipeline for one request.

        Args:
            on_rate_decision: Receives the rate decision as soon as it is
                made, so response headers can be set even when a later
                check denies the request.

        Raises:
            AccessDenied: the first failing check's denial.
        """
        principal = self._identify(request, policy.identity)
        bind_principal(principal)

        rate: RateDecision | None = None
        if policy.rate_profile is not None:
            identity_key = (
                f"user:{principal.id}"
                if principal is not None
                else f"ip:{request.client_host or 'unknown'}"
            )
            rate = await self._limiter.allow_profile(
                identity_key, policy.route_key, policy.rate_profile
            )
            if on_rate_decision is not None:
                on_rate_decision(rate)
            if not rate.allowed:
                raise RateLimited(rate)

        allowed_roles = policy.allowed_roles
        if allowed_roles is not None and (
            principal is None or principal.role not in allowed_roles
        ):
            raise Forbidden("Insufficient permissions")

        scope: TenantScope | None = None
        if policy.tenant_scoped:
            if principal is None:
                raise Forbidden("Authentication required for firm access")
            scope = await self._tenancy.resolve(
                principal, request.tenant_id, request.branch_id
            )

        subscription: SubscriptionInfo | None = None
        if (
            policy.requires_subscription
            and principal is not None
            and not principal.is_platform_admin
            and scope is not None
            and scope.tenant_id is not None
        ):
            if self._subscriptions is None:
                raise RuntimeError(f"{policy.route_key} needs a SubscriptionGate")
            subscription = await self._subscriptions.evaluate(scope.tenant_id)
            if not subscription.has_access:
                raise SubscriptionRequired(subscription)

        firm_state: FirmState | None = None
        if policy.transition is not None:
            if self._lifecycle is None:
                raise RuntimeError(f"{policy.route_key} needs a FirmLifecycle")
            firm_id = scope.tenant_id if scope is not None else request.tenant_id
            if firm_id is None:
                raise Forbidden("Lifecycle actions require a firm")
            firm_state = await self._lifecycle.check(firm_id, policy.transition)

        logger.debug(
            "request_authorized",
            route=policy.route_key,
            principal_id=str(principal.id) if principal else None,
            tenant_id=str(scope.tenant_id) if scope and scope.tenant_id else None,
        )
        return AuthorizedContext(
            principal=principal,
            scope=scope,
            rate=rate,
            subscription=subscription,
            firm_state=firm_state,
        )
