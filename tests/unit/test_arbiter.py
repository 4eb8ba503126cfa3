"""Tests for the RequestArbiter check pipeline."""

import uuid
from unittest.mock import AsyncMock

import pytest

from tenant_gate.arbiter import AccessRequest, IdentityMode, RequestArbiter, RoutePolicy
from tenant_gate.auth.principal import Role
from tenant_gate.auth.rate_limiter import InMemoryCounterStore, RateDecision, RateLimiter
from tenant_gate.auth.tenancy import TenancyGuard
from tenant_gate.auth.tokens import IdentityVerifier
from tenant_gate.config import RateLimitProfile
from tenant_gate.errors import (
    Forbidden,
    InvalidStateTransition,
    RateLimited,
    SubscriptionRequired,
    Unauthenticated,
    UnauthenticatedReason,
)
from tenant_gate.firms.lifecycle import FirmLifecycle, FirmStatus, Transition
from tenant_gate.firms.subscription import SubscriptionGate
from tests.fakes import FakeFirmStore

SECRET = "arbiter-test-secret-arbiter-test-0001"
PROFILE = RateLimitProfile(window_seconds=60, max_requests=3, key_prefix="rl:test:")
EXHAUSTED = RateLimitProfile(window_seconds=60, max_requests=0, key_prefix="rl:test:")


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
def arbiter(
    store: FakeFirmStore, verifier: IdentityVerifier, limiter: RateLimiter
) -> RequestArbiter:
    return RequestArbiter(
        verifier,
        limiter,
        TenancyGuard(store),
        subscriptions=SubscriptionGate(store),
        lifecycle=FirmLifecycle(store),
    )


def _bearer(
    verifier: IdentityVerifier,
    role: Role,
    tenant_id: uuid.UUID | None = None,
    branch_id: uuid.UUID | None = None,
) -> str:
    token = verifier.issue(
        user_id=uuid.uuid4(), role=role, tenant_id=tenant_id, branch_id=branch_id
    )
    return f"Bearer {token}"


def _submit_policy(profile: RateLimitProfile = PROFILE) -> RoutePolicy:
    return RoutePolicy(
        route_key="firms:submit_for_review",
        rate_profile=profile,
        tenant_scoped=True,
        requires_subscription=True,
        transition=Transition.SUBMIT_FOR_REVIEW,
    )


class TestIdentityStage:
    async def test_missing_credential_is_not_charged(
        self, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        limiter = AsyncMock(spec=RateLimiter)
        arbiter = RequestArbiter(verifier, limiter, TenancyGuard(store))

        with pytest.raises(Unauthenticated) as exc_info:
            await arbiter.authorize(AccessRequest(), RoutePolicy("r", rate_profile=PROFILE))

        assert exc_info.value.reason == UnauthenticatedReason.MISSING
        limiter.allow_profile.assert_not_awaited()

    async def test_optional_identity_degrades_to_anonymous(
        self, arbiter: RequestArbiter
    ) -> None:
        policy = RoutePolicy("firms:public", rate_profile=PROFILE, identity=IdentityMode.OPTIONAL)
        ctx = await arbiter.authorize(
            AccessRequest(authorization="Bearer a.b.c", client_host="10.0.0.7"), policy
        )
        assert ctx.principal is None
        assert ctx.rate is not None
        assert ctx.rate.key == "rl:test:ip:10.0.0.7:firms:public"

    async def test_authenticated_caller_keyed_by_user(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier
    ) -> None:
        policy = RoutePolicy("me", rate_profile=PROFILE)
        ctx = await arbiter.authorize(
            AccessRequest(authorization=_bearer(verifier, Role.CLIENT), client_host="10.0.0.7"),
            policy,
        )
        assert ctx.principal is not None
        assert ctx.rate is not None
        assert ctx.rate.key == f"rl:test:user:{ctx.principal.id}:me"

    async def test_no_identity_mode_ignores_header(self, arbiter: RequestArbiter) -> None:
        policy = RoutePolicy("auth:verify", rate_profile=PROFILE, identity=IdentityMode.NONE)
        ctx = await arbiter.authorize(
            AccessRequest(authorization="garbage", client_host=None), policy
        )
        assert ctx.principal is None
        assert ctx.rate is not None
        assert ctx.rate.key.endswith("ip:unknown:auth:verify")


class TestOrdering:
    async def test_rate_limit_precedes_role_check(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier
    ) -> None:
        policy = RoutePolicy(
            "subscription:all",
            rate_profile=EXHAUSTED,
            roles=frozenset({Role.PLATFORM_ADMIN}),
        )
        with pytest.raises(RateLimited):
            await arbiter.authorize(
                AccessRequest(authorization=_bearer(verifier, Role.CLIENT)), policy
            )

    async def test_rate_decision_reported_before_later_denial(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier
    ) -> None:
        seen: list[RateDecision] = []
        policy = RoutePolicy(
            "subscription:all", rate_profile=PROFILE, roles=frozenset({Role.PLATFORM_ADMIN})
        )
        with pytest.raises(Forbidden, match="Insufficient permissions"):
            await arbiter.authorize(
                AccessRequest(authorization=_bearer(verifier, Role.CLIENT)),
                policy,
                on_rate_decision=seen.append,
            )
        assert len(seen) == 1
        assert seen[0].allowed is True

    async def test_tenancy_precedes_subscription(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        own = store.add_firm(trial_days_left=-1)
        other = store.add_firm()
        with pytest.raises(Forbidden):
            await arbiter.authorize(
                AccessRequest(
                    authorization=_bearer(verifier, Role.FIRM_OWNER, own), tenant_id=other
                ),
                _submit_policy(),
            )

    async def test_subscription_precedes_lifecycle(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm(status=FirmStatus.ACTIVE, trial_days_left=-1)
        with pytest.raises(SubscriptionRequired) as exc_info:
            await arbiter.authorize(
                AccessRequest(
                    authorization=_bearer(verifier, Role.FIRM_OWNER, firm_id),
                    tenant_id=firm_id,
                ),
                _submit_policy(),
            )
        assert exc_info.value.info.has_access is False

    async def test_lifecycle_guard_last(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm(status=FirmStatus.PENDING_REVIEW)
        with pytest.raises(InvalidStateTransition):
            await arbiter.authorize(
                AccessRequest(
                    authorization=_bearer(verifier, Role.FIRM_OWNER, firm_id),
                    tenant_id=firm_id,
                ),
                _submit_policy(),
            )


class TestPolicies:
    async def test_transition_roles_enforced(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm(status=FirmStatus.PENDING_REVIEW)
        policy = RoutePolicy(
            "firms:approve", tenant_scoped=True, transition=Transition.APPROVE
        )
        with pytest.raises(Forbidden):
            await arbiter.authorize(
                AccessRequest(
                    authorization=_bearer(verifier, Role.FIRM_OWNER, firm_id),
                    tenant_id=firm_id,
                ),
                policy,
            )

    async def test_admin_skips_subscription_gate(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm(status=FirmStatus.PENDING_REVIEW, trial_days_left=-5)
        policy = RoutePolicy(
            "firms:approve",
            tenant_scoped=True,
            requires_subscription=True,
            transition=Transition.APPROVE,
        )
        ctx = await arbiter.authorize(
            AccessRequest(
                authorization=_bearer(verifier, Role.PLATFORM_ADMIN), tenant_id=firm_id
            ),
            policy,
        )
        assert ctx.subscription is None
        assert ctx.firm_state is not None
        assert ctx.firm_state.status == FirmStatus.PENDING_REVIEW

    async def test_full_pass_returns_context(
        self, arbiter: RequestArbiter, verifier: IdentityVerifier, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm()
        ctx = await arbiter.authorize(
            AccessRequest(
                authorization=_bearer(verifier, Role.FIRM_OWNER, firm_id), tenant_id=firm_id
            ),
            _submit_policy(),
        )
        assert ctx.scope is not None
        assert ctx.scope.tenant_id == firm_id
        assert ctx.subscription is not None
        assert ctx.subscription.has_access is True
        assert ctx.firm_state is not None
        # Authorization never writes lifecycle state.
        assert store.states[firm_id].status == FirmStatus.DRAFT

    async def test_tenant_scope_requires_identity(self, arbiter: RequestArbiter) -> None:
        policy = RoutePolicy("firms:read", identity=IdentityMode.OPTIONAL, tenant_scoped=True)
        with pytest.raises(Forbidden):
            await arbiter.authorize(AccessRequest(), policy)

    async def test_missing_gate_is_programming_error(
        self, verifier: IdentityVerifier, limiter: RateLimiter, store: FakeFirmStore
    ) -> None:
        firm_id = store.add_firm()
        arbiter = RequestArbiter(verifier, limiter, TenancyGuard(store))
        with pytest.raises(RuntimeError):
            await arbiter.authorize(
                AccessRequest(
                    authorization=_bearer(verifier, Role.FIRM_OWNER, firm_id),
                    tenant_id=firm_id,
                ),
                _submit_policy(),
            )
