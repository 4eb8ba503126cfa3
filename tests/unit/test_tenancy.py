"""Tests for tenant and branch scope resolution."""

import uuid

import pytest
from sqlalchemy.exc import OperationalError

from tenant_gate.auth.principal import Principal, Role, TenantScope
from tenant_gate.auth.tenancy import TenancyGuard, resolve_scope
from tenant_gate.errors import Forbidden, InfrastructureUnavailable
from tests.fakes import FakeFirmStore

FIRM_A = uuid.uuid4()
FIRM_B = uuid.uuid4()
BRANCH_A1 = uuid.uuid4()
BRANCH_A2 = uuid.uuid4()


def _principal(role: Role, tenant_id: uuid.UUID | None = None, branch_id=None) -> Principal:
    return Principal(id=uuid.uuid4(), role=role, tenant_id=tenant_id, branch_id=branch_id)


class TestResolveScope:
    def test_admin_is_unrestricted(self) -> None:
        admin = _principal(Role.PLATFORM_ADMIN)
        assert resolve_scope(admin) == TenantScope(
            tenant_id=None, branch_id=None, can_access_all_branches=True
        )
        assert resolve_scope(admin, FIRM_B, BRANCH_A1).tenant_id == FIRM_B

    def test_owner_defaults_to_own_firm(self) -> None:
        owner = _principal(Role.FIRM_OWNER, FIRM_A)
        scope = resolve_scope(owner)
        assert scope.tenant_id == FIRM_A
        assert scope.can_access_all_branches is True

    def test_owner_may_name_any_branch(self) -> None:
        owner = _principal(Role.FIRM_OWNER, FIRM_A)
        assert resolve_scope(owner, FIRM_A, BRANCH_A2).branch_id == BRANCH_A2

    @pytest.mark.parametrize("role", [Role.FIRM_OWNER, Role.STAFF, Role.DRIVER])
    def test_other_firm_is_forbidden(self, role: Role) -> None:
        principal = _principal(role, FIRM_A, BRANCH_A1)
        with pytest.raises(Forbidden, match="this firm"):
            resolve_scope(principal, FIRM_B)

    @pytest.mark.parametrize("role", [Role.STAFF, Role.DRIVER])
    def test_staff_pinned_to_own_branch(self, role: Role) -> None:
        principal = _principal(role, FIRM_A, BRANCH_A1)
        scope = resolve_scope(principal, FIRM_A)
        assert scope == TenantScope(
            tenant_id=FIRM_A, branch_id=BRANCH_A1, can_access_all_branches=False
        )

    @pytest.mark.parametrize("role", [Role.STAFF, Role.DRIVER])
    def test_staff_other_branch_forbidden(self, role: Role) -> None:
        principal = _principal(role, FIRM_A, BRANCH_A1)
        with pytest.raises(Forbidden, match="this branch"):
            resolve_scope(principal, FIRM_A, BRANCH_A2)

    def test_staff_without_branch_is_unpinned_but_narrow(self) -> None:
        staff = _principal(Role.STAFF, FIRM_A)
        scope = resolve_scope(staff)
        assert scope.branch_id is None
        assert scope.can_access_all_branches is False

    def test_client_has_no_firm_scope(self) -> None:
        with pytest.raises(Forbidden):
            resolve_scope(_principal(Role.CLIENT))

    def test_tenant_role_without_tenant_is_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            resolve_scope(_principal(Role.FIRM_OWNER))

    @pytest.mark.parametrize("role", [Role.FIRM_OWNER, Role.STAFF, Role.DRIVER])
    def test_non_admin_scope_never_leaves_own_firm(self, role: Role) -> None:
        principal = _principal(role, FIRM_A, BRANCH_A1)
        for requested in (None, FIRM_A, FIRM_B, uuid.uuid4()):
            try:
                scope = resolve_scope(principal, requested)
            except Forbidden:
                continue
            assert scope.tenant_id == FIRM_A


class TestTenancyGuard:
    @pytest.fixture()
    def store(self) -> FakeFirmStore:
        return FakeFirmStore()

    async def test_owner_cannot_reach_branch_of_other_firm(self, store: FakeFirmStore) -> None:
        firm_a = store.add_firm(name="A")
        firm_b = store.add_firm(name="B")
        branch_b = store.add_branch(firm_b)
        guard = TenancyGuard(store)

        with pytest.raises(Forbidden, match="this branch"):
            await guard.resolve(_principal(Role.FIRM_OWNER, firm_a), firm_a, branch_b)

    async def test_owner_reaches_own_branch(self, store: FakeFirmStore) -> None:
        firm_a = store.add_firm(name="A")
        branch = store.add_branch(firm_a)
        guard = TenancyGuard(store)

        scope = await guard.resolve(_principal(Role.FIRM_OWNER, firm_a), firm_a, branch)

        assert scope.branch_id == branch

    async def test_admin_branch_checked_against_requested_firm(
        self, store: FakeFirmStore
    ) -> None:
        firm_a = store.add_firm(name="A")
        firm_b = store.add_firm(name="B")
        branch_b = store.add_branch(firm_b)
        guard = TenancyGuard(store)

        with pytest.raises(Forbidden):
            await guard.resolve(_principal(Role.PLATFORM_ADMIN), firm_a, branch_b)

    async def test_no_lookup_without_requested_branch(self, store: FakeFirmStore) -> None:
        store.fail_with = OSError("unreachable")
        firm_a = store.add_firm()
        guard = TenancyGuard(store)

        scope = await guard.resolve(_principal(Role.STAFF, firm_a, BRANCH_A1))

        assert scope.branch_id == BRANCH_A1

    async def test_lookup_failure_fails_closed(self, store: FakeFirmStore) -> None:
        firm_a = store.add_firm()
        branch = store.add_branch(firm_a)
        store.fail_with = OperationalError("SELECT 1", {}, Exception("gone"))
        guard = TenancyGuard(store)

        with pytest.raises(InfrastructureUnavailable):
            await guard.resolve(_principal(Role.FIRM_OWNER, firm_a), firm_a, branch)
