"""Tenant and branch scope resolution.

The scope is always computed from the principal. Client-supplied tenant and
branch ids are hints that may narrow the scope, never widen it.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Protocol

import structlog

from tenant_gate.auth.principal import TENANT_ROLES, Principal, Role, TenantScope
from tenant_gate.errors import Forbidden, InfrastructureUnavailable
from tenant_gate.storage import STATE_STORE_ERRORS

logger = structlog.get_logger()


def resolve_scope(
    principal: Principal,
    requested_tenant_id: uuid.UUID | None = None,
    requested_branch_id: uuid.UUID | None = None,
) -> TenantScope:
    """Decide the effective scope for a principal.

    Rules, in order:
        1. Platform admins are unrestricted.
        2. Tenant roles without a requested tenant get their own tenant.
        3. A requested tenant other than the principal's own is forbidden.
        4. Staff and drivers are pinned to their own branch; firm owners
           see every branch of their firm.

    Raises:
        Forbidden: if the request reaches outside what the role permits.
    """
    if principal.role == Role.PLATFORM_ADMIN:
        return TenantScope(
            tenant_id=requested_tenant_id,
            branch_id=requested_branch_id,
            can_access_all_branches=True,
        )

    if principal.role not in TENANT_ROLES or principal.tenant_id is None:
        raise Forbidden("Access denied: no firm associated with this account")

    if requested_tenant_id is not None and requested_tenant_id != principal.tenant_id:
        raise Forbidden("Access denied to this firm")

    if principal.role == Role.FIRM_OWNER:
        return TenantScope(
            tenant_id=principal.tenant_id,
            branch_id=requested_branch_id,
            can_access_all_branches=True,
        )

    if requested_branch_id is not None and requested_branch_id != principal.branch_id:
        raise Forbidden("Access denied to this branch")

    return TenantScope(
        tenant_id=principal.tenant_id,
        branch_id=principal.branch_id,
        can_access_all_branches=False,
    )


class BranchDirectory(Protocol):
    async def branch_belongs_to_firm(
        self, branch_id: uuid.UUID, firm_id: uuid.UUID
    ) -> bool: ...


class TenancyGuard:
    """Scope resolution plus branch ownership verification.

    A branch id in the computed scope must belong to the scope's tenant,
    otherwise an owner of firm A could name a branch of firm B. Lookup
    faults fail closed.
    """

    def __init__(
        self,
        branches: BranchDirectory | None = None,
        *,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._branches = branches
        self._timeout = timeout_seconds

    async def resolve(
        self,
        principal: Principal,
        requested_tenant_id: uuid.UUID | None = None,
        requested_branch_id: uuid.UUID | None = None,
    ) -> TenantScope:
        scope = resolve_scope(principal, requested_tenant_id, requested_branch_id)

        if scope.branch_id is None or scope.tenant_id is None:
            return scope
        if requested_branch_id is None or self._branches is None:
            return scope

        try:
            belongs = await asyncio.wait_for(
                self._branches.branch_belongs_to_firm(scope.branch_id, scope.tenant_id),
                timeout=self._timeout,
            )
        except STATE_STORE_ERRORS as exc:
            logger.error(
                "tenancy_lookup_error",
                branch_id=str(scope.branch_id),
                firm_id=str(scope.tenant_id),
                error=type(exc).__name__,
            )
            raise InfrastructureUnavailable("tenant-state store") from exc

        if not belongs:
            raise Forbidden("Access denied to this branch")
        return scope
