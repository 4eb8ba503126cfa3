"""Per-request identity and scope values."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    FIRM_OWNER = "FIRM_OWNER"
    STAFF = "STAFF"
    DRIVER = "DRIVER"
    CLIENT = "CLIENT"


# Roles that act inside a single firm.
TENANT_ROLES: frozenset[Role] = frozenset({Role.FIRM_OWNER, Role.STAFF, Role.DRIVER})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, decoded from a signed token.

    Never persisted; lives for one request.
    """

    id: uuid.UUID
    role: Role
    tenant_id: uuid.UUID | None = None
    branch_id: uuid.UUID | None = None

    @property
    def is_platform_admin(self) -> bool:
        return self.role == Role.PLATFORM_ADMIN


@dataclass(frozen=True)
class TenantScope:
    """Tenant/branch boundary a request may act within.

    ``tenant_id=None`` is the platform-wide wildcard and is only ever
    produced for platform admins.
    """

    tenant_id: uuid.UUID | None
    branch_id: uuid.UUID | None = None
    can_access_all_branches: bool = False

    @property
    def is_platform_wide(self) -> bool:
        return self.tenant_id is None
