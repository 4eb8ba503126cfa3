"""Identity, rate limiting and tenancy scoping.

Note: the FastAPI dependency ``authorize`` lives in ``api.deps`` and is NOT
re-exported here to avoid a circular import (auth → api.deps → arbiter → auth).
"""

from tenant_gate.auth.principal import Principal, Role, TenantScope

__all__ = ["Principal", "Role", "TenantScope"]
