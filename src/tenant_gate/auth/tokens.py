"""Bearer token verification and issuance."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from tenant_gate.auth.principal import Principal, Role
from tenant_gate.errors import Unauthenticated, UnauthenticatedReason

BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str:
    """Pull the token out of an ``Authorization`` header value.

    Raises:
        Unauthenticated: header absent (MISSING) or not a bearer
            credential (MALFORMED).
    """
    if not authorization:
        raise Unauthenticated(UnauthenticatedReason.MISSING, "No token provided")
    if not authorization.startswith(BEARER_PREFIX):
        raise Unauthenticated(
            UnauthenticatedReason.MALFORMED, "Authorization header is not a bearer token"
        )
    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise Unauthenticated(UnauthenticatedReason.MISSING, "No token provided")
    return token


def _optional_uuid(value: Any) -> uuid.UUID | None:
    if value is None:
        return None
    return uuid.UUID(str(value))


class IdentityVerifier:
    """Validate signed tokens against a shared secret.

    Pure function of the token and the secret: no I/O, no state.
    Claims: ``{id, role, tenantId?, branchId?, exp}``.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        expires_minutes: int = 30 * 24 * 60,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._expires = timedelta(minutes=expires_minutes)

    def verify(self, raw_credential: str | None) -> Principal:
        """Decode a token into a Principal.

        Args:
            raw_credential: Token string without the ``Bearer`` prefix.

        Raises:
            Unauthenticated: with reason MISSING, MALFORMED, EXPIRED or INVALID.
        """
        if not raw_credential:
            raise Unauthenticated(UnauthenticatedReason.MISSING, "No token provided")
        if raw_credential.count(".") != 2:
            raise Unauthenticated(UnauthenticatedReason.MALFORMED, "Malformed token")
        try:
            jwt.get_unverified_header(raw_credential)
        except JWTError as exc:
            raise Unauthenticated(UnauthenticatedReason.MALFORMED, "Malformed token") from exc

        try:
            claims = jwt.decode(
                raw_credential,
                self._secret,
                algorithms=[self._algorithm],
                options={"require_exp": True},
            )
        except ExpiredSignatureError as exc:
            raise Unauthenticated(UnauthenticatedReason.EXPIRED, "Token expired") from exc
        except JWTError as exc:
            raise Unauthenticated(UnauthenticatedReason.INVALID, "Invalid token") from exc

        try:
            return Principal(
                id=uuid.UUID(str(claims["id"])),
                role=Role(claims["role"]),
                tenant_id=_optional_uuid(claims.get("tenantId")),
                branch_id=_optional_uuid(claims.get("branchId")),
            )
        except (KeyError, ValueError) as exc:
            raise Unauthenticated(
                UnauthenticatedReason.MALFORMED, "Token claims are incomplete"
            ) from exc

    def verify_optional(self, raw_credential: str | None) -> Principal | None:
        """Like :meth:`verify` but degrades to anonymous instead of raising."""
        if not raw_credential:
            return None
        try:
            return self.verify(raw_credential)
        except Unauthenticated:
            return None

    def issue(
        self,
        *,
        user_id: uuid.UUID,
        role: Role,
        tenant_id: uuid.UUID | None = None,
        branch_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> str:
        """Sign a token for the given identity.

        Args:
            now: Override for current time (useful for testing).
        """
        now = now or datetime.now(UTC)
        claims: dict[str, Any] = {
            "id": str(user_id),
            "role": str(role),
            "exp": now + self._expires,
        }
        if tenant_id is not None:
            claims["tenantId"] = str(tenant_id)
        if branch_id is not None:
            claims["branchId"] = str(branch_id)
        token: str = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return token
