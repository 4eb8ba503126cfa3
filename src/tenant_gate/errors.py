"""Denial taxonomy shared by the access core and the HTTP boundary."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uuid

    from tenant_gate.auth.rate_limiter import RateDecision
    from tenant_gate.firms.lifecycle import FirmStatus, Transition
    from tenant_gate.firms.subscription import SubscriptionInfo


class AccessDenied(Exception):
    """Base class for every verdict that stops a request.

    ``status_code`` and ``code`` are consumed by the API exception handler.
    """

    status_code: int = 500
    code: str = "ACCESS_DENIED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnauthenticatedReason(StrEnum):
    MISSING = "missing"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    INVALID = "invalid"


class Unauthenticated(AccessDenied):
    """Credential is missing, malformed, expired or has a bad signature."""

    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, reason: UnauthenticatedReason, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Authentication failed: {reason}")


class Forbidden(AccessDenied):
    """Caller is authenticated but outside the requested scope."""

    status_code = 403
    code = "FORBIDDEN"


class RateLimited(AccessDenied):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, decision: RateDecision) -> None:
        self.decision = decision
        super().__init__("Too many requests, please try again later")


class SubscriptionRequired(AccessDenied):
    """Trial expired and no paid plan is active."""

    status_code = 402
    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, info: SubscriptionInfo) -> None:
        self.info = info
        super().__init__(f"Subscription required (status: {info.status})")


class InvalidStateTransition(AccessDenied):
    """Lifecycle transition is not legal from the firm's current status."""

    status_code = 400
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: FirmStatus, attempted: Transition) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted}: firm is in {current} status")


class InfrastructureUnavailable(AccessDenied):
    """A backing store could not be reached within its timeout."""

    status_code = 503
    code = "INFRASTRUCTURE_UNAVAILABLE"

    def __init__(self, component: str) -> None:
        self.component = component
        super().__init__(f"{component} is unavailable")


class FirmNotFoundError(AccessDenied):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, firm_id: uuid.UUID) -> None:
        self.firm_id = firm_id
        super().__init__(f"Firm {firm_id} not found")


class TransitionConflict(AccessDenied):
    """Concurrent writers kept winning the version race for one firm."""

    status_code = 409
    code = "TRANSITION_CONFLICT"
