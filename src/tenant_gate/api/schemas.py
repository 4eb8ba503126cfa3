"""Request/response schemas for the API layer."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenant_gate.auth.principal import Role
from tenant_gate.firms.lifecycle import FirmStatus
from tenant_gate.firms.subscription import SubscriptionStatus

# --- Auth ---


class TokenVerifyRequest(BaseModel):
    """Request body for POST /auth/verify."""

    token: str = Field(..., min_length=1)


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    role: Role
    tenant_id: uuid.UUID | None
    branch_id: uuid.UUID | None


# --- Firms ---


class FirmStateResponse(BaseModel):
    """Lifecycle view of one firm."""

    id: uuid.UUID
    status: FirmStatus
    is_visible_in_client_app: bool
    submitted_at: datetime | None
    approved_at: datetime | None
    rejection_reason: str | None


class PublicFirmResponse(BaseModel):
    """Storefront entry for the client app.

    ``is_own`` is only ever true when the caller presented a credential
    for this firm.
    """

    id: uuid.UUID
    name: str
    is_own: bool = False


class PublicFirmListResponse(BaseModel):
    items: list[PublicFirmResponse]
    total: int


class BranchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    firm_id: uuid.UUID
    name: str
    is_active: bool


class RejectRequest(BaseModel):
    """Request body for PATCH /firms/{firm_id}/reject."""

    reason: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "Rejection reason is required"
            raise ValueError(msg)
        return cleaned


class TransitionResponse(BaseModel):
    firm: FirmStateResponse
    message: str


# --- Subscription ---


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    firm_id: uuid.UUID
    status: SubscriptionStatus
    trial_start_at: datetime | None
    trial_end_at: datetime | None
    days_remaining: int | None
    is_trial_expired: bool
    has_access: bool


class FirmSubscriptionResponse(SubscriptionResponse):
    name: str
