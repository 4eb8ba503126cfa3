"""Trial and paid-plan entitlement.

``days_remaining``, ``is_trial_expired`` and ``has_access`` are derived at
read time from ``trial_end_at`` and the clock; they are never stored.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Protocol, TypeVar

import structlog

from tenant_gate.errors import FirmNotFoundError, InfrastructureUnavailable
from tenant_gate.storage import STATE_STORE_ERRORS

logger = structlog.get_logger()

T = TypeVar("T")

DAY = timedelta(days=1)


class SubscriptionStatus(StrEnum):
    TRIAL_ACTIVE = "TRIAL_ACTIVE"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    BASIC = "BASIC"
    PRO = "PRO"
    MAX = "MAX"


PAID_PLANS: frozenset[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.BASIC, SubscriptionStatus.PRO, SubscriptionStatus.MAX}
)


@dataclass(frozen=True)
class SubscriptionRecord:
    """Stored subscription columns of one firm."""

    firm_id: uuid.UUID
    status: SubscriptionStatus
    trial_start_at: datetime | None = None
    trial_end_at: datetime | None = None


@dataclass(frozen=True)
class SubscriptionInfo:
    firm_id: uuid.UUID
    status: SubscriptionStatus
    trial_start_at: datetime | None
    trial_end_at: datetime | None
    days_remaining: int | None
    is_trial_expired: bool
    has_access: bool


def derive_subscription(record: SubscriptionRecord, now: datetime) -> SubscriptionInfo:
    """Compute entitlement from stored fields and the current time."""
    if record.status in PAID_PLANS:
        return SubscriptionInfo(
            firm_id=record.firm_id,
            status=record.status,
            trial_start_at=record.trial_start_at,
            trial_end_at=record.trial_end_at,
            days_remaining=None,
            is_trial_expired=False,
            has_access=True,
        )

    days_remaining: int | None = None
    is_trial_expired = record.status == SubscriptionStatus.TRIAL_EXPIRED
    if record.trial_end_at is not None:
        left = record.trial_end_at - now
        days_remaining = max(0, math.ceil(left / DAY))
        is_trial_expired = is_trial_expired or now > record.trial_end_at

    return SubscriptionInfo(
        firm_id=record.firm_id,
        status=record.status,
        trial_start_at=record.trial_start_at,
        trial_end_at=record.trial_end_at,
        days_remaining=days_remaining,
        is_trial_expired=is_trial_expired,
        has_access=not is_trial_expired,
    )


class SubscriptionStore(Protocol):
    async def get_subscription(self, firm_id: uuid.UUID) -> SubscriptionRecord | None: ...

    async def mark_trial_expired(self, firm_id: uuid.UUID) -> bool:
        """Flip TRIAL_ACTIVE to TRIAL_EXPIRED; no-op for any other status."""
        ...

    async def commit(self) -> None: ...


class SubscriptionGate:
    """Reads entitlement; optionally converges the stored trial status.

    Store faults fail closed (``InfrastructureUnavailable``).
    """

    def __init__(
        self,
        store: SubscriptionStore,
        *,
        timeout_seconds: float = 2.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except STATE_STORE_ERRORS as exc:
            logger.error("subscription_store_error", error=type(exc).__name__)
            raise InfrastructureUnavailable("tenant-state store") from exc

    async def evaluate(self, firm_id: uuid.UUID) -> SubscriptionInfo:
        """Side-effect-free entitlement read."""
        record = await self._call(self._store.get_subscription(firm_id))
        if record is None:
            raise FirmNotFoundError(firm_id)
        return derive_subscription(record, self._clock())

    async def check_and_update_trial_status(self, firm_id: uuid.UUID) -> SubscriptionInfo:
        """Evaluate, persisting TRIAL_ACTIVE → TRIAL_EXPIRED on first detection.

        Safe to run more than once: the store only flips an active trial.
        """
        info = await self.evaluate(firm_id)
        if info.is_trial_expired and info.status == SubscriptionStatus.TRIAL_ACTIVE:
            await self._call(self._store.mark_trial_expired(firm_id))
            await self._call(self._store.commit())
            logger.info("trial_expired", firm_id=str(firm_id))
            return replace(info, status=SubscriptionStatus.TRIAL_EXPIRED, has_access=False)
        return info
