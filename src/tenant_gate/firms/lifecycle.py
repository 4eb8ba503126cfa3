"""Firm approval lifecycle: a guarded finite-state machine.

DRAFT → PENDING_REVIEW → ACTIVE ⇄ SUSPENDED, with PENDING_REVIEW → DRAFT on
rejection. Only ACTIVE firms are visible to clients.

Every transition is a read, a pure plan and a compare-and-set on the firm's
version. A lost race re-reads and re-plans, so two concurrent ``approve``
calls cannot both succeed.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol, TypeVar

import structlog

from tenant_gate.auth.principal import Role
from tenant_gate.errors import (
    FirmNotFoundError,
    InfrastructureUnavailable,
    InvalidStateTransition,
    TransitionConflict,
)
from tenant_gate.storage import STATE_STORE_ERRORS

logger = structlog.get_logger()

T = TypeVar("T")


class FirmStatus(StrEnum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class Transition(StrEnum):
    SUBMIT_FOR_REVIEW = "submit_for_review"
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"
    REACTIVATE = "reactivate"


# transition → (required current status, resulting status)
TRANSITIONS: dict[Transition, tuple[FirmStatus, FirmStatus]] = {
    Transition.SUBMIT_FOR_REVIEW: (FirmStatus.DRAFT, FirmStatus.PENDING_REVIEW),
    Transition.APPROVE: (FirmStatus.PENDING_REVIEW, FirmStatus.ACTIVE),
    Transition.REJECT: (FirmStatus.PENDING_REVIEW, FirmStatus.DRAFT),
    Transition.SUSPEND: (FirmStatus.ACTIVE, FirmStatus.SUSPENDED),
    Transition.REACTIVATE: (FirmStatus.SUSPENDED, FirmStatus.ACTIVE),
}

# Firm owners submit their own firm; everything else is moderation.
TRANSITION_ROLES: dict[Transition, frozenset[Role]] = {
    Transition.SUBMIT_FOR_REVIEW: frozenset({Role.FIRM_OWNER}),
    Transition.APPROVE: frozenset({Role.PLATFORM_ADMIN}),
    Transition.REJECT: frozenset({Role.PLATFORM_ADMIN}),
    Transition.SUSPEND: frozenset({Role.PLATFORM_ADMIN}),
    Transition.REACTIVATE: frozenset({Role.PLATFORM_ADMIN}),
}


@dataclass(frozen=True)
class FirmState:
    """Lifecycle columns of one firm plus its optimistic-concurrency version."""

    firm_id: uuid.UUID
    status: FirmStatus
    is_visible_to_clients: bool = False
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    version: int = 1


def is_allowed(status: FirmStatus, transition: Transition) -> bool:
    return TRANSITIONS[transition][0] == status


def plan_transition(
    state: FirmState,
    transition: Transition,
    *,
    now: datetime,
    reason: str | None = None,
) -> FirmState:
    """Compute the state a transition produces, without writing anything.

    Raises:
        InvalidStateTransition: ``state.status`` does not permit ``transition``.
        ValueError: ``reject`` without a non-empty reason.
    """
    if not is_allowed(state.status, transition):
        raise InvalidStateTransition(state.status, transition)

    target = TRANSITIONS[transition][1]

    if transition == Transition.SUBMIT_FOR_REVIEW:
        return replace(state, status=target, submitted_at=now, rejection_reason=None)
    if transition == Transition.APPROVE:
        return replace(state, status=target, is_visible_to_clients=True, approved_at=now)
    if transition == Transition.REJECT:
        cleaned = (reason or "").strip()
        if not cleaned:
            msg = "Rejection reason is required"
            raise ValueError(msg)
        return replace(
            state,
            status=target,
            is_visible_to_clients=False,
            rejection_reason=cleaned,
            submitted_at=None,
        )
    if transition == Transition.SUSPEND:
        return replace(state, status=target, is_visible_to_clients=False)
    # REACTIVATE
    return replace(state, status=target, is_visible_to_clients=True)


class FirmStateStore(Protocol):
    async def get_state(self, firm_id: uuid.UUID) -> FirmState | None: ...

    async def compare_and_set(self, state: FirmState, expected_version: int) -> bool:
        """Persist ``state`` only if the stored version still equals
        ``expected_version``; bump the version on success."""
        ...

    async def commit(self) -> None:
        """Make the last successful write durable."""
        ...


class FirmLifecycle:
    """Guarded lifecycle transitions for one tenant-state store."""

    MAX_ATTEMPTS = 3

    def __init__(
        self,
        store: FirmStateStore,
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
            logger.error("firm_state_store_error", error=type(exc).__name__)
            raise InfrastructureUnavailable("tenant-state store") from exc

    async def get(self, firm_id: uuid.UUID) -> FirmState:
        state = await self._call(self._store.get_state(firm_id))
        if state is None:
            raise FirmNotFoundError(firm_id)
        return state

    async def check(self, firm_id: uuid.UUID, transition: Transition) -> FirmState:
        """Verify the transition is currently legal; does not write."""
        state = await self.get(firm_id)
        if not is_allowed(state.status, transition):
            raise InvalidStateTransition(state.status, transition)
        return state

    async def transition(
        self,
        firm_id: uuid.UUID,
        transition: Transition,
        *,
        reason: str | None = None,
    ) -> FirmState:
        """Apply a transition atomically with respect to other writers.

        Raises:
            FirmNotFoundError: unknown firm.
            InvalidStateTransition: illegal from the (latest) current status.
            TransitionConflict: version race lost ``MAX_ATTEMPTS`` times.
            InfrastructureUnavailable: store fault or timeout, commit included.
        """
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            current = await self.get(firm_id)
            planned = plan_transition(current, transition, now=self._clock(), reason=reason)
            if await self._call(self._store.compare_and_set(planned, current.version)):
                await self._call(self._store.commit())
                logger.info(
                    "firm_state_transition",
                    firm_id=str(firm_id),
                    transition=str(transition),
                    from_status=str(current.status),
                    to_status=str(planned.status),
                )
                return replace(planned, version=current.version + 1)
            logger.info(
                "firm_state_version_conflict",
                firm_id=str(firm_id),
                transition=str(transition),
                attempt=attempt,
            )

        raise TransitionConflict(f"Concurrent update of firm {firm_id}, retry later")

    async def submit_for_review(self, firm_id: uuid.UUID) -> FirmState:
        return await self.transition(firm_id, Transition.SUBMIT_FOR_REVIEW)

    async def approve(self, firm_id: uuid.UUID) -> FirmState:
        return await self.transition(firm_id, Transition.APPROVE)

    async def reject(self, firm_id: uuid.UUID, reason: str) -> FirmState:
        return await self.transition(firm_id, Transition.REJECT, reason=reason)

    async def suspend(self, firm_id: uuid.UUID) -> FirmState:
        return await self.transition(firm_id, Transition.SUSPEND)

    async def reactivate(self, firm_id: uuid.UUID) -> FirmState:
        return await self.transition(firm_id, Transition.REACTIVATE)
