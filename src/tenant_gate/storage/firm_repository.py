"""Repository for firm lifecycle, subscription and branch lookups."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Row, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_gate.firms.lifecycle import FirmState, FirmStatus
from tenant_gate.firms.subscription import SubscriptionRecord, SubscriptionStatus
from tenant_gate.storage.orm import Branch, Firm

_STATE_COLUMNS = (
    Firm.id,
    Firm.status,
    Firm.is_visible_in_client_app,
    Firm.submitted_at,
    Firm.approved_at,
    Firm.rejection_reason,
    Firm.version,
)

_SUBSCRIPTION_COLUMNS = (
    Firm.id,
    Firm.subscription_status,
    Firm.trial_start_at,
    Firm.trial_end_at,
)


def _to_state(row: Row[Any]) -> FirmState:
    return FirmState(
        firm_id=row.id,
        status=FirmStatus(row.status),
        is_visible_to_clients=row.is_visible_in_client_app,
        submitted_at=row.submitted_at,
        approved_at=row.approved_at,
        rejection_reason=row.rejection_reason,
        version=row.version,
    )


def _to_subscription(row: Row[Any]) -> SubscriptionRecord:
    return SubscriptionRecord(
        firm_id=row.id,
        status=SubscriptionStatus(row.subscription_status),
        trial_start_at=row.trial_start_at,
        trial_end_at=row.trial_end_at,
    )


def new_firm(name: str, *, now: datetime, trial_days: int) -> Firm:
    """A DRAFT firm, hidden from clients, starting a fresh trial at ``now``."""
    return Firm(
        name=name,
        status=FirmStatus.DRAFT,
        is_visible_in_client_app=False,
        subscription_status=SubscriptionStatus.TRIAL_ACTIVE,
        trial_start_at=now,
        trial_end_at=now + timedelta(days=trial_days),
    )


class FirmRepository:
    """Tenant-state store over the ``firms`` and ``branches`` tables.

    Reads select plain columns rather than ORM entities so a re-read inside
    the same session always reflects the latest committed row.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, name: str, now: datetime, trial_days: int) -> Firm:
        """Create a firm in DRAFT with a fresh trial window."""
        firm = new_firm(name, now=now, trial_days=trial_days)
        self._session.add(firm)
        await self._session.flush()
        return firm

    async def get_state(self, firm_id: uuid.UUID) -> FirmState | None:
        stmt = select(*_STATE_COLUMNS).where(Firm.id == firm_id)
        row = (await self._session.execute(stmt)).one_or_none()
        return _to_state(row) if row is not None else None

    async def compare_and_set(self, state: FirmState, expected_version: int) -> bool:
        """Write lifecycle columns iff the stored version is unchanged."""
        stmt = (
            update(Firm)
            .where(Firm.id == state.firm_id, Firm.version == expected_version)
            .values(
                status=str(state.status),
                is_visible_in_client_app=state.is_visible_to_clients,
                submitted_at=state.submitted_at,
                approved_at=state.approved_at,
                rejection_reason=state.rejection_reason,
                version=Firm.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def get_subscription(self, firm_id: uuid.UUID) -> SubscriptionRecord | None:
        stmt = select(*_SUBSCRIPTION_COLUMNS).where(Firm.id == firm_id)
        row = (await self._session.execute(stmt)).one_or_none()
        return _to_subscription(row) if row is not None else None

    async def mark_trial_expired(self, firm_id: uuid.UUID) -> bool:
        stmt = (
            update(Firm)
            .where(
                Firm.id == firm_id,
                Firm.subscription_status == SubscriptionStatus.TRIAL_ACTIVE,
            )
            .values(subscription_status=SubscriptionStatus.TRIAL_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def expire_trials(self, now: datetime) -> int:
        """Flip every active trial whose end has passed. Returns rows changed."""
        stmt = (
            update(Firm)
            .where(
                Firm.subscription_status == SubscriptionStatus.TRIAL_ACTIVE,
                Firm.trial_end_at.is_not(None),
                Firm.trial_end_at < now,
            )
            .values(subscription_status=SubscriptionStatus.TRIAL_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def commit(self) -> None:
        await self._session.commit()

    async def branch_belongs_to_firm(
        self, branch_id: uuid.UUID, firm_id: uuid.UUID
    ) -> bool:
        stmt = select(Branch.id).where(Branch.id == branch_id, Branch.firm_id == firm_id)
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def get_branch(self, branch_id: uuid.UUID) -> Branch | None:
        stmt = select(Branch).where(Branch.id == branch_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_public(self) -> Sequence[Firm]:
        """Firms shown in the client app: ACTIVE and visible."""
        stmt = (
            select(Firm)
            .where(
                Firm.status == FirmStatus.ACTIVE,
                Firm.is_visible_in_client_app.is_(True),
            )
            .order_by(Firm.name)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_subscriptions(self) -> list[tuple[str, SubscriptionRecord]]:
        """Every firm with its stored subscription, newest first."""
        stmt = select(Firm.name, *_SUBSCRIPTION_COLUMNS).order_by(Firm.created_at.desc())
        rows = (await self._session.execute(stmt)).all()
        return [(row.name, _to_subscription(row)) for row in rows]
