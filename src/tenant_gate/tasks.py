"""Background jobs run by the arq worker."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_gate.storage.firm_repository import FirmRepository

logger = structlog.get_logger()


async def expire_trials(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: datetime | None = None,
) -> int:
    """Flip every lapsed TRIAL_ACTIVE firm to TRIAL_EXPIRED.

    Converges stored state for firms nobody has read since their trial
    ended. Idempotent: a second run finds nothing to flip.

    Args:
        now: Override for current time (useful for testing).

    Returns:
        Number of firms updated.
    """
    now = now or datetime.now(UTC)
    async with session_factory() as session:
        expired = await FirmRepository(session).expire_trials(now)
        await session.commit()
    if expired:
        logger.info("trial_sweep_expired", firms=expired)
    return expired


async def arq_expire_trials(ctx: dict[str, Any]) -> int:
    """ARQ cron entry point for :func:`expire_trials`."""
    session_factory: async_sessionmaker[AsyncSession] = ctx["session_factory"]
    return await expire_trials(session_factory)
