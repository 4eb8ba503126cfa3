"""ARQ worker configuration and lifecycle hooks.

Run with::

    arq tenant_gate.worker.WorkerSettings

Or in Docker::

    python -m arq tenant_gate.worker.WorkerSettings
"""

from typing import Any, ClassVar

import structlog
from arq import cron
from arq.connections import RedisSettings

from tenant_gate.config import get_settings
from tenant_gate.logging_config import configure_logging
from tenant_gate.tasks import arq_expire_trials

WorkerCtx = dict[str, Any]


async def startup(ctx: WorkerCtx) -> None:
    """Initialize worker resources on startup.

    Creates an async engine and session factory, storing them in the
    worker context for use by task functions.
    """
    from sqlalchemy.ext.asyncio import (
        AsyncSession,
        async_sessionmaker,
        create_async_engine,
    )

    s = get_settings()
    configure_logging(
        environment=str(s.environment),
        log_level=s.log_level,
    )

    engine = create_async_engine(
        s.database_url,
        pool_size=2,
        max_overflow=2,
    )
    ctx["engine"] = engine
    ctx["session_factory"] = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    log = structlog.get_logger()
    log.info("worker_started", redis_url=s.redis_url, max_jobs=s.worker_max_jobs)


async def shutdown(ctx: WorkerCtx) -> None:
    """Clean up worker resources on shutdown."""
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()

    structlog.get_logger().info("worker_stopped")


class WorkerSettings:
    """ARQ worker settings, consumed by the ``arq`` CLI."""

    _settings = get_settings()

    redis_settings: RedisSettings = RedisSettings.from_dsn(
        _settings.redis_url,
    )
    functions: ClassVar[list[Any]] = []
    cron_jobs: ClassVar[list[Any]] = [
        cron(
            arq_expire_trials,
            minute=_settings.trial_sweep_minutes,
            run_at_startup=True,
            unique=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown

    max_jobs: int = _settings.worker_max_jobs
    job_timeout: int = _settings.worker_job_timeout

    keep_result: int = 3600
    poll_delay: float = 0.5
