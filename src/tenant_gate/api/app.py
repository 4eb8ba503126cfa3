"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tenant_gate.api.middleware import RateLimitHeadersMiddleware, RequestLoggingMiddleware
from tenant_gate.api.routes.auth import router as auth_router
from tenant_gate.api.routes.firms import router as firms_router
from tenant_gate.api.routes.subscription import router as subscription_router
from tenant_gate.auth.rate_limiter import InMemoryCounterStore, RateLimiter, RedisCounterStore
from tenant_gate.auth.tokens import IdentityVerifier
from tenant_gate.config import RateLimitBackend, settings
from tenant_gate.errors import (
    AccessDenied,
    InfrastructureUnavailable,
    InvalidStateTransition,
    RateLimited,
    SubscriptionRequired,
    Unauthenticated,
)
from tenant_gate.logging_config import configure_logging
from tenant_gate.storage.database import async_session, engine

logger = structlog.get_logger()

CLEANUP_INTERVAL_SECONDS = 300


async def _cleanup_loop(store: InMemoryCounterStore) -> None:
    """Periodic cleanup of expired in-memory rate windows."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        try:
            cleaned = await asyncio.to_thread(store.cleanup)
            if cleaned:
                logger.debug("rate_limiter_cleanup", keys_removed=cleaned)
        except Exception:
            logger.exception("rate_limiter_cleanup_error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Build the IdentityVerifier from the JWT settings.
        - Open the counter store and wrap it in a RateLimiter.
        - Start the cleanup task when windows live in process memory.
    Shutdown:
        - Cancel cleanup task, close the counter store.
        - Dispose database engine (close connection pool).
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )
    app.state.identity_verifier = IdentityVerifier(
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
        expires_minutes=settings.jwt_expires_minutes,
    )

    cleanup_task: asyncio.Task[None] | None = None
    redis_store: RedisCounterStore | None = None
    if settings.rate_limit_backend == RateLimitBackend.REDIS:
        redis_store = RedisCounterStore(
            settings.redis_url, socket_timeout=settings.store_timeout_seconds
        )
        await redis_store.open()
        store: RedisCounterStore | InMemoryCounterStore = redis_store
    else:
        memory_store = InMemoryCounterStore()
        cleanup_task = asyncio.create_task(_cleanup_loop(memory_store))
        store = memory_store

    app.state.counter_store = store
    app.state.rate_limiter = RateLimiter(
        store, timeout_seconds=settings.store_timeout_seconds
    )

    logger.info(
        "app_started",
        environment=str(settings.environment),
        rate_limit_backend=str(settings.rate_limit_backend),
    )
    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
    if redis_store is not None:
        await redis_store.close()
    await engine.dispose()
    logger.info("app_stopped")


app = FastAPI(
    title="Tenant Gate",
    description="Tenant access and lifecycle control for the delivery marketplace",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


HEALTH_CHECK_TIMEOUT = 5.0


@app.get("/health")
async def health() -> JSONResponse:
    """Deep health check: verifies DB and Redis connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    # DB check
    try:
        async with async_session() as session:
            await asyncio.wait_for(
                session.execute(text("SELECT 1")),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        checks["db"] = "ok"
    except (TimeoutError, OperationalError, SQLAlchemyError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_db_unexpected", error=str(e), exc_info=True)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    # Redis check; the limiter fails open, so this only degrades health
    store = getattr(app.state, "counter_store", None)
    if isinstance(store, RedisCounterStore):
        try:
            await asyncio.wait_for(store.ping(), timeout=HEALTH_CHECK_TIMEOUT)
            checks["redis"] = "ok"
        except (TimeoutError, ConnectionError, OSError, RedisError) as e:
            logger.warning("health_check_redis_error", error=type(e).__name__)
            checks["redis"] = f"error: {type(e).__name__}"
            overall = "degraded"
    else:
        checks["redis"] = "skipped"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


@app.exception_handler(AccessDenied)
async def access_denied_handler(
    request: Request,
    exc: AccessDenied,
) -> JSONResponse:
    """Map every denial to its status code and a stable error body."""
    content: dict[str, object] = {"detail": exc.message, "code": exc.code}
    headers: dict[str, str] = {}

    if isinstance(exc, Unauthenticated):
        content["reason"] = str(exc.reason)
        headers["WWW-Authenticate"] = "Bearer"
    elif isinstance(exc, RateLimited):
        headers.update(exc.decision.headers())
        headers["Retry-After"] = str(exc.decision.retry_after_seconds)
    elif isinstance(exc, SubscriptionRequired):
        content["status"] = str(exc.info.status)
        content["days_remaining"] = exc.info.days_remaining
    elif isinstance(exc, InvalidStateTransition):
        content["current"] = str(exc.current)
        content["attempted"] = str(exc.attempted)

    if isinstance(exc, InfrastructureUnavailable):
        logger.error("access_denied", code=exc.code, path=request.url.path)
    else:
        logger.info(
            "access_denied",
            code=exc.code,
            status_code=exc.status_code,
            path=request.url.path,
        )
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(auth_router, prefix="/api/v1")
app.include_router(firms_router, prefix="/api/v1")
app.include_router(subscription_router, prefix="/api/v1")
