"""HTTP middleware: request logging and rate-limit bookkeeping."""

import asyncio
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from tenant_gate.auth.rate_limiter import RateDecision, RateLimiter

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status code, and latency."""

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Expose the request's rate decision and refund failed attempts.

    The decision is left on ``request.state`` by the authorize dependency.
    Refunds run as background tasks after the response is built.
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._refunds: set[asyncio.Task[None]] = set()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        decision: RateDecision | None = getattr(request.state, "rate_decision", None)
        if decision is None:
            return response

        for name, value in decision.headers().items():
            response.headers[name] = value

        if (
            decision.refund_on_failure
            and decision.allowed
            and decision.charged
            and response.status_code >= 400
        ):
            limiter: RateLimiter = request.state.rate_limiter
            task = asyncio.create_task(limiter.refund(decision.key))
            self._refunds.add(task)
            task.add_done_callback(self._refunds.discard)
        return response
