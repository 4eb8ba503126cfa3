"""Structured logging configuration.

JSON output for production, colored console for development/testing.
Call configure_logging() once at process startup (FastAPI lifespan or the
arq worker's startup hook).

Credentials never reach the log stream: values under sensitive keys are
replaced, and bearer tokens embedded in free-text values are masked.
"""

import logging
import re
import sys
from typing import Any

import structlog

from tenant_gate.auth.principal import Principal

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "token",
        "authorization",
        "jwt_secret",
        "password",
        "secret",
        "raw_credential",
    }
)

REDACTED = "***REDACTED***"

# "Bearer <jwt>" or a bare three-segment JWT inside a message.
_TOKEN_PATTERN = re.compile(
    r"(Bearer\s+)?[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}"
)


def _redact_value(key: str, value: Any) -> Any:
    if key.lower() in SENSITIVE_KEYS:
        return REDACTED
    if isinstance(value, str):
        return _TOKEN_PATTERN.sub(REDACTED, value)
    if isinstance(value, dict):
        return {k: _redact_value(str(k), v) for k, v in value.items()}
    return value


def _redact_sensitive_keys(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Redact sensitive keys and token-shaped strings, including nested dicts."""
    for key, value in event_dict.items():
        event_dict[key] = _redact_value(key, value)
    return event_dict


def bind_principal(principal: Principal | None) -> None:
    """Attach the caller's identity to every log line of this request.

    Bound via contextvars, so it is scoped to the current task.
    """
    if principal is None:
        return
    structlog.contextvars.bind_contextvars(
        principal_id=str(principal.id),
        role=str(principal.role),
        tenant_id=str(principal.tenant_id) if principal.tenant_id else None,
    )


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
) -> None:
    """Configure structlog processor chain and stdlib root logger.

    Args:
        environment: 'production' for JSON output, anything else
            for colored console output.
        log_level: Python log level name (DEBUG, INFO, WARNING, etc.).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive_keys,
    ]

    if environment == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("arq.worker").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
