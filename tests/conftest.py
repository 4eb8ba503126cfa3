"""Shared pytest fixtures and live-infrastructure gating."""

import pytest
import structlog


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-db",
        action="store_true",
        default=False,
        help="Run tests that require a live PostgreSQL instance",
    )
    parser.addoption(
        "--run-redis",
        action="store_true",
        default=False,
        help="Run tests that require a live Redis instance",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    gates = {
        "requires_db": "--run-db",
        "requires_redis": "--run-redis",
    }
    for marker_name, flag in gates.items():
        if config.getoption(flag):
            continue
        skip = pytest.mark.skip(reason=f"needs {flag} flag")
        for item in items:
            if marker_name in item.keywords:
                item.add_marker(skip)


@pytest.fixture(autouse=True)
def _clear_log_context() -> None:
    """Principal fields bound by one request must not leak into the next test."""
    structlog.contextvars.clear_contextvars()
