"""Tenant-state storage collaborator (PostgreSQL via SQLAlchemy)."""

from sqlalchemy.exc import SQLAlchemyError

# Faults that mean the tenant-state store could not answer. Callers on the
# tenancy, lifecycle and subscription paths fail closed on these.
STATE_STORE_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    OSError,
    SQLAlchemyError,
)

__all__ = ["STATE_STORE_ERRORS"]
