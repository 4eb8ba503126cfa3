"""SQLAlchemy ORM models for tenant state."""

import uuid
from datetime import datetime

import uuid_utils as uuid7_lib
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ──────────────────────────────────────────────
# Firms (tenants)
# ──────────────────────────────────────────────


class Firm(Base):
    """A tenant firm: lifecycle and subscription columns.

    ``version`` is the optimistic-concurrency token; every lifecycle write
    is conditional on it and increments it.
    """

    __tablename__ = "firms"
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_REVIEW', 'ACTIVE', 'SUSPENDED')",
            name="chk_firm_status",
        ),
        CheckConstraint(
            "subscription_status IN "
            "('TRIAL_ACTIVE', 'TRIAL_EXPIRED', 'BASIC', 'PRO', 'MAX')",
            name="chk_firm_subscription_status",
        ),
        CheckConstraint(
            "is_visible_in_client_app = false OR status = 'ACTIVE'",
            name="chk_firm_visible_only_active",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="DRAFT", index=True)
    is_visible_in_client_app: Mapped[bool] = mapped_column(Boolean, default=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    subscription_status: Mapped[str] = mapped_column(
        String(20), default="TRIAL_ACTIVE", index=True
    )
    trial_start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    branches: Mapped[list["Branch"]] = relationship(
        back_populates="firm", cascade="all, delete-orphan"
    )


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("firms.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    firm: Mapped["Firm"] = relationship(back_populates="branches")
