"""create_firms_and_branches

Firms carry both the approval lifecycle and the subscription/trial columns,
plus a version column used for optimistic concurrency on lifecycle writes.

Revision ID: 3f9a1c7e2b40
Revises:
Create Date: 2026-10-19 09:12:44.118203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f9a1c7e2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create firms and branches tables."""
    op.create_table(
        "firms",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("is_visible_in_client_app", sa.Boolean(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("subscription_status", sa.String(length=20), nullable=False),
        sa.Column("trial_start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'PENDING_REVIEW', 'ACTIVE', 'SUSPENDED')",
            name="chk_firm_status",
        ),
        sa.CheckConstraint(
            "subscription_status IN "
            "('TRIAL_ACTIVE', 'TRIAL_EXPIRED', 'BASIC', 'PRO', 'MAX')",
            name="chk_firm_subscription_status",
        ),
        sa.CheckConstraint(
            "is_visible_in_client_app = false OR status = 'ACTIVE'",
            name="chk_firm_visible_only_active",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_firms_status", "firms", ["status"])
    op.create_index("ix_firms_subscription_status", "firms", ["subscription_status"])

    op.create_table(
        "branches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("firm_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["firm_id"], ["firms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_branches_firm_id", "branches", ["firm_id"])


def downgrade() -> None:
    """Drop branches and firms."""
    op.drop_index("ix_branches_firm_id", table_name="branches")
    op.drop_table("branches")
    op.drop_index("ix_firms_subscription_status", table_name="firms")
    op.drop_index("ix_firms_status", table_name="firms")
    op.drop_table("firms")
