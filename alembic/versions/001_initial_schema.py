"""Initial PostgreSQL schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create initial schema for the Activity Notifier."""

    # 1. organizations (integration settings + Hubstaff OAuth tokens)
    op.create_table(
        "organizations",
        sa.Column("org_id", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "notification_gap_minutes",
            sa.Integer(),
            nullable=False,
            server_default="120",
        ),
        sa.Column("hubstaff_org_id", sa.String(length=50), nullable=True),
        sa.Column(
            "freshdesk_domain", sa.String(length=255), nullable=False, server_default=""
        ),
        sa.Column("freshdesk_api_key", sa.Text(), nullable=True),
        sa.Column(
            "gitlab_domain",
            sa.String(length=255),
            nullable=False,
            server_default="gitlab.com",
        ),
        sa.Column("gitlab_project_path", sa.String(length=255), nullable=True),
        sa.Column("gitlab_api_key", sa.Text(), nullable=True),
        sa.Column("slack_webhook_url", sa.Text(), nullable=False),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hubstaff_access_token", sa.Text(), nullable=True),
        sa.Column("hubstaff_refresh_token", sa.Text(), nullable=True),
        sa.Column(
            "hubstaff_token_expires_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "notification_gap_minutes >= 1", name="notification_gap_positive"
        ),
        sa.PrimaryKeyConstraint("org_id"),
    )

    # 2. user_sessions (one cursor per organization and user)
    op.create_table(
        "user_sessions",
        sa.Column("org_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=50), nullable=False),
        sa.Column("last_task_id", sa.String(length=50), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.ForeignKeyConstraint(
            ["org_id"], ["organizations.org_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("org_id", "user_id"),
    )

    # 3. processed_activities (deduplication ledger)
    op.create_table(
        "processed_activities",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=50), nullable=False),
        sa.Column("task_id", sa.String(length=50), nullable=False),
        sa.Column("activity_key", sa.String(length=100), nullable=False),
        sa.Column("activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.ForeignKeyConstraint(
            ["org_id"], ["organizations.org_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_key", name="uq_processed_activities_key"),
    )
    op.create_index(
        "idx_processed_activities_lookup",
        "processed_activities",
        ["org_id", "user_id", "task_id", "activity_at"],
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("idx_processed_activities_lookup", table_name="processed_activities")
    op.drop_table("processed_activities")
    op.drop_table("user_sessions")
    op.drop_table("organizations")
