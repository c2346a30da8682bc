"""Add calendar events and Google sync tables.

Revision ID: 20251206_calendar_google_sync
Revises: 20251201_core_user
Create Date: 2025-12-06

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251206_calendar_google_sync"
down_revision: Union[str, None] = "20251201_core_user"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create calendar_event, google_account and google_channel tables."""
    op.create_table(
        "calendar_event",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=512), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("all_day", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("recurrence_rule", sa.String(length=255), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column(
            "source",
            sa.String(length=32),
            server_default="manual",
            nullable=False,
            comment="manual, sync_google",
        ),
        sa.Column("google_event_id", sa.String(length=1024), nullable=True),
        sa.Column("google_calendar_id", sa.String(length=255), nullable=True),
        sa.Column("google_etag", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_calendar_event_user_id", "calendar_event", ["user_id"])
    op.create_index(
        "ix_calendar_event_user_start",
        "calendar_event",
        ["user_id", "start_time"],
    )
    # One local row per remote event within a calendar
    op.create_index(
        "ux_calendar_event_user_google",
        "calendar_event",
        ["user_id", "google_calendar_id", "google_event_id"],
        unique=True,
        postgresql_where=sa.text("google_event_id IS NOT NULL"),
        sqlite_where=sa.text("google_event_id IS NOT NULL"),
    )

    op.create_table(
        "google_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("google_user_id", sa.String(length=255), nullable=True),
        sa.Column("google_email", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("selected_calendar_id", sa.String(length=255), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_google_account_user"),
    )

    op.create_table(
        "google_channel",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("calendar_id", sa.String(length=255), nullable=False),
        sa.Column("channel_id", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("expiration", sa.DateTime(), nullable=True),
        sa.Column("sync_token", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", name="uq_google_channel_channel_id"),
        sa.UniqueConstraint("resource_id", name="uq_google_channel_resource_id"),
    )
    op.create_index("ix_google_channel_user_id", "google_channel", ["user_id"])
    op.create_index(
        "ix_google_channel_user_calendar",
        "google_channel",
        ["user_id", "calendar_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_google_channel_user_calendar", table_name="google_channel")
    op.drop_index("ix_google_channel_user_id", table_name="google_channel")
    op.drop_table("google_channel")
    op.drop_table("google_account")
    op.drop_index("ux_calendar_event_user_google", table_name="calendar_event")
    op.drop_index("ix_calendar_event_user_start", table_name="calendar_event")
    op.drop_index("ix_calendar_event_user_id", table_name="calendar_event")
    op.drop_table("calendar_event")
