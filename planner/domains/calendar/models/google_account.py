"""Google OAuth credentials per user."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from planner.core.utils.dates import utcnow
from planner.extensions import db


class GoogleAccount(db.Model):
    """
    Stores the Google OAuth token pair and the calendar chosen for sync.

    Each user links at most one Google account.
    """

    __tablename__ = "google_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        db.ForeignKey("user.id"), unique=True, nullable=False
    )

    google_user_id: Mapped[str | None] = mapped_column(db.String(255))
    google_email: Mapped[str | None] = mapped_column(db.String(255))

    # OAuth tokens (encrypted at rest in production)
    access_token: Mapped[str] = mapped_column(db.Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(db.Text)
    scope: Mapped[str | None] = mapped_column(db.Text)
    expires_at: Mapped[datetime | None] = mapped_column()

    selected_calendar_id: Mapped[str | None] = mapped_column(db.String(255))

    # Sync state
    last_sync_at: Mapped[datetime | None] = mapped_column()
    last_error: Mapped[str | None] = mapped_column(db.String(512))

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if not self.expires_at:
            return False
        return utcnow() >= self.expires_at

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)
