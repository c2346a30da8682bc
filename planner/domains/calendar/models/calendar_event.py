"""Calendar event model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from planner.core.utils.dates import utcnow
from planner.extensions import db

SOURCE_MANUAL = "manual"
SOURCE_GOOGLE = "sync_google"


class CalendarEvent(db.Model):
    """
    Primary calendar event entity.

    Rows are authored locally or pulled from Google Calendar. A row linked to
    Google carries the remote event id, the calendar it lives in and the last
    etag seen. All-day events store both ends at 12:00 UTC of their
    (inclusive) first and last day.
    """

    __tablename__ = "calendar_event"
    __table_args__ = (
        db.Index("ix_calendar_event_user_start", "user_id", "start_time"),
        db.Index(
            "ux_calendar_event_user_google",
            "user_id",
            "google_calendar_id",
            "google_event_id",
            unique=True,
            postgresql_where=db.text("google_event_id IS NOT NULL"),
            sqlite_where=db.text("google_event_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(db.ForeignKey("user.id"), index=True, nullable=False)

    # Event content
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text)
    location: Mapped[str | None] = mapped_column(db.String(512))

    # Timing (naive UTC)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    all_day: Mapped[bool] = mapped_column(default=False, nullable=False)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(default=False, nullable=False)
    recurrence_rule: Mapped[str | None] = mapped_column(db.String(255))

    color: Mapped[str | None] = mapped_column(db.String(16))

    # Source tracking: 'manual' or 'sync_google'
    source: Mapped[str] = mapped_column(db.String(32), nullable=False, default=SOURCE_MANUAL)

    # Google link; null google_event_id means never pushed or pulled
    google_event_id: Mapped[str | None] = mapped_column(db.String(1024))
    google_calendar_id: Mapped[str | None] = mapped_column(db.String(255))
    google_etag: Mapped[str | None] = mapped_column(db.String(255))

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() / 60)

    @property
    def is_linked(self) -> bool:
        return bool(self.google_event_id)


__all__ = ["CalendarEvent", "SOURCE_GOOGLE", "SOURCE_MANUAL"]
