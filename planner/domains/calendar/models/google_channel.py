"""Push notification channels watching Google calendars."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from planner.core.utils.dates import utcnow
from planner.extensions import db


class GoogleChannel(db.Model):
    """
    An events.watch subscription and the incremental sync cursor for its calendar.

    ``channel_id`` is generated locally; ``resource_id`` is assigned by Google
    and identifies the watched resource, so both are unique.
    """

    __tablename__ = "google_channel"
    __table_args__ = (
        db.Index("ix_google_channel_user_calendar", "user_id", "calendar_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(db.ForeignKey("user.id"), index=True, nullable=False)
    calendar_id: Mapped[str] = mapped_column(db.String(255), nullable=False)

    channel_id: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)
    resource_id: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    expiration: Mapped[datetime | None] = mapped_column()

    sync_token: Mapped[str | None] = mapped_column(db.Text)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_expired(self) -> bool:
        if not self.expiration:
            return False
        return utcnow() >= self.expiration
