"""Persistence for Google push channels and their sync cursors."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from planner.domains.calendar.models.google_channel import GoogleChannel
from planner.extensions import db

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Keyed access to ``GoogleChannel`` rows (by channel id, resource id or owner)."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def get(self, channel_id: str) -> Optional[GoogleChannel]:
        return self.session.query(GoogleChannel).filter_by(channel_id=channel_id).first()

    def get_by_resource(self, resource_id: str) -> Optional[GoogleChannel]:
        return self.session.query(GoogleChannel).filter_by(resource_id=resource_id).first()

    def find_for_calendar(self, user_id: int, calendar_id: str) -> Optional[GoogleChannel]:
        """Most recently updated channel for (user, calendar)."""
        return (
            self.session.query(GoogleChannel)
            .filter_by(user_id=user_id, calendar_id=calendar_id)
            .order_by(GoogleChannel.updated_at.desc(), GoogleChannel.id.desc())
            .first()
        )

    def list_for_user(self, user_id: int) -> List[GoogleChannel]:
        return self.session.query(GoogleChannel).filter_by(user_id=user_id).all()

    def list_all(self) -> List[GoogleChannel]:
        return self.session.query(GoogleChannel).order_by(GoogleChannel.id).all()

    def save(
        self,
        user_id: int,
        calendar_id: str,
        channel_id: str,
        resource_id: str,
        expiration: Optional[datetime],
        sync_token: Optional[str] = None,
    ) -> GoogleChannel:
        """
        Insert a channel, converging on one row per ``resource_id``.

        Google keys subscriptions by resource, so when the resource is already
        tracked the existing row is re-pointed at the new channel instead of
        inserting a duplicate. A ``None`` sync_token keeps the stored cursor.
        """
        existing = self.get_by_resource(resource_id)
        if existing is None:
            channel = GoogleChannel(
                user_id=user_id,
                calendar_id=calendar_id,
                channel_id=channel_id,
                resource_id=resource_id,
                expiration=expiration,
                sync_token=sync_token,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(channel)
                self.session.commit()
                return channel
            except IntegrityError:
                # Lost a race with a concurrent insert for the same resource
                logger.info(f"Channel insert collided on resource {resource_id}; updating existing row")
                existing = self.get_by_resource(resource_id)
                if existing is None:
                    raise

        logger.info(
            f"Updating existing channel {existing.channel_id} for resource {resource_id} -> {channel_id}"
        )
        existing.user_id = user_id
        existing.calendar_id = calendar_id
        existing.channel_id = channel_id
        existing.expiration = expiration
        if sync_token:
            existing.sync_token = sync_token
        self.session.commit()
        return existing

    def update_cursor(self, channel_id: str, sync_token: str) -> bool:
        updated = (
            self.session.query(GoogleChannel)
            .filter_by(channel_id=channel_id)
            .update({"sync_token": sync_token}, synchronize_session="fetch")
        )
        self.session.commit()
        return bool(updated)

    def delete(self, channel: GoogleChannel) -> None:
        self.session.delete(channel)
        self.session.commit()

    def delete_for_user(self, user_id: int) -> int:
        deleted = (
            self.session.query(GoogleChannel)
            .filter_by(user_id=user_id)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return deleted
