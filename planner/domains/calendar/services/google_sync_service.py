"""Google Calendar sync entry points used by the API and CLI."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import current_app

from planner.domains.calendar.errors import NotConnectedError
from planner.domains.calendar.services import google_oauth
from planner.domains.calendar.services.channel_registry import ChannelRegistry
from planner.domains.calendar.services.subscription_service import stop_channel_quietly
from planner.domains.calendar.services.sync_engine import CalendarSyncEngine, SyncResult
from planner.extensions import db

logger = logging.getLogger(__name__)


def _selected_calendar(user_id: int) -> str:
    account = google_oauth.get_account(user_id)
    if not account or not account.selected_calendar_id:
        raise NotConnectedError("Google Calendar not connected")
    return account.selected_calendar_id


def sync_now(user_id: int, engine: Optional[CalendarSyncEngine] = None) -> SyncResult:
    """
    Pull the user's selected calendar on demand.

    Resumes from the watching channel's cursor when there is one; otherwise
    a full pull over the sync-now window.

    Raises:
        NotConnectedError: no account or no selected calendar
    """
    calendar_id = _selected_calendar(user_id)
    channels = ChannelRegistry()
    engine = engine or CalendarSyncEngine(channels=channels)

    channel = channels.find_for_calendar(user_id, calendar_id)
    cursor = channel.sync_token if channel else None
    channel_id = channel.channel_id if channel else None

    logger.info(
        f"Manual sync for user {user_id} calendar {calendar_id}: "
        f"channel={channel_id} has_cursor={bool(cursor)}"
    )

    if cursor:
        return engine.pull_changes(user_id, calendar_id, cursor=cursor, channel_id=channel_id)

    return engine.pull_changes(
        user_id,
        calendar_id,
        force_full=True,
        window_days=current_app.config["GOOGLE_SYNC_NOW_WINDOW_DAYS"],
        channel_id=channel_id,
    )


def backfill(user_id: int, engine: Optional[CalendarSyncEngine] = None) -> SyncResult:
    """
    Forced full pull over the backfill window.

    No channel is attached, so the resulting cursor is not stored.

    Raises:
        NotConnectedError: no account or no selected calendar
    """
    calendar_id = _selected_calendar(user_id)
    engine = engine or CalendarSyncEngine()
    window_days = current_app.config["GOOGLE_BACKFILL_WINDOW_DAYS"]

    logger.info(f"Backfill for user {user_id} calendar {calendar_id} over {window_days} days")
    return engine.pull_changes(
        user_id,
        calendar_id,
        force_full=True,
        window_days=window_days,
        channel_id=None,
    )


def get_sync_status(user_id: int) -> Dict[str, Any]:
    """
    Get Google Calendar sync status for a user.

    Returns:
        Status dict with connection info
    """
    account = google_oauth.get_account(user_id)
    if not account:
        return {"connected": False, "provider": "google"}

    channel = None
    if account.selected_calendar_id:
        channel = ChannelRegistry().find_for_calendar(user_id, account.selected_calendar_id)

    return {
        "connected": True,
        "provider": "google",
        "email": account.google_email,
        "selected_calendar_id": account.selected_calendar_id,
        "last_sync_at": account.last_sync_at.isoformat() if account.last_sync_at else None,
        "error": account.last_error,
        "watching": channel is not None,
        "channel_expiration": (
            channel.expiration.isoformat() if channel and channel.expiration else None
        ),
        "created_at": account.created_at.isoformat(),
    }


def disconnect_google_calendar(user_id: int) -> bool:
    """
    Disconnect Google Calendar for a user.

    Stops the user's push channels at Google (best-effort), then removes the
    channels and stored credentials.

    Returns:
        True if disconnected, False if no connection existed
    """
    account = google_oauth.get_account(user_id)
    channels = ChannelRegistry()
    owned = channels.list_for_user(user_id)

    if not account and not owned:
        return False

    if owned and account:
        client = google_oauth.build_client(account)
        for channel in owned:
            stop_channel_quietly(client, channel.channel_id, channel.resource_id)

    removed = channels.delete_for_user(user_id)
    if account:
        db.session.delete(account)
        db.session.commit()

    logger.info(f"Disconnected Google Calendar for user {user_id} ({removed} channels removed)")
    return True
