"""Google push channel lifecycle."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Optional

from flask import current_app

from planner.domains.calendar.errors import (
    ConfigurationError,
    GoogleCalendarError,
    NotConnectedError,
)
from planner.domains.calendar.mappers import expiration_from_millis
from planner.domains.calendar.models.google_account import GoogleAccount
from planner.domains.calendar.services import google_oauth
from planner.domains.calendar.services.channel_registry import ChannelRegistry
from planner.domains.calendar.services.google_client import GoogleCalendarClient
from planner.extensions import db

logger = logging.getLogger(__name__)

PRIME_PAGE_SIZE = 10


def _prime_cursor(client: GoogleCalendarClient, calendar_id: str) -> Optional[str]:
    """Best-effort initial sync token so the first notification can pull incrementally."""
    try:
        page = client.list_events(
            calendar_id,
            max_results=PRIME_PAGE_SIZE,
            single_events=True,
            order_by="updated",
        )
    except GoogleCalendarError as e:
        logger.warning(f"Could not prime sync token for calendar {calendar_id}: {e}")
        return None
    token = page.get("nextSyncToken")
    if not token:
        logger.info(f"No initial sync token for calendar {calendar_id}; first pull will be full")
    return token


def stop_channel_quietly(client: GoogleCalendarClient, channel_id: str, resource_id: str) -> None:
    try:
        client.stop_channel(channel_id, resource_id)
    except GoogleCalendarError as e:
        logger.warning(f"Failed to stop Google channel {channel_id}: {e}")


def ensure_watch(
    user_id: int,
    calendar_id: str,
    channels: Optional[ChannelRegistry] = None,
    client_factory: Optional[Callable[[GoogleAccount], GoogleCalendarClient]] = None,
) -> Dict[str, Any]:
    """
    Open a push channel on ``calendar_id`` and make it the user's only one.

    Returns ``{"channel_id", "resource_id", "expiration"}``.

    Raises:
        NotConnectedError: no usable Google account
        ConfigurationError: GOOGLE_WEBHOOK_URL is not set
        GoogleCalendarError: Google refused the watch or answered without
            a resource id or expiration
    """
    account = google_oauth.get_valid_account(user_id)
    if not account:
        raise NotConnectedError("No valid Google Calendar connection")

    address = current_app.config.get("GOOGLE_WEBHOOK_URL")
    if not address:
        raise ConfigurationError("GOOGLE_WEBHOOK_URL is not configured")

    channels = channels or ChannelRegistry()
    client = (client_factory or google_oauth.build_client)(account)

    channel_id = str(uuid.uuid4())
    logger.info(f"Creating Google watch for user {user_id} calendar {calendar_id} channel {channel_id}")
    response = client.watch_events(calendar_id, channel_id, address)

    resource_id = response.get("resourceId")
    if not resource_id or not response.get("expiration"):
        raise GoogleCalendarError("Google watch response missing resourceId or expiration")
    expiration = expiration_from_millis(response["expiration"])

    sync_token = _prime_cursor(client, calendar_id)

    # save() re-points an existing row for this resource; stop the channel it replaces
    previous = channels.get_by_resource(resource_id)
    if previous is not None and previous.channel_id != channel_id:
        stop_channel_quietly(client, previous.channel_id, resource_id)

    channel = channels.save(
        user_id=user_id,
        calendar_id=calendar_id,
        channel_id=channel_id,
        resource_id=resource_id,
        expiration=expiration,
        sync_token=sync_token,
    )

    for stale in channels.list_for_user(user_id):
        if stale.id == channel.id or stale.calendar_id != calendar_id:
            continue
        logger.info(f"Replacing Google channel {stale.channel_id} with {channel.channel_id}")
        stop_channel_quietly(client, stale.channel_id, stale.resource_id)
        channels.delete(stale)

    account.selected_calendar_id = calendar_id
    db.session.commit()

    return {
        "channel_id": channel.channel_id,
        "resource_id": channel.resource_id,
        "expiration": channel.expiration.isoformat() if channel.expiration else None,
    }
