"""Outbound propagation: push local event mutations to Google Calendar.

Both entry points run after the local change has committed and never raise;
a failed push is logged and the local state stands.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from planner.domains.calendar.errors import RemoteNotFoundError
from planner.domains.calendar.mappers import to_google_body
from planner.domains.calendar.models.calendar_event import CalendarEvent
from planner.domains.calendar.models.google_account import GoogleAccount
from planner.domains.calendar.services import google_oauth
from planner.domains.calendar.services.event_store import EventStore, SqlAlchemyEventStore
from planner.domains.calendar.services.google_client import GoogleCalendarClient

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "primary"

ClientFactory = Callable[[GoogleAccount], GoogleCalendarClient]


def propagate_upsert(
    user_id: int,
    event: CalendarEvent,
    store: Optional[EventStore] = None,
    client_factory: Optional[ClientFactory] = None,
) -> None:
    """
    Create or update the Google copy of ``event``.

    Linked events are patched on their own calendar. Unlinked events are
    inserted into the account's selected calendar and the returned id, calendar
    and etag are stored so later pulls match them.
    """
    try:
        account = google_oauth.get_valid_account(user_id)
        if not account:
            logger.debug(f"No Google account for user {user_id}; skipping outbound upsert")
            return

        store = store or SqlAlchemyEventStore()
        client = (client_factory or google_oauth.build_client)(account)
        body = to_google_body(event)

        if event.google_event_id:
            calendar_id = event.google_calendar_id or account.selected_calendar_id or DEFAULT_CALENDAR_ID
            remote = client.patch_event(calendar_id, event.google_event_id, body)
            if remote.get("etag") and remote.get("etag") != event.google_etag:
                store.attach_remote(event, event.google_event_id, calendar_id, remote["etag"])
                store.commit()
            logger.info(f"Updated Google event {event.google_event_id} for local event {event.id}")
            return

        calendar_id = account.selected_calendar_id or DEFAULT_CALENDAR_ID
        remote = client.insert_event(calendar_id, body)
        if not remote.get("id"):
            logger.error(f"Google insert for local event {event.id} returned no id")
            return
        store.attach_remote(event, remote["id"], calendar_id, remote.get("etag"))
        store.commit()
        logger.info(f"Created Google event {remote['id']} on {calendar_id} for local event {event.id}")
    except Exception:
        logger.exception(f"Failed to push local event {event.id} to Google")


def propagate_delete(
    user_id: int,
    event: CalendarEvent,
    client_factory: Optional[ClientFactory] = None,
) -> None:
    """Delete the Google copy of ``event``; unlinked events and remote 404/410 are no-ops."""
    if not event.google_event_id:
        return

    try:
        account = google_oauth.get_valid_account(user_id)
        if not account:
            logger.debug(f"No Google account for user {user_id}; skipping outbound delete")
            return

        calendar_id = event.google_calendar_id or account.selected_calendar_id or DEFAULT_CALENDAR_ID
        client = (client_factory or google_oauth.build_client)(account)
        try:
            client.delete_event(calendar_id, event.google_event_id)
        except RemoteNotFoundError:
            logger.info(f"Google event {event.google_event_id} already gone")
            return
        logger.info(f"Deleted Google event {event.google_event_id} from {calendar_id}")
    except Exception:
        logger.exception(f"Failed to delete Google event {event.google_event_id}")
