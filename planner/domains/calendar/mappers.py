"""Calendar domain mappers: Google Calendar payloads <-> local event fields."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from planner.core.utils.dates import anchor_all_day, format_rfc3339, parse_iso_datetime
from planner.domains.calendar.models.calendar_event import CalendarEvent

UNTITLED_EVENT = "Untitled event"
STATUS_CANCELLED = "cancelled"

# Fields the remote side owns on inbound pull.
SYNCED_FIELDS = (
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "all_day",
    "is_recurring",
)


class MalformedRemoteEvent(ValueError):
    """A Google item that cannot be mapped to a local event."""


@dataclass
class RemoteEvent:
    """An active Google event reduced to the fields the local store keeps."""

    google_event_id: str
    etag: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)


def is_cancelled(item: Dict[str, Any]) -> bool:
    return item.get("status") == STATUS_CANCELLED


def from_google_item(item: Dict[str, Any]) -> RemoteEvent:
    """
    Map an active Google event resource to local fields.

    Date-only values land at 12:00 UTC. Google's all-day end date is
    exclusive, so the local (inclusive) end is one day earlier, but never
    before the start.

    Raises:
        MalformedRemoteEvent: missing id, start or end, or unparseable values
    """
    google_event_id = item.get("id")
    if not google_event_id:
        raise MalformedRemoteEvent("missing id")

    start_data = item.get("start") or {}
    end_data = item.get("end") or {}
    start_raw = start_data.get("dateTime") or start_data.get("date")
    end_raw = end_data.get("dateTime") or end_data.get("date")
    if not start_raw or not end_raw:
        raise MalformedRemoteEvent("missing start/end")

    all_day = bool(start_data.get("date")) and not start_data.get("dateTime")

    try:
        if all_day:
            start_day = date.fromisoformat(start_raw[:10])
            end_day = date.fromisoformat(end_raw[:10]) - timedelta(days=1)
            start_time = anchor_all_day(start_day)
            end_time = anchor_all_day(max(end_day, start_day))
        else:
            start_time = parse_iso_datetime(start_raw)
            end_time = parse_iso_datetime(end_raw)
    except ValueError as exc:
        raise MalformedRemoteEvent(f"unparseable start/end: {exc}") from exc

    return RemoteEvent(
        google_event_id=google_event_id,
        etag=item.get("etag"),
        fields={
            "title": (item.get("summary") or "").strip()[:255] or UNTITLED_EVENT,
            "description": item.get("description") or None,
            "location": item.get("location") or None,
            "start_time": start_time,
            "end_time": end_time,
            "all_day": all_day,
            "is_recurring": bool(item.get("recurringEventId")),
        },
    )


def to_google_body(event: CalendarEvent) -> Dict[str, Any]:
    """
    Build the events.insert / events.patch body for a local event.

    All-day events go out as date-only values with an exclusive end date
    (local inclusive end + 1 day). Timed events go out as UTC instants.
    """
    body: Dict[str, Any] = {
        "summary": event.title,
        "description": event.description,
        "location": event.location,
    }

    end_time = event.end_time or event.start_time
    if event.all_day:
        start_day = event.start_time.date()
        end_day = max(end_time.date(), start_day) + timedelta(days=1)
        body["start"] = {"date": start_day.isoformat()}
        body["end"] = {"date": end_day.isoformat()}
    else:
        body["start"] = {"dateTime": format_rfc3339(event.start_time), "timeZone": "UTC"}
        body["end"] = {"dateTime": format_rfc3339(end_time), "timeZone": "UTC"}

    return body


def event_to_dict(event: CalendarEvent) -> Dict[str, Any]:
    """Serialize a local event for JSON responses."""
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start_time": event.start_time.isoformat(),
        "end_time": event.end_time.isoformat(),
        "all_day": event.all_day,
        "is_recurring": event.is_recurring,
        "recurrence_rule": event.recurrence_rule,
        "color": event.color,
        "source": event.source,
        "google_event_id": event.google_event_id,
        "google_calendar_id": event.google_calendar_id,
        "duration_minutes": event.duration_minutes,
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "updated_at": event.updated_at.isoformat() if event.updated_at else None,
    }


def expiration_from_millis(raw: Any) -> Optional[datetime]:
    """Google returns channel expirations as epoch milliseconds (often as a string)."""
    if raw in (None, ""):
        return None
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc).replace(tzinfo=None)
