"""Calendar domain services."""

from planner.domains.calendar.services.calendar_service import (
    create_calendar_event,
    delete_calendar_event,
    get_calendar_event,
    list_calendar_events,
    update_calendar_event,
)

__all__ = [
    "create_calendar_event",
    "update_calendar_event",
    "delete_calendar_event",
    "get_calendar_event",
    "list_calendar_events",
]
