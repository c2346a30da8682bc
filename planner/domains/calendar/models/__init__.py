"""Calendar domain models."""

from planner.domains.calendar.models.calendar_event import CalendarEvent
from planner.domains.calendar.models.google_account import GoogleAccount
from planner.domains.calendar.models.google_channel import GoogleChannel

__all__ = ["CalendarEvent", "GoogleAccount", "GoogleChannel"]
