"""Calendar domain Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from planner.core.utils.dates import to_naive_utc


class CalendarEventCreate(BaseModel):
    """
    Request body for creating a calendar event.

    Times keep their UTC offset; the service turns them into naive UTC, or
    into the caller's calendar day for all-day events.
    """

    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = Field(default=None, max_length=512)
    color: Optional[str] = Field(default=None, max_length=16)
    recurrence_rule: Optional[str] = Field(default=None, max_length=255)


class CalendarEventUpdate(BaseModel):
    """Request body for updating a calendar event."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    all_day: Optional[bool] = None
    location: Optional[str] = Field(default=None, max_length=512)
    color: Optional[str] = Field(default=None, max_length=16)


class CalendarEventListParams(BaseModel):
    """Query parameters for listing calendar events."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    source: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize_dates(cls, values):
        """Accept naive/offset datetimes or date strings; tolerate trailing Z."""

        def _parse(val):
            if val is None:
                return None
            if isinstance(val, datetime):
                return to_naive_utc(val)
            if isinstance(val, date):
                return datetime.combine(val, time.min)
            if isinstance(val, str):
                raw = val.strip()
                if raw.endswith("Z"):
                    raw = raw[:-1] + "+00:00"
                try:
                    return to_naive_utc(datetime.fromisoformat(raw))
                except ValueError:
                    return None
            return None

        values = dict(values or {})
        values["start_date"] = _parse(values.get("start_date"))
        values["end_date"] = _parse(values.get("end_date"))
        return values


class WatchRequest(BaseModel):
    """Request body for POST /api/google/watch."""

    model_config = ConfigDict(populate_by_name=True)

    calendar_id: str = Field(alias="calendarId", min_length=1, max_length=255)
