"""Calendar domain service: local event CRUD with Google propagation."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from planner.core.utils.dates import anchor_all_day, to_naive_utc
from planner.domains.calendar.models.calendar_event import SOURCE_MANUAL, CalendarEvent
from planner.domains.calendar.services.outbound import propagate_delete, propagate_upsert
from planner.extensions import db


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise ValueError("invalid_title")
    if len(title) > 255:
        raise ValueError("title_too_long")
    return title


def _normalize_time(value: datetime, all_day: bool) -> datetime:
    """All-day values keep the caller's calendar day, pinned to the all-day anchor."""
    if all_day:
        return anchor_all_day(value.date())
    return to_naive_utc(value)


def create_calendar_event(
    user_id: int,
    title: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    all_day: bool = False,
    color: Optional[str] = None,
    recurrence_rule: Optional[str] = None,
) -> CalendarEvent:
    """
    Create a new calendar event.

    Pushed to Google after commit when the user has a linked account.
    """
    title = _clean_title(title)
    end_time = _normalize_time(end_time or start_time, all_day)
    start_time = _normalize_time(start_time, all_day)
    if end_time < start_time:
        raise ValueError("invalid_time_range")

    event = CalendarEvent(
        user_id=user_id,
        title=title,
        description=description,
        start_time=start_time,
        end_time=end_time,
        all_day=all_day,
        location=location,
        color=color,
        recurrence_rule=recurrence_rule,
        is_recurring=bool(recurrence_rule),
        source=SOURCE_MANUAL,
    )

    db.session.add(event)
    db.session.commit()

    propagate_upsert(user_id, event)
    return event


def update_calendar_event(
    user_id: int,
    event_id: int,
    title: Optional[str] = None,
    description: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    all_day: Optional[bool] = None,
    location: Optional[str] = None,
    color: Optional[str] = None,
) -> CalendarEvent:
    """
    Update an existing calendar event.

    Only pushed to Google when something actually changed.
    """
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user_id).first()
    if not event:
        raise ValueError("not_found")

    effective_all_day = event.all_day if all_day is None else all_day
    new_start = _normalize_time(
        start_time if start_time is not None else event.start_time, effective_all_day
    )
    new_end = _normalize_time(end_time if end_time is not None else event.end_time, effective_all_day)
    if new_end < new_start:
        raise ValueError("invalid_time_range")

    changed_fields: list[str] = []

    if title is not None:
        title = _clean_title(title)
        if title != event.title:
            event.title = title
            changed_fields.append("title")

    if description is not None and description != event.description:
        event.description = description
        changed_fields.append("description")

    # Also re-anchors stored times when the all-day flag flips on
    if new_start != event.start_time:
        event.start_time = new_start
        changed_fields.append("start_time")

    if new_end != event.end_time:
        event.end_time = new_end
        changed_fields.append("end_time")

    if all_day is not None and all_day != event.all_day:
        event.all_day = all_day
        changed_fields.append("all_day")

    if location is not None and location != event.location:
        event.location = location
        changed_fields.append("location")

    if color is not None and color != event.color:
        event.color = color
        changed_fields.append("color")

    if changed_fields:
        db.session.add(event)
        db.session.commit()
        propagate_upsert(user_id, event)

    return event


def delete_calendar_event(user_id: int, event_id: int) -> None:
    """Delete a calendar event locally, then remove its Google copy."""
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user_id).first()
    if not event:
        raise ValueError("not_found")

    db.session.delete(event)
    db.session.commit()

    # Attributes stay loaded after commit (expire_on_commit=False)
    propagate_delete(user_id, event)


def get_calendar_event(user_id: int, event_id: int) -> CalendarEvent | None:
    """Get a single calendar event by ID."""
    return CalendarEvent.query.filter_by(id=event_id, user_id=user_id).first()


def list_calendar_events(
    user_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    source: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[CalendarEvent]:
    """
    List calendar events with optional filters.

    Returns events ordered by start_time descending.
    """
    query = CalendarEvent.query.filter(CalendarEvent.user_id == user_id)

    if start_date:
        query = query.filter(CalendarEvent.start_time >= start_date)
    if end_date:
        query = query.filter(CalendarEvent.start_time <= end_date)
    if source:
        query = query.filter(CalendarEvent.source == source)

    return query.order_by(CalendarEvent.start_time.desc()).offset(offset).limit(limit).all()
