"""Local event store used by the sync engine."""

from __future__ import annotations

from typing import Any, ContextManager, Dict, Iterable, Optional, Protocol

from planner.domains.calendar.models.calendar_event import SOURCE_GOOGLE, CalendarEvent
from planner.extensions import db


class EventStore(Protocol):
    """Persistence operations the sync engine needs for Google-linked events."""

    def find_linked(
        self, user_id: int, calendar_id: str, google_event_ids: Iterable[str]
    ) -> Dict[str, CalendarEvent]: ...

    def create_linked(
        self,
        user_id: int,
        calendar_id: str,
        google_event_id: str,
        etag: Optional[str],
        fields: Dict[str, Any],
    ) -> CalendarEvent: ...

    def update_fields(
        self, event: CalendarEvent, fields: Dict[str, Any], etag: Optional[str] = None
    ) -> bool: ...

    def delete_linked(
        self, user_id: int, calendar_id: str, google_event_ids: Iterable[str]
    ) -> int: ...

    def attach_remote(
        self,
        event: CalendarEvent,
        google_event_id: str,
        calendar_id: str,
        etag: Optional[str],
    ) -> None: ...

    def savepoint(self) -> ContextManager[Any]: ...

    def commit(self) -> None: ...


class SqlAlchemyEventStore:
    """EventStore backed by the application's SQLAlchemy session."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        # Resolve lazily so tests that swap db.session are honoured.
        return self._session or db.session

    def find_linked(
        self, user_id: int, calendar_id: str, google_event_ids: Iterable[str]
    ) -> Dict[str, CalendarEvent]:
        ids = list(set(google_event_ids))
        if not ids:
            return {}
        rows = (
            self.session.query(CalendarEvent)
            .filter(
                CalendarEvent.user_id == user_id,
                CalendarEvent.google_calendar_id == calendar_id,
                CalendarEvent.google_event_id.in_(ids),
            )
            .all()
        )
        return {row.google_event_id: row for row in rows}

    def create_linked(
        self,
        user_id: int,
        calendar_id: str,
        google_event_id: str,
        etag: Optional[str],
        fields: Dict[str, Any],
    ) -> CalendarEvent:
        event = CalendarEvent(
            user_id=user_id,
            source=SOURCE_GOOGLE,
            google_event_id=google_event_id,
            google_calendar_id=calendar_id,
            google_etag=etag,
            **fields,
        )
        self.session.add(event)
        self.session.flush()
        return event

    def update_fields(
        self, event: CalendarEvent, fields: Dict[str, Any], etag: Optional[str] = None
    ) -> bool:
        """Apply ``fields``; returns True only if a value actually changed."""
        changed = False
        for name, value in fields.items():
            if getattr(event, name) != value:
                setattr(event, name, value)
                changed = True
        if etag and event.google_etag != etag:
            event.google_etag = etag
        self.session.flush()
        return changed

    def delete_linked(
        self, user_id: int, calendar_id: str, google_event_ids: Iterable[str]
    ) -> int:
        ids = list(set(google_event_ids))
        if not ids:
            return 0
        return (
            self.session.query(CalendarEvent)
            .filter(
                CalendarEvent.user_id == user_id,
                CalendarEvent.google_calendar_id == calendar_id,
                CalendarEvent.google_event_id.in_(ids),
            )
            .delete(synchronize_session=False)
        )

    def attach_remote(
        self,
        event: CalendarEvent,
        google_event_id: str,
        calendar_id: str,
        etag: Optional[str],
    ) -> None:
        event.google_event_id = google_event_id
        event.google_calendar_id = calendar_id
        event.google_etag = etag
        self.session.add(event)
        self.session.flush()

    def savepoint(self):
        return self.session.begin_nested()

    def commit(self) -> None:
        self.session.commit()
