"""
Tests for the inbound Google pull (CalendarSyncEngine).

Covers:
- window vs incremental list parameters
- idempotent re-pulls and no duplicate rows
- pagination and cursor handling
- cancelled and malformed items
- per-item failure isolation inside a batch
- sync token expiry fallback
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from datetime import datetime

import pytest

pytestmark = pytest.mark.integration

from conftest import all_day_item, cancelled_item, timed_item
from planner.core.utils.dates import utcnow
from planner.domains.calendar.errors import NotConnectedError, SyncError
from planner.domains.calendar.models import CalendarEvent, GoogleAccount, GoogleChannel
from planner.domains.calendar.services.event_store import SqlAlchemyEventStore
from planner.domains.calendar.services import sync_engine
from planner.domains.calendar.services.sync_engine import CalendarSyncEngine
from planner.extensions import db


# ==================== Helpers ====================


def _events_for(user_id):
    return (
        CalendarEvent.query.filter_by(user_id=user_id)
        .order_by(CalendarEvent.google_event_id)
        .all()
    )


class MemoryStore:
    """Thread-safe in-memory store; good ids wait for a second writer to arrive."""

    def __init__(self, fail_ids=(), rendezvous=2):
        self.fail_ids = set(fail_ids)
        self.barrier = threading.Barrier(rendezvous, timeout=5)
        self.rows = {}
        self.threads = set()
        self.commits = 0
        self._lock = threading.Lock()

    def find_linked(self, user_id, calendar_id, google_event_ids):
        with self._lock:
            keys = [(user_id, calendar_id, i) for i in google_event_ids]
            return {key[2]: self.rows[key] for key in keys if key in self.rows}

    def create_linked(self, user_id, calendar_id, google_event_id, etag, fields):
        with self._lock:
            self.threads.add(threading.current_thread().name)
        if google_event_id in self.fail_ids:
            raise RuntimeError("simulated write failure")
        self.barrier.wait()
        row = CalendarEvent(user_id=user_id, google_event_id=google_event_id, google_etag=etag, **fields)
        with self._lock:
            self.rows[(user_id, calendar_id, google_event_id)] = row
        return row

    def update_fields(self, event, fields, etag=None):
        return False

    def delete_linked(self, user_id, calendar_id, google_event_ids):
        return 0

    def savepoint(self):
        return nullcontext()

    def commit(self):
        with self._lock:
            self.commits += 1


class CountingStore(SqlAlchemyEventStore):
    """Real store that counts commits and can be told to fail on given ids."""

    def __init__(self, fail_ids=()):
        super().__init__()
        self.fail_ids = set(fail_ids)
        self.commits = 0

    def create_linked(self, user_id, calendar_id, google_event_id, etag, fields):
        if google_event_id in self.fail_ids:
            raise RuntimeError("simulated write failure")
        return super().create_linked(user_id, calendar_id, google_event_id, etag, fields)

    def commit(self):
        self.commits += 1
        super().commit()


@pytest.fixture
def channel(user):
    row = GoogleChannel(
        user_id=user.id,
        calendar_id="primary",
        channel_id="channel-1",
        resource_id="resource-1",
        sync_token="cursor-0",
    )
    db.session.add(row)
    db.session.commit()
    return row


# ==================== Mode selection ====================


class TestListParameters:
    def test_window_mode_without_cursor(self, user, google_account, fake_google):
        result = CalendarSyncEngine().pull_changes(user.id, "primary")

        call = fake_google.list_calls[0]
        assert call["sync_token"] is None
        assert call["time_min"] is not None and call["time_min"].endswith("Z")
        assert call["order_by"] == "updated"
        assert call["single_events"] is True
        assert call["show_deleted"] is True
        assert call["max_results"] == 2500
        assert result.used_sync_token is False

    def test_window_honours_requested_days(self, user, google_account, fake_google):
        CalendarSyncEngine().pull_changes(user.id, "primary", window_days=30)

        time_min = datetime.fromisoformat(fake_google.list_calls[0]["time_min"][:-1])
        age = utcnow() - time_min
        assert 29 <= age.days <= 30

    def test_incremental_mode_with_cursor(self, user, google_account, fake_google):
        fake_google.set_feed([[]], key="cursor-0", next_token="cursor-1")

        result = CalendarSyncEngine().pull_changes(user.id, "primary", cursor="cursor-0")

        call = fake_google.list_calls[0]
        assert call["sync_token"] == "cursor-0"
        assert call["time_min"] is None
        assert call["order_by"] is None
        assert result.used_sync_token is True
        assert result.next_cursor == "cursor-1"

    def test_force_full_ignores_cursor(self, user, google_account, fake_google):
        CalendarSyncEngine().pull_changes(user.id, "primary", cursor="cursor-0", force_full=True)

        assert fake_google.list_calls[0]["sync_token"] is None
        assert fake_google.list_calls[0]["time_min"] is not None

    def test_requires_connected_account(self, user, fake_google):
        with pytest.raises(NotConnectedError):
            CalendarSyncEngine().pull_changes(user.id, "primary")
        assert fake_google.list_calls == []

    def test_remote_errors_propagate(self, user, google_account, monkeypatch, fake_google):
        def boom(*args, **kwargs):
            raise SyncError("Google API GET returned 500", status_code=500)

        monkeypatch.setattr(fake_google, "list_events", boom)
        with pytest.raises(SyncError):
            CalendarSyncEngine().pull_changes(user.id, "primary")


# ==================== Upserts ====================


class TestUpserts:
    def test_creates_linked_events(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z", summary="Standup"),
            timed_item("evt-2", "2025-12-01T15:00:00+02:00", "2025-12-01T16:30:00+02:00"),
        ]])

        result = CalendarSyncEngine().pull_changes(user.id, "primary")

        assert (result.created, result.updated, result.failed) == (2, 0, 0)
        first, second = _events_for(user.id)
        assert first.title == "Standup"
        assert first.source == "sync_google"
        assert first.google_calendar_id == "primary"
        assert first.google_etag == '"evt-1-etag"'
        assert first.start_time == datetime(2025, 12, 1, 9, 0)
        # Offsets are normalized to naive UTC
        assert second.start_time == datetime(2025, 12, 1, 13, 0)
        assert second.end_time == datetime(2025, 12, 1, 14, 30)

    def test_repeat_pull_is_idempotent(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z"),
            all_day_item("evt-2", "2025-12-24", "2025-12-26"),
        ]])
        engine = CalendarSyncEngine()

        engine.pull_changes(user.id, "primary")
        snapshot = [(e.title, e.start_time, e.end_time, e.all_day) for e in _events_for(user.id)]
        again = engine.pull_changes(user.id, "primary")

        assert (again.created, again.updated, again.deleted) == (0, 0, 0)
        assert [(e.title, e.start_time, e.end_time, e.all_day) for e in _events_for(user.id)] == snapshot
        assert len(_events_for(user.id)) == 2

    def test_changed_remote_fields_update_existing_row(self, user, google_account, fake_google):
        fake_google.set_feed([[timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")]])
        engine = CalendarSyncEngine()
        engine.pull_changes(user.id, "primary")
        original_id = _events_for(user.id)[0].id

        fake_google.set_feed([[
            timed_item(
                "evt-1",
                "2025-12-01T11:00:00Z",
                "2025-12-01T12:00:00Z",
                summary="Moved",
                location="Room 4",
                etag='"evt-1-etag-2"',
            )
        ]])
        result = engine.pull_changes(user.id, "primary")

        assert (result.created, result.updated) == (0, 1)
        event = _events_for(user.id)[0]
        assert event.id == original_id
        assert event.title == "Moved"
        assert event.location == "Room 4"
        assert event.start_time == datetime(2025, 12, 1, 11, 0)
        assert event.google_etag == '"evt-1-etag-2"'

    def test_same_remote_id_in_one_page_creates_one_row(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z", summary="Old"),
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z", summary="New"),
        ]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        events = _events_for(user.id)
        assert len(events) == 1
        assert events[0].title == "New"

    def test_same_remote_id_in_two_calendars_is_two_rows(self, user, google_account, fake_google):
        fake_google.set_feed([[timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")]])
        engine = CalendarSyncEngine()

        engine.pull_changes(user.id, "primary")
        engine.pull_changes(user.id, "team@group.calendar.google.com")

        calendars = sorted(e.google_calendar_id for e in _events_for(user.id))
        assert calendars == ["primary", "team@group.calendar.google.com"]

    def test_untitled_and_recurring_instances(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item(
                "evt-1_20251201T090000Z",
                "2025-12-01T09:00:00Z",
                "2025-12-01T10:00:00Z",
                summary="   ",
                recurringEventId="evt-1",
            )
        ]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        event = _events_for(user.id)[0]
        assert event.title == "Untitled event"
        assert event.is_recurring is True

    def test_marks_last_sync(self, user, google_account, fake_google):
        assert google_account.last_sync_at is None
        CalendarSyncEngine().pull_changes(user.id, "primary")
        assert google_account.last_sync_at is not None


# ==================== All-day mapping ====================


class TestAllDay:
    def test_single_day_event(self, user, google_account, fake_google):
        fake_google.set_feed([[all_day_item("hol-1", "2025-12-25", "2025-12-26")]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        event = _events_for(user.id)[0]
        assert event.all_day is True
        assert event.start_time == datetime(2025, 12, 25, 12, 0)
        assert event.end_time == datetime(2025, 12, 25, 12, 0)

    def test_multi_day_event_end_is_inclusive(self, user, google_account, fake_google):
        fake_google.set_feed([[all_day_item("trip-1", "2025-12-27", "2025-12-30")]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        event = _events_for(user.id)[0]
        assert event.start_time == datetime(2025, 12, 27, 12, 0)
        assert event.end_time == datetime(2025, 12, 29, 12, 0)

    def test_degenerate_end_is_clamped_to_start(self, user, google_account, fake_google):
        fake_google.set_feed([[all_day_item("odd-1", "2025-12-25", "2025-12-25")]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        event = _events_for(user.id)[0]
        assert event.end_time == event.start_time


# ==================== Pagination ====================


class TestPagination:
    def test_follows_every_page(self, user, google_account, fake_google, channel):
        fake_google.set_feed(
            [
                [timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")],
                [timed_item("evt-2", "2025-12-02T09:00:00Z", "2025-12-02T10:00:00Z")],
                [timed_item("evt-3", "2025-12-03T09:00:00Z", "2025-12-03T10:00:00Z")],
            ],
            next_token="cursor-after-3-pages",
        )

        result = CalendarSyncEngine().pull_changes(user.id, "primary", channel_id="channel-1")

        assert result.pages == 3
        assert result.total_fetched == 3
        assert result.created == 3
        assert [c["page_token"] for c in fake_google.list_calls] == [None, "1", "2"]
        assert result.next_cursor == "cursor-after-3-pages"
        assert GoogleChannel.query.filter_by(channel_id="channel-1").one().sync_token == (
            "cursor-after-3-pages"
        )

    def test_empty_feed_is_not_an_error(self, user, google_account, fake_google):
        result = CalendarSyncEngine().pull_changes(user.id, "primary")

        assert result.total_fetched == 0
        assert (result.created, result.updated, result.deleted) == (0, 0, 0)
        assert result.next_cursor == "sync-token-1"

    def test_cursor_without_channel_is_dropped_with_warning(
        self, user, google_account, fake_google, caplog
    ):
        caplog.set_level(logging.WARNING)
        CalendarSyncEngine().pull_changes(user.id, "primary")

        assert "no channel to store it" in caplog.text
        assert GoogleChannel.query.count() == 0

    def test_missing_next_cursor_is_logged(self, user, google_account, fake_google, caplog):
        fake_google.set_feed([[]], key="cursor-0", next_token=None)
        caplog.set_level(logging.WARNING)

        result = CalendarSyncEngine().pull_changes(user.id, "primary", cursor="cursor-0")

        assert result.next_cursor is None
        assert "No next sync token" in caplog.text

    def test_injected_logger_receives_progress(self, user, google_account, fake_google, caplog):
        log = logging.getLogger("tests.sync")
        caplog.set_level(logging.INFO, logger="tests.sync")

        CalendarSyncEngine(log=log).pull_changes(user.id, "primary")

        assert any(r.name == "tests.sync" and "pull complete" in r.getMessage() for r in caplog.records)


# ==================== Cancelled and malformed items ====================


class TestCancelledAndMalformed:
    def test_cancelled_item_deletes_local_row(self, user, google_account, fake_google):
        fake_google.set_feed([[timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")]])
        engine = CalendarSyncEngine()
        engine.pull_changes(user.id, "primary")

        fake_google.set_feed([[cancelled_item("evt-1")]])
        result = engine.pull_changes(user.id, "primary")

        assert result.deleted == 1
        assert _events_for(user.id) == []

    def test_cancelled_item_without_local_row(self, user, google_account, fake_google):
        fake_google.set_feed([[cancelled_item("never-seen")]])

        result = CalendarSyncEngine().pull_changes(user.id, "primary")

        assert result.deleted == 0
        assert result.failed == 0

    def test_cancelled_delete_is_scoped_to_owner_and_calendar(
        self, user, other_user, google_account, fake_google
    ):
        foreign = CalendarEvent(
            user_id=other_user.id,
            title="Someone else's",
            start_time=datetime(2025, 12, 1, 9),
            end_time=datetime(2025, 12, 1, 10),
            source="sync_google",
            google_event_id="evt-1",
            google_calendar_id="primary",
        )
        other_calendar = CalendarEvent(
            user_id=user.id,
            title="Other calendar",
            start_time=datetime(2025, 12, 1, 9),
            end_time=datetime(2025, 12, 1, 10),
            source="sync_google",
            google_event_id="evt-1",
            google_calendar_id="team@group.calendar.google.com",
        )
        db.session.add_all([foreign, other_calendar])
        db.session.commit()
        fake_google.set_feed([[cancelled_item("evt-1")]])

        CalendarSyncEngine().pull_changes(user.id, "primary")

        remaining = {e.id for e in CalendarEvent.query.filter(CalendarEvent.google_event_id == "evt-1")}
        assert remaining == {foreign.id, other_calendar.id}

    def test_malformed_items_are_skipped(self, user, google_account, fake_google):
        fake_google.set_feed([[
            {"id": "no-start", "status": "confirmed", "end": {"dateTime": "2025-12-01T10:00:00Z"}},
            {"id": "no-end", "status": "confirmed", "start": {"dateTime": "2025-12-01T10:00:00Z"}},
            {"id": "garbage", "start": {"dateTime": "yesterday"}, "end": {"dateTime": "today"}},
            {"summary": "no id at all"},
            timed_item("good", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z"),
        ]])

        result = CalendarSyncEngine().pull_changes(user.id, "primary")

        assert result.skipped == 4
        assert result.created == 1
        assert [e.google_event_id for e in _events_for(user.id)] == ["good"]


# ==================== Batching and isolation ====================


class TestBatching:
    def test_one_failure_does_not_block_the_batch(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z"),
            timed_item("bad", "2025-12-02T09:00:00Z", "2025-12-02T10:00:00Z"),
            timed_item("evt-3", "2025-12-03T09:00:00Z", "2025-12-03T10:00:00Z"),
        ]])
        store = CountingStore(fail_ids={"bad"})

        result = CalendarSyncEngine(store=store).pull_changes(user.id, "primary")

        assert result.created == 2
        assert result.failed == 1
        assert result.failures == ["bad"]
        assert [e.google_event_id for e in _events_for(user.id)] == ["evt-1", "evt-3"]

    def test_batches_commit_as_units(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item(f"evt-{n}", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")
            for n in range(5)
        ]])
        store = CountingStore()

        result = CalendarSyncEngine(store=store, batch_size=2).pull_changes(user.id, "primary")

        assert result.created == 5
        # three upsert batches plus the final bookkeeping commit
        assert store.commits == 4


# ==================== Sync token expiry ====================


class TestExpiredCursor:
    def test_expired_cursor_restarts_in_window_mode(self, user, google_account, fake_google, channel):
        fake_google.expired_tokens.add("cursor-0")
        fake_google.set_feed(
            [[timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")]],
            next_token="fresh-cursor",
        )

        result = CalendarSyncEngine().pull_changes(
            user.id, "primary", cursor="cursor-0", channel_id="channel-1"
        )

        assert [c["sync_token"] for c in fake_google.list_calls] == ["cursor-0", None]
        assert fake_google.list_calls[1]["time_min"] is not None
        assert result.used_sync_token is False
        assert result.created == 1
        assert GoogleChannel.query.filter_by(channel_id="channel-1").one().sync_token == "fresh-cursor"


# ==================== Concurrent batches ====================


class TestConcurrentBatches:
    def test_batch_items_upsert_in_parallel(self, user, google_account, fake_google):
        fake_google.set_feed([[
            timed_item("evt-1", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z"),
            timed_item("bad", "2025-12-02T09:00:00Z", "2025-12-02T10:00:00Z"),
            timed_item("evt-3", "2025-12-03T09:00:00Z", "2025-12-03T10:00:00Z"),
        ]])
        store = MemoryStore(fail_ids={"bad"})

        # The two good writers block on a shared barrier, so a serial run would time out
        result = CalendarSyncEngine(store=store, store_factory=lambda: store, workers=3).pull_changes(
            user.id, "primary"
        )

        assert result.created == 2
        assert result.failed == 1
        assert result.failures == ["bad"]
        assert sorted(key[2] for key in store.rows) == ["evt-1", "evt-3"]
        assert all(name.startswith("google-sync") for name in store.threads)

    def test_workers_are_bounded_by_batch_size(self, user, google_account, fake_google, monkeypatch):
        seen = []
        real_executor = sync_engine.ThreadPoolExecutor

        def recording_executor(max_workers, **kwargs):
            seen.append(max_workers)
            return real_executor(max_workers=max_workers, **kwargs)

        monkeypatch.setattr(sync_engine, "ThreadPoolExecutor", recording_executor)
        fake_google.set_feed([[
            timed_item(f"evt-{n}", "2025-12-01T09:00:00Z", "2025-12-01T10:00:00Z")
            for n in range(4)
        ]])
        store = MemoryStore()

        result = CalendarSyncEngine(
            store=store, store_factory=lambda: store, workers=8, batch_size=2
        ).pull_changes(user.id, "primary")

        assert result.created == 4
        assert seen == [2, 2]
        # one commit per item plus the final bookkeeping commit
        assert store.commits == 5


# ==================== Channel locks ====================


class TestChannelLocks:
    def test_lock_entry_is_released_after_pull(self, user, google_account, fake_google, channel):
        fake_google.set_feed([[]], next_token="cursor-1")

        CalendarSyncEngine().pull_changes(user.id, "primary", channel_id="channel-1")

        assert "channel-1" not in sync_engine._channel_locks
        assert "channel-1" not in sync_engine._channel_lock_users

    def test_lock_entry_is_released_after_failed_pull(self, user, google_account, fake_google, monkeypatch):
        def boom(*args, **kwargs):
            raise SyncError("Google API GET returned 500", status_code=500)

        monkeypatch.setattr(fake_google, "list_events", boom)

        with pytest.raises(SyncError):
            CalendarSyncEngine().pull_changes(user.id, "primary", channel_id="channel-9")

        assert "channel-9" not in sync_engine._channel_locks

    def test_waiting_pull_keeps_the_shared_lock(self):
        holder_inside = threading.Event()
        release_holder = threading.Event()
        seen = []

        def holder():
            with sync_engine._channel_lock("channel-x"):
                seen.append(sync_engine._channel_locks["channel-x"])
                holder_inside.set()
                release_holder.wait(5)

        def waiter():
            with sync_engine._channel_lock("channel-x"):
                seen.append(sync_engine._channel_locks["channel-x"])

        first = threading.Thread(target=holder)
        first.start()
        holder_inside.wait(5)
        second = threading.Thread(target=waiter)
        second.start()
        for _ in range(500):
            if sync_engine._channel_lock_users.get("channel-x") == 2:
                break
            time.sleep(0.01)
        release_holder.set()
        first.join(5)
        second.join(5)

        assert len(seen) == 2
        assert seen[0] is seen[1]
        assert "channel-x" not in sync_engine._channel_locks


class TestRecordedErrors:
    def test_failed_pull_records_error_on_account(self, user, google_account, fake_google, monkeypatch):
        def boom(*args, **kwargs):
            raise SyncError("Google API GET returned 500", status_code=500)

        monkeypatch.setattr(fake_google, "list_events", boom)

        with pytest.raises(SyncError):
            CalendarSyncEngine().pull_changes(user.id, "primary")

        assert GoogleAccount.query.filter_by(user_id=user.id).one().last_error == (
            "sync_failed: Google API GET returned 500"
        )
