"""Inbound reconciliation: pull Google Calendar changes into the local store."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager, nullcontext
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Optional

from flask import current_app

from planner.core.utils.dates import format_rfc3339, utcnow
from planner.domains.calendar.errors import (
    GoogleCalendarError,
    NotConnectedError,
    SyncTokenExpiredError,
)
from planner.domains.calendar.mappers import (
    MalformedRemoteEvent,
    RemoteEvent,
    from_google_item,
    is_cancelled,
)
from planner.domains.calendar.models.calendar_event import CalendarEvent
from planner.domains.calendar.models.google_account import GoogleAccount
from planner.domains.calendar.services import google_oauth
from planner.domains.calendar.services.channel_registry import ChannelRegistry
from planner.domains.calendar.services.event_store import EventStore, SqlAlchemyEventStore
from planner.domains.calendar.services.google_client import GoogleCalendarClient

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90
DEFAULT_BATCH_SIZE = 20
DEFAULT_WORKERS = 4

ClientFactory = Callable[[GoogleAccount], GoogleCalendarClient]
StoreFactory = Callable[[], EventStore]

_channel_locks: Dict[str, Lock] = {}
_channel_lock_users: Dict[str, int] = {}
_channel_locks_guard = Lock()


@contextmanager
def _channel_lock(channel_id: str) -> Iterator[None]:
    """
    Serialize pulls that write the same channel cursor within this process.

    Entries live only while some pull holds or waits on them.
    """
    with _channel_locks_guard:
        lock = _channel_locks.setdefault(channel_id, Lock())
        _channel_lock_users[channel_id] = _channel_lock_users.get(channel_id, 0) + 1
    try:
        with lock:
            yield
    finally:
        with _channel_locks_guard:
            _channel_lock_users[channel_id] -= 1
            if not _channel_lock_users[channel_id]:
                del _channel_lock_users[channel_id]
                del _channel_locks[channel_id]


def _preview(token: Optional[str]) -> Optional[str]:
    return f"{token[:20]}..." if token else None


@dataclass
class SyncResult:
    """Counts from one pull; ``failures`` lists remote ids whose upsert failed."""

    next_cursor: Optional[str] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    total_fetched: int = 0
    pages: int = 0
    used_sync_token: bool = False
    failures: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("next_cursor")
        data["cursor_advanced"] = self.next_cursor is not None
        return data


class CalendarSyncEngine:
    """
    Pulls remote deltas for one (user, calendar) and applies them locally.

    Collaborators are injectable so the engine can run against fakes:
    ``store`` for local events, ``channels`` for cursor persistence,
    ``client_factory`` to build an authorized Google client for an account,
    and ``log`` for observability.

    With ``workers`` above one, each batch is upserted by a bounded thread
    pool; every worker gets its own store from ``store_factory`` inside a
    fresh app context, so no session is shared across threads.
    """

    def __init__(
        self,
        store: Optional[EventStore] = None,
        channels: Optional[ChannelRegistry] = None,
        client_factory: Optional[ClientFactory] = None,
        log: Optional[logging.Logger] = None,
        batch_size: Optional[int] = None,
        default_window_days: Optional[int] = None,
        workers: Optional[int] = None,
        store_factory: Optional[StoreFactory] = None,
    ) -> None:
        self.store = store or SqlAlchemyEventStore()
        self.store_factory = store_factory or SqlAlchemyEventStore
        self.workers = workers or current_app.config.get("GOOGLE_SYNC_WORKERS", DEFAULT_WORKERS)
        self.channels = channels or ChannelRegistry()
        self.client_factory = client_factory or google_oauth.build_client
        self.log = log or logger
        self.batch_size = batch_size or current_app.config.get(
            "GOOGLE_SYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE
        )
        self.default_window_days = default_window_days or current_app.config.get(
            "GOOGLE_SYNC_WINDOW_DAYS", DEFAULT_WINDOW_DAYS
        )

    def pull_changes(
        self,
        user_id: int,
        calendar_id: str,
        cursor: Optional[str] = None,
        force_full: bool = False,
        window_days: Optional[int] = None,
        channel_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Pull Google changes for ``calendar_id`` into the user's local events.

        Incremental when a cursor is given and ``force_full`` is false;
        otherwise lists everything updated within the last ``window_days``.
        A new cursor is persisted on ``channel_id`` when one is given.

        Raises:
            NotConnectedError: the user has no usable Google credentials
            SyncError: a page fetch failed
        """
        account = google_oauth.get_valid_account(user_id)
        if not account:
            self.log.error(f"Google account not found for user {user_id}")
            raise NotConnectedError("No valid Google Calendar connection")

        client = self.client_factory(account)
        lock = _channel_lock(channel_id) if channel_id else nullcontext()

        with lock:
            try:
                try:
                    result = self._pull(client, user_id, calendar_id, cursor, force_full, window_days)
                except SyncTokenExpiredError:
                    self.log.info(
                        f"Sync token expired for user {user_id} calendar {calendar_id}, performing full sync"
                    )
                    result = self._pull(client, user_id, calendar_id, None, True, None)
            except GoogleCalendarError as e:
                account.last_error = f"sync_failed: {e}"[:512]
                self.store.commit()
                raise

            self._persist_cursor(result, cursor, channel_id)

        account.last_sync_at = utcnow()
        account.last_error = None
        self.store.commit()
        return result

    def _pull(
        self,
        client: GoogleCalendarClient,
        user_id: int,
        calendar_id: str,
        cursor: Optional[str],
        force_full: bool,
        window_days: Optional[int],
    ) -> SyncResult:
        started = time.perf_counter()
        incremental = bool(cursor) and not force_full
        window = window_days or self.default_window_days
        time_min = None if incremental else format_rfc3339(utcnow() - timedelta(days=window))

        self.log.info(
            f"Starting Google pull for user {user_id} calendar {calendar_id}: "
            f"incremental={incremental} cursor={_preview(cursor)} "
            f"window_days={None if incremental else window}"
        )

        result = SyncResult(used_sync_token=incremental)
        page_token: Optional[str] = None

        while True:
            result.pages += 1
            page = client.list_events(
                calendar_id,
                sync_token=cursor if incremental else None,
                time_min=time_min,
                page_token=page_token,
                order_by=None if incremental else "updated",
            )
            items = page.get("items") or []
            result.total_fetched += len(items)
            self.log.debug(
                f"Page {result.pages}: fetched {len(items)} events "
                f"(next_page={bool(page.get('nextPageToken'))}, "
                f"next_sync_token={bool(page.get('nextSyncToken'))})"
            )

            if page.get("nextSyncToken"):
                result.next_cursor = page["nextSyncToken"]

            self._apply_page(user_id, calendar_id, items, result)

            page_token = page.get("nextPageToken")
            if not page_token:
                break

        elapsed = time.perf_counter() - started
        self.log.info(
            f"Google pull complete for user {user_id} calendar {calendar_id}: "
            f"fetched={result.total_fetched} pages={result.pages} created={result.created} "
            f"updated={result.updated} deleted={result.deleted} skipped={result.skipped} "
            f"failed={result.failed} next_cursor={_preview(result.next_cursor)} "
            f"duration={elapsed:.2f}s"
        )
        return result

    def _apply_page(
        self,
        user_id: int,
        calendar_id: str,
        items: List[Dict[str, Any]],
        result: SyncResult,
    ) -> None:
        cancelled_ids: List[str] = []
        active: Dict[str, RemoteEvent] = {}

        for item in items:
            if not item.get("id"):
                self.log.warning(f"Skipping item without ID: {item.get('summary')!r}")
                result.skipped += 1
                continue

            if is_cancelled(item):
                cancelled_ids.append(item["id"])
                active.pop(item["id"], None)
                continue

            try:
                remote = from_google_item(item)
            except MalformedRemoteEvent as e:
                self.log.warning(f"Skipping Google event {item['id']}: {e}")
                result.skipped += 1
                continue
            # Later occurrences of the same id win
            active[remote.google_event_id] = remote

        if cancelled_ids:
            deleted = self.store.delete_linked(user_id, calendar_id, cancelled_ids)
            self.store.commit()
            result.deleted += deleted
            if deleted:
                self.log.info(f"Deleted {deleted} cancelled events")

        if not active:
            return

        remotes = list(active.values())
        if self.workers > 1:
            for start in range(0, len(remotes), self.batch_size):
                self._apply_batch_concurrently(
                    user_id, calendar_id, remotes[start : start + self.batch_size], result
                )
            return

        existing = self.store.find_linked(user_id, calendar_id, active.keys())
        for start in range(0, len(remotes), self.batch_size):
            self._apply_batch(user_id, calendar_id, remotes[start : start + self.batch_size], existing, result)

    def _upsert(
        self,
        store: EventStore,
        user_id: int,
        calendar_id: str,
        remote: RemoteEvent,
        existing: Dict[str, CalendarEvent],
    ) -> Optional[str]:
        """Create or update one linked row; returns "created", "updated" or None."""
        event = existing.get(remote.google_event_id)
        if event is not None:
            return "updated" if store.update_fields(event, remote.fields, etag=remote.etag) else None
        existing[remote.google_event_id] = store.create_linked(
            user_id,
            calendar_id,
            remote.google_event_id,
            remote.etag,
            remote.fields,
        )
        return "created"

    def _record(self, result: SyncResult, outcome: Optional[str]) -> None:
        if outcome == "created":
            result.created += 1
        elif outcome == "updated":
            result.updated += 1

    def _record_failure(self, result: SyncResult, remote: RemoteEvent, error: Exception) -> None:
        result.failed += 1
        result.failures.append(remote.google_event_id)
        self.log.error(
            f"Failed to upsert Google event {remote.google_event_id} "
            f"({remote.fields.get('title')!r}): {error}"
        )

    def _apply_batch(
        self,
        user_id: int,
        calendar_id: str,
        batch: List[RemoteEvent],
        existing: Dict[str, CalendarEvent],
        result: SyncResult,
    ) -> None:
        """Upsert a batch; each item in its own savepoint, one commit per batch."""
        for remote in batch:
            try:
                with self.store.savepoint():
                    outcome = self._upsert(self.store, user_id, calendar_id, remote, existing)
            except Exception as e:
                self._record_failure(result, remote, e)
                continue
            self._record(result, outcome)
        self.store.commit()

    def _apply_batch_concurrently(
        self,
        user_id: int,
        calendar_id: str,
        batch: List[RemoteEvent],
        result: SyncResult,
    ) -> None:
        """Upsert a batch on a bounded pool; each item commits on its own store."""
        app = current_app._get_current_object()
        max_workers = min(self.workers, len(batch))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="google-sync") as pool:
            futures = [
                (remote, pool.submit(self._upsert_isolated, app, user_id, calendar_id, remote))
                for remote in batch
            ]
            # Counters are only touched here, on the calling thread
            for remote, future in futures:
                try:
                    outcome = future.result()
                except Exception as e:
                    self._record_failure(result, remote, e)
                    continue
                self._record(result, outcome)

    def _upsert_isolated(
        self, app, user_id: int, calendar_id: str, remote: RemoteEvent
    ) -> Optional[str]:
        with app.app_context():
            store = self.store_factory()
            existing = store.find_linked(user_id, calendar_id, [remote.google_event_id])
            outcome = self._upsert(store, user_id, calendar_id, remote, existing)
            store.commit()
            return outcome

    def _persist_cursor(
        self,
        result: SyncResult,
        previous: Optional[str],
        channel_id: Optional[str],
    ) -> None:
        if result.next_cursor and channel_id:
            if self.channels.update_cursor(channel_id, result.next_cursor):
                self.log.info(f"Updated sync token on channel {channel_id}")
            else:
                self.log.warning(f"Channel {channel_id} vanished before its sync token could be stored")
        elif result.next_cursor:
            self.log.warning(
                f"Got next sync token {_preview(result.next_cursor)} but no channel to store it; "
                "the next pull cannot resume incrementally"
            )
        elif previous:
            self.log.warning("No next sync token received although one was presented")
