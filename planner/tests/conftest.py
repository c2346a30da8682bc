import sys
from datetime import timedelta
from pathlib import Path

import os

import pytest
from sqlalchemy import event
from sqlalchemy.orm import scoped_session, sessionmaker
from alembic import command
from alembic.config import Config as AlembicConfig
from flask_jwt_extended import create_access_token

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from planner import create_app
from planner.core.users.models import User
from planner.core.utils.dates import utcnow
from planner.domains.calendar.errors import SyncTokenExpiredError
from planner.domains.calendar.models import GoogleAccount
from planner.domains.calendar.services import google_oauth
from planner.extensions import db


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")


def _alembic_config() -> AlembicConfig:
    cfg = AlembicConfig(str(ROOT / "planner" / "migrations" / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "planner" / "migrations"))
    cfg.set_main_option("planner_env", "testing")
    db_url = os.environ.get("TEST_DATABASE_URL") or "sqlite:///instance/test.db"
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def _enable_sqlite_savepoints(engine) -> None:
    """
    Let pysqlite honour SAVEPOINT so per-test rollback really discards writes.

    The driver otherwise manages BEGIN itself and a RELEASE can commit to disk.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session", autouse=True)
def migrated_db():
    """Apply migrations once per session to mirror production schema."""
    cfg = _alembic_config()
    command.upgrade(cfg, "head")
    yield
    try:
        command.downgrade(cfg, "base")
    except Exception:
        # Downgrade is optional for local/CI runs; ignore failures to avoid hiding test results.
        pass


@pytest.fixture()
def app(migrated_db):
    """
    Create a per-test app with an isolated database transaction.

    The session joins an outer connection transaction through a savepoint, so
    commits inside the code under test roll back when the test ends.
    """
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()

    if db.engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(db.engine)
    connection = db.engine.connect()
    transaction = connection.begin()

    session_factory = scoped_session(
        sessionmaker(
            bind=connection,
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        )
    )
    db.session = session_factory
    session = session_factory()

    try:
        # Seed a default user for FK-dependent tests
        if not session.query(User).filter_by(email="test@example.com").first():
            session.add(User(email="test@example.com", password_hash="test"))
            session.commit()

        yield app
    finally:
        session_factory.remove()
        transaction.rollback()
        connection.close()
        ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def user(app):
    user = User(email="sync-tester@example.com", password_hash="test", timezone="UTC")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def other_user(app):
    user = User(email="sync-tester-2@example.com", password_hash="test", timezone="UTC")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def google_account(user):
    account = GoogleAccount(
        user_id=user.id,
        access_token="ya29.test-access-token",
        refresh_token="1//test-refresh-token",
        expires_at=utcnow() + timedelta(hours=1),
        google_email="tester@gmail.com",
        selected_calendar_id="primary",
    )
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture()
def auth_headers(app, user):
    token = create_access_token(
        identity=str(user.id), additional_claims={"roles": ["calendar:write"]}
    )
    return {"Authorization": f"Bearer {token}"}


# ==================== Fake Google Calendar ====================


class FakeGoogleClient:
    """
    In-memory stand-in for GoogleCalendarClient.

    ``feeds`` maps a sync token (or ``None`` for window mode) to a list of
    pages, each a list of raw event items. The last page of a feed carries
    ``next_tokens[key]`` as its ``nextSyncToken``.
    """

    def __init__(self):
        self.feeds = {None: [[]]}
        self.next_tokens = {None: "sync-token-1"}
        self.expired_tokens = set()
        self.list_calls = []
        self.prime_page = {"items": [], "nextSyncToken": "primed-token"}
        self.prime_error = None

        self.inserted = []
        self.patched = []
        self.deleted = []
        self.insert_error = None
        self.patch_error = None
        self.delete_error = None
        self._next_remote_id = 1

        self.watch_calls = []
        self.watch_response = {"resourceId": "resource-1", "expiration": "1767225600000"}
        self.stopped = []
        self.calendars = [
            {"id": "primary", "summary": "tester@gmail.com", "primary": True, "accessRole": "owner"},
            {"id": "team@group.calendar.google.com", "summary": "Team", "accessRole": "reader"},
        ]

    def set_feed(self, pages, key=None, next_token="sync-token-1"):
        self.feeds[key] = pages
        self.next_tokens[key] = next_token

    def list_events(
        self,
        calendar_id,
        sync_token=None,
        time_min=None,
        page_token=None,
        show_deleted=True,
        single_events=True,
        order_by=None,
        max_results=2500,
    ):
        self.list_calls.append(
            {
                "calendar_id": calendar_id,
                "sync_token": sync_token,
                "time_min": time_min,
                "page_token": page_token,
                "show_deleted": show_deleted,
                "single_events": single_events,
                "order_by": order_by,
                "max_results": max_results,
            }
        )
        if max_results == 10:
            if self.prime_error:
                raise self.prime_error
            return dict(self.prime_page)
        if sync_token in self.expired_tokens:
            raise SyncTokenExpiredError("sync token expired", status_code=410)

        pages = self.feeds.get(sync_token, [[]])
        index = int(page_token) if page_token else 0
        page = {"items": list(pages[index])}
        if index + 1 < len(pages):
            page["nextPageToken"] = str(index + 1)
        elif self.next_tokens.get(sync_token):
            page["nextSyncToken"] = self.next_tokens[sync_token]
        return page

    def insert_event(self, calendar_id, body):
        if self.insert_error:
            raise self.insert_error
        remote_id = f"remote-{self._next_remote_id}"
        self._next_remote_id += 1
        self.inserted.append((calendar_id, body))
        return {"id": remote_id, "etag": f'"etag-{remote_id}"', **body}

    def patch_event(self, calendar_id, event_id, body):
        if self.patch_error:
            raise self.patch_error
        self.patched.append((calendar_id, event_id, body))
        return {"id": event_id, "etag": f'"etag-{event_id}-patched"', **body}

    def delete_event(self, calendar_id, event_id):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append((calendar_id, event_id))

    def watch_events(self, calendar_id, channel_id, address):
        self.watch_calls.append((calendar_id, channel_id, address))
        return dict(self.watch_response)

    def stop_channel(self, channel_id, resource_id):
        self.stopped.append((channel_id, resource_id))

    def list_calendars(self):
        return list(self.calendars)


@pytest.fixture()
def fake_google(monkeypatch):
    """Route every Google API call through a FakeGoogleClient."""
    fake = FakeGoogleClient()
    monkeypatch.setattr(google_oauth, "build_client", lambda account: fake)
    return fake


def timed_item(event_id, start, end, summary="Meeting", **extra):
    item = {
        "id": event_id,
        "status": "confirmed",
        "etag": f'"{event_id}-etag"',
        "summary": summary,
        "start": {"dateTime": start},
        "end": {"dateTime": end},
    }
    item.update(extra)
    return item


def all_day_item(event_id, start_date, end_date, summary="Holiday", **extra):
    item = {
        "id": event_id,
        "status": "confirmed",
        "etag": f'"{event_id}-etag"',
        "summary": summary,
        "start": {"date": start_date},
        "end": {"date": end_date},
    }
    item.update(extra)
    return item


def cancelled_item(event_id):
    return {"id": event_id, "status": "cancelled"}

