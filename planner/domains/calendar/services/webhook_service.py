"""Google push notification handling."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Mapping, Optional

from flask import Flask, current_app

from planner.domains.calendar.services.channel_registry import ChannelRegistry
from planner.domains.calendar.services.sync_engine import CalendarSyncEngine, SyncResult

logger = logging.getLogger(__name__)

HEADER_CHANNEL_ID = "X-Goog-Channel-ID"
HEADER_RESOURCE_ID = "X-Goog-Resource-ID"
HEADER_RESOURCE_STATE = "X-Goog-Resource-State"

_executor: Optional[ThreadPoolExecutor] = None


def _get_executor(app: Flask) -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=app.config.get("GOOGLE_WEBHOOK_WORKERS", 4),
            thread_name_prefix="google-webhook",
        )
    return _executor


def shutdown_executor(wait: bool = True) -> None:
    """Drain queued webhook pulls; called from the server's worker exit hook."""
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=wait)
        _executor = None


def handle_push_notification(
    headers: Mapping[str, str],
    channels: Optional[ChannelRegistry] = None,
    engine_factory: Optional[Callable[[], CalendarSyncEngine]] = None,
    log: Optional[logging.Logger] = None,
) -> Optional[SyncResult]:
    """
    Pull changes for the channel a notification refers to.

    Missing headers and unknown channels are logged no-ops. The initial
    ``sync`` resource state is handled like any other notification. Errors
    are logged and swallowed; Google has already been acknowledged.
    """
    log = log or logger
    channel_id = headers.get(HEADER_CHANNEL_ID)
    resource_id = headers.get(HEADER_RESOURCE_ID)
    state = headers.get(HEADER_RESOURCE_STATE)

    log.info(f"Google webhook received: channel={channel_id} resource={resource_id} state={state}")
    if not channel_id or not resource_id:
        log.warning("Google webhook missing channel or resource id; ignoring")
        return None

    channels = channels or ChannelRegistry()
    channel = channels.get(channel_id)
    if channel is None:
        log.warning(f"Google webhook for unknown channel {channel_id}; ignoring")
        return None

    try:
        engine = engine_factory() if engine_factory else CalendarSyncEngine(channels=channels, log=log)
        result = engine.pull_changes(
            channel.user_id,
            channel.calendar_id,
            cursor=channel.sync_token,
            channel_id=channel.channel_id,
        )
    except Exception:
        log.exception(f"Google webhook sync failed for channel {channel_id}")
        return None

    log.info(f"Google webhook sync for channel {channel_id}: {result.as_dict()}")
    return result


def _run_in_app_context(app: Flask, headers: Mapping[str, str]) -> None:
    with app.app_context():
        handle_push_notification(headers)


def dispatch_push_notification(headers: Mapping[str, str]) -> Optional[Future]:
    """
    Process a notification after the HTTP ack.

    Runs on the webhook executor inside a fresh app context, or inline when
    ``GOOGLE_WEBHOOK_ASYNC`` is off.
    """
    # Copy out of the request before it goes away
    snapshot = {
        name: headers.get(name)
        for name in (HEADER_CHANNEL_ID, HEADER_RESOURCE_ID, HEADER_RESOURCE_STATE)
        if headers.get(name) is not None
    }
    app = current_app._get_current_object()

    if not app.config.get("GOOGLE_WEBHOOK_ASYNC", True):
        handle_push_notification(snapshot)
        return None

    return _get_executor(app).submit(_run_in_app_context, app, snapshot)
