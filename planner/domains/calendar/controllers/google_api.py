"""Google Calendar integration API: OAuth, push channels and manual pulls."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, redirect, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from pydantic import ValidationError

from planner.core.utils.decorators import csrf_protected, require_roles
from planner.domains.calendar.errors import (
    ConfigurationError,
    GoogleCalendarError,
    NotConnectedError,
)
from planner.domains.calendar.schemas import WatchRequest
from planner.domains.calendar.services import google_oauth, google_sync_service
from planner.domains.calendar.services.subscription_service import ensure_watch
from planner.domains.calendar.services.webhook_service import dispatch_push_notification
from planner.extensions import limiter

logger = logging.getLogger(__name__)

google_api_bp = Blueprint("google_api", __name__)


def _google_error_response(exc: GoogleCalendarError, fallback: str):
    """Map service errors to the client-visible code without leaking details."""
    if isinstance(exc, NotConnectedError):
        return jsonify({"ok": False, "error": "not_connected"}), 400
    if isinstance(exc, ConfigurationError):
        return jsonify({"ok": False, "error": "webhook_not_configured"}), 500
    return jsonify({"ok": False, "error": fallback}), 502


def _frontend_redirect(query: str):
    base = (current_app.config.get("FRONTEND_URL") or "").rstrip("/")
    return redirect(f"{base}/settings?{query}")


# ==================== Push notifications ====================


@google_api_bp.post("/webhook")
@limiter.exempt
def webhook():
    """
    Google push notification endpoint.

    Always acknowledged with 200 so Google keeps the channel alive; the pull
    runs afterwards and its outcome is only logged.
    """
    try:
        dispatch_push_notification(request.headers)
    except Exception:
        logger.exception("Failed to dispatch Google webhook")
    return "", 200


# ==================== OAuth ====================


@google_api_bp.get("/auth")
@jwt_required()
def authorize():
    """Return the Google consent URL for the current user."""
    user_id = int(get_jwt_identity())
    try:
        auth_url = google_oauth.get_authorization_url(user_id)
    except ConfigurationError:
        return jsonify({"ok": False, "error": "oauth_not_configured"}), 500
    return jsonify({"ok": True, "authorization_url": auth_url}), 200


@google_api_bp.get("/callback")
def oauth_callback():
    """
    Handle Google OAuth callback.

    The signed ``state`` identifies the user. Redirects to the frontend
    settings page when FRONTEND_URL is set, otherwise answers with JSON.
    """
    code = request.args.get("code")
    state = request.args.get("state")
    error = request.args.get("error")
    json_mode = not current_app.config.get("FRONTEND_URL")

    def _fail(reason: str, status: int = 400):
        if json_mode:
            return jsonify({"ok": False, "error": reason}), status
        return _frontend_redirect(f"google=error&reason={reason}")

    if error:
        return _fail(error[:50])
    if not code or not state:
        return _fail("invalid_callback")

    try:
        user_id = google_oauth.read_state(state)
    except ValueError:
        return _fail("invalid_state")

    try:
        token_data = google_oauth.exchange_code_for_tokens(code)
        profile = google_oauth.fetch_google_profile(token_data["access_token"])
        account = google_oauth.save_google_account(user_id, token_data, profile)
    except ConfigurationError:
        return _fail("oauth_not_configured", 500)
    except GoogleCalendarError as e:
        logger.warning(f"Google OAuth callback failed for user {user_id}: {e}")
        return _fail("token_exchange_failed", 502)

    logger.info(f"Google Calendar connected for user {user_id} ({account.google_email})")
    if json_mode:
        return jsonify({"ok": True, "connected": True, "email": account.google_email}), 200
    return _frontend_redirect("google=connected")


@google_api_bp.get("/status")
@jwt_required()
def status():
    user_id = int(get_jwt_identity())
    return jsonify({"ok": True, **google_sync_service.get_sync_status(user_id)}), 200


@google_api_bp.get("/calendars")
@jwt_required()
@limiter.limit("30/minute")
def list_calendars():
    """List the calendars visible to the linked Google account."""
    user_id = int(get_jwt_identity())
    account = google_oauth.get_valid_account(user_id)
    if not account:
        return jsonify({"ok": False, "error": "not_connected"}), 400

    try:
        items = google_oauth.build_client(account).list_calendars()
    except GoogleCalendarError as e:
        logger.warning(f"Listing Google calendars failed for user {user_id}: {e}")
        return jsonify({"ok": False, "error": "calendars_failed"}), 502

    return jsonify({
        "ok": True,
        "selected_calendar_id": account.selected_calendar_id,
        "calendars": [
            {
                "id": item.get("id"),
                "summary": item.get("summary"),
                "primary": bool(item.get("primary")),
                "access_role": item.get("accessRole"),
            }
            for item in items
        ],
    }), 200


# ==================== Sync ====================


@google_api_bp.post("/watch")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def watch():
    """
    Start watching a Google calendar and select it for sync.

    Request Body:
    {
      "calendarId": "primary"
    }
    """
    user_id = int(get_jwt_identity())
    payload = request.get_json(silent=True) or {}

    try:
        data = WatchRequest.model_validate(payload)
    except ValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    try:
        channel = ensure_watch(user_id, data.calendar_id)
    except GoogleCalendarError as e:
        logger.error(f"Google watch failed for user {user_id} calendar {data.calendar_id}: {e}")
        return _google_error_response(e, "watch_failed")

    return jsonify({"ok": True, **channel}), 200


@google_api_bp.post("/sync-now")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def sync_now():
    """Manually pull the selected Google calendar."""
    user_id = int(get_jwt_identity())
    try:
        result = google_sync_service.sync_now(user_id)
    except GoogleCalendarError as e:
        logger.error(f"Manual Google sync failed for user {user_id}: {e}")
        return _google_error_response(e, "sync_failed")
    return jsonify({"ok": True, **result.as_dict()}), 200


@google_api_bp.post("/backfill")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("3/minute")
def backfill():
    """Forced full pull over the backfill window."""
    user_id = int(get_jwt_identity())
    try:
        result = google_sync_service.backfill(user_id)
    except GoogleCalendarError as e:
        logger.error(f"Google backfill failed for user {user_id}: {e}")
        return _google_error_response(e, "backfill_failed")
    return jsonify({"ok": True, **result.as_dict()}), 200


@google_api_bp.delete("/disconnect")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
def disconnect():
    """Stop push channels and forget the user's Google credentials."""
    user_id = int(get_jwt_identity())
    disconnected = google_sync_service.disconnect_google_calendar(user_id)
    return jsonify({"ok": True, "disconnected": disconnected}), 200
