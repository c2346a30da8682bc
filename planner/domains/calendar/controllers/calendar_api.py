"""Local calendar event API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from pydantic import ValidationError

from planner.core.utils.decorators import csrf_protected, require_roles
from planner.domains.calendar.mappers import event_to_dict
from planner.domains.calendar.schemas import (
    CalendarEventCreate,
    CalendarEventListParams,
    CalendarEventUpdate,
)
from planner.domains.calendar.services import (
    create_calendar_event,
    delete_calendar_event,
    get_calendar_event,
    list_calendar_events,
    update_calendar_event,
)
from planner.extensions import limiter

calendar_api_bp = Blueprint("calendar_api", __name__)

_CLIENT_ERRORS = {"invalid_title", "title_too_long", "invalid_time_range"}


def _value_error_response(exc: ValueError):
    code = str(exc)
    if code == "not_found":
        return jsonify({"ok": False, "error": "not_found"}), 404
    if code in _CLIENT_ERRORS:
        return jsonify({"ok": False, "error": code}), 400
    return jsonify({"ok": False, "error": "validation_error"}), 400


@calendar_api_bp.get("/events")
@jwt_required()
@limiter.limit("240/minute")
def list_events():
    """
    List calendar events with optional date range filter.

    Query Parameters:
    - start_date: ISO datetime (optional)
    - end_date: ISO datetime (optional)
    - source: 'manual' or 'sync_google' (optional)
    - limit: max results (default 50, max 500)
    - offset: pagination offset (default 0)
    """
    user_id = int(get_jwt_identity())

    try:
        params = CalendarEventListParams.model_validate(request.args.to_dict())
    except ValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    events = list_calendar_events(
        user_id=user_id,
        start_date=params.start_date,
        end_date=params.end_date,
        source=params.source,
        limit=params.limit,
        offset=params.offset,
    )

    return jsonify({"ok": True, "events": [event_to_dict(e) for e in events]}), 200


@calendar_api_bp.get("/events/<int:event_id>")
@jwt_required()
@limiter.limit("240/minute")
def get_event(event_id: int):
    user_id = int(get_jwt_identity())

    event = get_calendar_event(user_id, event_id)
    if not event:
        return jsonify({"ok": False, "error": "not_found"}), 404

    return jsonify({"ok": True, "event": event_to_dict(event)}), 200


@calendar_api_bp.post("/events")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("120/minute")
def create_event():
    """
    Create a new calendar event and push it to Google when linked.

    Request Body:
    {
      "title": "Lunch with Sam",
      "start_time": "2025-12-07T12:00:00Z",
      "end_time": "2025-12-07T13:00:00Z",
      "description": "Discuss project plans",
      "location": "Cafe XYZ",
      "all_day": false
    }
    """
    user_id = int(get_jwt_identity())
    payload = request.get_json(silent=True) or {}

    try:
        data = CalendarEventCreate.model_validate(payload)
    except ValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    try:
        event = create_calendar_event(
            user_id=user_id,
            title=data.title,
            start_time=data.start_time,
            end_time=data.end_time,
            description=data.description,
            location=data.location,
            all_day=data.all_day,
            color=data.color,
            recurrence_rule=data.recurrence_rule,
        )
    except ValueError as exc:
        return _value_error_response(exc)

    return jsonify({"ok": True, "event": event_to_dict(event)}), 201


@calendar_api_bp.patch("/events/<int:event_id>")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("120/minute")
def update_event(event_id: int):
    """Update an existing calendar event."""
    user_id = int(get_jwt_identity())
    payload = request.get_json(silent=True) or {}

    try:
        data = CalendarEventUpdate.model_validate(payload)
    except ValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    try:
        event = update_calendar_event(
            user_id=user_id,
            event_id=event_id,
            title=data.title,
            description=data.description,
            start_time=data.start_time,
            end_time=data.end_time,
            all_day=data.all_day,
            location=data.location,
            color=data.color,
        )
    except ValueError as exc:
        return _value_error_response(exc)

    return jsonify({"ok": True, "event": event_to_dict(event)}), 200


@calendar_api_bp.delete("/events/<int:event_id>")
@jwt_required()
@csrf_protected
@require_roles({"calendar:write"})
@limiter.limit("60/minute")
def delete_event(event_id: int):
    """Delete a calendar event."""
    user_id = int(get_jwt_identity())

    try:
        delete_calendar_event(user_id, event_id)
    except ValueError as exc:
        return _value_error_response(exc)

    return jsonify({"ok": True}), 200
