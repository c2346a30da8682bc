"""Auth helper endpoints for browser clients."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required

from planner.core.auth.csrf import generate_csrf_token
from planner.extensions import limiter

auth_bp = Blueprint("auth", __name__)


@auth_bp.get("/csrf")
@jwt_required()
@limiter.limit("60/minute")
def csrf_token():
    """
    Issue the CSRF token that write endpoints expect in ``X-CSRF-Token``.

    The token lives in the Flask session cookie, so clients must send that
    cookie back along with the header.
    """
    return jsonify({"ok": True, "csrf_token": generate_csrf_token()}), 200
