"""Reusable decorators for controllers."""

from __future__ import annotations

from functools import wraps
from typing import Callable, Iterable, TypeVar

from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException

from planner.core.auth.csrf import validate_csrf_token

F = TypeVar("F", bound=Callable)

CSRF_HEADER = "X-CSRF-Token"


def require_roles(required_roles: Iterable[str]):
    """Enforce that the current JWT carries every role in ``required_roles``.

    The ``admin`` role passes every check.
    """
    required = set(required_roles)

    def decorator(fn: F) -> F:
        @wraps(fn)
        def wrapper(*args, **kwargs):  # type: ignore[misc]
            try:
                verify_jwt_in_request()
            except JWTExtendedException:
                return jsonify({"ok": False, "error": "unauthorized"}), 401
            roles = set((get_jwt() or {}).get("roles") or [])
            if "admin" not in roles and not required.issubset(roles):
                return jsonify({"ok": False, "error": "forbidden"}), 403
            return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def csrf_protected(fn: F) -> F:
    """Require the X-CSRF-Token header to match the token issued by GET /api/auth/csrf."""

    @wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[misc]
        if current_app.config.get("WTF_CSRF_ENABLED", True):
            if not validate_csrf_token(request.headers.get(CSRF_HEADER) or ""):
                return jsonify({"ok": False, "error": "csrf_failed"}), 403
        return fn(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
