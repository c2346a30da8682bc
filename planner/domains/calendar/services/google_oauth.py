"""Google OAuth flow and credential storage."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

from planner.core.utils.dates import utcnow
from planner.domains.calendar.errors import (
    ConfigurationError,
    GoogleCalendarError,
    TokenRefreshError,
)
from planner.domains.calendar.models.google_account import GoogleAccount
from planner.domains.calendar.services.google_client import GoogleCalendarClient
from planner.extensions import db

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

STATE_SALT = "google-oauth-state"
STATE_MAX_AGE_SECONDS = 600
# Assumed lifetime when Google omits expires_in
DEFAULT_TOKEN_TTL = timedelta(minutes=55)


def _require_oauth_config() -> Dict[str, Any]:
    config = current_app.config
    if not (
        config.get("GOOGLE_CLIENT_ID")
        and config.get("GOOGLE_CLIENT_SECRET")
        and config.get("GOOGLE_REDIRECT_URI")
    ):
        raise ConfigurationError("Google OAuth settings are not configured")
    return config


def _state_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=STATE_SALT)


def sign_state(user_id: int) -> str:
    return _state_serializer().dumps({"user_id": user_id})


def read_state(state: str) -> int:
    """
    Recover the user id from a signed OAuth state value.

    Raises:
        ValueError: tampered or expired state
    """
    try:
        data = _state_serializer().loads(state, max_age=STATE_MAX_AGE_SECONDS)
    except BadSignature as e:
        raise ValueError("invalid_state") from e
    return int(data["user_id"])


def get_authorization_url(user_id: int) -> str:
    """
    Generate the Google consent URL for a user.

    Raises:
        ConfigurationError: OAuth client settings missing
    """
    config = _require_oauth_config()

    params = {
        "client_id": config["GOOGLE_CLIENT_ID"],
        "redirect_uri": config["GOOGLE_REDIRECT_URI"],
        "response_type": "code",
        "scope": " ".join(config["GOOGLE_CALENDAR_SCOPES"]),
        "access_type": "offline",  # Get refresh token
        "prompt": "consent",  # Force consent to get refresh token
        "state": sign_state(user_id),
    }

    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def exchange_code_for_tokens(code: str) -> Dict[str, Any]:
    """
    Exchange authorization code for access and refresh tokens.

    Raises:
        GoogleCalendarError: If token exchange fails
    """
    config = _require_oauth_config()

    payload = {
        "client_id": config["GOOGLE_CLIENT_ID"],
        "client_secret": config["GOOGLE_CLIENT_SECRET"],
        "redirect_uri": config["GOOGLE_REDIRECT_URI"],
        "grant_type": "authorization_code",
        "code": code,
    }

    try:
        resp = requests.post(GOOGLE_TOKEN_URL, data=payload, timeout=30)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Token exchange failed: {e}")
        raise GoogleCalendarError(f"Failed to exchange code: {e}") from e

    if not data.get("access_token"):
        raise GoogleCalendarError("Google returned no access token")
    return data


def fetch_google_profile(access_token: str) -> Dict[str, Any]:
    """Best-effort lookup of the Google user id and email."""
    try:
        resp = requests.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=current_app.config.get("GOOGLE_API_TIMEOUT", 30),
        )
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Google userinfo lookup failed: {e}")
        return {}


def save_google_account(
    user_id: int,
    token_data: Dict[str, Any],
    profile: Optional[Dict[str, Any]] = None,
) -> GoogleAccount:
    """Create or update the user's Google account from a token response."""
    profile = profile or {}
    expires_at = utcnow() + (
        timedelta(seconds=int(token_data["expires_in"]))
        if token_data.get("expires_in")
        else DEFAULT_TOKEN_TTL
    )

    account = GoogleAccount.query.filter_by(user_id=user_id).first()
    if account is None:
        account = GoogleAccount(user_id=user_id)
        db.session.add(account)

    account.access_token = token_data["access_token"]
    # Google only re-sends a refresh token on forced consent
    account.refresh_token = token_data.get("refresh_token") or account.refresh_token
    account.scope = token_data.get("scope") or account.scope
    account.expires_at = expires_at
    account.google_user_id = profile.get("id") or account.google_user_id
    account.google_email = profile.get("email") or account.google_email
    account.last_error = None

    db.session.commit()
    return account


def refresh_access_token(account: GoogleAccount) -> GoogleAccount:
    """
    Refresh an expired access token.

    Raises:
        TokenRefreshError: If refresh fails
    """
    if not account.can_refresh:
        raise TokenRefreshError("No refresh token available")

    config = _require_oauth_config()
    payload = {
        "client_id": config["GOOGLE_CLIENT_ID"],
        "client_secret": config["GOOGLE_CLIENT_SECRET"],
        "grant_type": "refresh_token",
        "refresh_token": account.refresh_token,
    }

    try:
        resp = requests.post(GOOGLE_TOKEN_URL, data=payload, timeout=30)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Token refresh failed for user {account.user_id}: {e}")
        account.last_error = f"token_refresh_failed: {e}"[:512]
        db.session.commit()
        raise TokenRefreshError(f"Failed to refresh token: {e}") from e

    account.access_token = data["access_token"]
    account.expires_at = utcnow() + timedelta(seconds=int(data.get("expires_in", 3600)))
    account.last_error = None
    db.session.commit()
    return account


def get_account(user_id: int) -> Optional[GoogleAccount]:
    return GoogleAccount.query.filter_by(user_id=user_id).first()


def get_valid_account(user_id: int) -> Optional[GoogleAccount]:
    """
    Get the user's account with a usable access token, refreshing if needed.

    Returns None when the user never connected or the refresh failed.
    """
    account = get_account(user_id)
    if not account:
        return None

    if account.is_expired:
        try:
            account = refresh_access_token(account)
        except (TokenRefreshError, ConfigurationError) as e:
            logger.warning(f"Google token unusable for user {user_id}: {e}")
            return None

    return account


def build_client(account: GoogleAccount) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        account.access_token,
        timeout=current_app.config.get("GOOGLE_API_TIMEOUT", 30),
    )
