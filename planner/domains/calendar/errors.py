"""Google Calendar integration errors."""

from __future__ import annotations


class GoogleCalendarError(Exception):
    """Base exception for Google Calendar operations."""

    pass


class ConfigurationError(GoogleCalendarError):
    """Raised when OAuth or webhook settings are missing."""

    pass


class NotConnectedError(GoogleCalendarError):
    """Raised when the user has no linked Google account or calendar."""

    pass


class TokenRefreshError(GoogleCalendarError):
    """Raised when token refresh fails."""

    pass


class SyncError(GoogleCalendarError):
    """Raised when a Google API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncTokenExpiredError(SyncError):
    """Google rejected the sync token (HTTP 410); a full resync is required."""

    pass


class RemoteNotFoundError(SyncError):
    """The remote event is already gone."""

    pass
