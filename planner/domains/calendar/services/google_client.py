"""Thin requests client for the Google Calendar v3 REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from planner.domains.calendar.errors import (
    RemoteNotFoundError,
    SyncError,
    SyncTokenExpiredError,
)

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
MAX_PAGE_SIZE = 2500


def _calendar_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='')}"


class GoogleCalendarClient:
    """
    Authorized calls against one user's Google Calendar.

    Every failure surfaces as a ``SyncError`` subclass so callers never have
    to know about ``requests`` exceptions.
    """

    def __init__(
        self,
        access_token: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
        base_url: str = GOOGLE_CALENDAR_API,
    ) -> None:
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method, url, params=params, json=json, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Google API {method} {path} failed: {e}")
            raise SyncError(f"Google API request failed: {e}") from e

        if resp.status_code >= 400:
            message = f"Google API {method} {path} returned {resp.status_code}"
            if resp.status_code in (404, 410):
                raise RemoteNotFoundError(message, status_code=resp.status_code)
            logger.error(f"{message}: {resp.text[:200]}")
            raise SyncError(message, status_code=resp.status_code)
        return resp

    def _json(self, resp: requests.Response) -> Dict[str, Any]:
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise SyncError(f"Invalid JSON from Google: {e}") from e

    # ---- events ----

    def list_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        time_min: Optional[str] = None,
        page_token: Optional[str] = None,
        show_deleted: bool = True,
        single_events: bool = True,
        order_by: Optional[str] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        List one page of events.

        Returns the raw page: ``items``, and either ``nextPageToken`` or, on the
        last page, ``nextSyncToken``.

        Raises:
            SyncTokenExpiredError: Google invalidated ``sync_token`` (HTTP 410)
        """
        params: Dict[str, Any] = {
            "maxResults": max_results,
            "singleEvents": "true" if single_events else "false",
            "showDeleted": "true" if show_deleted else "false",
        }
        if sync_token:
            # Google rejects timeMin/orderBy alongside a syncToken.
            params["syncToken"] = sync_token
        else:
            if time_min:
                params["timeMin"] = time_min
            if order_by:
                params["orderBy"] = order_by
        if page_token:
            params["pageToken"] = page_token

        try:
            resp = self._request("GET", f"{_calendar_path(calendar_id)}/events", params=params)
        except RemoteNotFoundError as e:
            if sync_token and e.status_code == 410:
                raise SyncTokenExpiredError(str(e), status_code=410) from e
            raise
        return self._json(resp)

    def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("POST", f"{_calendar_path(calendar_id)}/events", json=body)
        return self._json(resp)

    def patch_event(
        self, calendar_id: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        path = f"{_calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        return self._json(self._request("PATCH", path, json=body))

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        path = f"{_calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        self._request("DELETE", path)

    # ---- push channels ----

    def watch_events(
        self, calendar_id: str, channel_id: str, address: str
    ) -> Dict[str, Any]:
        """Open a web_hook channel; the response carries resourceId and expiration."""
        body = {"id": channel_id, "type": "web_hook", "address": address}
        resp = self._request("POST", f"{_calendar_path(calendar_id)}/events/watch", json=body)
        return self._json(resp)

    def stop_channel(self, channel_id: str, resource_id: str) -> None:
        self._request(
            "POST",
            "/channels/stop",
            json={"id": channel_id, "resourceId": resource_id},
        )

    # ---- calendars ----

    def list_calendars(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params = {"pageToken": page_token} if page_token else None
            data = self._json(self._request("GET", "/users/me/calendarList", params=params))
            items.extend(data.get("items") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return items
