"""Calendar domain tasks: periodic Google pulls."""

from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def sync_all_google_calendars() -> Dict[str, int]:
    """
    Pull every connected Google calendar.

    Call this periodically (e.g., every 15 minutes via cron) as a safety net
    for missed push notifications.

    Returns:
        Dict with total stats across all users
    """
    from planner.domains.calendar.errors import GoogleCalendarError
    from planner.domains.calendar.models.google_account import GoogleAccount
    from planner.domains.calendar.services.google_sync_service import sync_now

    accounts = GoogleAccount.query.filter(
        GoogleAccount.selected_calendar_id.isnot(None)
    ).all()

    total_stats = {
        "synced_users": 0,
        "created": 0,
        "updated": 0,
        "deleted": 0,
        "failed": 0,
        "errors": 0,
    }

    for account in accounts:
        try:
            result = sync_now(account.user_id)
            total_stats["synced_users"] += 1
            total_stats["created"] += result.created
            total_stats["updated"] += result.updated
            total_stats["deleted"] += result.deleted
            total_stats["failed"] += result.failed
        except GoogleCalendarError as e:
            logger.warning(f"Sync failed for user {account.user_id}: {e}")
            total_stats["errors"] += 1

    logger.info(f"Google Calendar bulk sync complete: {total_stats}")
    return total_stats


def sync_google_calendar_for_user(user_id: int, backfill: bool = False) -> Dict[str, Any]:
    """
    Pull the selected Google calendar for one user.

    Args:
        user_id: User ID to sync
        backfill: run the long-window forced pull instead

    Returns:
        Sync stats dict
    """
    from planner.domains.calendar.services import google_sync_service

    if backfill:
        return google_sync_service.backfill(user_id).as_dict()
    return google_sync_service.sync_now(user_id).as_dict()
