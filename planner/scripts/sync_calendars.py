"""CLI command for pulling Google Calendars.

Usage:
    flask sync-calendars                  # Pull every connected calendar
    flask sync-calendars --user 1         # Pull for a specific user
    flask sync-calendars --user 1 --backfill
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext


@click.command("sync-calendars")
@click.option("--user", "-u", type=int, help="Sync for specific user ID only")
@click.option("--backfill", is_flag=True, help="Forced full pull over the backfill window (requires --user)")
@with_appcontext
def sync_calendars_command(user: int | None, backfill: bool):
    """Pull Google Calendar changes into local events."""
    from planner.domains.calendar.errors import GoogleCalendarError
    from planner.domains.calendar.tasks import (
        sync_all_google_calendars,
        sync_google_calendar_for_user,
    )

    if backfill and not user:
        raise click.UsageError("--backfill requires --user")

    if user:
        label = "Backfilling" if backfill else "Syncing"
        click.echo(f"{label} Google Calendar for user {user}...")
        try:
            stats = sync_google_calendar_for_user(user, backfill=backfill)
        except GoogleCalendarError as e:
            click.echo(f"  ✗ Google: {e}", err=True)
            raise SystemExit(1)
        click.echo(
            f"  ✓ Google: Created {stats['created']}, Updated {stats['updated']}, "
            f"Deleted {stats['deleted']}, Skipped {stats['skipped']}, Failed {stats['failed']}"
        )
        return

    click.echo("Syncing all Google Calendar connections...")
    stats = sync_all_google_calendars()
    click.echo(
        f"  ✓ Google: {stats['synced_users']} users | "
        f"Created: {stats['created']}, Updated: {stats['updated']}, "
        f"Deleted: {stats['deleted']}, Failed: {stats['failed']}, Errors: {stats['errors']}"
    )


def register_commands(app):
    """Register CLI commands with the app."""
    app.cli.add_command(sync_calendars_command)
