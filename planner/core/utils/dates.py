"""Date helpers shared across domains."""

from __future__ import annotations

from datetime import date, datetime, time, timezone

# All-day values are pinned to midday UTC so no timezone shift moves the day.
ALL_DAY_ANCHOR = time(12, 0)


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def anchor_all_day(day: date) -> datetime:
    return datetime.combine(day, ALL_DAY_ANCHOR)


def parse_iso_datetime(raw: str) -> datetime:
    """Parse an RFC3339 timestamp into naive UTC; tolerates trailing Z."""
    raw = raw.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(raw))


def format_rfc3339(value: datetime) -> str:
    """Render a naive-UTC (or aware) datetime as RFC3339 with a Z suffix."""
    return to_naive_utc(value).replace(microsecond=0).isoformat() + "Z"
