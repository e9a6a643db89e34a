"""Week boundary utilities for the weekly leaderboard.

A leaderboard week starts on the configured reset weekday and hour in the
display timezone (Sunday 19:00 KST by default). All returned datetimes
are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from citadel.config import get_settings

WEEK = timedelta(days=7)


def display_timezone() -> timezone:
    return timezone(timedelta(hours=get_settings().leaderboard_utc_offset_hours))


def get_week_start(now: datetime | None = None) -> datetime:
    """Most recent reset instant at or before ``now``."""
    settings = get_settings()
    if now is None:
        now = datetime.now(timezone.utc)
    local = now.astimezone(display_timezone())
    days_back = (local.weekday() - settings.leaderboard_reset_weekday) % 7
    start = (local - timedelta(days=days_back)).replace(
        hour=settings.leaderboard_reset_hour, minute=0, second=0, microsecond=0
    )
    if start > local:
        start -= WEEK
    return start.astimezone(timezone.utc)


def get_week_boundaries(now: datetime | None = None) -> tuple[datetime, datetime]:
    """(week start, last second of the week) for the week containing ``now``."""
    start = get_week_start(now)
    return start, start + WEEK - timedelta(seconds=1)


def get_previous_week_start(now: datetime | None = None) -> datetime:
    return get_week_start(now) - WEEK
