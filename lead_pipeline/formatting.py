"""Display labels for timestamps, amounts, and people.

All relative labels take ``now`` explicitly and are computed per call; the
caller decides the clock.  Labels are rendered in ``now``'s time zone.
"""

from __future__ import annotations

from datetime import datetime, timezone


def _local(value: datetime, now: datetime) -> datetime:
    tz = now.tzinfo or timezone.utc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def time_of_day(value: datetime, now: datetime) -> str:
    """``HH:MM`` in the display time zone."""
    return _local(value, now).strftime("%H:%M")


def short_date(value: datetime, now: datetime) -> str:
    """Day and abbreviated month, e.g. ``5 Nov``."""
    local = _local(value, now)
    return f"{local.day} {local.strftime('%b')}"


def full_date(value: datetime, now: datetime) -> str:
    local = _local(value, now)
    return f"{local.day} {local.strftime('%b')} {local.year}"


def time_ago(value: datetime | None, now: datetime) -> str:
    """Compact age label used on board cards."""
    if value is None:
        return ""
    diff_minutes = int((now - value).total_seconds() // 60)
    diff_hours = diff_minutes // 60
    diff_days = diff_hours // 24

    if diff_minutes < 1:
        return "just now"
    if diff_minutes < 60:
        return f"{diff_minutes}m ago"
    if diff_hours < 24:
        return f"{diff_hours}h ago"
    if diff_days < 7:
        return f"{diff_days}d ago"
    return short_date(value, now)


def activity_timestamp(value: datetime | None, now: datetime) -> str:
    """Time of day for today's entries, day/month plus time otherwise."""
    if value is None:
        return ""
    local = _local(value, now)
    if local.date() == _local(now, now).date():
        return local.strftime("%H:%M")
    return f"{short_date(value, now)} {local.strftime('%H:%M')}"


def format_amount(value: float | None) -> str:
    """Whole-currency amount with thousands separators, e.g. ``$7,500,000``."""
    if value is None:
        return ""
    return f"${round(value):,}"
