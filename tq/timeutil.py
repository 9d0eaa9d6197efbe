"""Timestamp helpers for the UTC strings stored in the database."""

from __future__ import annotations

from datetime import datetime, timezone

TIME_LAYOUT = "%Y-%m-%d %H:%M:%S"


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ``YYYY-MM-DD HH:MM:SS`` timestamp as an aware UTC datetime."""
    return datetime.strptime(value, TIME_LAYOUT).replace(tzinfo=timezone.utc)


def format_utc(moment: datetime) -> str:
    """Format a datetime as a stored UTC timestamp string."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIME_LAYOUT)


def format_local(utc_str: str) -> str:
    """Convert a UTC timestamp string to local time; return it unchanged if unparsable."""
    try:
        moment = parse_timestamp(utc_str)
    except (ValueError, TypeError):
        return utc_str
    return moment.astimezone().strftime(TIME_LAYOUT)


def matches_date_local(utc_str: str, date: str) -> bool:
    """Whether the local rendering of ``utc_str`` starts with ``date``."""
    return format_local(utc_str).startswith(date)