"""
Server clock helpers.  Every timestamp the engine stores or compares is
UTC-aware; SQLite hands back naive values, so reads go through ensure_utc.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def work_date(dt: datetime) -> str:
    """Calendar day (UTC) an attendance session belongs to, as YYYY-MM-DD."""
    return ensure_utc(dt).strftime("%Y-%m-%d")  # type: ignore[union-attr]
