"""Timestamp helpers shared by storage, wire and conflict code.

Python-side timestamps are always timezone-aware UTC. SQLite has no
timezone support, so values are stored naive and re-tagged on the way out.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Tag naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to the naive UTC form stored in the database."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a datetime or ISO-8601 string; None when missing or unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))
        except ValueError:
            return None
    return None
