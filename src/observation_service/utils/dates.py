"""Timezone helpers.

SQLite hands datetimes back naive, PostgreSQL aware; collaborators send ISO
strings. Everything is normalized to aware UTC before comparison.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> datetime | None:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive values are taken to be UTC. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validity_window(days: int, start: datetime | None = None) -> tuple[datetime, datetime]:
    """Start/end pair for an observation valid for ``days`` from ``start``."""
    start = start or utcnow()
    return start, start + timedelta(days=days)
