"""Timestamp helpers shared by the repository and services.

All persisted timestamps are UTC ISO-8601 strings with second precision so
that lexical order in SQLite matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc_iso(value: datetime) -> str:
    return ensure_aware(value).astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    return ensure_aware(datetime.fromisoformat(value)).astimezone(timezone.utc)
