"""
Helpers for optional datetime handling (SQLite hands timestamps back naive).
"""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def iso_or_none(dt: datetime | None | Any) -> str | None:
    """ISO format string for dt, or None if dt is None."""
    if dt is None:
        return None
    if hasattr(dt, "isoformat"):
        return dt_replace_utc(dt).isoformat() if isinstance(dt, datetime) else dt.isoformat()
    return None


def dt_replace_utc(dt: datetime | None | Any) -> datetime | None:
    """
    Return dt with tzinfo=UTC if naive, or None if dt is None.
    Stored timestamps are always UTC; naive values come from SQLite.
    """
    if dt is None:
        return None
    if isinstance(dt, datetime):
        return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt
    return None
