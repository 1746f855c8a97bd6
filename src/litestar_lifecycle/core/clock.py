"""Time helpers shared by the lifecycle components.

Datetimes are always timezone-aware UTC and are persisted as ISO-8601 strings so
that both record store implementations compare them consistently.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeAlias

__all__ = ["Clock", "from_iso", "to_iso", "utc_now"]

Clock: TypeAlias = Callable[[], datetime]
"""Callable returning the current time, injectable for tests."""


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime for storage, normalising naive values to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Any) -> datetime | None:
    """Parse a stored datetime.

    Accepts ISO strings and datetime objects; anything else yields ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
