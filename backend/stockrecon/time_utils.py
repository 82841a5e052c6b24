# Overview: UTC timestamp helpers shared by models, services and routes.

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Canonical server 'now': UTC, stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a reporting bound (ISO-8601) into a UTC-naive datetime.

    - None / "" -> None
    - "2026-10-18" is a whole day: its first instant, or its last one when
      end_of_day is set, so an inclusive "until" covers the full day
    - naive datetimes are taken as UTC; "Z" and offsets are converted

    Raises ValueError on anything else.
    """
    if value is None or not value.strip():
        return None
    s = value.strip()

    if len(s) == 10:
        day = date.fromisoformat(s)
        if end_of_day:
            return datetime.combine(day, time.max)
        return datetime.combine(day, time.min)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing 'Z', second precision. Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def age_seconds(dt: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole seconds elapsed since a stored UTC-naive timestamp."""
    if dt is None:
        return None
    now = now or utcnow()
    return max(int((now - dt) / timedelta(seconds=1)), 0)
