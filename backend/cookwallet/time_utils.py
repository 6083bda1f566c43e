from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    return normalize_utc(dt)


def normalize_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to UTC-naive; naive values are assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def seconds_until(target: datetime, now: datetime) -> int:
    """Whole seconds from now until target, floored at zero."""
    return max(0, int((normalize_utc(target) - normalize_utc(now)).total_seconds()))


def local_day_start_utc(now: datetime, tz_name: str) -> datetime:
    """
    UTC-naive instant of local midnight for the day containing `now`.

    Daily withdrawal limits run midnight to midnight in the platform's
    local timezone, not UTC.
    """
    tz = ZoneInfo(tz_name)
    local = normalize_utc(now).replace(tzinfo=timezone.utc).astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def hours_after(start: datetime, hours: int) -> datetime:
    return start + timedelta(hours=hours)
