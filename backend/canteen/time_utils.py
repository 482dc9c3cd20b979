from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

DEFAULT_BUSINESS_OFFSET_MINUTES = 330


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_today(offset_minutes: int | None = None) -> date:
    """
    Calendar day at the outlets (IST by default).

    Quota consumption and delivery dates are bucketed by this day, not by
    the UTC date.
    """
    if offset_minutes is None:
        offset_minutes = _configured_offset()
    return (utcnow() + timedelta(minutes=offset_minutes)).date()


def business_day_of(dt: datetime, offset_minutes: int | None = None) -> date:
    """Business calendar day for a stored UTC-naive datetime."""
    if offset_minutes is None:
        offset_minutes = _configured_offset()
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return (dt + timedelta(minutes=offset_minutes)).date()


def _configured_offset() -> int:
    from flask import current_app, has_app_context

    if has_app_context():
        return int(current_app.config.get("BUSINESS_UTC_OFFSET_MINUTES", DEFAULT_BUSINESS_OFFSET_MINUTES))
    return DEFAULT_BUSINESS_OFFSET_MINUTES


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

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse YYYY-MM-DD; None / "" -> None. Raises ValueError on bad input."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)


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


def business_day_bounds(start: date, end: date, offset_minutes: int | None = None) -> tuple[datetime, datetime]:
    """
    UTC-naive [start, end) range covering business days start..end inclusive.
    """
    if offset_minutes is None:
        offset_minutes = _configured_offset()
    offset = timedelta(minutes=offset_minutes)
    lower = datetime.combine(start, datetime.min.time()) - offset
    upper = datetime.combine(end + timedelta(days=1), datetime.min.time()) - offset
    return lower, upper
