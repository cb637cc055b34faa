from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context


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


def business_tz() -> ZoneInfo:
    """Timezone that defines the shop's calendar day (BUSINESS_TIMEZONE)."""
    name = "UTC"
    if has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE") or "UTC"
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def to_business_time(dt: datetime) -> datetime:
    """UTC-naive -> business-local naive."""
    return dt.replace(tzinfo=timezone.utc).astimezone(business_tz()).replace(tzinfo=None)


def business_date(dt: Optional[datetime] = None) -> date:
    """Calendar day of a UTC-naive instant in the business timezone."""
    return to_business_time(dt or utcnow()).date()


def business_day_bounds(day: date) -> tuple[datetime, datetime]:
    """
    UTC-naive [start, end) bounds of a business calendar day.
    """
    tz = business_tz()
    start_local = datetime.combine(day, time.min).replace(tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min).replace(tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def parse_business_date(value: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD"; None / "" -> None. Raises ValueError on junk."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)
