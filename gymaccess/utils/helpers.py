"""Shared time helpers.

All timestamps are persisted in UTC. SQLite hands them back naive, so
every comparison goes through ``as_utc`` first. Calendar days and
time-of-day windows are evaluated in the tenant's own zone.
"""
import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes; convert aware ones. ``None`` passes through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_isoformat(value):
    """ISO-8601 with an explicit +00:00 offset; SQLite hands datetimes back naive."""
    return as_utc(value).isoformat() if value is not None else None


def tenant_zone(tz_name):
    """Resolve an IANA zone name; unknown names fall back to UTC."""
    if not tz_name or tz_name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown tenant timezone %r, using UTC", tz_name)
        return timezone.utc


def local_datetime(value, tz_name):
    """Express a UTC instant as the tenant's wall-clock datetime."""
    return as_utc(value).astimezone(tenant_zone(tz_name))


def local_date(value, tz_name):
    """Calendar day of an instant in the tenant's zone."""
    return local_datetime(value, tz_name).date()

