"""Timestamp helpers.

All timestamps are stored as naive UTC datetimes so that SQLite (tests) and
PostgreSQL (production) compare them the same way.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a Shopify ISO 8601 timestamp into naive UTC.

    WHAT:
        Accepts "2024-05-01T10:00:00-04:00", "...Z" or an existing datetime.
    WHY:
        Shopify reports times in the shop's offset; KPIs bucket by UTC day.

    Returns:
        Naive UTC datetime, or None for empty/unparseable input
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_shopify_timestamp(value: datetime) -> str:
    """Format a naive UTC datetime for Shopify query params (`updated_at_min`)."""
    return value.replace(microsecond=0).isoformat() + "Z"


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Return [00:00:00, 23:59:59.999999] of a UTC day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)
