"""
Time helpers shared by the custody services.
Stored datetimes come back naive from SQLite; everything here treats naive values as UTC.
"""
import math
from datetime import datetime, timezone
from typing import Optional

import pytz

from ..config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def days_used(issued: datetime, returned: datetime) -> int:
    """Whole days of custody, rounded up: ceil((returned - issued) / 1 day)."""
    delta = ensure_utc(returned) - ensure_utc(issued)
    return math.ceil(delta.total_seconds() / 86400)


def day_stamp(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    """YYYYMMDD of ``now`` in the configured id timezone."""
    now = ensure_utc(now or utcnow())
    try:
        tz = pytz.timezone(tz_name or settings.id_timezone)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return now.astimezone(tz).strftime("%Y%m%d")
