from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from portal.core.config import get_timezone_name


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def day_key(moment: datetime, tz_name: str | None = None) -> str:
    """Calendar day of ``moment`` in the service timezone, as YYYY-MM-DD."""
    tz = ZoneInfo(tz_name or get_timezone_name())
    return as_utc(moment).astimezone(tz).strftime("%Y-%m-%d")
