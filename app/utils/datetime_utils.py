"""
Timezone-aware datetime helpers.
- Store and compute in UTC in DB.
- Terminals report naive wall-clock times in settings.DEVICE_TIMEZONE; calendar
  dates for attendance are taken in that zone.
- API responses expose datetimes in the device timezone with an explicit offset.
"""
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.config import settings

UTC = timezone.utc


def device_tz() -> ZoneInfo:
    """Configured terminal timezone"""
    return ZoneInfo(settings.DEVICE_TIMEZONE)


def now_utc() -> datetime:
    """Current time in UTC (timezone-aware). Use for created_at, last_online_at, expires_at, etc."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """If dt is naive, treat as UTC and return timezone-aware UTC. If already aware, convert to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def from_device_local(dt: datetime) -> datetime:
    """Attach the device timezone to a naive terminal timestamp and convert to UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=device_tz())
    return dt.astimezone(UTC)


def to_device_local(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert to the device timezone. Naive datetimes are treated as UTC before converting."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(device_tz())


def device_local_date(dt: datetime) -> date:
    """Calendar date of a UTC instant as seen on the terminal's wall clock."""
    return to_device_local(dt).date()


def iso_local(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 in the device timezone with its offset. Use for API response datetime fields."""
    if dt is None:
        return None
    return to_device_local(dt).isoformat()


def iso_8601_utc(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with Z for UTC. Used for JSON columns stored on batches."""
    if dt is None:
        return None
    utc = ensure_utc(dt)
    s = utc.isoformat()
    if s.endswith("+00:00"):
        s = s[:-6] + "Z"
    return s


def parse_iso_utc(value: Optional[str]) -> Optional[datetime]:
    """Inverse of iso_8601_utc."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))
