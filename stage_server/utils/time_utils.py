from datetime import datetime, timezone
import zoneinfo
from typing import Optional, Dict, Any


def _resolve_tz_name(zone: str = 'UTC', settings: Optional[Dict[str, Any]] = None) -> str:
    """Resolve a timezone name from an optional settings map and a zone hint.

    Priority:
      1) settings['timezone'] if present (user-level)
      2) explicit zone parameter (e.g. 'UTC', 'Europe/Berlin')
      3) fallback to UTC
    """
    if settings and isinstance(settings, dict):
        tz_val = settings.get('timezone') or settings.get('timeZone') or settings.get('tz')
        if isinstance(tz_val, str) and tz_val.strip():
            zone = tz_val.strip()
    return zone or 'UTC'


def now_utc() -> datetime:
    """Return the current time as a naive UTC datetime with millisecond precision.

    This is what MongoDB stores and hands back, so values compare equal
    before and after a round trip.
    """
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def get_time_date(dt: datetime, zone: str = 'UTC', include_time: bool = True, settings: Optional[Dict[str, Any]] = None) -> str:
    """Format a datetime in the requested timezone.

    Naive datetimes are treated as UTC.
    """
    tz_name = _resolve_tz_name(zone=zone, settings=settings)
    try:
        tz = zoneinfo.ZoneInfo(tz_name)
    except Exception:
        tz = zoneinfo.ZoneInfo('UTC')

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    local = dt.astimezone(tz)

    if not include_time:
        return local.strftime('%Y-%m-%d')
    return local.strftime('%Y-%m-%d %H:%M')


def _from_epoch(value) -> Optional[datetime]:
    # Out-of-range epochs raise OverflowError or OSError depending on the platform.
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO string or epoch number into a naive UTC datetime, or None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = _from_epoch(value)
    else:
        s = str(value)
        try:
            dt = datetime.fromisoformat(s.replace('Z', '+00:00'))
        except ValueError:
            dt = _from_epoch(s)
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
