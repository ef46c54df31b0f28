import logging
from datetime import date, datetime, time, timedelta

import pytz


log = logging.getLogger(__name__)


def list_timezones():
    return pytz.common_timezones


def parse_date(date_str: str) -> date:
    return datetime.strptime(date_str, '%Y-%m-%d').date()


def parse_time(time_str: str) -> time:
    # Browsers post HH:MM; values read back from the database carry seconds.
    fmt = '%H:%M:%S' if time_str.count(':') == 2 else '%H:%M'
    return datetime.strptime(time_str, fmt).time()


def minutes_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def as_minutes(value) -> int:
    if isinstance(value, str):
        value = parse_time(value)
    return minutes_of_day(value)


def minutes_to_str(m: int) -> str:
    h = m // 60
    mi = m % 60
    return f"{h:02d}:{mi:02d}"


def resolve_timezone(tz_name: str | None, default: str = 'UTC'):
    try:
        return pytz.timezone(tz_name or default)
    except pytz.UnknownTimeZoneError:
        log.warning("Unknown timezone %r, falling back to %s", tz_name, default)
        return pytz.timezone(default)


def to_local_iso(date_str: str, time_str: str, tz_name: str | None) -> str:
    """Turn a wall-clock date and time in ``tz_name`` into an ISO instant.

    The result carries the UTC offset in force in that zone on that date,
    e.g. ``2024-03-01T09:00:00-05:00``.
    """
    tz = resolve_timezone(tz_name)
    local = tz.localize(datetime.combine(parse_date(date_str), parse_time(time_str)))
    return local.isoformat()


def to_utc(dt: datetime) -> datetime:
    """Naive UTC, which is how slot instants are stored."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def from_utc(dt: datetime, tz) -> datetime:
    if isinstance(tz, str):
        tz = resolve_timezone(tz)
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(tz)


def utc_offset(tz_name: str | None, on: datetime | None = None) -> str:
    tz = resolve_timezone(tz_name)
    moment = from_utc(on or datetime.utcnow(), tz)
    offset = moment.utcoffset() or timedelta(0)
    total = int(offset.total_seconds() // 60)
    sign = '+' if total >= 0 else '-'
    total = abs(total)
    return f"{sign}{total // 60:02d}:{total % 60:02d}"


def zone_abbreviation(tz_name: str | None, on: datetime | None = None) -> str:
    tz = resolve_timezone(tz_name)
    return from_utc(on or datetime.utcnow(), tz).strftime('%Z') or tz.zone
