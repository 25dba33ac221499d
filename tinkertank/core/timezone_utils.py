"""
Timezone utilities for the TinkerTank booking backend.

Instants are stored as UTC. Calendar days ("day keys", ``YYYY-MM-DD``) only
exist relative to a named timezone, so every conversion between the two goes
through a real tz database lookup. Never derive a day key by slicing a UTC
ISO string, and never rely on the host process timezone.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from functools import lru_cache
from typing import Iterator, Tuple, Union

import pytz

from .exceptions import InvalidTimezoneException, ValidationException

DayLike = Union[str, date]


@lru_cache(maxsize=256)
def _load_timezone(name: str) -> tzinfo:
    return pytz.timezone(name)


def get_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Raises:
        InvalidTimezoneException: If the name is empty or unknown
    """
    if not name or not isinstance(name, str):
        raise InvalidTimezoneException(name)
    try:
        return _load_timezone(name)
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidTimezoneException(name) from exc


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are treated as UTC."""
    if dt.tzinfo is None:
        # Assume UTC if no timezone info
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_day_key(value: DayLike) -> date:
    """Parse a ``YYYY-MM-DD`` day key (dates pass through)."""
    if isinstance(value, datetime):
        raise ValidationException(
            "Expected a calendar day, got a datetime",
            code="INVALID_DAY_KEY",
            details={"value": value.isoformat()},
        )
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationException(
            f"Invalid day key: {value!r}",
            code="INVALID_DAY_KEY",
            details={"value": str(value)},
        ) from exc


def _localize(tz: tzinfo, naive: datetime) -> datetime:
    localize = getattr(tz, "localize", None)
    if localize is None:
        return naive.replace(tzinfo=tz)
    return tz.normalize(localize(naive))  # type: ignore[attr-defined]


def to_local(instant: datetime, timezone_name: str) -> datetime:
    """Convert a stored instant to wall-clock time in ``timezone_name``."""
    return ensure_utc(instant).astimezone(get_timezone(timezone_name))


def to_local_day_key(instant: datetime, timezone_name: str) -> str:
    """
    Return the calendar date ``instant`` falls on when viewed in ``timezone_name``.

    Example:
        2026-01-04T14:00:00Z in Australia/Sydney (UTC+11) -> "2026-01-05"
    """
    return to_local(instant, timezone_name).date().isoformat()


def local_day_bounds(day_key: DayLike, timezone_name: str) -> Tuple[datetime, datetime]:
    """
    Return UTC instants for local 00:00 on ``day_key`` and local 00:00 the day after.

    Use as an inclusive lower / exclusive upper query bound. The span is not
    always 24 hours (DST transition days are 23 or 25 hours long).
    """
    tz = get_timezone(timezone_name)
    day = parse_day_key(day_key)
    start_local = _localize(tz, datetime.combine(day, time.min))
    end_local = _localize(tz, datetime.combine(day + timedelta(days=1), time.min))
    return start_local.astimezone(pytz.UTC), end_local.astimezone(pytz.UTC)


def local_time_to_utc(day_key: DayLike, wall_time: time, timezone_name: str) -> datetime:
    """Return the UTC instant of ``wall_time`` on local day ``day_key``."""
    tz = get_timezone(timezone_name)
    day = parse_day_key(day_key)
    return _localize(tz, datetime.combine(day, wall_time)).astimezone(pytz.UTC)


def is_same_local_day(a: datetime, b: datetime, timezone_name: str) -> bool:
    return to_local_day_key(a, timezone_name) == to_local_day_key(b, timezone_name)


def local_weekday(instant: datetime, timezone_name: str) -> int:
    """Weekday (Monday=0) of ``instant`` in local time, never the UTC weekday."""
    return to_local(instant, timezone_name).weekday()


def is_weekend_day(day_key: DayLike) -> bool:
    return parse_day_key(day_key).weekday() >= 5


def iter_local_day_keys(start: DayLike, end: DayLike) -> Iterator[str]:
    """Yield day keys from ``start`` to ``end`` inclusive."""
    current = parse_day_key(start)
    last = parse_day_key(end)
    while current <= last:
        yield current.isoformat()
        current += timedelta(days=1)


def local_today(timezone_name: str) -> date:
    return datetime.now(get_timezone(timezone_name)).date()
