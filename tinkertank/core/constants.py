"""Application-wide constants for the TinkerTank booking backend."""

from __future__ import annotations

from datetime import time
from typing import Dict, FrozenSet, Optional, Tuple

from .timezone_utils import DayLike, parse_day_key

# Session times are local wall-clock times at the location.
CAMP_DAY_TIMES: Tuple[time, time] = (time(9, 0), time(15, 0))
CAMP_ALL_DAY_TIMES: Tuple[time, time] = (time(9, 0), time(17, 0))
ALL_DAY_CAMP_MIN_MINUTES = 360
BIRTHDAY_DEFAULT_START = time(10, 0)
BIRTHDAY_DURATION_MINUTES = 120
SUBSCRIPTION_DEFAULT_START = time(16, 0)
SUBSCRIPTION_DURATION_MINUTES = 60

DEFAULT_BOOKING_DURATION_MINUTES = 360
DEFAULT_EVENT_CAPACITY = 10

# Recurring annual closures as (month, day) -> name
RECURRING_CLOSURE_DATES: Dict[Tuple[int, int], str] = {
    (12, 25): "Christmas Day",
    (12, 26): "Boxing Day",
    (12, 27): "Christmas Closure",
    (12, 28): "Christmas Closure",
    (12, 29): "Christmas Closure",
    (12, 30): "Christmas Closure",
    (1, 1): "New Year's Day",
    (1, 26): "Australia Day",
}

# One-off closures as day keys, e.g. "2026-07-15" for facility maintenance
SPECIFIC_CLOSURE_DATES: Dict[str, str] = {}

CAMP_TYPES: FrozenSet[str] = frozenset({"day", "allday"})


def closure_name(day_key: DayLike) -> Optional[str]:
    """Return the closure name for a local day, or None when open."""
    day = parse_day_key(day_key)
    name = RECURRING_CLOSURE_DATES.get((day.month, day.day))
    if name:
        return name
    return SPECIFIC_CLOSURE_DATES.get(day.isoformat())


def is_closure_day(day_key: DayLike) -> bool:
    return closure_name(day_key) is not None
