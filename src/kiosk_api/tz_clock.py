"""
Wall-clock helpers for the facility time zone.

All instants returned here are timezone-aware UTC datetimes. Day boundaries
are derived from calendar dates, so days that are 23 or 25 hours long
around DST transitions come out right.
"""

import datetime
from typing import NamedTuple, Tuple, Union
from zoneinfo import ZoneInfo

UTC = datetime.timezone.utc

ZoneLike = Union[str, datetime.tzinfo]


class WallClock(NamedTuple):
    year: int
    month: int
    day: int
    hour: int
    minute: int


def _zone(tz: ZoneLike) -> datetime.tzinfo:
    return ZoneInfo(tz) if isinstance(tz, str) else tz


# PUBLIC_INTERFACE
def as_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Normalizes a datetime to aware UTC.
    Naive values (as some drivers return them) are taken to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# PUBLIC_INTERFACE
def wall_clock_parts(now: datetime.datetime, tz: ZoneLike) -> WallClock:
    """Returns the local wall-clock reading of `now` in `tz`."""
    local = as_utc(now).astimezone(_zone(tz))
    return WallClock(local.year, local.month, local.day, local.hour, local.minute)


# PUBLIC_INTERFACE
def local_to_utc(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    *,
    tz: ZoneLike,
) -> datetime.datetime:
    """
    Converts a local wall-clock time in `tz` to an absolute UTC instant.
    Times inside a spring-forward gap resolve with the pre-transition offset.
    """
    local = datetime.datetime(year, month, day, hour, minute, second, tzinfo=_zone(tz))
    return local.astimezone(UTC)


# PUBLIC_INTERFACE
def day_bounds(now: datetime.datetime, tz: ZoneLike) -> Tuple[datetime.datetime, datetime.datetime]:
    """
    Returns (start_of_today, start_of_tomorrow) as UTC instants, where
    "today" is the local calendar date of `now` in `tz`.
    """
    parts = wall_clock_parts(now, tz)
    today = datetime.date(parts.year, parts.month, parts.day)
    tomorrow = today + datetime.timedelta(days=1)
    start = local_to_utc(today.year, today.month, today.day, tz=tz)
    end = local_to_utc(tomorrow.year, tomorrow.month, tomorrow.day, tz=tz)
    return start, end
