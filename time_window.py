"""
Clock and time-window matching for channel schedules.

All trigger times are wall-clock HH:MM strings in the channel's timezone.
A trigger is due from the minute it names until just under one minute later.
"""

import re
import enum
import functools
import logging
import datetime
from typing import Iterable, Optional, Tuple, Union

import pytz
import holidays

logger = logging.getLogger('standup_bot.time_window')

TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')

# Width of the due window in minutes
DUE_WINDOW_MINUTES = 1


class Weekday(enum.Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def from_name(cls, name: str) -> 'Weekday':
        """Parse 'Mon', 'monday' or 'MONDAY' into a Weekday."""
        key = (name or '').strip().lower()
        for day in cls:
            full = day.name.lower()
            if key == full or key == full[:3]:
                return day
        raise ValueError(f"Unknown weekday: {name!r}")

    @classmethod
    def from_date(cls, value: Union[datetime.date, datetime.datetime]) -> 'Weekday':
        return cls(value.weekday())

    @property
    def short_name(self) -> str:
        return self.name[:3].title()


def parse_hhmm(time_str: str) -> Optional[Tuple[int, int]]:
    """
    Parse an HH:MM string.

    Returns:
        (hours, minutes) or None when the string is malformed or out of range
    """
    if not isinstance(time_str, str):
        return None
    match = TIME_PATTERN.match(time_str.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def format_hhmm(value: datetime.datetime) -> str:
    return value.strftime('%H:%M')


def minutes_of_day(time_str: str) -> Optional[int]:
    parsed = parse_hhmm(time_str)
    if parsed is None:
        return None
    return parsed[0] * 60 + parsed[1]


def is_due(current_time: str, scheduled_time: str) -> bool:
    """
    Check whether a scheduled HH:MM trigger is due at the current HH:MM.

    The window is forward-only and one minute wide: due when
    0 <= current - scheduled < 1 minute. Malformed input is never due.

    Args:
        current_time: Local wall-clock time in format 'HH:MM'
        scheduled_time: Trigger time in format 'HH:MM'

    Returns:
        True if the trigger is due
    """
    current = minutes_of_day(current_time)
    scheduled = minutes_of_day(scheduled_time)
    if current is None or scheduled is None:
        return False

    diff = current - scheduled
    return 0 <= diff < DUE_WINDOW_MINUTES


def resolve_timezone(timezone_name: str) -> Optional[datetime.tzinfo]:
    """Return the pytz timezone for a name, or None if it does not resolve."""
    if not timezone_name:
        return None
    try:
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        return None


def utc_now() -> datetime.datetime:
    """Default clock source: the current instant as an aware UTC datetime."""
    return datetime.datetime.now(pytz.UTC)


def localize_now(global_now: datetime.datetime, timezone_name: str) -> datetime.datetime:
    """
    Convert the tick's single global instant into a channel's wall-clock time.

    Naive instants are taken to be UTC. Unknown timezones fall back to UTC;
    use resolve_timezone() beforehand to detect and report that case.

    Args:
        global_now: The instant of the current tick
        timezone_name: IANA timezone name (e.g., 'America/New_York')

    Returns:
        Timezone-aware datetime in the channel's timezone
    """
    if global_now.tzinfo is None:
        global_now = pytz.UTC.localize(global_now)

    tz = resolve_timezone(timezone_name) or pytz.UTC
    return global_now.astimezone(tz)


def local_date(local_time: datetime.datetime) -> str:
    """Calendar day (YYYY-MM-DD) of a localized datetime."""
    return local_time.strftime('%Y-%m-%d')


def is_active_weekday(local_time: datetime.datetime, active_days: Iterable[Weekday]) -> bool:
    """Check whether the weekday of local_time is one of the active days."""
    return Weekday.from_date(local_time) in set(active_days)


@functools.lru_cache(maxsize=64)
def _country_holidays(country_code: str, year: int):
    try:
        return holidays.country_holidays(country_code, years=year)
    except (NotImplementedError, KeyError, AttributeError):
        logger.warning(f"Country code '{country_code}' not supported by holidays library")
        return frozenset()


def is_holiday(day: Union[datetime.date, datetime.datetime], country_code: Optional[str]) -> bool:
    """
    Check whether a date is a public holiday in the given country.

    Unsupported country codes are logged and treated as having no holidays.
    """
    if not country_code:
        return False
    if isinstance(day, datetime.datetime):
        day = day.date()
    return day in _country_holidays(country_code.upper(), day.year)
