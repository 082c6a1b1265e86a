"""
Relative date/time phrases to concrete datetimes.

Pure functions: every result is computed from the `base` passed in, never from
the wall clock, and the timezone of `base` is carried through.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple
import calendar
import re

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

TIME_WORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
    "morning": (9, 0),
    "afternoon": (14, 0),
    "evening": (18, 0),
}

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")

DEFAULT_EVENT_MINUTES = 60


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year, month = value.year + month_index // 12, month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _parse_iso(text: str, base: datetime) -> Optional[datetime]:
    # A bare date keeps the time-of-day of base
    try:
        day = date.fromisoformat(text)
    except ValueError:
        pass
    else:
        return base.replace(year=day.year, month=day.month, day=day.day)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None

    if parsed.tzinfo is None and base.tzinfo is not None:
        parsed = parsed.replace(tzinfo=base.tzinfo)
    elif parsed.tzinfo is not None and base.tzinfo is not None:
        parsed = parsed.astimezone(base.tzinfo)
    return parsed


def apply_date(date_str: Optional[str], base: datetime) -> datetime:
    """Move `base` to the day named by `date_str`; unknown phrases leave it as is"""

    if not date_str or not date_str.strip():
        return base

    text = date_str.strip()
    lower = text.lower()

    if "today" in lower:
        return base
    if "day after tomorrow" in lower:
        return base + timedelta(days=2)
    if "tomorrow" in lower:
        return base + timedelta(days=1)

    for index, name in enumerate(WEEKDAYS):
        if name in lower:
            days_until = (index - base.weekday()) % 7 or 7
            return base + timedelta(days=days_until)

    if "next week" in lower:
        return base + timedelta(days=7)
    if "next month" in lower:
        return _add_months(base, 1)

    parsed = _parse_iso(text, base)
    return parsed if parsed is not None else base


def parse_time_of_day(time_str: Optional[str]) -> Optional[Tuple[int, int]]:
    """(hour, minute) for phrases like '3pm', '11:30 am', '14:00', 'noon'; None if unusable"""

    if not time_str or not time_str.strip():
        return None

    lower = time_str.strip().lower()
    if lower.startswith("this "):
        lower = lower[5:]
    if lower in TIME_WORDS:
        return TIME_WORDS[lower]

    match = _TIME_PATTERN.match(lower)
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = match.group(3)

    if meridiem:
        if hours < 1 or hours > 12:
            return None
        if meridiem == "pm" and hours < 12:
            hours += 12
        elif meridiem == "am" and hours == 12:
            hours = 0

    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def parse(date_str: Optional[str], time_str: Optional[str], base: datetime) -> datetime:
    """
    Resolve a (date phrase, time phrase) pair against `base`.

    Date phrases: today, tomorrow, day after tomorrow, a weekday name (next
    occurrence, never today), next week, next month, or an ISO-8601 literal.
    Time phrases: H, H:MM with optional am/pm, or noon/midnight. Whatever is
    not understood leaves the corresponding part of `base` unchanged.
    """

    result = apply_date(date_str, base)

    time_of_day = parse_time_of_day(time_str)
    if time_of_day is not None:
        hours, minutes = time_of_day
        result = result.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    return result


def reschedule(
    start: datetime,
    end: Optional[datetime],
    date_str: Optional[str],
    time_str: Optional[str],
) -> Tuple[datetime, datetime]:
    """New (start, end) for an event moved by date/time phrases, keeping its duration"""

    duration = (end - start) if end is not None and end > start else timedelta(minutes=DEFAULT_EVENT_MINUTES)
    new_start = parse(date_str, time_str, start)
    return new_start, new_start + duration


def parse_timestamp(value, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Stored ISO-8601 string to an aware datetime in `tz`; naive values are taken as UTC"""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(tz)
