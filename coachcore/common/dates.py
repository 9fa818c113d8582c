"""Calendar-date helpers.

Day arithmetic is anchored at 12:00 UTC so that adding or diffing days never
crosses a local midnight that moves with daylight saving time.
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time, timedelta

SECONDS_PER_DAY = 86_400
_NOON = time(12, 0, tzinfo=UTC)

DateLike = date | datetime | str


def parse_ymd(value: DateLike | None) -> date | None:
    """Parse a calendar date from a date, datetime or `YYYY-MM-DD` string.

    Datetimes keep their own calendar day (no timezone conversion). Returns
    None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if "T" in text:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def to_ymd(value: DateLike) -> str:
    parsed = parse_ymd(value)
    if parsed is None:
        raise ValueError(f"Invalid calendar date: {value!r}")
    return parsed.isoformat()


def utc_noon(value: DateLike) -> datetime:
    parsed = parse_ymd(value)
    if parsed is None:
        raise ValueError(f"Invalid calendar date: {value!r}")
    return datetime.combine(parsed, _NOON)


def add_days(value: DateLike, days: int) -> date:
    return (utc_noon(value) + timedelta(days=days)).date()


def add_days_ymd(value: DateLike, days: int) -> str:
    return add_days(value, days).isoformat()


def days_between(a: DateLike | None, b: DateLike | None) -> int | None:
    """Whole days from `b` to `a` (`a - b`), or None when either side is unusable."""
    if a is None or b is None:
        return None
    try:
        delta = utc_noon(a) - utc_noon(b)
    except ValueError:
        return None
    seconds = delta.total_seconds()
    if not math.isfinite(seconds):
        return None
    return math.floor(seconds / SECONDS_PER_DAY)


def start_of_week_monday(value: DateLike) -> date:
    parsed = parse_ymd(value)
    if parsed is None:
        raise ValueError(f"Invalid calendar date: {value!r}")
    return parsed - timedelta(days=parsed.weekday())


def week_range(week_start: DateLike) -> tuple[date, date]:
    """Inclusive Monday..Sunday range for the week containing `week_start`."""
    start = start_of_week_monday(week_start)
    return start, start + timedelta(days=6)


def today_utc() -> date:
    return datetime.now(UTC).date()
