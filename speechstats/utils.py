"""Utility functions: time keys, word counting, value coercion."""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from speechstats.config import settings

MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


def utc_now() -> datetime:
    """
    Get current UTC time.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def get_zone(name: Optional[str] = None) -> ZoneInfo:
    """Zone that all period keys are derived in."""
    return ZoneInfo(name or settings.timezone)


@dataclass(frozen=True)
class TimeKeys:
    """
    Canonical period keys for one moment.

    Attributes:
        date: Day key, ``YYYY-MM-DD``
        week: ISO week key, ``YYYY-Www`` (ISO week-year)
        month: Month key, ``YYYY-MM``
        year: Year key, ``YYYY``
        datetime_str: ``YYYY-MM-DD HH:MM:SS`` in the keying zone
        local: The moment converted to the keying zone
    """
    date: str
    week: str
    month: str
    year: str
    datetime_str: str
    local: datetime


def to_local(moment: Optional[datetime], tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert to the keying zone; naive datetimes are taken as UTC."""
    tz = tz or get_zone()
    if moment is None:
        moment = utc_now()
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def week_key(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def derive_time_keys(moment: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> TimeKeys:
    """Derive day/week/month/year keys for ``moment`` (now when omitted)."""
    local = to_local(moment, tz)
    day = local.date()
    return TimeKeys(
        date=day.isoformat(),
        week=week_key(day),
        month=month_key(day),
        year=str(day.year),
        datetime_str=local.strftime("%Y-%m-%d %H:%M:%S"),
        local=local,
    )


def recent_day_keys(today: date, days: int) -> List[str]:
    """Day keys from ``today`` back ``days`` days, newest first (inclusive of both ends)."""
    return [(today - timedelta(days=i)).isoformat() for i in range(days + 1)]


def recent_week_keys(today: date, weeks: int) -> List[str]:
    """The ISO week of ``today`` and the ``weeks - 1`` weeks before it."""
    return [week_key(today - timedelta(weeks=i)) for i in range(weeks)]


def recent_month_keys(today: date, months: int) -> List[str]:
    """The month of ``today`` and the ``months - 1`` months before it."""
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return keys


def is_valid_month_key(key: Any) -> bool:
    return isinstance(key, str) and bool(MONTH_KEY_RE.match(key))


def longest_streak(day_keys, today: date, window: int = 365) -> int:
    """
    Longest run of consecutive days present in ``day_keys``.

    Scans ``window`` days back from ``today``; malformed keys are ignored
    because only dates generated by the scan are looked up.
    """
    present = set(day_keys)
    if not present:
        return 0
    best = 0
    current = 0
    for i in range(window):
        if (today - timedelta(days=i)).isoformat() in present:
            current += 1
            best = max(best, current)
        else:
            current = 0
    return best


def count_words(text: Optional[str]) -> int:
    """Every non-whitespace character counts as one word (CJK included)."""
    if not text:
        return 0
    return sum(1 for ch in str(text) if not ch.isspace())


def to_int(value: Any) -> int:
    """Coerce a value read from storage to int; anything unusable becomes 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
