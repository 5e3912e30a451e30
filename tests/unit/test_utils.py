"""Tests for utility functions."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from speechstats.utils import (
    count_words,
    derive_time_keys,
    is_valid_month_key,
    longest_streak,
    recent_day_keys,
    recent_month_keys,
    recent_week_keys,
    to_int,
    utc_now,
)

SHANGHAI = ZoneInfo("Asia/Shanghai")


def test_utc_now_has_timezone():
    result = utc_now()
    assert result.tzinfo == timezone.utc


def test_time_keys_use_keying_zone():
    """23:30 UTC on Dec 31 is already Jan 1 in Shanghai."""
    keys = derive_time_keys(datetime(2023, 12, 31, 23, 30, tzinfo=timezone.utc), SHANGHAI)
    assert keys.date == "2024-01-01"
    assert keys.month == "2024-01"
    assert keys.year == "2024"
    assert keys.week == "2024-W01"
    assert keys.datetime_str == "2024-01-01 07:30:00"


def test_week_key_uses_iso_week_year():
    # 2021-01-01 is a Friday in ISO week 53 of 2020
    keys = derive_time_keys(datetime(2021, 1, 1, 4, 0, tzinfo=timezone.utc), SHANGHAI)
    assert keys.week == "2020-W53"
    assert keys.year == "2021"


def test_naive_datetime_taken_as_utc():
    keys = derive_time_keys(datetime(2024, 3, 15, 20, 0), SHANGHAI)
    assert keys.date == "2024-03-16"


def test_recent_keys():
    today = date(2024, 1, 2)
    assert recent_day_keys(today, 2) == ["2024-01-02", "2024-01-01", "2023-12-31"]
    assert recent_month_keys(today, 3) == ["2024-01", "2023-12", "2023-11"]
    assert recent_week_keys(today, 2) == ["2024-W01", "2023-W52"]


@pytest.mark.parametrize("key,valid", [
    ("2024-03", True),
    ("2024-3", False),
    ("2024-03-01", False),
    (None, False),
    (202403, False),
])
def test_month_key_validation(key, valid):
    assert is_valid_month_key(key) is valid


def test_longest_streak_is_maximum_run():
    today = date(2024, 3, 15)
    days = ["2024-03-15", "2024-03-14", "2024-03-10", "2024-03-09", "2024-03-08"]
    assert longest_streak(days, today) == 3


def test_longest_streak_ignores_malformed_and_old_keys():
    today = date(2024, 3, 15)
    assert longest_streak([], today) == 0
    assert longest_streak(["garbage", "2022-01-01"], today) == 0


def test_count_words_counts_non_space_characters():
    assert count_words("hi there") == 7
    assert count_words("你好 世界") == 4
    assert count_words("   ") == 0
    assert count_words(None) == 0


@pytest.mark.parametrize("value,expected", [
    (None, 0),
    (5, 5),
    ("7", 7),
    ("3.9", 3),
    ("abc", 0),
    (float("inf"), 0),
    ([], 0),
])
def test_to_int(value, expected):
    assert to_int(value) == expected
