"""Tests for cadence arithmetic and the occurrence generator."""

from datetime import datetime

import pytest

from remindsync.engine.recurrence import (
    advance,
    cadence_from_rrule,
    first_index_after,
    generate_occurrences,
)
from remindsync.utils.time_utils import UTC


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def test_monthly_clamps_to_month_end():
    """Jan 31 steps to the last day of shorter months, leap day included."""
    start = utc(2024, 1, 31, 9, 0)
    result = generate_occurrences(start, "monthly", 3, 9, 0, now=start)

    assert result == [utc(2024, 2, 29, 9, 0), utc(2024, 3, 31, 9, 0), utc(2024, 4, 30, 9, 0)]


def test_monthly_steps_from_anchor_not_chained():
    """After clamping to Feb 29 the series returns to the 31st."""
    anchor = utc(2024, 1, 31, 9, 0)
    assert advance(anchor, "monthly", 1) == utc(2024, 2, 29, 9, 0)
    assert advance(anchor, "monthly", 2) == utc(2024, 3, 31, 9, 0)


def test_yearly_leap_day():
    start = utc(2024, 2, 29, 8, 0)
    result = generate_occurrences(start, "yearly", 4, 8, 0, now=start)

    assert result == [
        utc(2025, 2, 28, 8, 0),
        utc(2026, 2, 28, 8, 0),
        utc(2027, 2, 28, 8, 0),
        utc(2028, 2, 29, 8, 0),
    ]


def test_daily_skips_past_occurrences():
    start = utc(2024, 1, 1, 9, 0)
    now = utc(2024, 1, 10, 12, 0)
    result = generate_occurrences(start, "daily", 3, 9, 0, now=now)

    assert result == [utc(2024, 1, 11, 9, 0), utc(2024, 1, 12, 9, 0), utc(2024, 1, 13, 9, 0)]


def test_occurrence_inside_future_margin_is_skipped():
    """An instant less than a minute away is treated as past."""
    start = utc(2024, 1, 1, 9, 0)
    now = utc(2024, 1, 1, 8, 59, 30)
    result = generate_occurrences(start, "daily", 1, 9, 0, now=now)

    assert result == [utc(2024, 1, 2, 9, 0)]


def test_after_continues_existing_window():
    start = utc(2024, 1, 1, 9, 0)
    result = generate_occurrences(start, "daily", 2, 9, 0, now=start, after=utc(2024, 1, 5, 9, 0))

    assert result == [utc(2024, 1, 6, 9, 0), utc(2024, 1, 7, 9, 0)]


def test_weekly():
    start = utc(2024, 6, 3, 18, 30)  # Monday
    result = generate_occurrences(start, "weekly", 2, 18, 30, now=utc(2024, 6, 1))

    assert result == [utc(2024, 6, 3, 18, 30), utc(2024, 6, 10, 18, 30)]


def test_one_time_future_and_past():
    now = utc(2024, 6, 3, 12, 0)

    assert generate_occurrences(utc(2024, 6, 3, 14, 0), "none", 5, 14, 0, now=now) == [utc(2024, 6, 3, 14, 0)]
    assert generate_occurrences(utc(2024, 6, 3, 10, 0), "none", 5, 10, 0, now=now) == []


def test_zero_count():
    start = utc(2024, 1, 1, 9, 0)
    assert generate_occurrences(start, "daily", 0, 9, 0, now=start) == []


def test_wall_clock_survives_dst():
    """09:00 New York stays 09:00 local across the March DST change."""
    start = utc(2024, 3, 9, 14, 0)  # 09:00 EST
    result = generate_occurrences(start, "daily", 2, 9, 0, now=start, tz="America/New_York")

    # 09:00 EDT is 13:00 UTC
    assert result == [utc(2024, 3, 10, 13, 0), utc(2024, 3, 11, 13, 0)]


def test_first_index_after():
    anchor = utc(2024, 1, 1, 9, 0)

    assert first_index_after(anchor, "daily", utc(2023, 12, 31)) == 0
    assert first_index_after(anchor, "daily", anchor) == 1
    assert first_index_after(anchor, "daily", utc(2024, 1, 3, 10, 0)) == 3
    assert first_index_after(anchor, "monthly", utc(2024, 5, 1, 9, 0)) == 5


def test_unknown_cadence():
    with pytest.raises(ValueError):
        advance(utc(2024, 1, 1), "hourly", 1)


def test_cadence_from_rrule():
    assert cadence_from_rrule("FREQ=DAILY") == "daily"
    assert cadence_from_rrule("RRULE:FREQ=MONTHLY;BYMONTHDAY=1") == "monthly"
    assert cadence_from_rrule("FREQ=YEAR") == "yearly"
    assert cadence_from_rrule("weekly") == "weekly"
    assert cadence_from_rrule("FREQ=HOURLY") == "none"
    assert cadence_from_rrule(None) == "none"
