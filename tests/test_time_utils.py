"""Tests for time utilities."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from remindsync.utils.time_utils import (
    UTC,
    format_local,
    from_db_timestamp,
    from_utc,
    future_cutoff,
    to_db_timestamp,
    to_utc,
)


def test_to_utc():
    """Test timezone conversion to UTC."""
    # Create a datetime in EDT (March is DST)
    dt = datetime(2026, 3, 15, 14, 30, tzinfo=ZoneInfo("America/New_York"))
    utc_dt = to_utc(dt, "America/New_York")

    assert utc_dt.tzinfo == ZoneInfo("UTC")
    # EDT is UTC-4, so 14:30 EDT = 18:30 UTC
    assert utc_dt.hour == 18


def test_to_utc_naive_uses_given_timezone():
    utc_dt = to_utc(datetime(2026, 1, 15, 9, 0), "Europe/Berlin")

    assert utc_dt == datetime(2026, 1, 15, 8, 0, tzinfo=UTC)


def test_from_utc():
    """Test timezone conversion from UTC."""
    # Create a UTC datetime
    dt = datetime(2026, 3, 15, 19, 30, tzinfo=ZoneInfo("UTC"))
    edt_dt = from_utc(dt, "America/New_York")

    assert edt_dt.tzinfo == ZoneInfo("America/New_York")
    assert edt_dt.hour == 15  # 19:30 UTC = 15:30 EDT


def test_db_timestamps_are_fixed_width_utc():
    local = datetime(2026, 3, 15, 14, 30, tzinfo=ZoneInfo("America/New_York"))
    stored = to_db_timestamp(local)

    assert stored == "2026-03-15T18:30:00.000000+00:00"
    assert from_db_timestamp(stored) == local
    assert to_db_timestamp(datetime(2026, 3, 15, 9, 5, 1, 7, tzinfo=UTC)) < stored


def test_from_db_timestamp_accepts_sqlite_defaults():
    assert from_db_timestamp("2026-03-15 18:30:00") == datetime(2026, 3, 15, 18, 30, tzinfo=UTC)
    assert from_db_timestamp(None) is None


def test_future_cutoff():
    now = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
    assert future_cutoff(now) == now + timedelta(minutes=1)


def test_format_local():
    dt = datetime(2024, 1, 31, 14, 0, tzinfo=UTC)
    assert format_local(dt, "America/New_York") == "Jan 31, 2024 at 09:00 AM (EST)"
