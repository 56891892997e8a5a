"""Time and timezone utilities."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from remindsync.utils.constants import FUTURE_MARGIN_SECONDS

UTC = ZoneInfo("UTC")

# Fixed-width so stored timestamps compare correctly as text
_DB_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(dt: datetime, tz: str) -> datetime:
    """Convert a timezone-aware datetime to UTC."""
    if dt.tzinfo is None:
        # Assume it's in the given timezone
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


def from_utc(dt: datetime, tz: str) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(ZoneInfo(tz))


def future_cutoff(now: datetime | None = None) -> datetime:
    """Instants at or before this are treated as already past."""
    if now is None:
        now = utc_now()
    return now + timedelta(seconds=FUTURE_MARGIN_SECONDS)


def to_db_timestamp(dt: datetime) -> str:
    """Format a datetime for storage (UTC, fixed width)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).strftime(_DB_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        # SQLite CURRENT_TIMESTAMP is UTC without an offset
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_local(dt: datetime, tz: str) -> str:
    """Display string for a reminder's local schedule time.

    Example:
        "Jan 31, 2024 at 09:00 AM (EST)"
    """
    local_dt = from_utc(dt, tz)
    return f"{local_dt.strftime('%b %d, %Y at %I:%M %p')} ({local_dt.tzname()})"
