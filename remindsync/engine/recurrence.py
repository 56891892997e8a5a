"""Cadence arithmetic and the rolling-window occurrence generator."""

import re
from datetime import datetime

from dateutil.relativedelta import relativedelta

from remindsync.utils.time_utils import UTC, from_utc, future_cutoff

_STEPS = {
    "daily": lambda k: relativedelta(days=k),
    "weekly": lambda k: relativedelta(weeks=k),
    "monthly": lambda k: relativedelta(months=k),
    "yearly": lambda k: relativedelta(years=k),
}

_FREQ_TO_CADENCE = {
    "DAILY": "daily",
    "WEEKLY": "weekly",
    "MONTHLY": "monthly",
    "YEARLY": "yearly",
}

# Short forms some calendar providers emit (FREQ=DAY, FREQ=YEAR)
_SHORT_FREQ_TO_CADENCE = {
    "DAY": "daily",
    "WEEK": "weekly",
    "MONTH": "monthly",
    "YEAR": "yearly",
}


def advance(anchor: datetime, cadence: str, steps: int) -> datetime:
    """Move an anchor forward by a number of cadence steps.

    Steps are always taken from the anchor, never chained, and in the
    anchor's own timezone so wall-clock time survives DST changes. Month and
    year steps clamp the day to the last valid day of the resulting month:
    Jan 31 + 1 month is Feb 29 in 2024, and Jan 31 + 2 months is Mar 31.
    """
    if steps == 0 or cadence == "none":
        return anchor
    step = _STEPS.get(cadence)
    if step is None:
        raise ValueError(f"Unknown repeat cadence: {cadence}")
    return anchor + step(steps)


def first_index_after(anchor: datetime, cadence: str, instant: datetime) -> int:
    """Smallest step index k with advance(anchor, cadence, k) > instant."""
    if anchor > instant:
        return 0
    if cadence == "none":
        # A one-shot series has no later occurrence; callers check bounds
        return 1

    local_instant = instant.astimezone(anchor.tzinfo)
    if cadence == "daily":
        estimate = (instant - anchor).days - 1
    elif cadence == "weekly":
        estimate = (instant - anchor).days // 7 - 1
    elif cadence == "monthly":
        estimate = (local_instant.year - anchor.year) * 12 + (local_instant.month - anchor.month) - 1
    elif cadence == "yearly":
        estimate = local_instant.year - anchor.year - 1
    else:
        raise ValueError(f"Unknown repeat cadence: {cadence}")

    k = max(0, estimate)
    while advance(anchor, cadence, k) <= instant:
        k += 1
    return k


def anchor_at(start: datetime, hour: int, minute: int, tz: str = "UTC") -> datetime:
    """Normalize a start instant to (hour, minute) wall-clock time in tz."""
    local_start = from_utc(start, tz)
    return local_start.replace(hour=hour, minute=minute, second=0, microsecond=0)


def generate_occurrences(
    start: datetime,
    cadence: str,
    count: int,
    hour: int,
    minute: int,
    *,
    now: datetime | None = None,
    tz: str = "UTC",
    after: datetime | None = None,
) -> list[datetime]:
    """Produce the next future occurrences of a repeat cadence.

    The series is anchored at start normalized to (hour, minute) in tz.
    Anything at or before now + 1 minute is skipped (so an anchor that has
    already passed advances by cadence steps first), as is anything at or
    before `after` when given.

    Args:
        start: Series start instant (UTC)
        cadence: none, daily, weekly, monthly or yearly
        count: Maximum number of instants to return
        hour: Local hour of day
        minute: Local minute
        now: Current time (UTC), defaults to now
        tz: IANA timezone the wall-clock time belongs to
        after: Only return instants strictly later than this

    Returns:
        Up to count UTC datetimes, ascending
    """
    if count <= 0:
        return []

    anchor = anchor_at(start, hour, minute, tz)
    cutoff = future_cutoff(now)
    if after is not None and after > cutoff:
        cutoff = after

    if cadence == "none":
        return [anchor.astimezone(UTC)] if anchor > cutoff else []

    first = first_index_after(anchor, cadence, cutoff)
    return [advance(anchor, cadence, k).astimezone(UTC) for k in range(first, first + count)]


def cadence_from_rrule(rule: str | None) -> str:
    """Map an iCalendar RRULE (or a bare frequency name) to a repeat cadence.

    Examples:
        "FREQ=DAILY" -> "daily"
        "RRULE:FREQ=MONTHLY;BYMONTHDAY=1" -> "monthly"
        "weekly" -> "weekly"
        None -> "none"
    """
    if not rule:
        return "none"
    text = rule.strip().upper()
    match = re.search(r"FREQ=([A-Z]+)", text)
    freq = match.group(1) if match else text
    if freq in _FREQ_TO_CADENCE:
        return _FREQ_TO_CADENCE[freq]
    return _SHORT_FREQ_TO_CADENCE.get(freq, "none")
