"""Delivery trigger descriptors.

A trigger is what gets replayed to a native backend. Each shape is its own
frozen dataclass; the persisted form is a JSON object tagged by "type".
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from remindsync.utils.errors import DataCorruptionError
from remindsync.utils.time_utils import from_db_timestamp, to_db_timestamp


@dataclass(frozen=True)
class FixedTrigger:
    """Fire once at an absolute instant."""

    instant: datetime  # UTC


@dataclass(frozen=True)
class DailyTrigger:
    hour: int
    minute: int


@dataclass(frozen=True)
class WeeklyTrigger:
    weekday: int  # 0 = Monday
    hour: int
    minute: int


@dataclass(frozen=True)
class MonthlyTrigger:
    day: int
    hour: int
    minute: int


@dataclass(frozen=True)
class YearlyTrigger:
    month: int
    day: int
    hour: int
    minute: int


@dataclass(frozen=True)
class WindowTrigger:
    """A rolling window of one-shot triggers managed by the app."""

    cadence: str
    count: int


Trigger = Union[FixedTrigger, DailyTrigger, WeeklyTrigger, MonthlyTrigger, YearlyTrigger, WindowTrigger]

RECURRING_TRIGGERS = (DailyTrigger, WeeklyTrigger, MonthlyTrigger, YearlyTrigger)

_TAGS = {
    FixedTrigger: "fixed",
    DailyTrigger: "daily",
    WeeklyTrigger: "weekly",
    MonthlyTrigger: "monthly",
    YearlyTrigger: "yearly",
    WindowTrigger: "window",
}


def _check_range(name: str, value: int, low: int, high: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise DataCorruptionError(f"Trigger field {name}={value!r} out of range {low}..{high}")
    return value


def trigger_to_dict(trigger: Trigger) -> dict:
    """Convert a trigger into its tagged dict form."""
    tag = _TAGS.get(type(trigger))
    if tag is None:
        raise TypeError(f"Unknown trigger type: {type(trigger).__name__}")

    if isinstance(trigger, FixedTrigger):
        return {"type": tag, "instant": to_db_timestamp(trigger.instant)}
    if isinstance(trigger, DailyTrigger):
        return {"type": tag, "hour": trigger.hour, "minute": trigger.minute}
    if isinstance(trigger, WeeklyTrigger):
        return {"type": tag, "weekday": trigger.weekday, "hour": trigger.hour, "minute": trigger.minute}
    if isinstance(trigger, MonthlyTrigger):
        return {"type": tag, "day": trigger.day, "hour": trigger.hour, "minute": trigger.minute}
    if isinstance(trigger, YearlyTrigger):
        return {
            "type": tag,
            "month": trigger.month,
            "day": trigger.day,
            "hour": trigger.hour,
            "minute": trigger.minute,
        }
    return {"type": tag, "cadence": trigger.cadence, "count": trigger.count}


def trigger_from_dict(data: dict) -> Trigger:
    """Rebuild a trigger from its tagged dict form.

    Raises:
        DataCorruptionError: if the tag is unknown or a field is missing/invalid
    """
    if not isinstance(data, dict):
        raise DataCorruptionError(f"Trigger descriptor is not an object: {data!r}")

    tag = data.get("type")
    try:
        if tag == "fixed":
            instant = from_db_timestamp(data["instant"])
            if instant is None:
                raise DataCorruptionError("Fixed trigger has no instant")
            return FixedTrigger(instant=instant)

        hour = minute = 0
        if tag in ("daily", "weekly", "monthly", "yearly"):
            hour = _check_range("hour", data["hour"], 0, 23)
            minute = _check_range("minute", data["minute"], 0, 59)

        if tag == "daily":
            return DailyTrigger(hour=hour, minute=minute)
        if tag == "weekly":
            return WeeklyTrigger(weekday=_check_range("weekday", data["weekday"], 0, 6), hour=hour, minute=minute)
        if tag == "monthly":
            return MonthlyTrigger(day=_check_range("day", data["day"], 1, 31), hour=hour, minute=minute)
        if tag == "yearly":
            return YearlyTrigger(
                month=_check_range("month", data["month"], 1, 12),
                day=_check_range("day", data["day"], 1, 31),
                hour=hour,
                minute=minute,
            )
        if tag == "window":
            return WindowTrigger(cadence=str(data["cadence"]), count=_check_range("count", data["count"], 0, 10_000))
    except (KeyError, TypeError, ValueError) as e:
        raise DataCorruptionError(f"Malformed {tag} trigger: {e}") from e

    raise DataCorruptionError(f"Unknown trigger type: {tag!r}")


def encode_trigger(trigger: Trigger) -> str:
    """Serialize a trigger for storage."""
    return json.dumps(trigger_to_dict(trigger), sort_keys=True)


def decode_trigger(raw: str | None) -> Trigger:
    """Parse a stored trigger descriptor.

    Raises:
        DataCorruptionError: if the descriptor is empty or unparseable
    """
    if not raw:
        raise DataCorruptionError("Empty trigger descriptor")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DataCorruptionError(f"Trigger descriptor is not JSON: {e}") from e
    return trigger_from_dict(data)


def is_recurring(trigger: Trigger) -> bool:
    return isinstance(trigger, RECURRING_TRIGGERS)
