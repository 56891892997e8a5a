"""Delivery planning: native recurring trigger vs rolling window."""

from datetime import datetime, timedelta
from typing import Literal

from remindsync.backends.base import AlarmConfig, ScheduleMode
from remindsync.config import Config
from remindsync.db.models import DeliveryMethod, RepeatCadence, ReminderSource, ScheduledReminder
from remindsync.engine.recurrence import advance
from remindsync.engine.triggers import (
    DailyTrigger,
    FixedTrigger,
    MonthlyTrigger,
    Trigger,
    WeeklyTrigger,
    WindowTrigger,
    YearlyTrigger,
)
from remindsync.utils.constants import ALARM_CATEGORY
from remindsync.utils.time_utils import from_utc, utc_now

TimeBase = Literal["wallClock", "elapsedRealtime"]


def _daily_threshold() -> timedelta:
    return timedelta(hours=Config.DAILY_LEAD_THRESHOLD_HOURS)


def _weekly_threshold() -> timedelta:
    return timedelta(days=Config.WEEKLY_LEAD_THRESHOLD_DAYS)


def decide_delivery_method(
    cadence: RepeatCadence,
    lead_time: timedelta,
    source: ReminderSource = "manual",
) -> DeliveryMethod:
    """Pick how a reminder is delivered.

    Calendar-derived reminders always get a single civil-time-fixed trigger:
    the intent is "this wall-clock moment", not "N seconds from now".

    Otherwise:
    - none/daily: rolling window if the first occurrence is < 24h away
    - weekly: rolling window if the first occurrence is < 7 days away
    - monthly/yearly: a single app-managed trigger, never a window
    """
    if source == "calendar":
        return "nativeRecurring"

    if cadence in ("none", "daily"):
        return "rollingWindow" if lead_time < _daily_threshold() else "nativeRecurring"

    if cadence == "weekly":
        return "rollingWindow" if lead_time < _weekly_threshold() else "nativeRecurring"

    return "nativeRecurring"


def decide_schedule_mode(
    cadence: RepeatCadence,
    lead_time: timedelta,
    source: ReminderSource = "manual",
) -> ScheduleMode:
    """Whether the alarm backend should schedule relative to now or at a fixed time."""
    if source == "calendar":
        return "fixed"
    if cadence in ("none", "daily"):
        return "relative" if lead_time < _daily_threshold() else "fixed"
    if cadence == "weekly":
        return "relative" if lead_time < _weekly_threshold() else "fixed"
    return "fixed"


def time_base_for_source(source: ReminderSource) -> TimeBase:
    """Manual reminders follow the wall clock; calendar ones are timezone-independent."""
    return "elapsedRealtime" if source == "calendar" else "wallClock"


def native_trigger_for(cadence: RepeatCadence, schedule_instant: datetime, tz: str) -> Trigger:
    """The single native trigger matching a reminder's original wall-clock time."""
    local = from_utc(schedule_instant, tz)

    if cadence == "daily":
        return DailyTrigger(hour=local.hour, minute=local.minute)
    if cadence == "weekly":
        return WeeklyTrigger(weekday=local.weekday(), hour=local.hour, minute=local.minute)
    if cadence == "monthly":
        return MonthlyTrigger(day=local.day, hour=local.hour, minute=local.minute)
    if cadence == "yearly":
        return YearlyTrigger(month=local.month, day=local.day, hour=local.hour, minute=local.minute)
    return FixedTrigger(instant=schedule_instant)


def starts_after_first_period(
    cadence: RepeatCadence,
    schedule_instant: datetime,
    now: datetime,
    tz: str = "UTC",
) -> bool:
    """Whether a native repeat registered now would fire before the start.

    A daily trigger registered today fires tomorrow, a monthly one next
    month, and so on. When the start is at least one cadence step away the
    first native firing would come early.
    """
    if cadence == "none":
        return False
    return schedule_instant >= advance(from_utc(now, tz), cadence, 1)


def build_delivery_trigger(
    method: DeliveryMethod,
    cadence: RepeatCadence,
    schedule_instant: datetime,
    tz: str,
    now: datetime | None = None,
) -> Trigger:
    """The trigger descriptor persisted with a reminder.

    A nativeRecurring reminder whose start is at least one cadence step away
    gets a one-shot trigger at its start instead. The migrator swaps it for
    the recurring trigger once that first occurrence has fired.
    """
    if method == "rollingWindow":
        return WindowTrigger(cadence=cadence, count=Config.window_size(cadence))
    if now is None:
        now = utc_now()
    if starts_after_first_period(cadence, schedule_instant, now, tz):
        return FixedTrigger(instant=schedule_instant)
    return native_trigger_for(cadence, schedule_instant, tz)


def alarm_config_for(reminder: ScheduledReminder, lead_time: timedelta) -> AlarmConfig:
    """Alarm settings for one registration of a reminder."""
    return AlarmConfig(
        title=reminder.title,
        body=reminder.body,
        parent_id=reminder.id,
        time_base=time_base_for_source(reminder.source),
        schedule_mode=decide_schedule_mode(reminder.repeat_cadence, lead_time, reminder.source),
        category=ALARM_CATEGORY,
    )
