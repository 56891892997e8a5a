"""Data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from remindsync.engine.triggers import Trigger


RepeatCadence = Literal["none", "daily", "weekly", "monthly", "yearly"]
DeliveryMethod = Literal["nativeRecurring", "rollingWindow"]
ReminderSource = Literal["manual", "calendar"]
OccurrenceSource = Literal["tap", "foreground", "catchup"]
InstanceKind = Literal["notification", "alarm"]
AlarmMappingKind = Literal["recurring", "fixed"]

NotificationPermission = Literal["granted", "denied"]
AlarmPermission = Literal["authorized", "denied", "notSupported"]

REPEATING_CADENCES: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")


@dataclass
class ScheduledReminder:
    """An active reminder that has not been delivered and closed yet."""

    id: str
    title: str
    body: str
    schedule_instant: datetime  # UTC
    schedule_instant_local: str
    delivery_trigger: Trigger | None  # None when the stored descriptor is unreadable
    delivery_method: DeliveryMethod
    repeat_cadence: RepeatCadence = "none"
    timezone: str = "UTC"
    has_alarm: bool = False
    source: ReminderSource = "manual"
    note: str | None = None
    link: str | None = None
    # Provenance snapshot for calendar-derived reminders
    calendar_id: str | None = None
    original_event_id: str | None = None
    original_event_title: str | None = None
    original_event_start: datetime | None = None
    original_event_end: datetime | None = None
    original_event_location: str | None = None
    original_event_recurrence: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_repeating(self) -> bool:
        return self.repeat_cadence in REPEATING_CADENCES


@dataclass
class ArchivedReminder(ScheduledReminder):
    """Terminal record of a reminder. Append-only except handled_at."""

    handled_at: datetime | None = None  # user opened it
    cancelled_at: datetime | None = None  # system voided it
    archived_at: datetime | None = None


@dataclass
class TriggerInstance:
    """One concrete one-shot trigger belonging to a rolling window."""

    parent_id: str
    native_trigger_id: str
    fire_instant: datetime  # UTC
    kind: InstanceKind = "notification"
    is_active: bool = False
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class NativeAlarmMapping:
    """Maps a reminder to an alarm the alarm backend knows by its own id."""

    parent_id: str
    native_alarm_id: str
    kind: AlarmMappingKind
    created_at: datetime | None = None


@dataclass
class RepeatOccurrence:
    """Audit record of one delivered firing of a repeating reminder."""

    parent_id: str
    fire_instant: datetime  # UTC
    source: OccurrenceSource
    title: str
    body: str
    note: str | None = None
    link: str | None = None
    recorded_at: datetime | None = None
    id: int | None = None


@dataclass
class SemaphoreState:
    """The migration re-entrancy guard."""

    active_migration: bool
    last_migration_at: datetime | None = None


@dataclass
class ReconcileSummary:
    """What an orphan reconciliation pass did."""

    cancelled_platform_orphans: int = 0
    rescheduled_items: int = 0
    cancelled_db_removed_items: int = 0
    failures: int = 0

    @property
    def has_actions(self) -> bool:
        return (
            self.cancelled_platform_orphans > 0
            or self.rescheduled_items > 0
            or self.cancelled_db_removed_items > 0
        )


@dataclass
class ReminderDraft:
    """Input for creating or editing a reminder."""

    title: str
    body: str
    schedule_instant: datetime
    repeat_cadence: RepeatCadence = "none"
    timezone: str = "UTC"
    has_alarm: bool = False
    source: ReminderSource = "manual"
    note: str | None = None
    link: str | None = None
    calendar_id: str | None = None
    original_event_id: str | None = None
    original_event_title: str | None = None
    original_event_start: datetime | None = None
    original_event_end: datetime | None = None
    original_event_location: str | None = None
    original_event_recurrence: str | None = None
