"""Capability interfaces for the native scheduling backends.

The core never talks to an OS API directly. Hosts implement these
protocols on top of whatever notification scheduler and alarm subsystem the
platform offers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Protocol, runtime_checkable

from remindsync.alerts import AlertSink, LogAlertSink
from remindsync.engine.triggers import Trigger

AlarmCapabilityLevel = Literal["native_alarms", "notification", "inexact", "none"]


@dataclass(frozen=True)
class NotificationContent:
    """What a notification shows, plus the parent it belongs to."""

    title: str
    body: str
    parent_id: str
    note: str | None = None
    link: str | None = None


@dataclass(frozen=True)
class RegisteredNotification:
    """A notification currently pending on the platform."""

    identifier: str
    parent_id: str | None = None  # embedded parent reference, if any
    trigger: Trigger | None = None


# How the alarm backend anchors a schedule when the time zone changes
ScheduleMode = Literal["relative", "fixed"]


@dataclass(frozen=True)
class AlarmConfig:
    title: str
    body: str
    parent_id: str
    time_base: Literal["wallClock", "elapsedRealtime"] = "wallClock"
    schedule_mode: ScheduleMode = "fixed"
    category: str | None = None


@dataclass(frozen=True)
class RegisteredAlarm:
    native_id: str
    parent_id: str | None = None


@dataclass(frozen=True)
class AlarmCapabilityCheck:
    capability: AlarmCapabilityLevel
    requires_permission: bool
    authorized: bool | None = None
    reason: str = ""


@runtime_checkable
class NotificationBackend(Protocol):
    """The OS notification scheduler."""

    async def register(self, identifier: str, content: NotificationContent, trigger: Trigger) -> None:
        ...

    async def cancel(self, identifier: str) -> None:
        """Cancel one pending notification. May raise NotFoundError."""
        ...

    async def cancel_all(self) -> None:
        ...

    async def list_all_registered(self) -> list[RegisteredNotification]:
        ...

    async def next_fire_instant(self, trigger: Trigger) -> datetime | None:
        ...


@runtime_checkable
class AlarmBackend(Protocol):
    """The native alarm subsystem."""

    # False where the platform cannot list registered alarms one by one
    supports_enumeration: bool

    async def register_alarm(self, schedule: Trigger, config: AlarmConfig) -> str:
        """Register an alarm and return the backend's id for it."""
        ...

    async def cancel_alarm(self, native_id: str) -> None:
        ...

    async def check_capability(self) -> AlarmCapabilityCheck:
        ...

    async def list_by_category(self, category: str) -> list[RegisteredAlarm]:
        """Only meaningful when supports_enumeration is True."""
        ...

    async def cancel_by_category(self, category: str) -> None:
        ...


@runtime_checkable
class PermissionQueries(Protocol):
    async def notification_status(self) -> Literal["granted", "denied"]:
        ...


@dataclass
class Backends:
    """Everything outside the store the core needs, passed explicitly."""

    notifications: NotificationBackend
    alarms: AlarmBackend
    permissions: PermissionQueries
    alerts: AlertSink = field(default_factory=LogAlertSink)


def alarm_permission_from(check: AlarmCapabilityCheck) -> Literal["authorized", "denied", "notSupported"]:
    """Collapse a capability check into the alarm permission state."""
    if check.capability == "none":
        return "notSupported"
    if not check.requires_permission:
        return "authorized"
    return "authorized" if check.authorized else "denied"
