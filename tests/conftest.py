"""Shared fixtures: a temporary store and in-memory fake backends."""

from datetime import datetime, timedelta

import pytest

from remindsync.backends.base import (
    AlarmCapabilityCheck,
    AlarmConfig,
    Backends,
    NotificationContent,
    RegisteredAlarm,
    RegisteredNotification,
)
from remindsync.db.migrations import run_migrations
from remindsync.db.models import ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.identifiers import ReminderId
from remindsync.engine.planner import build_delivery_trigger
from remindsync.engine.triggers import FixedTrigger, Trigger
from remindsync.events import EventEmitter
from remindsync.utils.errors import BackendUnavailableError, NotFoundError
from remindsync.utils.time_utils import UTC, format_local

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)


class FakeNotificationBackend:
    def __init__(self):
        self.registered: dict[str, RegisteredNotification] = {}
        self.register_calls: list[str] = []
        self.cancel_calls: list[str] = []
        self.fail_register = False

    async def register(self, identifier: str, content: NotificationContent, trigger: Trigger) -> None:
        self.register_calls.append(identifier)
        if self.fail_register:
            raise BackendUnavailableError("notification scheduler unavailable")
        self.registered[identifier] = RegisteredNotification(
            identifier=identifier,
            parent_id=content.parent_id,
            trigger=trigger,
        )

    async def cancel(self, identifier: str) -> None:
        self.cancel_calls.append(identifier)
        if identifier not in self.registered:
            raise NotFoundError(f"{identifier} not found")
        del self.registered[identifier]

    async def cancel_all(self) -> None:
        self.registered.clear()

    async def list_all_registered(self) -> list[RegisteredNotification]:
        return list(self.registered.values())

    async def next_fire_instant(self, trigger: Trigger) -> datetime | None:
        if isinstance(trigger, FixedTrigger):
            return trigger.instant
        return None


class FakeAlarmBackend:
    def __init__(self, supports_enumeration: bool = True):
        self.supports_enumeration = supports_enumeration
        self.alarms: dict[str, tuple[RegisteredAlarm, str | None]] = {}
        self.cancelled: list[str] = []
        self.fail_register = False
        self.capability = AlarmCapabilityCheck(capability="native_alarms", requires_permission=True, authorized=True)
        self.capability_error: Exception | None = None
        self.configs: dict[str, AlarmConfig] = {}
        self.schedules: dict[str, Trigger] = {}
        self._counter = 0

    async def register_alarm(self, schedule: Trigger, config: AlarmConfig) -> str:
        if self.fail_register:
            raise BackendUnavailableError("alarm subsystem unavailable")
        self._counter += 1
        native_id = f"alarm-{self._counter}"
        self.alarms[native_id] = (RegisteredAlarm(native_id=native_id, parent_id=config.parent_id), config.category)
        self.configs[native_id] = config
        self.schedules[native_id] = schedule
        return native_id

    async def cancel_alarm(self, native_id: str) -> None:
        if native_id not in self.alarms:
            raise NotFoundError(f"Alarm {native_id} not found")
        del self.alarms[native_id]
        self.cancelled.append(native_id)

    async def check_capability(self) -> AlarmCapabilityCheck:
        if self.capability_error is not None:
            raise self.capability_error
        return self.capability

    async def list_by_category(self, category: str) -> list[RegisteredAlarm]:
        return [alarm for alarm, alarm_category in self.alarms.values() if alarm_category == category]

    async def cancel_by_category(self, category: str) -> None:
        for native_id in [k for k, (_, c) in self.alarms.items() if c == category]:
            await self.cancel_alarm(native_id)

    def parent_alarms(self, parent_id: str) -> list[str]:
        return [k for k, (alarm, _) in self.alarms.items() if alarm.parent_id == parent_id]


class FakePermissions:
    def __init__(self, status: str = "granted"):
        self.status = status
        self.error: Exception | None = None

    async def notification_status(self) -> str:
        if self.error is not None:
            raise self.error
        return self.status


class RecordingAlertSink:
    def __init__(self):
        self.alerts: list[tuple[str, str]] = []

    async def alert(self, title: str, message: str) -> None:
        self.alerts.append((title, message))


@pytest.fixture
async def repo(tmp_path):
    db_path = tmp_path / "remindsync.db"
    await run_migrations(db_path)
    repository = Repository(db_path)
    await repository.connect()
    yield repository
    await repository.close()


@pytest.fixture
def backends():
    return Backends(
        notifications=FakeNotificationBackend(),
        alarms=FakeAlarmBackend(),
        permissions=FakePermissions(),
        alerts=RecordingAlertSink(),
    )


@pytest.fixture
def events():
    """A private emitter plus the list of payloads it received."""
    emitter = EventEmitter("test")
    received: list[tuple] = []
    emitter.subscribe(lambda *args: received.append(args))
    return emitter, received


@pytest.fixture
def make_reminder(repo):
    """Store a reminder row directly, bypassing the scheduler."""

    async def _make(
        schedule_instant: datetime = NOW + timedelta(hours=2),
        cadence: str = "daily",
        method: str = "rollingWindow",
        has_alarm: bool = False,
        **fields,
    ) -> ScheduledReminder:
        tz = fields.pop("timezone", "UTC")
        reminder = ScheduledReminder(
            id=fields.pop("id", str(ReminderId.new())),
            title=fields.pop("title", "Take vitamins"),
            body=fields.pop("body", "With breakfast"),
            schedule_instant=schedule_instant,
            schedule_instant_local=format_local(schedule_instant, tz),
            delivery_trigger=build_delivery_trigger(method, cadence, schedule_instant, tz, NOW),  # type: ignore[arg-type]
            delivery_method=method,  # type: ignore[arg-type]
            repeat_cadence=cadence,  # type: ignore[arg-type]
            timezone=tz,
            has_alarm=has_alarm,
            **fields,
        )
        await repo.save_reminder(reminder)
        return reminder

    return _make
