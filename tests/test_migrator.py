"""Tests for the migration onto native recurring triggers."""

from datetime import timedelta

import pytest
from conftest import NOW

from remindsync.config import Config
from remindsync.db.models import ReminderDraft
from remindsync.engine.migrator import MigrationRolledBack, migrate_reminder, needs_migration, run_migration_pass
from remindsync.engine.replenisher import replenish_reminder
from remindsync.engine.scheduler import schedule_reminder
from remindsync.engine.triggers import DailyTrigger, FixedTrigger, MonthlyTrigger

FIRST_FIRE = NOW + timedelta(hours=2)
AFTER_FIRST_FIRE = FIRST_FIRE + timedelta(hours=1)


async def _windowed(repo, backends, make_reminder, has_alarm=False):
    reminder = await make_reminder(schedule_instant=FIRST_FIRE, cadence="daily", has_alarm=has_alarm)
    await replenish_reminder(repo, backends, reminder, "notification", NOW)
    if has_alarm:
        await replenish_reminder(repo, backends, reminder, "alarm", NOW)
    return reminder


async def test_needs_migration(make_reminder):
    reminder = await make_reminder(schedule_instant=FIRST_FIRE, cadence="daily")

    assert not needs_migration(reminder, NOW)
    assert needs_migration(reminder, AFTER_FIRST_FIRE)


async def test_migrates_to_native_recurring(repo, backends, make_reminder):
    reminder = await _windowed(repo, backends, make_reminder, has_alarm=True)

    result = await run_migration_pass(repo, backends, AFTER_FIRST_FIRE)

    assert result.migrated == 1
    stored = await repo.get_reminder(reminder.id)
    assert stored.delivery_method == "nativeRecurring"
    assert stored.delivery_trigger == DailyTrigger(hour=FIRST_FIRE.hour, minute=FIRST_FIRE.minute)

    # Only the native recurring notification and alarm remain
    assert list(backends.notifications.registered) == [reminder.id]
    assert await repo.get_active_instances("notification", reminder.id) == []
    assert await repo.get_active_instances("alarm", reminder.id) == []
    mappings = await repo.get_alarm_mappings(reminder.id)
    assert [m.kind for m in mappings] == ["recurring"]
    assert backends.alarms.parent_alarms(reminder.id) == [mappings[0].native_alarm_id]


async def test_alarm_failure_rolls_back(repo, backends, make_reminder):
    """A failed alarm registration undoes the new notification and keeps old alarms."""
    reminder = await _windowed(repo, backends, make_reminder, has_alarm=True)
    alarms_before = set(backends.alarms.alarms)
    backends.alarms.fail_register = True

    with pytest.raises(MigrationRolledBack):
        await migrate_reminder(repo, backends, reminder, AFTER_FIRST_FIRE)

    assert reminder.id in backends.notifications.register_calls
    assert reminder.id not in backends.notifications.registered
    assert (await repo.get_reminder(reminder.id)).delivery_method == "rollingWindow"
    assert backends.alarms.cancelled == []
    assert set(backends.alarms.alarms) == alarms_before
    assert len(await repo.get_active_instances("alarm", reminder.id)) == Config.window_size("daily")
    assert await repo.get_alarm_mappings(reminder.id) == []


async def test_rollback_is_counted_by_pass(repo, backends, make_reminder):
    await _windowed(repo, backends, make_reminder, has_alarm=True)
    backends.alarms.fail_register = True

    result = await run_migration_pass(repo, backends, AFTER_FIRST_FIRE)

    assert result.rolled_back == 1
    assert result.migrated == 0
    assert (await repo.get_semaphore()).active_migration is False


async def test_skips_without_active_instances(repo, backends, make_reminder):
    reminder = await make_reminder(schedule_instant=FIRST_FIRE, cadence="daily")

    assert await migrate_reminder(repo, backends, reminder, AFTER_FIRST_FIRE) is False
    assert backends.notifications.register_calls == []


async def test_notification_failure_leaves_window(repo, backends, make_reminder):
    reminder = await _windowed(repo, backends, make_reminder)
    backends.notifications.fail_register = True

    assert await migrate_reminder(repo, backends, reminder, AFTER_FIRST_FIRE) is False
    assert (await repo.get_reminder(reminder.id)).delivery_method == "rollingWindow"


async def test_held_semaphore_skips_pass(repo, backends, make_reminder):
    await _windowed(repo, backends, make_reminder)
    assert await repo.try_acquire_migration_semaphore(AFTER_FIRST_FIRE, timedelta(minutes=5))

    result = await run_migration_pass(repo, backends, AFTER_FIRST_FIRE + timedelta(minutes=1))

    assert result.ran is False
    assert result.migrated == 0


async def test_stale_semaphore_is_taken_over(repo, backends, make_reminder):
    await _windowed(repo, backends, make_reminder)
    assert await repo.try_acquire_migration_semaphore(NOW, timedelta(minutes=5))

    result = await run_migration_pass(repo, backends, AFTER_FIRST_FIRE)

    assert result.ran is True
    assert result.migrated == 1


async def test_far_start_is_promoted_after_first_fire(repo, backends, events):
    """A daily reminder starting in five days moves to a daily trigger once the start fires."""
    emitter, _ = events
    start = NOW + timedelta(days=5)
    draft = ReminderDraft(
        title="Stretch",
        body="Ten minutes",
        schedule_instant=start,
        repeat_cadence="daily",
        has_alarm=True,
    )
    reminder = await schedule_reminder(repo, backends, draft, emitter, NOW)
    start_alarms = backends.alarms.parent_alarms(reminder.id)

    assert not needs_migration(reminder, NOW)
    assert needs_migration(reminder, start + timedelta(minutes=5))

    result = await run_migration_pass(repo, backends, start + timedelta(minutes=5))

    assert result.migrated == 1
    stored = await repo.get_reminder(reminder.id)
    assert stored.delivery_method == "nativeRecurring"
    assert stored.delivery_trigger == DailyTrigger(hour=12, minute=0)
    assert backends.notifications.registered[reminder.id].trigger == DailyTrigger(hour=12, minute=0)

    mappings = await repo.get_alarm_mappings(reminder.id)
    assert [m.kind for m in mappings] == ["recurring"]
    assert backends.alarms.parent_alarms(reminder.id) == [mappings[0].native_alarm_id]
    assert backends.alarms.cancelled == start_alarms

    again = await run_migration_pass(repo, backends, start + timedelta(minutes=10))
    assert again.migrated == 0


async def test_promotion_alarm_failure_keeps_start_alarm(repo, backends, events):
    emitter, _ = events
    start = NOW + timedelta(days=40)
    draft = ReminderDraft(
        title="Pay rent",
        body="",
        schedule_instant=start,
        repeat_cadence="monthly",
        has_alarm=True,
    )
    reminder = await schedule_reminder(repo, backends, draft, emitter, NOW)
    backends.alarms.fail_register = True

    with pytest.raises(MigrationRolledBack):
        await migrate_reminder(repo, backends, reminder, start + timedelta(minutes=5))

    stored = await repo.get_reminder(reminder.id)
    assert stored.delivery_trigger == FixedTrigger(instant=start)
    assert reminder.id not in backends.notifications.registered
    assert [m.kind for m in await repo.get_alarm_mappings(reminder.id)] == ["fixed"]

    # The next pass retries
    backends.alarms.fail_register = False
    result = await run_migration_pass(repo, backends, start + timedelta(minutes=10))
    assert result.migrated == 1
    assert (await repo.get_reminder(reminder.id)).delivery_trigger == MonthlyTrigger(day=start.day, hour=12, minute=0)
