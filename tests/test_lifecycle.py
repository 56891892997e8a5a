"""Tests for the lifecycle hooks."""

from datetime import timedelta

from conftest import NOW

from remindsync.backends.base import NotificationContent
from remindsync.config import Config
from remindsync.engine.identifiers import ReminderId
from remindsync.engine.triggers import FixedTrigger
from remindsync.lifecycle import heartbeat, on_cold_start, on_foreground


async def test_cold_start_runs_every_step(repo, backends, make_reminder):
    await make_reminder(cadence="daily")
    native = await make_reminder(
        schedule_instant=NOW - timedelta(weeks=2), cadence="weekly", method="nativeRecurring"
    )

    report = await on_cold_start(repo, backends, NOW)

    assert report.permissions.notification == "granted"
    assert report.migration.ran is True
    assert report.reconcile.rescheduled_items == Config.window_size("daily") + 1
    # Two weeks back, one week back and today
    assert report.catchup == 3
    assert native.id in backends.notifications.registered


async def test_foreground_cancels_orphans(repo, backends):
    ghost = str(ReminderId.new())
    await backends.notifications.register(
        ghost,
        NotificationContent(title="Ghost", body="", parent_id=ghost),
        FixedTrigger(instant=NOW + timedelta(days=1)),
    )

    report = await on_foreground(repo, backends, NOW)

    assert report.reconcile.cancelled_platform_orphans == 1
    assert backends.notifications.registered == {}


async def test_heartbeat_tops_up_windows(repo, backends, make_reminder):
    reminder = await make_reminder(cadence="daily", has_alarm=True)
    size = Config.window_size("daily")

    first = await heartbeat(repo, backends, NOW)
    second = await heartbeat(repo, backends, NOW)

    assert first.registered == 2 * size
    assert second.registered == 0
    assert len(backends.alarms.parent_alarms(reminder.id)) == size


async def test_heartbeat_archives_past_one_time(repo, backends, make_reminder):
    reminder = await make_reminder(
        schedule_instant=NOW - timedelta(hours=1), cadence="none", method="nativeRecurring"
    )

    await heartbeat(repo, backends, NOW)

    assert await repo.get_reminder(reminder.id) is None
    assert await repo.get_archived_reminder(reminder.id) is not None
