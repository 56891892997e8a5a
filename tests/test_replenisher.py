"""Tests for the rolling-window replenisher."""

import asyncio
from datetime import timedelta

from conftest import NOW

from remindsync.config import Config
from remindsync.engine.identifiers import is_instance_identifier
from remindsync.engine.replenisher import ensure_alarm_windows, ensure_notification_windows, replenish_reminder
from remindsync.utils.constants import STALE_CLAIM_MINUTES
from remindsync.utils.time_utils import future_cutoff, to_db_timestamp, utc_now


async def test_fills_window_to_target(repo, backends, make_reminder):
    """After a pass the reminder has a full window of future instances."""
    reminder = await make_reminder(cadence="daily")
    target = Config.window_size("daily")

    result = await replenish_reminder(repo, backends, reminder, now=NOW)

    assert result.registered == target
    assert result.failures == 0
    assert await repo.count_active_future_instances("notification", reminder.id, future_cutoff(NOW)) == target
    instance_ids = [i for i in backends.notifications.registered if is_instance_identifier(i)]
    assert len(instance_ids) == target
    assert all(n.parent_id == reminder.id for n in backends.notifications.registered.values())


async def test_second_pass_is_a_no_op(repo, backends, make_reminder):
    reminder = await make_reminder(cadence="weekly")
    await replenish_reminder(repo, backends, reminder, now=NOW)

    again = await replenish_reminder(repo, backends, reminder, now=NOW)

    assert again.registered == 0
    assert len(backends.notifications.register_calls) == Config.window_size("weekly")


async def test_tops_up_after_instances_fire(repo, backends, make_reminder):
    """Consumed instants are replaced by later ones, never re-registered."""
    reminder = await make_reminder(cadence="daily")
    await replenish_reminder(repo, backends, reminder, now=NOW)

    later = NOW + timedelta(days=3)
    result = await replenish_reminder(repo, backends, reminder, now=later)

    assert result.registered == 3
    assert await repo.count_active_future_instances("notification", reminder.id, future_cutoff(later)) == (
        Config.window_size("daily")
    )
    assert len(set(backends.notifications.register_calls)) == len(backends.notifications.register_calls)


async def test_concurrent_passes_do_not_duplicate(repo, backends, make_reminder):
    reminder = await make_reminder(cadence="daily")

    results = await asyncio.gather(
        replenish_reminder(repo, backends, reminder, now=NOW),
        replenish_reminder(repo, backends, reminder, now=NOW),
    )

    target = Config.window_size("daily")
    assert sum(r.registered for r in results) == target
    assert len(backends.notifications.register_calls) == target


async def test_failed_registration_releases_claims(repo, backends, make_reminder):
    reminder = await make_reminder(cadence="weekly")
    backends.notifications.fail_register = True

    result = await replenish_reminder(repo, backends, reminder, now=NOW)

    assert result.registered == 0
    assert result.failures == Config.window_size("weekly")
    assert await repo.get_live_instance_parent_ids("notification") == set()

    # The next pass retries the same slots
    backends.notifications.fail_register = False
    retry = await replenish_reminder(repo, backends, reminder, now=NOW)
    assert retry.registered == Config.window_size("weekly")


async def test_alarm_window(repo, backends, make_reminder):
    with_alarm = await make_reminder(cadence="weekly", has_alarm=True)
    await make_reminder(cadence="weekly", has_alarm=False)

    result = await ensure_alarm_windows(repo, backends, NOW)

    assert result.registered == Config.window_size("weekly")
    assert len(backends.alarms.parent_alarms(with_alarm.id)) == Config.window_size("weekly")
    assert len(await repo.get_active_instances("alarm", with_alarm.id)) == Config.window_size("weekly")


async def test_ensure_windows_skips_native_reminders(repo, backends, make_reminder):
    await make_reminder(cadence="monthly", method="nativeRecurring")
    window = await make_reminder(cadence="weekly")

    result = await ensure_notification_windows(repo, backends, NOW)

    assert result.registered == Config.window_size("weekly")
    assert await repo.get_live_instance_parent_ids("notification") == {window.id}


async def _backdate_claim(repo, row_id, minutes):
    claimed_at = utc_now() - timedelta(minutes=minutes)
    await repo.db.execute(
        "UPDATE notification_instance SET created_at = ? WHERE id = ?", (to_db_timestamp(claimed_at), row_id)
    )
    await repo.db.commit()


async def test_abandoned_claim_is_released(repo, backends, make_reminder, caplog):
    """A claim left inactive by a dead pass does not block its slot forever."""
    reminder = await make_reminder(cadence="daily")
    row_id = await repo.claim_instance("notification", reminder.id, reminder.schedule_instant)
    await _backdate_claim(repo, row_id, STALE_CLAIM_MINUTES + 1)

    result = await replenish_reminder(repo, backends, reminder, now=NOW)

    target = Config.window_size("daily")
    assert result.registered == target
    assert await repo.count_active_future_instances("notification", reminder.id, future_cutoff(NOW)) == target
    assert "stale notification claim" in caplog.text


async def test_in_flight_claim_is_left_alone(repo, backends, make_reminder):
    reminder = await make_reminder(cadence="daily")
    await repo.claim_instance("notification", reminder.id, reminder.schedule_instant)

    result = await replenish_reminder(repo, backends, reminder, now=NOW)

    # The fresh claim still holds its slot
    assert result.registered == Config.window_size("daily") - 1
    active = await repo.get_active_instances("notification", reminder.id)
    assert reminder.schedule_instant not in [i.fire_instant for i in active]
