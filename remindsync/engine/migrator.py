"""Migration onto native recurring triggers.

Once a repeating reminder's first occurrence has fired, whatever carried it
there (a window of one-shot triggers, or a single one-shot trigger at its
start) is swapped for a single native recurring trigger. The order of
operations matters: free a registration slot first, arm the new triggers
before disarming the old ones, and roll back rather than leave the user
with no alarm at all.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from remindsync.backends.base import Backends, NotificationContent
from remindsync.config import Config
from remindsync.db.models import ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.cancellation import deactivate_notification_instances
from remindsync.engine.planner import alarm_config_for, native_trigger_for
from remindsync.engine.triggers import FixedTrigger, Trigger
from remindsync.utils.errors import cancel_quietly
from remindsync.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class MigrationRolledBack(Exception):
    """Alarm registration failed and the migration was undone."""

    def __init__(self, reminder_id: str):
        super().__init__(f"Migration of {reminder_id} rolled back")
        self.reminder_id = reminder_id


@dataclass
class MigrationResult:
    migrated: int = 0
    rolled_back: int = 0
    skipped: int = 0
    failures: int = 0
    ran: bool = True  # False when the semaphore was held elsewhere


def has_pending_start(reminder: ScheduledReminder) -> bool:
    """A repeating reminder still on the one-shot trigger for its first occurrence."""
    return (
        reminder.delivery_method == "nativeRecurring"
        and reminder.is_repeating
        and isinstance(reminder.delivery_trigger, FixedTrigger)
    )


def needs_migration(reminder: ScheduledReminder, now: datetime) -> bool:
    """A repeating reminder past its first occurrence and not yet on a native repeat."""
    if reminder.schedule_instant > now:
        return False
    return (reminder.delivery_method == "rollingWindow" and reminder.is_repeating) or has_pending_start(reminder)


def _content(reminder: ScheduledReminder) -> NotificationContent:
    return NotificationContent(
        title=reminder.title,
        body=reminder.body,
        parent_id=reminder.id,
        note=reminder.note,
        link=reminder.link,
    )


async def _register_recurring_alarm(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    trigger: Trigger,
    now: datetime,
) -> None:
    """Arm the recurring alarm, undoing the native notification if that fails."""
    config = alarm_config_for(reminder, reminder.schedule_instant - now)
    try:
        alarm_id = await backends.alarms.register_alarm(trigger, config)
    except Exception as e:
        logger.error(f"Failed to register recurring alarm for {reminder.id}, rolling back: {e}")
        await cancel_quietly(backends.notifications.cancel, reminder.id)
        raise MigrationRolledBack(reminder.id) from e
    await repo.add_alarm_mapping(reminder.id, alarm_id, "recurring")


async def _migrate_window(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    now: datetime,
) -> bool:
    # 1. Nothing to migrate without an active window
    active = await repo.get_active_instances("notification", reminder.id)
    if not active:
        logger.info(f"No active instances for {reminder.id}; skipping migration")
        return False

    # 2. Capacity guard: free one slot before registering the recurring trigger
    latest = active[-1]
    if await cancel_quietly(backends.notifications.cancel, latest.native_trigger_id):
        await repo.deactivate_instance("notification", latest.id, now)  # type: ignore[arg-type]

    # 3. Register the native recurring notification
    trigger = native_trigger_for(reminder.repeat_cadence, reminder.schedule_instant, reminder.timezone)
    try:
        await backends.notifications.register(reminder.id, _content(reminder), trigger)
    except Exception as e:
        logger.error(f"Failed to register native recurring notification for {reminder.id}: {e}")
        return False

    # 4. New alarm before old alarms; 5. roll back step 3 on failure
    if reminder.has_alarm:
        await _register_recurring_alarm(repo, backends, reminder, trigger, now)

    # 6. Persist
    await repo.update_reminder(replace(reminder, delivery_method="nativeRecurring", delivery_trigger=trigger))

    # 7. Retire the old window (best effort)
    remaining = await deactivate_notification_instances(repo, backends, reminder.id, now)
    if reminder.has_alarm:
        for instance in await repo.get_active_instances("alarm", reminder.id):
            if await cancel_quietly(backends.alarms.cancel_alarm, instance.native_trigger_id):
                await repo.deactivate_instance("alarm", instance.id, now)  # type: ignore[arg-type]

    logger.info(f"Migrated {reminder.id} to native recurring ({remaining} old instance(s) retired)")
    return True


async def _promote_start(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    now: datetime,
) -> bool:
    # The start trigger has fired; its identifier is reused for the recurring one
    await cancel_quietly(backends.notifications.cancel, reminder.id)

    trigger = native_trigger_for(reminder.repeat_cadence, reminder.schedule_instant, reminder.timezone)
    try:
        await backends.notifications.register(reminder.id, _content(reminder), trigger)
    except Exception as e:
        logger.error(f"Failed to register native recurring notification for {reminder.id}: {e}")
        return False

    if reminder.has_alarm:
        old_alarms = await repo.get_alarm_mappings(reminder.id)
        await _register_recurring_alarm(repo, backends, reminder, trigger, now)
        for mapping in old_alarms:
            if await cancel_quietly(backends.alarms.cancel_alarm, mapping.native_alarm_id):
                await repo.delete_alarm_mapping(reminder.id, mapping.native_alarm_id)

    await repo.update_reminder(replace(reminder, delivery_trigger=trigger))
    logger.info(f"Promoted {reminder.id} from its start trigger to native recurring")
    return True


async def migrate_reminder(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    now: datetime | None = None,
) -> bool:
    """Move one reminder whose first occurrence has fired onto a native recurring trigger.

    A rolling-window reminder has its window of one-shot triggers replaced;
    a reminder that started far ahead has its one-shot start trigger
    replaced.

    Returns:
        True if the reminder now uses a native recurring trigger

    Raises:
        MigrationRolledBack: If the recurring alarm could not be registered
    """
    if now is None:
        now = utc_now()
    if reminder.delivery_method == "rollingWindow":
        return await _migrate_window(repo, backends, reminder, now)
    if has_pending_start(reminder):
        return await _promote_start(repo, backends, reminder, now)
    return False


async def run_migration_pass(
    repo: Repository,
    backends: Backends,
    now: datetime | None = None,
) -> MigrationResult:
    """Migrate every eligible reminder, guarded by the migration semaphore.

    Only one pass runs at a time. A semaphore older than
    MIGRATION_STALE_MINUTES is assumed to belong to a crashed run and is
    taken over.
    """
    if now is None:
        now = utc_now()
    stale_after = timedelta(minutes=Config.MIGRATION_STALE_MINUTES)

    if not await repo.try_acquire_migration_semaphore(now, stale_after):
        logger.info("Migration semaphore is active; skipping this run")
        return MigrationResult(ran=False)

    result = MigrationResult()
    try:
        for reminder in await repo.get_repeating_reminders():
            if not needs_migration(reminder, now):
                continue
            try:
                if await migrate_reminder(repo, backends, reminder, now):
                    result.migrated += 1
                else:
                    result.skipped += 1
            except MigrationRolledBack:
                result.rolled_back += 1
            except Exception as e:
                logger.error(f"Error migrating reminder {reminder.id}: {e}")
                result.failures += 1
    finally:
        await repo.release_migration_semaphore(utc_now())

    if result.migrated or result.rolled_back or result.failures:
        logger.info(
            f"Migration pass: {result.migrated} migrated, {result.rolled_back} rolled back, "
            f"{result.failures} failed"
        )
    return result
