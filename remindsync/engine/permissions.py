"""Permission-transition reconciler.

Compares freshly read permission state with the last-known state stored in
preferences and cleans up on a downgrade. The check is edge-triggered: the
fresh state is persisted after every evaluation, so a steady "denied" never
fires twice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from remindsync.backends.base import Backends, alarm_permission_from
from remindsync.db.models import AlarmPermission, NotificationPermission
from remindsync.db.repository import Repository
from remindsync.engine.cancellation import cancel_alarms_for_parent, cancel_notifications_for_parent
from remindsync.events import EventEmitter, refresh_events
from remindsync.utils.constants import (
    ALARM_CATEGORY,
    ALARM_PERMISSION_REMOVED_MESSAGE,
    NOTIFICATION_PERMISSION_REMOVED_MESSAGE,
    PREF_ALARM_PERMISSION_DENIED,
    PREF_LAST_ALARM_PERMISSION,
    PREF_LAST_NOTIFICATION_PERMISSION,
)
from remindsync.utils.errors import BackendUnavailableError
from remindsync.utils.retry import retry
from remindsync.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class PermissionReconcileResult:
    did_cleanup: bool = False
    notification: NotificationPermission | None = None
    alarm: AlarmPermission | None = None


async def read_notification_permission(backends: Backends, max_attempts: int = 1) -> NotificationPermission:
    async def read() -> NotificationPermission:
        try:
            return await backends.permissions.notification_status()
        except Exception as e:
            raise BackendUnavailableError(f"Notification permission read failed: {e}") from e

    return await retry(read, max_attempts)


async def read_alarm_permission(backends: Backends, max_attempts: int = 1) -> AlarmPermission:
    async def read() -> AlarmPermission:
        try:
            return alarm_permission_from(await backends.alarms.check_capability())
        except Exception as e:
            raise BackendUnavailableError(f"Alarm capability read failed: {e}") from e

    return await retry(read, max_attempts)


async def cleanup_after_notification_revoked(
    repo: Repository,
    backends: Backends,
    now: datetime,
) -> int:
    """Cancel everything and archive every scheduled reminder as cancelled.

    Returns:
        Number of reminders archived
    """
    try:
        await backends.notifications.cancel_all()
    except Exception as e:
        logger.error(f"Bulk notification cancel failed: {e}")

    reminders = await repo.get_all_reminders()

    # Sweep for anything the bulk cancel missed; alarms regardless of has_alarm
    for reminder in reminders:
        try:
            await cancel_notifications_for_parent(backends, reminder.id)
            await cancel_alarms_for_parent(repo, backends, reminder.id, "both", now)
        except Exception as e:
            logger.error(f"Failed to cancel platform items for {reminder.id}: {e}")

    if backends.alarms.supports_enumeration:
        try:
            await backends.alarms.cancel_by_category(ALARM_CATEGORY)
        except Exception as e:
            logger.error(f"Failed to cancel alarm category: {e}")

    await repo.archive_all_as_cancelled(now)
    await repo.deactivate_all_instances("notification", now)
    await repo.deactivate_all_instances("alarm", now)
    await repo.delete_all_reminders()

    logger.warning(f"Notification permission revoked: archived {len(reminders)} reminder(s) as cancelled")
    return len(reminders)


async def cleanup_after_alarm_revoked(
    repo: Repository,
    backends: Backends,
    now: datetime,
) -> int:
    """Cancel alarm artifacts only and clear has_alarm on every reminder.

    Returns:
        Number of reminders that had an alarm
    """
    affected = 0
    for reminder in await repo.get_all_reminders():
        try:
            await cancel_alarms_for_parent(repo, backends, reminder.id, "both", now)
        except Exception as e:
            logger.error(f"Failed to cancel alarms for {reminder.id}: {e}")
        if reminder.has_alarm:
            await repo.set_has_alarm(reminder.id, False)
            affected += 1

    await repo.set_preference(PREF_ALARM_PERMISSION_DENIED, "true")
    logger.warning(f"Alarm permission revoked: removed alarms from {affected} reminder(s)")
    return affected


async def reconcile_permissions(
    repo: Repository,
    backends: Backends,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
    max_attempts: int = 1,
) -> PermissionReconcileResult:
    """Detect permission downgrades since the last check and clean up.

    A failed permission read (after max_attempts tries) skips that part of
    the check and leaves its last-known value untouched.
    """
    if now is None:
        now = utc_now()
    result = PermissionReconcileResult()

    try:
        notification = await read_notification_permission(backends, max_attempts)
    except BackendUnavailableError as e:
        logger.error(f"Skipping permission check: {e}")
        return result
    result.notification = notification

    alarm: AlarmPermission | None
    try:
        alarm = await read_alarm_permission(backends, max_attempts)
    except BackendUnavailableError as e:
        logger.error(f"Skipping alarm permission check: {e}")
        alarm = None
    result.alarm = alarm

    last_notification = await repo.get_preference(PREF_LAST_NOTIFICATION_PERMISSION)
    last_alarm = await repo.get_preference(PREF_LAST_ALARM_PERMISSION)

    if last_notification == "granted" and notification == "denied":
        logger.info("Notification permission changed: granted -> denied")
        await cleanup_after_notification_revoked(repo, backends, now)
        result.did_cleanup = True
        events.emit()
        await backends.alerts.alert("Notifications disabled", NOTIFICATION_PERMISSION_REMOVED_MESSAGE)
    elif notification == "granted" and last_alarm == "authorized" and alarm == "denied":
        logger.info("Alarm permission changed: authorized -> denied")
        await cleanup_after_alarm_revoked(repo, backends, now)
        result.did_cleanup = True
        events.emit()
        await backends.alerts.alert("Alarms disabled", ALARM_PERMISSION_REMOVED_MESSAGE)

    await repo.set_preference(PREF_LAST_NOTIFICATION_PERMISSION, notification)
    if alarm is not None:
        await repo.set_preference(PREF_LAST_ALARM_PERMISSION, alarm)
        if alarm == "authorized":
            await repo.set_preference(PREF_ALARM_PERMISSION_DENIED, "false")

    return result
