"""Orphan/drift reconciliation between the store and the native backends.

Three passes:
1. Cancel platform notifications whose parent has no row in the store.
2. Heal the platform from the store: re-register missing native
   notifications and top up rolling windows.
3. (cold start only) Cancel every artifact of parents that are gone from
   the store, found from the platform listing, from live tracking rows and
   from alarm mappings.

Every count in the summary is an action actually taken, so running a pass
twice with nothing changed in between reports zeros the second time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from remindsync.backends.base import (
    Backends,
    NotificationContent,
    RegisteredNotification,
    alarm_permission_from,
)
from remindsync.config import Config
from remindsync.db.models import ReconcileSummary, ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.cancellation import (
    cancel_alarms_for_parent,
    cancel_notifications_for_parent,
)
from remindsync.engine.identifiers import in_namespace, is_instance_identifier, resolve_parent_id
from remindsync.engine.replenisher import ensure_alarm_windows, replenish_reminder
from remindsync.engine.triggers import FixedTrigger, WindowTrigger
from remindsync.events import EventEmitter, refresh_events
from remindsync.utils.constants import ALARM_CATEGORY, PREF_RECONCILE_MODE, RECONCILE_MODES
from remindsync.utils.errors import cancel_quietly
from remindsync.utils.time_utils import future_cutoff, utc_now

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    actions: int = 0
    failures: int = 0


async def get_reconcile_mode(repo: Repository) -> str:
    """The stored mode preference, falling back to config."""
    try:
        mode = await repo.get_preference(PREF_RECONCILE_MODE)
    except Exception as e:
        logger.error(f"Failed to read reconcile mode: {e}")
        mode = None
    if mode in RECONCILE_MODES:
        return mode  # type: ignore[return-value]
    return Config.RECONCILE_MODE


async def set_reconcile_mode(repo: Repository, mode: str) -> None:
    if mode not in RECONCILE_MODES:
        raise ValueError(f"Reconcile mode must be one of {RECONCILE_MODES}")
    await repo.set_preference(PREF_RECONCILE_MODE, mode)
    logger.info(f"Reconcile mode set to: {mode}")


async def _read_permissions(backends: Backends) -> tuple[bool, bool]:
    notification_granted = False
    alarm_authorized = False

    try:
        notification_granted = await backends.permissions.notification_status() == "granted"
    except Exception as e:
        logger.error(f"Failed to check notification permission: {e}")

    try:
        check = await backends.alarms.check_capability()
        alarm_authorized = alarm_permission_from(check) == "authorized"
    except Exception as e:
        logger.error(f"Failed to check alarm capability: {e}")

    return notification_granted, alarm_authorized


def _parent_of(item: RegisteredNotification) -> str:
    return resolve_parent_id(item.identifier, item.parent_id)


async def cancel_platform_orphans(backends: Backends, db_parent_ids: set[str]) -> PassResult:
    """Pass 1: cancel namespaced notifications with no parent in the store."""
    result = PassResult()
    try:
        registered = await backends.notifications.list_all_registered()
    except Exception as e:
        logger.error(f"Failed to list platform notifications: {e}")
        result.failures += 1
        return result

    for item in registered:
        if not in_namespace(item.identifier):
            continue
        parent_id = _parent_of(item)
        if parent_id in db_parent_ids:
            continue
        if await cancel_quietly(backends.notifications.cancel, item.identifier):
            logger.info(f"Cancelled orphaned notification {item.identifier} (parent: {parent_id})")
            result.actions += 1
        else:
            result.failures += 1

    return result


async def _reregister_native(
    backends: Backends,
    reminder: ScheduledReminder,
    now: datetime,
) -> bool:
    """Put a missing single native notification back. Returns True if registered."""
    trigger = reminder.delivery_trigger
    if trigger is None or isinstance(trigger, WindowTrigger):
        return False
    if isinstance(trigger, FixedTrigger) and trigger.instant <= future_cutoff(now):
        # Already fired; archiving will pick it up
        return False
    content = NotificationContent(
        title=reminder.title,
        body=reminder.body,
        parent_id=reminder.id,
        note=reminder.note,
        link=reminder.link,
    )
    await backends.notifications.register(reminder.id, content, trigger)
    logger.info(f"Re-registered missing native notification for {reminder.id}")
    return True


async def ensure_platform_matches_db(
    repo: Repository,
    backends: Backends,
    reminders: list[ScheduledReminder],
    notification_granted: bool,
    alarm_authorized: bool,
    now: datetime,
) -> PassResult:
    """Pass 2: re-register what the store says should be on the platform."""
    result = PassResult()

    try:
        registered = await backends.notifications.list_all_registered()
    except Exception as e:
        logger.error(f"Failed to list platform notifications: {e}")
        result.failures += 1
        return result

    main_ids = {
        item.identifier
        for item in registered
        if in_namespace(item.identifier) and not is_instance_identifier(item.identifier)
    }

    # Where alarms cannot be enumerated, one batched replenish per pass
    batch_alarm_replenish = not backends.alarms.supports_enumeration
    needs_alarm_batch = False

    for reminder in reminders:
        try:
            if reminder.delivery_trigger is None:
                logger.error(f"Skipping {reminder.id}: unreadable delivery trigger")
                result.failures += 1
                continue

            if notification_granted:
                if reminder.delivery_method == "nativeRecurring" and reminder.id not in main_ids:
                    if await _reregister_native(backends, reminder, now):
                        result.actions += 1

                if reminder.delivery_method == "rollingWindow":
                    filled = await replenish_reminder(repo, backends, reminder, "notification", now)
                    result.actions += filled.registered
                    result.failures += filled.failures

            wants_alarm_window = (
                reminder.has_alarm
                and reminder.delivery_method == "rollingWindow"
                and alarm_authorized
                and notification_granted
            )
            if not wants_alarm_window:
                continue
            if batch_alarm_replenish:
                needs_alarm_batch = True
            else:
                filled = await replenish_reminder(repo, backends, reminder, "alarm", now)
                result.actions += filled.registered
                result.failures += filled.failures
        except Exception as e:
            logger.error(f"Failed to heal platform state for {reminder.id}: {e}")
            result.failures += 1

    if needs_alarm_batch:
        try:
            filled = await ensure_alarm_windows(repo, backends, now)
            result.actions += filled.registered
            result.failures += filled.failures
        except Exception as e:
            logger.error(f"Failed to replenish alarm windows (batch): {e}")
            result.failures += 1

    return result


async def _orphaned_parent_ids(repo: Repository, backends: Backends, db_parent_ids: set[str]) -> set[str]:
    orphans: set[str] = set()

    try:
        for item in await backends.notifications.list_all_registered():
            parent_id = _parent_of(item)
            if in_namespace(parent_id) and parent_id not in db_parent_ids:
                orphans.add(parent_id)
    except Exception as e:
        logger.error(f"Failed to list platform notifications: {e}")

    for kind in ("notification", "alarm"):
        orphans |= await repo.get_live_instance_parent_ids(kind) - db_parent_ids  # type: ignore[arg-type]
    orphans |= await repo.get_alarm_mapping_parent_ids() - db_parent_ids

    if backends.alarms.supports_enumeration:
        try:
            for alarm in await backends.alarms.list_by_category(ALARM_CATEGORY):
                if alarm.parent_id and alarm.parent_id not in db_parent_ids:
                    orphans.add(alarm.parent_id)
        except Exception as e:
            logger.error(f"Failed to list platform alarms: {e}")

    return orphans


async def cancel_db_removed_items(
    repo: Repository,
    backends: Backends,
    db_parent_ids: set[str],
    now: datetime,
) -> PassResult:
    """Pass 3: cancel every artifact of parents that are no longer in the store."""
    result = PassResult()
    try:
        orphans = await _orphaned_parent_ids(repo, backends, db_parent_ids)
    except Exception as e:
        logger.error(f"Failed to collect removed parents: {e}")
        result.failures += 1
        return result

    for parent_id in sorted(orphans):
        try:
            await cancel_notifications_for_parent(backends, parent_id)
            await repo.deactivate_all_instances("notification", now, parent_id)
            # The cadence died with the row: try window and single alarms alike
            await cancel_alarms_for_parent(repo, backends, parent_id, "both", now)
            if backends.alarms.supports_enumeration:
                for alarm in await backends.alarms.list_by_category(ALARM_CATEGORY):
                    if alarm.parent_id == parent_id:
                        await cancel_quietly(backends.alarms.cancel_alarm, alarm.native_id)
            logger.info(f"Cancelled platform items for removed parent {parent_id}")
            result.actions += 1
        except Exception as e:
            logger.error(f"Failed to cancel platform items for removed parent {parent_id}: {e}")
            result.failures += 1

    return result


async def _finish(
    repo: Repository,
    backends: Backends,
    summary: ReconcileSummary,
    events: EventEmitter,
    label: str,
    surface: bool,
) -> None:
    logger.info(
        f"{label} complete: {summary.cancelled_platform_orphans} orphans cancelled, "
        f"{summary.rescheduled_items} rescheduled, {summary.cancelled_db_removed_items} removed, "
        f"{summary.failures} failures"
    )
    if not summary.has_actions:
        return

    events.emit()

    if surface and await get_reconcile_mode(repo) == "alert":
        cancelled = summary.cancelled_platform_orphans + summary.cancelled_db_removed_items
        await backends.alerts.alert(
            "Reminder sync",
            f"Reconciled {cancelled} orphaned items and rescheduled {summary.rescheduled_items} missing items.",
        )


async def reconcile_on_startup(
    repo: Repository,
    backends: Backends,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> ReconcileSummary:
    """Full reconciliation (passes 1-3), run on cold start."""
    return await _reconcile(repo, backends, events, now, full=True)


async def reconcile_on_foreground(
    repo: Repository,
    backends: Backends,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> ReconcileSummary:
    """Lighter reconciliation (passes 1-2), run when the app comes to the foreground."""
    return await _reconcile(repo, backends, events, now, full=False)


async def _reconcile(
    repo: Repository,
    backends: Backends,
    events: EventEmitter,
    now: datetime | None,
    full: bool,
) -> ReconcileSummary:
    if now is None:
        now = utc_now()
    label = "Orphan reconciliation" if full else "Foreground orphan reconciliation"
    summary = ReconcileSummary()

    try:
        logger.info(f"Starting {label.lower()}")
        notification_granted, alarm_authorized = await _read_permissions(backends)

        reminders = await repo.get_all_reminders()
        db_parent_ids = {reminder.id for reminder in reminders}

        step1 = await cancel_platform_orphans(backends, db_parent_ids)
        summary.cancelled_platform_orphans = step1.actions
        summary.failures += step1.failures

        if notification_granted or alarm_authorized:
            step2 = await ensure_platform_matches_db(
                repo, backends, reminders, notification_granted, alarm_authorized, now
            )
            summary.rescheduled_items = step2.actions
            summary.failures += step2.failures

        if full:
            step3 = await cancel_db_removed_items(repo, backends, db_parent_ids, now)
            summary.cancelled_db_removed_items = step3.actions
            summary.failures += step3.failures

        await _finish(repo, backends, summary, events, label, surface=full)
    except Exception as e:
        logger.error(f"{label} failed: {e}")
        summary.failures += 1

    return summary
