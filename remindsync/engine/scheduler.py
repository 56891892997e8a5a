"""Reminder lifecycle: schedule, update, cancel, archive, mark handled."""

import logging
from dataclasses import replace
from datetime import datetime

from remindsync.backends.base import Backends, NotificationContent
from remindsync.db.models import OccurrenceSource, ReminderDraft, ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.cancellation import cancel_alarms_for_parent, cancel_notifications_for_parent
from remindsync.engine.catchup import record_occurrence
from remindsync.engine.identifiers import ReminderId
from remindsync.engine.planner import alarm_config_for, build_delivery_trigger, decide_delivery_method
from remindsync.engine.replenisher import replenish_reminder
from remindsync.engine.triggers import FixedTrigger
from remindsync.events import EventEmitter, refresh_events
from remindsync.utils.errors import NotFoundError
from remindsync.utils.time_utils import format_local, future_cutoff, to_utc, utc_now

logger = logging.getLogger(__name__)


def _plan(reminder_id: str, draft: ReminderDraft, now: datetime) -> ScheduledReminder:
    """Turn a draft into a reminder row with its delivery method and trigger."""
    schedule_instant = to_utc(draft.schedule_instant, draft.timezone)
    if draft.repeat_cadence == "none" and schedule_instant <= future_cutoff(now):
        raise ValueError("A one-time reminder must be scheduled in the future")

    method = decide_delivery_method(draft.repeat_cadence, schedule_instant - now, draft.source)
    trigger = build_delivery_trigger(method, draft.repeat_cadence, schedule_instant, draft.timezone, now)

    return ScheduledReminder(
        id=reminder_id,
        title=draft.title,
        body=draft.body,
        schedule_instant=schedule_instant,
        schedule_instant_local=format_local(schedule_instant, draft.timezone),
        delivery_trigger=trigger,
        delivery_method=method,
        repeat_cadence=draft.repeat_cadence,
        timezone=draft.timezone,
        has_alarm=draft.has_alarm,
        source=draft.source,
        note=draft.note,
        link=draft.link,
        calendar_id=draft.calendar_id,
        original_event_id=draft.original_event_id,
        original_event_title=draft.original_event_title,
        original_event_start=draft.original_event_start,
        original_event_end=draft.original_event_end,
        original_event_location=draft.original_event_location,
        original_event_recurrence=draft.original_event_recurrence,
    )


async def _register(repo: Repository, backends: Backends, reminder: ScheduledReminder, now: datetime) -> None:
    """Register the platform artifacts for a stored reminder."""
    if reminder.delivery_method == "rollingWindow":
        filled = await replenish_reminder(repo, backends, reminder, "notification", now)
        if filled.registered == 0 and filled.failures:
            raise RuntimeError(f"No window instances could be registered for {reminder.id}")
        if reminder.has_alarm:
            await replenish_reminder(repo, backends, reminder, "alarm", now)
        return

    trigger = reminder.delivery_trigger
    content = NotificationContent(
        title=reminder.title,
        body=reminder.body,
        parent_id=reminder.id,
        note=reminder.note,
        link=reminder.link,
    )
    await backends.notifications.register(reminder.id, content, trigger)  # type: ignore[arg-type]

    next_fire = await backends.notifications.next_fire_instant(trigger)  # type: ignore[arg-type]
    if next_fire is not None:
        logger.info(f"Reminder {reminder.id} next fires at {next_fire.isoformat()}")

    if reminder.has_alarm:
        config = alarm_config_for(reminder, reminder.schedule_instant - now)
        alarm_id = await backends.alarms.register_alarm(trigger, config)  # type: ignore[arg-type]
        kind = "fixed" if isinstance(trigger, FixedTrigger) else "recurring"
        await repo.add_alarm_mapping(reminder.id, alarm_id, kind)


async def _cancel_artifacts(repo: Repository, backends: Backends, reminder_id: str, now: datetime) -> None:
    await cancel_notifications_for_parent(backends, reminder_id)
    await repo.deactivate_all_instances("notification", now, reminder_id)
    await cancel_alarms_for_parent(repo, backends, reminder_id, "both", now)


async def _store_and_register(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    now: datetime,
) -> None:
    # The row goes in first so a crash mid-registration leaves something the
    # reconciler can heal from.
    await repo.save_reminder(reminder)
    try:
        await _register(repo, backends, reminder, now)
    except Exception as e:
        logger.error(f"Failed to register reminder {reminder.id}: {e}")
        await _cancel_artifacts(repo, backends, reminder.id, now)
        await repo.delete_reminder(reminder.id)
        raise


async def schedule_reminder(
    repo: Repository,
    backends: Backends,
    draft: ReminderDraft,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> ScheduledReminder:
    """Plan, register and store a new reminder.

    Args:
        repo: Store
        backends: Native backends
        draft: What the user asked for
        events: Emitter told to refresh on success
        now: Current time (UTC)

    Returns:
        The stored reminder

    Raises:
        ValueError: If a one-time reminder is not in the future
    """
    if now is None:
        now = utc_now()
    reminder = _plan(str(ReminderId.new()), draft, now)
    await _store_and_register(repo, backends, reminder, now)

    logger.info(
        f"Scheduled reminder {reminder.id} ({reminder.repeat_cadence}, {reminder.delivery_method}) "
        f"for {reminder.schedule_instant_local}"
    )
    events.emit()
    return reminder


async def update_reminder(
    repo: Repository,
    backends: Backends,
    reminder_id: str,
    draft: ReminderDraft,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> ScheduledReminder:
    """Cancel a reminder's artifacts and re-plan it under the same id."""
    if now is None:
        now = utc_now()
    existing = await repo.get_reminder(reminder_id)
    if existing is None:
        raise NotFoundError(f"Reminder {reminder_id} not found")

    reminder = replace(_plan(reminder_id, draft, now), created_at=existing.created_at)
    await _cancel_artifacts(repo, backends, reminder_id, now)
    await _store_and_register(repo, backends, reminder, now)

    logger.info(f"Updated reminder {reminder_id}")
    events.emit()
    return reminder


async def cancel_reminder(
    repo: Repository,
    backends: Backends,
    reminder_id: str,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> bool:
    """Cancel every platform artifact of a reminder and delete its row.

    Returns:
        False if there was no such reminder
    """
    if now is None:
        now = utc_now()
    existing = await repo.get_reminder(reminder_id)

    # Cancel even without a row; stray artifacts are still ours
    await _cancel_artifacts(repo, backends, reminder_id, now)
    if existing is None:
        return False

    await repo.delete_reminder(reminder_id)
    logger.info(f"Cancelled reminder {reminder_id}")
    events.emit()
    return True


async def archive_past_reminders(
    repo: Repository,
    events: EventEmitter = refresh_events,
    now: datetime | None = None,
) -> list[str]:
    """Move one-time reminders whose instant has passed into the archive."""
    if now is None:
        now = utc_now()
    archived = await repo.archive_past_reminders(now)
    if archived:
        logger.info(f"Archived {len(archived)} past reminder(s)")
        events.emit()
    return archived


async def mark_handled(repo: Repository, reminder_id: str, now: datetime | None = None) -> bool:
    """Stamp handled_at on an archived reminder the user opened.

    Returns:
        False if the reminder is not in the archive
    """
    if now is None:
        now = utc_now()
    handled = await repo.mark_archived_handled(reminder_id, now)
    if handled:
        logger.info(f"Marked reminder {reminder_id} handled")
    return handled


async def record_delivery(
    repo: Repository,
    reminder_id: str,
    fire_instant: datetime,
    source: OccurrenceSource = "tap",
    now: datetime | None = None,
) -> bool:
    """Record that a repeating reminder fired and was seen.

    Returns:
        True if a new occurrence row was stored
    """
    reminder = await repo.get_reminder(reminder_id)
    if reminder is None or not reminder.is_repeating:
        return False
    return await record_occurrence(repo, reminder, fire_instant, source, now)
