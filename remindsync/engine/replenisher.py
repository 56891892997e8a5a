"""Rolling-window replenisher.

Keeps each rolling-window reminder topped up to its target number of
future one-shot triggers. Safe to call as often as you like: it only ever
fills the gap up to the target, and every (reminder, instant) slot is
claimed in the store before it is registered, so overlapping passes cannot
register the same instant twice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from remindsync.backends.base import Backends, NotificationContent
from remindsync.config import Config
from remindsync.db.models import InstanceKind, ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.identifiers import instance_id_for
from remindsync.engine.planner import alarm_config_for
from remindsync.engine.recurrence import generate_occurrences
from remindsync.engine.triggers import FixedTrigger
from remindsync.utils.constants import STALE_CLAIM_MINUTES
from remindsync.utils.time_utils import from_utc, future_cutoff, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ReplenishResult:
    registered: int = 0
    failures: int = 0

    def add(self, other: "ReplenishResult") -> None:
        self.registered += other.registered
        self.failures += other.failures


async def _register_instance(
    backends: Backends,
    reminder: ScheduledReminder,
    kind: InstanceKind,
    fire_instant: datetime,
    now: datetime,
) -> str:
    """Register one one-shot trigger and return its native id."""
    trigger = FixedTrigger(instant=fire_instant)

    if kind == "notification":
        identifier = instance_id_for(reminder.id, fire_instant)
        content = NotificationContent(
            title=reminder.title,
            body=reminder.body,
            parent_id=reminder.id,
            note=reminder.note,
            link=reminder.link,
        )
        await backends.notifications.register(identifier, content, trigger)
        return identifier

    config = alarm_config_for(reminder, fire_instant - now)
    return await backends.alarms.register_alarm(trigger, config)


async def replenish_reminder(
    repo: Repository,
    backends: Backends,
    reminder: ScheduledReminder,
    kind: InstanceKind = "notification",
    now: datetime | None = None,
) -> ReplenishResult:
    """Top up one reminder's window of one-shot triggers.

    Args:
        repo: Store
        backends: Native backends
        reminder: A rolling-window reminder
        kind: Which window to fill, notifications or alarms
        now: Current time (UTC)

    Returns:
        How many instances were registered and how many failed
    """
    if now is None:
        now = utc_now()
    result = ReplenishResult()

    # A claim that never got activated belongs to a pass that died mid-way;
    # free its slot so the instant can be claimed again
    claimed_before = utc_now() - timedelta(minutes=STALE_CLAIM_MINUTES)
    released = await repo.release_stale_claims(kind, reminder.id, claimed_before)
    if released:
        logger.warning(f"Released {released} stale {kind} claim(s) for {reminder.id}")

    target = Config.window_size(reminder.repeat_cadence)
    cutoff = future_cutoff(now)
    # One read for both the count and the latest instant, so a concurrent
    # pass cannot slip in between them
    active = await repo.get_active_instances(kind, reminder.id)
    active_future = sum(1 for instance in active if instance.fire_instant > cutoff)
    shortfall = target - active_future
    if shortfall <= 0:
        return result

    latest = active[-1].fire_instant if active else None

    local = from_utc(reminder.schedule_instant, reminder.timezone)
    instants = generate_occurrences(
        reminder.schedule_instant,
        reminder.repeat_cadence,
        shortfall,
        local.hour,
        local.minute,
        now=now,
        tz=reminder.timezone,
        after=latest,
    )
    if not instants:
        return result

    logger.info(
        f"Replenishing {kind} window for {reminder.id}: "
        f"{active_future}/{target} active, adding {len(instants)}"
    )

    for fire_instant in instants:
        row_id = await repo.claim_instance(kind, reminder.id, fire_instant)
        if row_id is None:
            # Another pass holds this slot
            continue

        try:
            native_id = await _register_instance(backends, reminder, kind, fire_instant, now)
        except Exception as e:
            logger.error(f"Failed to register {kind} instance {fire_instant.isoformat()} for {reminder.id}: {e}")
            # Release the claim; the next pass retries the gap
            await repo.deactivate_instance(kind, row_id, utc_now())
            result.failures += 1
            continue

        await repo.activate_instance(kind, row_id, native_id)
        result.registered += 1

    return result


async def ensure_notification_windows(
    repo: Repository,
    backends: Backends,
    now: datetime | None = None,
) -> ReplenishResult:
    """Replenish the notification window of every rolling-window reminder."""
    total = ReplenishResult()
    for reminder in await repo.get_reminders_by_method("rollingWindow"):
        try:
            total.add(await replenish_reminder(repo, backends, reminder, "notification", now))
        except Exception as e:
            logger.error(f"Error replenishing notifications for {reminder.id}: {e}")
            total.failures += 1
    return total


async def ensure_alarm_windows(
    repo: Repository,
    backends: Backends,
    now: datetime | None = None,
) -> ReplenishResult:
    """Replenish the alarm window of every rolling-window reminder with an alarm."""
    total = ReplenishResult()
    for reminder in await repo.get_reminders_by_method("rollingWindow"):
        if not reminder.has_alarm:
            continue
        try:
            total.add(await replenish_reminder(repo, backends, reminder, "alarm", now))
        except Exception as e:
            logger.error(f"Error replenishing alarms for {reminder.id}: {e}")
            total.failures += 1
    return total
