"""Occurrence catch-up for repeating reminders.

Fills in RepeatOccurrence rows for every fire instant that passed while the
app was not running, so the history view has one row per firing.
"""

import logging
from datetime import datetime

from remindsync.config import Config
from remindsync.db.models import OccurrenceSource, RepeatOccurrence, ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.recurrence import advance, first_index_after
from remindsync.utils.time_utils import from_utc, utc_now

logger = logging.getLogger(__name__)


async def record_occurrence(
    repo: Repository,
    reminder: ScheduledReminder,
    fire_instant: datetime,
    source: OccurrenceSource,
    now: datetime | None = None,
) -> bool:
    """Record one firing with a snapshot of the reminder's current content.

    Returns:
        True if the occurrence was new
    """
    occurrence = RepeatOccurrence(
        parent_id=reminder.id,
        fire_instant=fire_instant,
        source=source,
        title=reminder.title,
        body=reminder.body,
        note=reminder.note,
        link=reminder.link,
        recorded_at=now or utc_now(),
    )
    return await repo.insert_occurrence(occurrence)


async def catch_up_reminder(
    repo: Repository,
    reminder: ScheduledReminder,
    now: datetime,
    max_iterations: int,
) -> int:
    """Record the missed occurrences of one reminder. Returns how many were stored."""
    anchor = from_utc(reminder.schedule_instant, reminder.timezone)
    latest = await repo.get_latest_occurrence(reminder.id)
    k = first_index_after(anchor, reminder.repeat_cadence, latest.fire_instant) if latest else 0

    recorded = 0
    for _ in range(max_iterations):
        fire_instant = advance(anchor, reminder.repeat_cadence, k)
        if fire_instant > now:
            break
        if await record_occurrence(repo, reminder, fire_instant, "catchup", now):
            recorded += 1
        k += 1
    else:
        # Only a cap if occurrences are still left to record
        if advance(anchor, reminder.repeat_cadence, k) <= now:
            logger.warning(f"Catch-up for {reminder.id} stopped after {max_iterations} iterations")

    return recorded


async def catch_up_occurrences(
    repo: Repository,
    now: datetime | None = None,
    max_iterations: int | None = None,
) -> int:
    """Record missed occurrences for every repeating reminder.

    Args:
        repo: Store
        now: Current time (UTC)
        max_iterations: Per-reminder cap, defaults to CATCHUP_MAX_ITERATIONS

    Returns:
        Total number of occurrences recorded
    """
    if now is None:
        now = utc_now()
    if max_iterations is None:
        max_iterations = Config.CATCHUP_MAX_ITERATIONS

    total = 0
    for reminder in await repo.get_repeating_reminders():
        try:
            total += await catch_up_reminder(repo, reminder, now, max_iterations)
        except Exception as e:
            logger.error(f"Catch-up failed for {reminder.id}: {e}")

    if total:
        logger.info(f"Catch-up recorded {total} occurrence(s)")
    return total
