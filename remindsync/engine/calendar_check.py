"""Calendar drift check.

Compares the provenance snapshot stored with calendar-derived reminders
against what the calendar provider reports now, and reports events that
were deleted or changed. The whole check is bounded by a hard timeout so a
slow provider can never hold up the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from remindsync.config import Config
from remindsync.db.models import ScheduledReminder
from remindsync.db.repository import Repository
from remindsync.engine.recurrence import cadence_from_rrule
from remindsync.events import EventEmitter, calendar_change_events
from remindsync.utils.constants import CALENDAR_CHECK_LIMIT, CALENDAR_SEARCH_WINDOW_DAYS
from remindsync.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

START_TOLERANCE = timedelta(minutes=1)
RECURRING_MATCH_WINDOW = timedelta(days=1)

_FIELD_NAMES = {
    "title": "title",
    "startDate": "date",
    "location": "location",
    "recurring": "recurring pattern",
}


@dataclass(frozen=True)
class CalendarEvent:
    """An event as the calendar provider reports it."""

    id: str
    calendar_id: str
    title: str
    start: datetime
    location: str | None = None
    recurrence_rule: str | None = None
    calendar_name: str | None = None


@dataclass
class ChangedCalendarEvent:
    calendar_id: str
    original_event_id: str
    calendar_name: str
    title: str
    start: datetime
    is_deleted: bool
    changed_fields: list[str] = field(default_factory=list)


@runtime_checkable
class CalendarProvider(Protocol):
    async def permission_granted(self) -> bool:
        ...

    async def get_event(self, calendar_id: str, event_id: str, around: datetime) -> list[CalendarEvent]:
        """Occurrences of an event near `around`; results outside search_window are dropped."""
        ...


def _normalize_location(location: str | None) -> str | None:
    if not location or not location.strip():
        return None
    return location.strip()


def format_changed_fields(changed_fields: list[str]) -> str:
    """Human-readable summary of what changed.

    Examples:
        ["title"] -> "The title has changed"
        ["title", "startDate"] -> "The title and date have changed"
    """
    if not changed_fields:
        return ""
    names = [_FIELD_NAMES.get(name, name) for name in changed_fields]
    if len(names) == 1:
        return f"The {names[0]} has changed"
    return f"The {', '.join(names[:-1])} and {names[-1]} have changed"


def compare_event(reminder: ScheduledReminder, event: CalendarEvent) -> list[str]:
    """Fields of the stored snapshot that no longer match the event."""
    changed = []

    original_title = reminder.original_event_title or reminder.title
    if original_title != event.title:
        changed.append("title")

    if reminder.original_event_start is not None:
        if abs(reminder.original_event_start - event.start) >= START_TOLERANCE:
            logger.info(
                f"Start changed for event {reminder.original_event_id}: "
                f"{reminder.original_event_start.isoformat()} -> {event.start.isoformat()}"
            )
            changed.append("startDate")

    if _normalize_location(reminder.original_event_location) != _normalize_location(event.location):
        changed.append("location")

    original_recurring = cadence_from_rrule(reminder.original_event_recurrence)
    if original_recurring != cadence_from_rrule(event.recurrence_rule):
        changed.append("recurring")

    return changed


def _pick_occurrence(
    reminder: ScheduledReminder,
    events: list[CalendarEvent],
    original_start: datetime,
) -> CalendarEvent:
    """For recurring events, the occurrence nearest the original start."""
    if len(events) > 1 and cadence_from_rrule(reminder.original_event_recurrence) != "none":
        for event in events:
            if abs(event.start - original_start) < RECURRING_MATCH_WINDOW:
                return event
    return events[0]


def search_window(around: datetime) -> tuple[datetime, datetime]:
    """The range searched for an event's occurrences."""
    span = timedelta(days=CALENDAR_SEARCH_WINDOW_DAYS)
    return around - span, around + span


async def _check(repo: Repository, provider: CalendarProvider) -> list[ChangedCalendarEvent]:
    if not await provider.permission_granted():
        logger.info("Calendar permission not granted; skipping calendar check")
        return []

    reminders = await repo.get_upcoming_calendar_reminders(utc_now())
    if not reminders:
        return []
    logger.info(f"Checking {min(len(reminders), CALENDAR_CHECK_LIMIT)} of {len(reminders)} calendar reminder(s)")

    changes: list[ChangedCalendarEvent] = []
    seen: set[tuple[str, str]] = set()

    for reminder in reminders[:CALENDAR_CHECK_LIMIT]:
        if not reminder.calendar_id or not reminder.original_event_id:
            continue
        key = (reminder.calendar_id, reminder.original_event_id)
        if key in seen:
            continue
        if await repo.is_calendar_event_ignored(*key):
            logger.info(f"Skipping ignored event {reminder.original_event_id}")
            continue
        seen.add(key)

        original_start = reminder.original_event_start or reminder.schedule_instant
        try:
            events = await provider.get_event(reminder.calendar_id, reminder.original_event_id, original_start)
        except Exception as e:
            logger.error(f"Failed to fetch events for calendar {reminder.calendar_id}: {e}")
            continue

        # Providers may return occurrences far from the one this reminder tracks
        low, high = search_window(original_start)
        events = [e for e in events if low <= e.start <= high]

        title = reminder.original_event_title or reminder.title
        if not events:
            changes.append(
                ChangedCalendarEvent(
                    calendar_id=reminder.calendar_id,
                    original_event_id=reminder.original_event_id,
                    calendar_name="Unknown",
                    title=title,
                    start=original_start,
                    is_deleted=True,
                )
            )
            continue

        current = _pick_occurrence(reminder, events, original_start)
        changed_fields = compare_event(reminder, current)
        if changed_fields:
            changes.append(
                ChangedCalendarEvent(
                    calendar_id=reminder.calendar_id,
                    original_event_id=reminder.original_event_id,
                    calendar_name=current.calendar_name or "Unknown",
                    title=title,
                    start=current.start,
                    is_deleted=False,
                    changed_fields=changed_fields,
                )
            )

    return changes


async def check_calendar_changes(
    repo: Repository,
    provider: CalendarProvider,
    timeout: float | None = None,
    events: EventEmitter = calendar_change_events,
) -> list[ChangedCalendarEvent]:
    """Find calendar events that changed since their reminders were created.

    Args:
        repo: Store
        provider: Calendar access
        timeout: Seconds before giving up, defaults to CALENDAR_CHECK_TIMEOUT
        events: Emitter told about any changes found

    Returns:
        Changed or deleted events; empty on timeout or error
    """
    if timeout is None:
        timeout = Config.CALENDAR_CHECK_TIMEOUT

    try:
        changes = await asyncio.wait_for(_check(repo, provider), timeout=timeout)
    except asyncio.TimeoutError:
        logger.info(f"Calendar check timed out after {timeout} seconds")
        return []
    except Exception as e:
        logger.error(f"Calendar check failed: {e}")
        return []

    if changes:
        logger.info(f"Found {len(changes)} changed calendar event(s)")
        events.emit(changes)
    return changes
