"""Cancel every platform artifact belonging to one parent reminder.

All of these are idempotent: "not found" counts as cancelled, and a
failure on one artifact never stops the others.
"""

import logging
from datetime import datetime
from typing import Literal

from remindsync.backends.base import Backends, RegisteredNotification
from remindsync.db.repository import Repository
from remindsync.engine.identifiers import resolve_parent_id
from remindsync.utils.errors import cancel_quietly
from remindsync.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

AlarmStrategy = Literal["window", "single", "both"]


async def cancel_notifications_for_parent(
    backends: Backends,
    parent_id: str,
    registered: list[RegisteredNotification] | None = None,
) -> int:
    """Cancel the main notification and every window instance of a parent.

    Args:
        backends: Native backends
        parent_id: Reminder id
        registered: A fresh platform listing, if the caller already has one

    Returns:
        Number of platform notifications that are gone afterwards
    """
    notifications = backends.notifications
    cancelled = 0

    if await cancel_quietly(notifications.cancel, parent_id):
        cancelled += 1

    if registered is None:
        try:
            registered = await notifications.list_all_registered()
        except Exception as e:
            logger.error(f"Failed to list notifications while cancelling {parent_id}: {e}")
            return cancelled

    for item in registered:
        if item.identifier == parent_id:
            continue
        if resolve_parent_id(item.identifier, item.parent_id) != parent_id:
            continue
        if await cancel_quietly(notifications.cancel, item.identifier):
            cancelled += 1
            logger.info(f"Cancelled window instance {item.identifier} of {parent_id}")

    return cancelled


async def cancel_alarms_for_parent(
    repo: Repository,
    backends: Backends,
    parent_id: str,
    strategy: AlarmStrategy = "both",
    now: datetime | None = None,
) -> int:
    """Cancel alarm artifacts of a parent.

    "window" cancels every alarm instance row (active or not, since the
    device may disagree with the store) and deactivates the rows whose
    cancellation went through. "single" cancels the mapped recurring/fixed
    alarms and drops their mappings. "both" does both; use it when the
    parent's cadence is unknown.

    Returns:
        Number of alarms cancelled (including ones already gone)
    """
    if now is None:
        now = utc_now()
    alarms = backends.alarms
    cancelled = 0

    if strategy in ("window", "both"):
        for instance in await repo.get_all_instances("alarm", parent_id):
            if not instance.native_trigger_id:
                # Claimed but never registered
                if instance.cancelled_at is None:
                    await repo.deactivate_instance("alarm", instance.id, now)  # type: ignore[arg-type]
                continue
            if instance.cancelled_at is not None and not instance.is_active:
                continue
            if await cancel_quietly(alarms.cancel_alarm, instance.native_trigger_id):
                cancelled += 1
                await repo.deactivate_instance("alarm", instance.id, now)  # type: ignore[arg-type]

    if strategy in ("single", "both"):
        for mapping in await repo.get_alarm_mappings(parent_id):
            if await cancel_quietly(alarms.cancel_alarm, mapping.native_alarm_id):
                cancelled += 1
                await repo.delete_alarm_mapping(parent_id, mapping.native_alarm_id)
                logger.info(f"Cancelled {mapping.kind} alarm {mapping.native_alarm_id} of {parent_id}")

    return cancelled


async def deactivate_notification_instances(
    repo: Repository,
    backends: Backends,
    parent_id: str,
    now: datetime | None = None,
) -> int:
    """Cancel and deactivate every live notification instance row of a parent.

    Rows are marked inactive when the backend confirms the cancel or reports
    the item already gone; other failures leave the row for the next pass.
    """
    if now is None:
        now = utc_now()
    deactivated = 0
    for instance in await repo.get_active_instances("notification", parent_id):
        if await cancel_quietly(backends.notifications.cancel, instance.native_trigger_id):
            await repo.deactivate_instance("notification", instance.id, now)  # type: ignore[arg-type]
            deactivated += 1
    return deactivated
