"""Application lifecycle hooks.

Hosts call these from their own lifecycle: once on cold start, whenever the
app returns to the foreground, when the calendar may have changed, and on a
periodic heartbeat. Each hook runs its steps in order and logs, rather than
raises, a failing step so one broken backend never blocks startup.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from remindsync.backends.base import Backends
from remindsync.db.models import ReconcileSummary
from remindsync.db.repository import Repository
from remindsync.engine.calendar_check import CalendarProvider, ChangedCalendarEvent, check_calendar_changes
from remindsync.engine.catchup import catch_up_occurrences
from remindsync.engine.migrator import MigrationResult, run_migration_pass
from remindsync.engine.permissions import PermissionReconcileResult, reconcile_permissions
from remindsync.engine.reconciler import reconcile_on_foreground, reconcile_on_startup
from remindsync.engine.replenisher import ReplenishResult, ensure_alarm_windows, ensure_notification_windows
from remindsync.engine.scheduler import archive_past_reminders
from remindsync.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

# Permission reads right after launch can fail while the platform settles
COLD_START_READ_ATTEMPTS = 3


@dataclass
class LifecycleReport:
    permissions: PermissionReconcileResult | None = None
    archived: list[str] = field(default_factory=list)
    migration: MigrationResult | None = None
    reconcile: ReconcileSummary | None = None
    catchup: int = 0


async def _sync(
    repo: Repository,
    backends: Backends,
    now: datetime,
    full: bool,
    read_attempts: int,
) -> LifecycleReport:
    report = LifecycleReport()

    try:
        report.permissions = await reconcile_permissions(
            repo, backends, now=now, max_attempts=read_attempts
        )
    except Exception as e:
        logger.error(f"Permission reconciliation failed: {e}")

    try:
        report.archived = await archive_past_reminders(repo, now=now)
    except Exception as e:
        logger.error(f"Archiving past reminders failed: {e}")

    try:
        report.migration = await run_migration_pass(repo, backends, now)
    except Exception as e:
        logger.error(f"Migration pass failed: {e}")

    if full:
        report.reconcile = await reconcile_on_startup(repo, backends, now=now)
    else:
        report.reconcile = await reconcile_on_foreground(repo, backends, now=now)

    try:
        report.catchup = await catch_up_occurrences(repo, now)
    except Exception as e:
        logger.error(f"Occurrence catch-up failed: {e}")

    return report


async def on_cold_start(repo: Repository, backends: Backends, now: datetime | None = None) -> LifecycleReport:
    """Full sync after a process start."""
    logger.info("Running cold-start sync")
    return await _sync(repo, backends, now or utc_now(), full=True, read_attempts=COLD_START_READ_ATTEMPTS)


async def on_foreground(repo: Repository, backends: Backends, now: datetime | None = None) -> LifecycleReport:
    """Lighter sync when the app returns to the foreground."""
    logger.info("Running foreground sync")
    return await _sync(repo, backends, now or utc_now(), full=False, read_attempts=1)


async def on_calendar_change(
    repo: Repository,
    provider: CalendarProvider,
    timeout: float | None = None,
) -> list[ChangedCalendarEvent]:
    """Check calendar-derived reminders against their events."""
    return await check_calendar_changes(repo, provider, timeout)


async def heartbeat(repo: Repository, backends: Backends, now: datetime | None = None) -> ReplenishResult:
    """Periodic upkeep: archive fired one-shots, migrate, top up windows.

    This runs every HEARTBEAT_INTERVAL seconds.
    """
    if now is None:
        now = utc_now()
    total = ReplenishResult()

    try:
        await archive_past_reminders(repo, now=now)
        await run_migration_pass(repo, backends, now)
        total.add(await ensure_notification_windows(repo, backends, now))
        total.add(await ensure_alarm_windows(repo, backends, now))
    except Exception as e:
        logger.error(f"Error in heartbeat: {e}")

    if total.registered or total.failures:
        logger.info(f"Heartbeat: {total.registered} instance(s) registered, {total.failures} failed")
    return total
