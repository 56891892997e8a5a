"""Database repository - all SQL queries."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Iterable, List

import aiosqlite

from remindsync.db.models import (
    ArchivedReminder,
    InstanceKind,
    NativeAlarmMapping,
    RepeatOccurrence,
    ScheduledReminder,
    SemaphoreState,
    TriggerInstance,
)
from remindsync.engine.triggers import decode_trigger, encode_trigger
from remindsync.utils.errors import DataCorruptionError
from remindsync.utils.time_utils import from_db_timestamp, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)

_INSTANCE_TABLES = {
    "notification": "notification_instance",
    "alarm": "alarm_instance",
}

_REMINDER_COLUMNS = (
    "id, title, body, note, link, schedule_instant, schedule_instant_local, timezone, "
    "repeat_cadence, delivery_trigger, delivery_method, has_alarm, source, calendar_id, "
    "original_event_id, original_event_title, original_event_start, original_event_end, "
    "original_event_location, original_event_recurrence, created_at, updated_at"
)


def _ts(dt: datetime | None) -> str | None:
    return to_db_timestamp(dt) if dt else None


class Repository:
    """Database access layer.

    One aiosqlite connection per repository. Writes are serialized through a
    lock so a multi-statement transaction is never committed halfway by an
    unrelated coroutine.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run several statements atomically.

        Yields the raw connection; do not call other write methods of this
        repository inside the block (they take the same lock).
        """
        async with self._write_lock:
            try:
                yield self.db
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()

    async def _write(self, query: str, params: Iterable = ()) -> int:
        """Execute one write statement and commit. Returns the row count."""
        async with self._write_lock:
            cursor = await self.db.execute(query, tuple(params))
            rowcount = cursor.rowcount
            await cursor.close()
            await self.db.commit()
            return rowcount

    # Scheduled reminder operations

    def _reminder_params(self, reminder: ScheduledReminder) -> tuple:
        if reminder.delivery_trigger is None:
            raise ValueError(f"Reminder {reminder.id} has no delivery trigger")
        now = utc_now()
        return (
            reminder.id,
            reminder.title,
            reminder.body,
            reminder.note,
            reminder.link,
            to_db_timestamp(reminder.schedule_instant),
            reminder.schedule_instant_local,
            reminder.timezone,
            reminder.repeat_cadence,
            encode_trigger(reminder.delivery_trigger),
            reminder.delivery_method,
            1 if reminder.has_alarm else 0,
            reminder.source,
            reminder.calendar_id,
            reminder.original_event_id,
            reminder.original_event_title,
            _ts(reminder.original_event_start),
            _ts(reminder.original_event_end),
            reminder.original_event_location,
            reminder.original_event_recurrence,
            to_db_timestamp(reminder.created_at or now),
            to_db_timestamp(now),
        )

    async def save_reminder(self, reminder: ScheduledReminder) -> None:
        """Insert a reminder, replacing any row with the same id."""
        await self._write(
            f"INSERT OR REPLACE INTO scheduled_reminder ({_REMINDER_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._reminder_params(reminder),
        )

    async def update_reminder(self, reminder: ScheduledReminder) -> None:
        """Update a reminder in place (same id)."""
        params = self._reminder_params(reminder)
        await self._write(
            """
            UPDATE scheduled_reminder SET
                title = ?,
                body = ?,
                note = ?,
                link = ?,
                schedule_instant = ?,
                schedule_instant_local = ?,
                timezone = ?,
                repeat_cadence = ?,
                delivery_trigger = ?,
                delivery_method = ?,
                has_alarm = ?,
                source = ?,
                calendar_id = ?,
                original_event_id = ?,
                original_event_title = ?,
                original_event_start = ?,
                original_event_end = ?,
                original_event_location = ?,
                original_event_recurrence = ?,
                updated_at = ?
            WHERE id = ?
            """,
            params[1:20] + (params[21], reminder.id),
        )

    async def set_has_alarm(self, reminder_id: str, has_alarm: bool) -> None:
        await self._write(
            "UPDATE scheduled_reminder SET has_alarm = ?, updated_at = ? WHERE id = ?",
            (1 if has_alarm else 0, to_db_timestamp(utc_now()), reminder_id),
        )

    async def get_reminder(self, reminder_id: str) -> ScheduledReminder | None:
        """Get a reminder by ID."""
        async with self.db.execute(
            "SELECT * FROM scheduled_reminder WHERE id = ?", (reminder_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_reminder(row)
            return None

    async def get_all_reminders(self) -> List[ScheduledReminder]:
        """Get every scheduled reminder, soonest first."""
        async with self.db.execute(
            "SELECT * FROM scheduled_reminder ORDER BY schedule_instant"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_reminder(row) for row in rows]

    async def get_reminders_by_method(self, method: str) -> List[ScheduledReminder]:
        async with self.db.execute(
            "SELECT * FROM scheduled_reminder WHERE delivery_method = ? ORDER BY schedule_instant",
            (method,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_reminder(row) for row in rows]

    async def get_repeating_reminders(self) -> List[ScheduledReminder]:
        async with self.db.execute(
            "SELECT * FROM scheduled_reminder WHERE repeat_cadence != 'none' ORDER BY schedule_instant"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_reminder(row) for row in rows]

    async def get_upcoming_calendar_reminders(self, now: datetime) -> List[ScheduledReminder]:
        """Calendar-derived reminders that have not fired yet (or repeat)."""
        async with self.db.execute(
            """
            SELECT * FROM scheduled_reminder
            WHERE calendar_id IS NOT NULL
            AND original_event_id IS NOT NULL
            AND (schedule_instant > ? OR repeat_cadence != 'none')
            ORDER BY schedule_instant
            """,
            (to_db_timestamp(now),),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_reminder(row) for row in rows]

    async def delete_reminder(self, reminder_id: str) -> None:
        """Delete a reminder."""
        await self._write("DELETE FROM scheduled_reminder WHERE id = ?", (reminder_id,))

    async def delete_all_reminders(self) -> None:
        await self._write("DELETE FROM scheduled_reminder")

    # Archive operations

    async def archive_reminder(
        self,
        reminder_id: str,
        archived_at: datetime,
        cancelled_at: datetime | None = None,
    ) -> None:
        """Move one scheduled reminder into the archive."""
        async with self.transaction() as db:
            await db.execute(
                f"""
                INSERT OR REPLACE INTO archived_reminder ({_REMINDER_COLUMNS}, cancelled_at, archived_at)
                SELECT {_REMINDER_COLUMNS}, ?, ? FROM scheduled_reminder WHERE id = ?
                """,
                (_ts(cancelled_at), to_db_timestamp(archived_at), reminder_id),
            )
            await db.execute("DELETE FROM scheduled_reminder WHERE id = ?", (reminder_id,))

    async def archive_past_reminders(self, now: datetime) -> List[str]:
        """Archive non-repeating reminders whose instant has passed.

        Returns:
            Ids of the archived reminders
        """
        cutoff = to_db_timestamp(now)
        async with self.transaction() as db:
            async with db.execute(
                "SELECT id FROM scheduled_reminder WHERE repeat_cadence = 'none' AND schedule_instant < ?",
                (cutoff,),
            ) as cursor:
                ids = [row["id"] for row in await cursor.fetchall()]
            if ids:
                await db.execute(
                    f"""
                    INSERT OR REPLACE INTO archived_reminder ({_REMINDER_COLUMNS}, archived_at)
                    SELECT {_REMINDER_COLUMNS}, ? FROM scheduled_reminder
                    WHERE repeat_cadence = 'none' AND schedule_instant < ?
                    """,
                    (cutoff, cutoff),
                )
                await db.execute(
                    "DELETE FROM scheduled_reminder WHERE repeat_cadence = 'none' AND schedule_instant < ?",
                    (cutoff,),
                )
        return ids

    async def archive_all_as_cancelled(self, cancelled_at: datetime) -> None:
        """Archive every scheduled reminder with cancelled_at stamped.

        The scheduled rows stay in place; delete_all_reminders removes them.
        """
        stamp = to_db_timestamp(cancelled_at)
        await self._write(
            f"""
            INSERT OR REPLACE INTO archived_reminder ({_REMINDER_COLUMNS}, cancelled_at, archived_at)
            SELECT {_REMINDER_COLUMNS}, ?, ? FROM scheduled_reminder
            """,
            (stamp, stamp),
        )

    async def get_archived_reminder(self, reminder_id: str) -> ArchivedReminder | None:
        async with self.db.execute(
            "SELECT * FROM archived_reminder WHERE id = ?", (reminder_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_archived(row)
            return None

    async def get_all_archived(self) -> List[ArchivedReminder]:
        async with self.db.execute(
            "SELECT * FROM archived_reminder ORDER BY archived_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_archived(row) for row in rows]

    async def mark_archived_handled(self, reminder_id: str, handled_at: datetime) -> bool:
        """Stamp handled_at on an archived reminder. The only archive mutation."""
        count = await self._write(
            "UPDATE archived_reminder SET handled_at = ?, updated_at = ? WHERE id = ?",
            (to_db_timestamp(handled_at), to_db_timestamp(handled_at), reminder_id),
        )
        return count > 0

    # Rolling-window instance operations

    async def claim_instance(
        self,
        kind: InstanceKind,
        parent_id: str,
        fire_instant: datetime,
        native_trigger_id: str = "",
    ) -> int | None:
        """Reserve (parent_id, fire_instant) before registering it.

        The row starts inactive. Returns the row id, or None if another live
        row already holds this slot.
        """
        table = _INSTANCE_TABLES[kind]
        async with self._write_lock:
            cursor = await self.db.execute(
                f"""
                INSERT OR IGNORE INTO {table} (parent_id, native_trigger_id, fire_instant, is_active, created_at)
                VALUES (?, ?, ?, 0, ?)
                """,
                (parent_id, native_trigger_id, to_db_timestamp(fire_instant), to_db_timestamp(utc_now())),
            )
            inserted = cursor.rowcount > 0
            row_id = cursor.lastrowid
            await cursor.close()
            await self.db.commit()
        return row_id if inserted else None

    async def activate_instance(self, kind: InstanceKind, row_id: int, native_trigger_id: str) -> None:
        table = _INSTANCE_TABLES[kind]
        await self._write(
            f"UPDATE {table} SET is_active = 1, native_trigger_id = ? WHERE id = ? AND cancelled_at IS NULL",
            (native_trigger_id, row_id),
        )

    async def release_stale_claims(self, kind: InstanceKind, parent_id: str, claimed_before: datetime) -> int:
        """Cancel inactive claims older than claimed_before, freeing their slots.

        Returns:
            Number of claims released
        """
        table = _INSTANCE_TABLES[kind]
        return await self._write(
            f"""
            UPDATE {table} SET cancelled_at = ?
            WHERE parent_id = ? AND is_active = 0 AND cancelled_at IS NULL AND created_at < ?
            """,
            (to_db_timestamp(utc_now()), parent_id, to_db_timestamp(claimed_before)),
        )

    async def deactivate_instance(self, kind: InstanceKind, row_id: int, cancelled_at: datetime) -> None:
        """Mark one instance row inactive. Idempotent."""
        table = _INSTANCE_TABLES[kind]
        await self._write(
            f"""
            UPDATE {table} SET is_active = 0, cancelled_at = COALESCE(cancelled_at, ?)
            WHERE id = ?
            """,
            (to_db_timestamp(cancelled_at), row_id),
        )

    async def deactivate_all_instances(
        self,
        kind: InstanceKind,
        cancelled_at: datetime,
        parent_id: str | None = None,
    ) -> int:
        """Mark every live instance row inactive, optionally for one parent."""
        table = _INSTANCE_TABLES[kind]
        query = f"UPDATE {table} SET is_active = 0, cancelled_at = ? WHERE cancelled_at IS NULL"
        params: list = [to_db_timestamp(cancelled_at)]
        if parent_id is not None:
            query += " AND parent_id = ?"
            params.append(parent_id)
        return await self._write(query, params)

    async def get_active_instances(self, kind: InstanceKind, parent_id: str) -> List[TriggerInstance]:
        """Active instances of a parent, earliest first."""
        table = _INSTANCE_TABLES[kind]
        async with self.db.execute(
            f"SELECT * FROM {table} WHERE parent_id = ? AND is_active = 1 ORDER BY fire_instant",
            (parent_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_instance(row, kind) for row in rows]

    async def get_all_instances(self, kind: InstanceKind, parent_id: str) -> List[TriggerInstance]:
        """Every instance of a parent, including inactive ones."""
        table = _INSTANCE_TABLES[kind]
        async with self.db.execute(
            f"SELECT * FROM {table} WHERE parent_id = ? ORDER BY fire_instant",
            (parent_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_instance(row, kind) for row in rows]

    async def count_active_future_instances(self, kind: InstanceKind, parent_id: str, cutoff: datetime) -> int:
        table = _INSTANCE_TABLES[kind]
        async with self.db.execute(
            f"SELECT COUNT(*) AS n FROM {table} WHERE parent_id = ? AND is_active = 1 AND fire_instant > ?",
            (parent_id, to_db_timestamp(cutoff)),
        ) as cursor:
            row = await cursor.fetchone()
            return row["n"]

    async def get_live_instance_parent_ids(self, kind: InstanceKind) -> set[str]:
        """Parents with at least one active instance row."""
        table = _INSTANCE_TABLES[kind]
        async with self.db.execute(
            f"SELECT DISTINCT parent_id FROM {table} WHERE is_active = 1"
        ) as cursor:
            rows = await cursor.fetchall()
            return {row["parent_id"] for row in rows}

    # Native alarm mapping operations

    async def add_alarm_mapping(self, parent_id: str, native_alarm_id: str, kind: str) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO native_alarm (parent_id, native_alarm_id, kind, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (parent_id, native_alarm_id, kind, to_db_timestamp(utc_now())),
        )

    async def get_alarm_mappings(self, parent_id: str) -> List[NativeAlarmMapping]:
        async with self.db.execute(
            "SELECT * FROM native_alarm WHERE parent_id = ? ORDER BY created_at",
            (parent_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [
                NativeAlarmMapping(
                    parent_id=row["parent_id"],
                    native_alarm_id=row["native_alarm_id"],
                    kind=row["kind"],
                    created_at=from_db_timestamp(row["created_at"]),
                )
                for row in rows
            ]

    async def delete_alarm_mapping(self, parent_id: str, native_alarm_id: str) -> None:
        await self._write(
            "DELETE FROM native_alarm WHERE parent_id = ? AND native_alarm_id = ?",
            (parent_id, native_alarm_id),
        )

    async def get_alarm_mapping_parent_ids(self) -> set[str]:
        async with self.db.execute("SELECT DISTINCT parent_id FROM native_alarm") as cursor:
            rows = await cursor.fetchall()
            return {row["parent_id"] for row in rows}

    # Repeat occurrence operations

    async def insert_occurrence(self, occurrence: RepeatOccurrence) -> bool:
        """Insert-if-absent on (parent_id, fire_instant).

        Returns:
            True if a new row was stored
        """
        count = await self._write(
            """
            INSERT OR IGNORE INTO repeat_occurrence
                (parent_id, fire_instant, source, title, body, note, link, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                occurrence.parent_id,
                to_db_timestamp(occurrence.fire_instant),
                occurrence.source,
                occurrence.title,
                occurrence.body,
                occurrence.note,
                occurrence.link,
                to_db_timestamp(occurrence.recorded_at or utc_now()),
            ),
        )
        return count > 0

    async def get_latest_occurrence(self, parent_id: str) -> RepeatOccurrence | None:
        async with self.db.execute(
            "SELECT * FROM repeat_occurrence WHERE parent_id = ? ORDER BY fire_instant DESC LIMIT 1",
            (parent_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_occurrence(row)
            return None

    async def get_occurrences(self, parent_id: str) -> List[RepeatOccurrence]:
        async with self.db.execute(
            "SELECT * FROM repeat_occurrence WHERE parent_id = ? ORDER BY fire_instant",
            (parent_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    # Migration semaphore operations

    async def get_semaphore(self) -> SemaphoreState:
        async with self.db.execute(
            "SELECT active_migration, last_migration_at FROM reconciliation_semaphore WHERE id = 1"
        ) as cursor:
            row = await cursor.fetchone()
            if not row:
                return SemaphoreState(active_migration=False)
            return SemaphoreState(
                active_migration=bool(row["active_migration"]),
                last_migration_at=from_db_timestamp(row["last_migration_at"]),
            )

    async def try_acquire_migration_semaphore(self, now: datetime, stale_after: timedelta) -> bool:
        """Take the migration semaphore if it is free or its holder is stale.

        A single conditional UPDATE, so two callers can never both win.
        """
        stale_before = to_db_timestamp(now - stale_after)
        count = await self._write(
            """
            UPDATE reconciliation_semaphore
            SET active_migration = 1, last_migration_at = ?
            WHERE id = 1 AND (
                active_migration = 0
                OR last_migration_at IS NULL
                OR last_migration_at < ?
            )
            """,
            (to_db_timestamp(now), stale_before),
        )
        return count > 0

    async def release_migration_semaphore(self, now: datetime) -> None:
        await self._write(
            "UPDATE reconciliation_semaphore SET active_migration = 0, last_migration_at = ? WHERE id = 1",
            (to_db_timestamp(now),),
        )

    # Preference operations

    async def get_preference(self, key: str) -> str | None:
        async with self.db.execute(
            "SELECT value FROM app_preference WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
            return row["value"] if row else None

    async def set_preference(self, key: str, value: str) -> None:
        await self._write(
            "INSERT OR REPLACE INTO app_preference (key, value) VALUES (?, ?)",
            (key, value),
        )

    # Ignored calendar events

    async def is_calendar_event_ignored(self, calendar_id: str, event_id: str) -> bool:
        async with self.db.execute(
            "SELECT 1 FROM ignored_calendar_event WHERE calendar_id = ? AND event_id = ?",
            (calendar_id, event_id),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def set_ignored_calendar_events(self, events: Iterable[tuple[str, str]]) -> None:
        """Replace the whole ignore list in one transaction."""
        stamp = to_db_timestamp(utc_now())
        async with self.transaction() as db:
            await db.execute("DELETE FROM ignored_calendar_event")
            await db.executemany(
                "INSERT OR IGNORE INTO ignored_calendar_event (calendar_id, event_id, ignored_at) VALUES (?, ?, ?)",
                [(calendar_id, event_id, stamp) for calendar_id, event_id in events],
            )

    # Helper methods

    def _reminder_fields(self, row: aiosqlite.Row) -> dict:
        try:
            trigger = decode_trigger(row["delivery_trigger"])
        except DataCorruptionError as e:
            logger.error(f"Unreadable delivery trigger for reminder {row['id']}: {e}")
            trigger = None

        return dict(
            id=row["id"],
            title=row["title"],
            body=row["body"],
            note=row["note"],
            link=row["link"],
            schedule_instant=from_db_timestamp(row["schedule_instant"]),
            schedule_instant_local=row["schedule_instant_local"],
            timezone=row["timezone"],
            repeat_cadence=row["repeat_cadence"],  # type: ignore
            delivery_trigger=trigger,
            delivery_method=row["delivery_method"],  # type: ignore
            has_alarm=bool(row["has_alarm"]),
            source=row["source"],  # type: ignore
            calendar_id=row["calendar_id"],
            original_event_id=row["original_event_id"],
            original_event_title=row["original_event_title"],
            original_event_start=from_db_timestamp(row["original_event_start"]),
            original_event_end=from_db_timestamp(row["original_event_end"]),
            original_event_location=row["original_event_location"],
            original_event_recurrence=row["original_event_recurrence"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )

    def _row_to_reminder(self, row: aiosqlite.Row) -> ScheduledReminder:
        """Convert a database row to a ScheduledReminder object."""
        return ScheduledReminder(**self._reminder_fields(row))

    def _row_to_archived(self, row: aiosqlite.Row) -> ArchivedReminder:
        return ArchivedReminder(
            **self._reminder_fields(row),
            handled_at=from_db_timestamp(row["handled_at"]),
            cancelled_at=from_db_timestamp(row["cancelled_at"]),
            archived_at=from_db_timestamp(row["archived_at"]),
        )

    def _row_to_instance(self, row: aiosqlite.Row, kind: InstanceKind) -> TriggerInstance:
        return TriggerInstance(
            id=row["id"],
            parent_id=row["parent_id"],
            native_trigger_id=row["native_trigger_id"],
            fire_instant=from_db_timestamp(row["fire_instant"]),
            kind=kind,
            is_active=bool(row["is_active"]),
            cancelled_at=from_db_timestamp(row["cancelled_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    def _row_to_occurrence(self, row: aiosqlite.Row) -> RepeatOccurrence:
        return RepeatOccurrence(
            id=row["id"],
            parent_id=row["parent_id"],
            fire_instant=from_db_timestamp(row["fire_instant"]),
            source=row["source"],
            title=row["title"],
            body=row["body"],
            note=row["note"],
            link=row["link"],
            recorded_at=from_db_timestamp(row["recorded_at"]),
        )
