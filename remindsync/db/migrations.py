"""Schema versioning for the reminder store.

The version lives in SQLite's `PRAGMA user_version`. Each entry of
_MIGRATIONS brings a database from the previous version up to its key, and
run_migrations applies whichever are still pending in order.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict

import aiosqlite

from remindsync.utils.errors import RemindSyncError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


async def _create_base_schema(db: aiosqlite.Connection) -> None:
    # Every statement is CREATE ... IF NOT EXISTS, so stores created before
    # versioning existed upgrade cleanly
    with open(SCHEMA_PATH) as f:
        await db.executescript(f.read())


_MIGRATIONS: Dict[int, Callable[[aiosqlite.Connection], Awaitable[None]]] = {
    1: _create_base_schema,
}

SCHEMA_VERSION = max(_MIGRATIONS)


async def get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
    return row[0] if row else 0


async def run_migrations(db_path: Path) -> int:
    """Bring the database at db_path up to SCHEMA_VERSION.

    Safe to call on every start; a current database is left untouched.

    Returns:
        Number of migrations applied

    Raises:
        RemindSyncError: The database was written by a newer schema version
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db:
        current = await get_schema_version(db)
        if current > SCHEMA_VERSION:
            raise RemindSyncError(
                f"Database {db_path} is at schema version {current}, newer than supported {SCHEMA_VERSION}"
            )

        applied = 0
        for version in range(current + 1, SCHEMA_VERSION + 1):
            await _MIGRATIONS[version](db)
            # PRAGMA does not take bound parameters
            await db.execute(f"PRAGMA user_version = {version}")
            await db.commit()
            applied += 1
            logger.info(f"Migrated {db_path} to schema version {version}")

    if not applied:
        logger.debug(f"Database {db_path} already at schema version {SCHEMA_VERSION}")
    return applied
