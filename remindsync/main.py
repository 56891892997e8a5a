"""Service entry points for hosts embedding remindsync."""

import asyncio
import logging
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import Bot

from remindsync.alerts import AlertSink, LogAlertSink, TelegramAlertSink
from remindsync.backends.base import Backends
from remindsync.config import Config
from remindsync.db.migrations import run_migrations
from remindsync.db.repository import Repository
from remindsync.lifecycle import heartbeat, on_cold_start

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)

HEARTBEAT_JOB_ID = "heartbeat"


def build_alert_sink() -> AlertSink:
    """Telegram alerts when configured, otherwise the log."""
    if Config.TELEGRAM_BOT_TOKEN and Config.TELEGRAM_CHAT_ID:
        logger.info("Alerts will be sent to Telegram")
        return TelegramAlertSink(Bot(Config.TELEGRAM_BOT_TOKEN), Config.TELEGRAM_CHAT_ID)
    return LogAlertSink()


async def start(backends: Backends) -> Repository:
    """Validate config, migrate the database, open it and run the cold-start sync."""
    Config.validate()

    await run_migrations(Config.DATABASE_PATH)

    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()

    await on_cold_start(repo, backends)
    logger.info("remindsync initialized successfully")
    return repo


async def stop(repo: Repository) -> None:
    """Cleanup resources on shutdown."""
    await repo.close()
    logger.info("remindsync shut down")


def register_heartbeat(scheduler: AsyncIOScheduler, repo: Repository, backends: Backends) -> None:
    """Add the periodic heartbeat job to a scheduler."""
    scheduler.add_job(
        heartbeat,
        "interval",
        seconds=Config.HEARTBEAT_INTERVAL,
        args=[repo, backends],
        id=HEARTBEAT_JOB_ID,
        max_instances=1,  # Never overlap heartbeats
        coalesce=True,  # Collapse missed runs into one
        replace_existing=True,
    )
    logger.info(f"Heartbeat job scheduled (interval: {Config.HEARTBEAT_INTERVAL}s)")


async def run_forever(backends: Backends, scheduler: AsyncIOScheduler | None = None) -> None:
    """Start, then run the heartbeat on a scheduler until cancelled."""
    try:
        repo = await start(backends)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise

    if scheduler is None:
        scheduler = AsyncIOScheduler()
    register_heartbeat(scheduler, repo, backends)
    scheduler.start()

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await stop(repo)
