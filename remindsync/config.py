"""Configuration management from environment variables."""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

from remindsync.utils.constants import (
    DEFAULT_APP_NAMESPACE,
    DEFAULT_CALENDAR_CHECK_TIMEOUT,
    DEFAULT_CATCHUP_MAX_ITERATIONS,
    DEFAULT_DAILY_LEAD_THRESHOLD_HOURS,
    DEFAULT_MIGRATION_STALE_MINUTES,
    DEFAULT_RECONCILE_MODE,
    DEFAULT_TIMEZONE,
    DEFAULT_WEEKLY_LEAD_THRESHOLD_DAYS,
    DEFAULT_WINDOW_SIZES,
    RECONCILE_MODES,
)

# Load .env file if it exists
load_dotenv()


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    """Application configuration loaded from environment variables."""

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/remindsync.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Identity
    APP_NAMESPACE: str = os.getenv("APP_NAMESPACE", DEFAULT_APP_NAMESPACE)
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", DEFAULT_TIMEZONE)

    # Reconciliation
    RECONCILE_MODE: Literal["silent", "alert"] = os.getenv("RECONCILE_MODE", DEFAULT_RECONCILE_MODE)  # type: ignore

    # Rolling-window policy
    ROLLING_WINDOW_DAILY: int = _int_env("ROLLING_WINDOW_DAILY", DEFAULT_WINDOW_SIZES["daily"])
    ROLLING_WINDOW_WEEKLY: int = _int_env("ROLLING_WINDOW_WEEKLY", DEFAULT_WINDOW_SIZES["weekly"])
    ROLLING_WINDOW_MONTHLY: int = _int_env("ROLLING_WINDOW_MONTHLY", DEFAULT_WINDOW_SIZES["monthly"])
    ROLLING_WINDOW_YEARLY: int = _int_env("ROLLING_WINDOW_YEARLY", DEFAULT_WINDOW_SIZES["yearly"])
    DAILY_LEAD_THRESHOLD_HOURS: int = _int_env(
        "DAILY_LEAD_THRESHOLD_HOURS", DEFAULT_DAILY_LEAD_THRESHOLD_HOURS
    )
    WEEKLY_LEAD_THRESHOLD_DAYS: int = _int_env(
        "WEEKLY_LEAD_THRESHOLD_DAYS", DEFAULT_WEEKLY_LEAD_THRESHOLD_DAYS
    )

    # Engine
    MIGRATION_STALE_MINUTES: int = _int_env("MIGRATION_STALE_MINUTES", DEFAULT_MIGRATION_STALE_MINUTES)
    CATCHUP_MAX_ITERATIONS: int = _int_env("CATCHUP_MAX_ITERATIONS", DEFAULT_CATCHUP_MAX_ITERATIONS)
    CALENDAR_CHECK_TIMEOUT: float = float(
        os.getenv("CALENDAR_CHECK_TIMEOUT", str(DEFAULT_CALENDAR_CHECK_TIMEOUT))
    )
    HEARTBEAT_INTERVAL: int = _int_env("HEARTBEAT_INTERVAL", 60)

    # Optional Telegram delivery of user-visible alerts
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")

    @classmethod
    def window_size(cls, cadence: str) -> int:
        """Target rolling-window size for a repeat cadence."""
        sizes = {
            "none": DEFAULT_WINDOW_SIZES["none"],
            "daily": cls.ROLLING_WINDOW_DAILY,
            "weekly": cls.ROLLING_WINDOW_WEEKLY,
            "monthly": cls.ROLLING_WINDOW_MONTHLY,
            "yearly": cls.ROLLING_WINDOW_YEARLY,
        }
        return sizes.get(cadence, cls.ROLLING_WINDOW_DAILY)

    @classmethod
    def validate(cls) -> None:
        """Validate configuration."""
        if cls.RECONCILE_MODE not in RECONCILE_MODES:
            raise ValueError(f"RECONCILE_MODE must be one of {RECONCILE_MODES}")

        for name in ("ROLLING_WINDOW_DAILY", "ROLLING_WINDOW_WEEKLY",
                     "ROLLING_WINDOW_MONTHLY", "ROLLING_WINDOW_YEARLY"):
            if getattr(cls, name) < 1:
                raise ValueError(f"{name} must be at least 1")

        if bool(cls.TELEGRAM_BOT_TOKEN) != bool(cls.TELEGRAM_CHAT_ID):
            raise ValueError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set together")

        # Ensure database directory exists
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
