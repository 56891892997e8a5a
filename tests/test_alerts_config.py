"""Tests for configuration and alert sinks."""

import logging

import pytest
from telegram.error import TelegramError

from remindsync.alerts import LogAlertSink, TelegramAlertSink
from remindsync.config import Config


class FakeBot:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent = []

    async def send_message(self, **kwargs):
        if self.error:
            raise self.error
        self.sent.append(kwargs)


def test_window_sizes():
    assert Config.window_size("none") == 1
    assert Config.window_size("daily") == Config.ROLLING_WINDOW_DAILY
    assert Config.window_size("yearly") == Config.ROLLING_WINDOW_YEARLY


def test_validate_rejects_bad_values(monkeypatch, tmp_path):
    monkeypatch.setattr(Config, "DATABASE_PATH", tmp_path / "db" / "remindsync.db")
    Config.validate()
    assert (tmp_path / "db").is_dir()

    monkeypatch.setattr(Config, "RECONCILE_MODE", "loud")
    with pytest.raises(ValueError):
        Config.validate()

    monkeypatch.setattr(Config, "RECONCILE_MODE", "silent")
    monkeypatch.setattr(Config, "ROLLING_WINDOW_WEEKLY", 0)
    with pytest.raises(ValueError):
        Config.validate()

    monkeypatch.setattr(Config, "ROLLING_WINDOW_WEEKLY", 4)
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "token")
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "")
    with pytest.raises(ValueError):
        Config.validate()


async def test_log_sink(caplog):
    with caplog.at_level(logging.WARNING):
        await LogAlertSink().alert("Reminder sync", "2 items fixed")

    assert "Reminder sync: 2 items fixed" in caplog.text


async def test_telegram_sink_sends_message():
    bot = FakeBot()

    await TelegramAlertSink(bot, 42).alert("Notifications disabled", "Reminders were archived")

    assert bot.sent[0]["chat_id"] == 42
    assert "Notifications disabled" in bot.sent[0]["text"]


async def test_telegram_failure_is_logged_not_raised():
    bot = FakeBot(error=TelegramError("chat not found"))

    await TelegramAlertSink(bot, 42).alert("Reminder sync", "1 item fixed")

    assert bot.sent == []
