"""Tests for the service entry points."""

import asyncio
from datetime import timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from remindsync.config import Config
from remindsync.main import HEARTBEAT_JOB_ID, register_heartbeat, run_forever


async def test_heartbeat_job_registered_on_interval(repo, backends):
    scheduler = AsyncIOScheduler()
    register_heartbeat(scheduler, repo, backends)
    # Registering again replaces the job instead of adding a second one
    register_heartbeat(scheduler, repo, backends)

    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == [HEARTBEAT_JOB_ID]
    job = jobs[0]
    assert job.trigger.interval == timedelta(seconds=Config.HEARTBEAT_INTERVAL)
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.args == (repo, backends)


async def test_run_forever_starts_scheduler_until_cancelled(monkeypatch, tmp_path, backends):
    monkeypatch.setattr(Config, "DATABASE_PATH", tmp_path / "remindsync.db")
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "")
    scheduler = AsyncIOScheduler()

    task = asyncio.create_task(run_forever(backends, scheduler))
    for _ in range(100):
        if scheduler.running:
            break
        await asyncio.sleep(0.01)
    assert scheduler.running
    assert scheduler.get_job(HEARTBEAT_JOB_ID) is not None

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not scheduler.running


async def test_run_forever_rejects_bad_config(monkeypatch, tmp_path, backends):
    monkeypatch.setattr(Config, "DATABASE_PATH", tmp_path / "remindsync.db")
    monkeypatch.setattr(Config, "RECONCILE_MODE", "loud")
    scheduler = AsyncIOScheduler()

    with pytest.raises(ValueError):
        await run_forever(backends, scheduler)
    assert not scheduler.running
