from __future__ import annotations

import dataclasses

from happenings import config, scheduler


def _with_settings(monkeypatch, **changes):
    monkeypatch.setattr(
        scheduler, "settings", dataclasses.replace(config.settings, **changes)
    )


def test_scheduler_disabled_by_config(monkeypatch):
    _with_settings(monkeypatch, enable_scheduler=False)

    assert scheduler.start_scheduler() is None


def test_scheduler_registers_weekly_digest(monkeypatch):
    _with_settings(
        monkeypatch,
        enable_scheduler=True,
        timezone="America/Denver",
        digest_weekday="sun",
        digest_hour=15,
    )

    started = scheduler.start_scheduler()
    try:
        assert started is not None
        assert started.running
        job = started.get_job("weekly-digest")
        assert job is not None
        assert job.func is scheduler.run_weekly_digest
        assert scheduler.start_scheduler() is started
    finally:
        scheduler.stop_scheduler()

    assert not started.running
