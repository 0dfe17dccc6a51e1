from __future__ import annotations

import logging
from datetime import datetime

from memoria_core.config import EngineConfig, MemorySection
from memoria_core.engine import MemoryEngine
from memoria_core.heartbeat.jobs import (
    LAST_AUTO_ORGANIZATION_KEY,
    auto_organization_due,
    run_all_jobs,
    run_auto_organization_job,
    run_cleanup_job,
    run_suggestion_refresh_job,
)
from memoria_core.heartbeat.loop import HeartbeatLoop
from memoria_core.memory.kv import InMemoryKeyValueStore
from memoria_core.memory.models import DAY_MS

BASE_MS = int(datetime(2026, 1, 15, 10, 5).timestamp() * 1000)
HOUR_MS = 60 * 60 * 1000


class _Clock:
    def __init__(self, now: int = BASE_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _engine(clock: _Clock, **memory) -> MemoryEngine:
    config = EngineConfig(memory=MemorySection(**memory))
    return MemoryEngine(config, kv_store=InMemoryKeyValueStore(), clock=clock).open()


def test_cleanup_job_purges_expired_actions() -> None:
    clock = _Clock(BASE_MS - 40 * DAY_MS)
    engine = _engine(clock, retention_days=30)
    engine.record_action({"actionType": "app_switch", "applicationName": "Old"})
    clock.now = BASE_MS
    engine.record_action({"actionType": "app_switch", "applicationName": "New"})

    removed = run_cleanup_job(engine)

    assert removed == {"actions": 1, "patterns": 1}
    assert engine.store.action_count() == 1


def test_auto_organization_runs_once_per_interval() -> None:
    clock = _Clock()
    engine = _engine(clock)
    assert auto_organization_due(engine)

    assert run_auto_organization_job(engine) is not None
    assert engine.store.get_meta(LAST_AUTO_ORGANIZATION_KEY) == BASE_MS

    clock.now += HOUR_MS
    assert run_auto_organization_job(engine) is None

    clock.now = BASE_MS + 24 * HOUR_MS
    assert run_auto_organization_job(engine) is not None
    assert engine.store.get_meta(LAST_AUTO_ORGANIZATION_KEY) == BASE_MS + 24 * HOUR_MS


def test_job_failures_are_logged_not_raised(monkeypatch, caplog) -> None:
    engine = _engine(_Clock())

    def _boom():
        raise RuntimeError("disk full")

    monkeypatch.setattr(engine, "auto_organize", _boom)
    monkeypatch.setattr(engine, "run_cleanup", _boom)

    with caplog.at_level(logging.WARNING, logger="memoria_core.heartbeat.jobs"):
        assert run_auto_organization_job(engine) is None
        assert run_cleanup_job(engine) is None

    assert "auto-organization failed: disk full" in caplog.text
    assert "cleanup failed: disk full" in caplog.text
    assert engine.store.get_meta(LAST_AUTO_ORGANIZATION_KEY) is None


def test_suggestion_refresh_caches_latest() -> None:
    engine = _engine(_Clock())
    engine.save_memory({"title": "Ship plan", "content": "release plan", "metadata": {"targetDate": BASE_MS + DAY_MS}})

    refreshed = run_suggestion_refresh_job(engine)

    assert refreshed
    assert refreshed == engine.latest_suggestions
    assert refreshed[0].title == "Goal deadline approaching: Ship plan"
    assert engine.ranker.history == []


def test_run_all_jobs_reports_each_job() -> None:
    engine = _engine(_Clock())

    report = run_all_jobs(engine)

    assert report["cleanup"] == {"actions": 0, "patterns": 0}
    assert report["autoOrganization"] == {"merged": 0, "archived": 0, "clustered": 0, "retagged": 0}
    assert report["suggestions"] == 0


def test_heartbeat_loop_tick_and_disabled_interval() -> None:
    calls: list[int] = []
    loop = HeartbeatLoop("sampler", 0, lambda: calls.append(1))

    loop.tick_once()
    loop.start()

    assert calls == [1]
    assert not loop.status().running
    loop.stop()
    assert loop.status().interval_seconds == 0


def test_heartbeat_loop_counts_failed_ticks(caplog) -> None:
    def _boom() -> None:
        raise RuntimeError("tick broke")

    loop = HeartbeatLoop("sampler", 0, _boom)

    with caplog.at_level(logging.WARNING, logger="memoria_core.heartbeat.loop"):
        loop._guarded_tick()

    status = loop.status()
    assert (status.ticks, status.failures) == (1, 1)
    assert "sampler tick failed: tick broke" in caplog.text
