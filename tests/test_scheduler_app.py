from __future__ import annotations

import threading
import time
from datetime import datetime

import pytest

import scheduler_app
from feedagg.tasks.ingest import TickReport
from scheduler_app import FETCH_FEEDS_JOB, Scheduler, build_scheduler


class StubIngestion:
    def __init__(self) -> None:
        self.calls = 0

    def run_tick(self):
        self.calls += 1
        return TickReport(started_at=datetime(2024, 1, 1))


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_trigger_job_synchronously_records_run():
    scheduler = Scheduler(max_workers=1)
    calls = []
    job = scheduler.register_job("job", lambda: calls.append(1), interval=30)

    assert scheduler.trigger_job("job", synchronous=True) is True

    assert calls == [1]
    assert job.runs == 1
    assert job.running is False
    assert job.next_run == pytest.approx(job.last_started + 30)


def test_failed_job_keeps_error_and_is_rescheduled():
    scheduler = Scheduler(max_workers=1)

    def _boom():
        raise RuntimeError("boom")

    job = scheduler.register_job("job", _boom, interval=10)
    scheduler.trigger_job("job", synchronous=True)

    assert "boom" in job.last_error
    assert job.failures == 1
    assert job.next_run == pytest.approx(job.last_started + 10)


def test_trigger_unknown_job_raises():
    with pytest.raises(KeyError):
        Scheduler().trigger_job("missing")


def test_register_job_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Scheduler().register_job("job", lambda: None, interval=0)


def test_job_never_overlaps_itself():
    scheduler = Scheduler(max_workers=2)
    release = threading.Event()
    started = threading.Event()

    def _slow():
        started.set()
        release.wait(5)

    scheduler.register_job("slow", _slow, interval=60)
    scheduler.start()
    try:
        assert scheduler.trigger_job("slow") is True
        assert started.wait(5)
        assert scheduler.trigger_job("slow") is False
        assert scheduler.snapshot()["active_jobs"] == 1
    finally:
        release.set()
        scheduler.stop()


def test_running_scheduler_runs_due_job_repeatedly():
    scheduler = Scheduler(max_workers=1)
    calls = []
    scheduler.register_job("quick", lambda: calls.append(time.time()), interval=0.05, start_after=0.0)

    scheduler.start()
    try:
        assert _wait_for(lambda: len(calls) >= 3)
    finally:
        scheduler.stop()

    assert scheduler.is_running is False


def test_disabled_job_is_not_scheduled():
    scheduler = Scheduler(max_workers=1)
    calls = []
    job = scheduler.register_job("off", lambda: calls.append(1), interval=0.05, start_after=0.0, enabled=False)

    scheduler.start()
    try:
        time.sleep(0.2)
    finally:
        scheduler.stop()

    assert calls == []
    assert scheduler.snapshot()["jobs"][0]["next_run_at"] is None
    assert job.enabled is False


def test_build_scheduler_registers_fetch_job():
    ingestion = StubIngestion()
    config = {"FEED_FETCH_INTERVAL": 15.0, "FEED_FETCH_ENABLED": True, "SCHEDULER_MAX_WORKERS": 2}

    scheduler = build_scheduler(config, ingestion=ingestion)
    job = scheduler.get_job(FETCH_FEEDS_JOB)

    assert job.interval == 15.0
    assert job.enabled is True
    assert scheduler.snapshot()["max_workers"] == 2
    scheduler.trigger_job(FETCH_FEEDS_JOB, synchronous=True)
    assert ingestion.calls == 1
    assert job.last_result == {
        "selected": 0,
        "succeeded": 0,
        "failed": 0,
        "posts_created": 0,
        "aborted": False,
    }
    assert scheduler.snapshot()["jobs"][0]["last_result"]["aborted"] is False


def test_build_scheduler_respects_disabled_fetching():
    scheduler = build_scheduler({"FEED_FETCH_ENABLED": False}, ingestion=StubIngestion())

    assert scheduler.get_job(FETCH_FEEDS_JOB).enabled is False


def test_config_mapping_reads_uppercase_settings():
    mapping = scheduler_app._config_mapping()

    assert mapping["FEED_BATCH_SIZE"] == 10
    assert "DATABASE_URL" in mapping
