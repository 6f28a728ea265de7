"""Worker process: runs the feed ingestion tick on a fixed interval."""

from __future__ import annotations

import logging
import os
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import sentry_sdk
from prometheus_client import Counter, Gauge, Histogram

from config import Config
from feedagg.logging import configure_logging
from feedagg.tasks.ingest import IngestionScheduler

LOGGER = logging.getLogger(__name__)

NEVER = float("inf")

job_duration = Histogram(
    "feedagg_scheduler_job_duration_seconds", "Duration of scheduler jobs", ["job_name"]
)
job_failures = Counter(
    "feedagg_scheduler_job_failures_total", "Scheduler job runs that raised", ["job_name"]
)
active_jobs_gauge = Gauge(
    "feedagg_scheduler_jobs_active", "Number of scheduler jobs currently running"
)


def _utc_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None or ts == NEVER:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ScheduledJob:
    """A function run every ``interval`` seconds, counted from each run's start."""

    name: str
    func: Callable[..., Any]
    interval: float
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    next_run: float = NEVER
    running: bool = False
    last_started: Optional[float] = None
    last_finished: Optional[float] = None
    last_duration: Optional[float] = None
    last_result: Any = None
    last_error: Optional[str] = None
    runs: int = 0
    failures: int = 0

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval,
            "enabled": self.enabled,
            "running": self.running,
            "next_run_at": _utc_iso(self.next_run),
            "last_started_at": _utc_iso(self.last_started),
            "last_finished_at": _utc_iso(self.last_finished),
            "last_duration_seconds": self.last_duration,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "runs": self.runs,
            "failures": self.failures,
        }


class Scheduler:
    """Threaded interval scheduler.

    One loop thread decides what is due and hands runs to a worker pool. A
    job is never dispatched while a previous run of it is still going, and
    its next run is due ``interval`` seconds after that run started. A run
    that overruns its interval is therefore followed straight away.
    """

    def __init__(self, *, max_workers: int = 4, name: str = "scheduler") -> None:
        self._name = name
        self._max_workers = max(1, int(max_workers))
        self._jobs: Dict[str, ScheduledJob] = {}
        self._wakeup = threading.Condition(threading.RLock())
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self._active = 0

    # ------------------------------------------------------------------
    # Running jobs
    # ------------------------------------------------------------------

    def _claim(self, job: ScheduledJob) -> bool:
        with self._wakeup:
            if job.running:
                return False
            job.running = True
            job.last_started = time.time()
            job.next_run = NEVER
            self._active += 1
            active_jobs_gauge.set(self._active)
        return True

    def _run(self, job: ScheduledJob) -> None:
        started = time.perf_counter()
        result: Any = None
        error: Optional[str] = None
        try:
            result = job.func(*job.args, **job.kwargs)
        except Exception:
            error = traceback.format_exc()
            job_failures.labels(job.name).inc()
            LOGGER.exception("Scheduler job '%s' failed", job.name, extra={"job_name": job.name})
        duration = time.perf_counter() - started
        job_duration.labels(job.name).observe(duration)

        with self._wakeup:
            job.running = False
            job.runs += 1
            job.last_finished = time.time()
            job.last_duration = duration
            job.last_error = error
            if error is None:
                job.last_result = result
            else:
                job.failures += 1
            job.next_run = job.last_started + job.interval if job.enabled else NEVER
            self._active = max(self._active - 1, 0)
            active_jobs_gauge.set(self._active)
            self._wakeup.notify_all()

    def _launch(self, job: ScheduledJob, *, synchronous: bool = False) -> bool:
        if not self._claim(job):
            return False
        executor = self._executor
        if synchronous or executor is None:
            self._run(job)
        else:
            executor.submit(self._run, job)
        return True

    def _due_jobs(self, now: float) -> Tuple[List[ScheduledJob], Optional[float]]:
        due: List[ScheduledJob] = []
        soonest: Optional[float] = None
        for job in self._jobs.values():
            if not job.enabled or job.running:
                continue
            if job.next_run <= now:
                due.append(job)
            elif soonest is None or job.next_run < soonest:
                soonest = job.next_run
        return due, soonest

    def _loop(self) -> None:
        LOGGER.info("Scheduler loop started with max_workers=%s", self._max_workers)
        with self._wakeup:
            while not self._stopping:
                due, soonest = self._due_jobs(time.time())
                for job in due:
                    self._launch(job)
                if due:
                    continue
                timeout = 1.0 if soonest is None else min(max(soonest - time.time(), 0.01), 5.0)
                self._wakeup.wait(timeout)
        LOGGER.info("Scheduler loop stopped")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._wakeup:
            if self.is_running:
                return
            self._stopping = False
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix=f"{self._name}-job"
            )
            self._thread = threading.Thread(target=self._loop, name=f"{self._name}-loop", daemon=True)
            self._thread.start()

    def stop(self, *, wait: bool = True) -> None:
        with self._wakeup:
            if not self.is_running:
                return
            self._stopping = True
            self._wakeup.notify_all()
            thread, executor = self._thread, self._executor
        if wait and thread is not None:
            thread.join()
        if executor is not None:
            executor.shutdown(wait=wait)
        with self._wakeup:
            self._thread = None
            self._executor = None

    def register_job(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        interval: float,
        args: Optional[Iterable[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        start_after: Optional[float] = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Add ``func`` as job ``name``; the first run is ``start_after`` seconds out (default one interval)."""
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        job = ScheduledJob(
            name=name,
            func=func,
            interval=float(interval),
            args=tuple(args or ()),
            kwargs=dict(kwargs or {}),
            enabled=enabled,
        )
        if enabled:
            delay = job.interval if start_after is None else max(start_after, 0.0)
            job.next_run = time.time() + delay
        with self._wakeup:
            self._jobs[name] = job
            self._wakeup.notify_all()
        return job

    def trigger_job(self, name: str, *, synchronous: bool = False) -> bool:
        """Run ``name`` now; returns ``False`` when it is already running."""
        with self._wakeup:
            job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        return self._launch(job, synchronous=synchronous)

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        with self._wakeup:
            return self._jobs.get(name)

    def snapshot(self) -> Dict[str, Any]:
        with self._wakeup:
            return {
                "name": self._name,
                "max_workers": self._max_workers,
                "running": self.is_running,
                "active_jobs": self._active,
                "jobs": [job.describe() for job in self._jobs.values()],
            }


FETCH_FEEDS_JOB = "fetch_feeds"


def fetch_feeds(ingestion: IngestionScheduler) -> Dict[str, Any]:
    """Run one ingestion tick and summarize it for the job snapshot."""
    report = ingestion.run_tick()
    return {
        "selected": report.selected,
        "succeeded": report.succeeded,
        "failed": report.failed,
        "posts_created": report.posts_created,
        "aborted": report.aborted,
    }


def build_scheduler(
    config: Mapping[str, Any], *, ingestion: Optional[IngestionScheduler] = None
) -> Scheduler:
    """Create the worker scheduler with the feed ingestion job registered."""

    ingestion = ingestion or IngestionScheduler.from_config(config)
    scheduler = Scheduler(max_workers=int(config.get("SCHEDULER_MAX_WORKERS", 4)))
    scheduler.register_job(
        FETCH_FEEDS_JOB,
        fetch_feeds,
        args=(ingestion,),
        interval=float(config.get("FEED_FETCH_INTERVAL", 60.0)),
        start_after=0.0,
        enabled=bool(config.get("FEED_FETCH_ENABLED", True)),
    )
    return scheduler


def _config_mapping() -> Dict[str, Any]:
    return {key: getattr(Config, key) for key in dir(Config) if key.isupper()}


def main() -> None:
    config = _config_mapping()
    configure_logging(config.get("LOG_LEVEL"))
    dsn = os.getenv("SENTRY_DSN")
    if dsn:  # pragma: no cover - external service
        sentry_sdk.init(dsn=dsn)

    scheduler = build_scheduler(config)
    LOGGER.info("Starting feeds worker", extra={"interval_seconds": config.get("FEED_FETCH_INTERVAL")})
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:  # pragma: no cover - graceful shutdown
        LOGGER.info("Stopping feeds worker")
        scheduler.stop()


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
