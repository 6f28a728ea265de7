"""Scheduled fetch-and-ingest of due feeds."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy.exc import SQLAlchemyError

from feedagg.db import get_session_registry
from feedagg.errors import BatchSelectionError, DuplicateError, FetchError, ParseError, StoreError
from feedagg.models import utcnow
from feedagg.services.ingest import DEFAULT_MAX_BYTES, DEFAULT_TIMEOUT, FeedDocument, fetch
from feedagg.services.stores import FeedRef, FeedStore, PostStore

LOGGER = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FETCH_ERROR = "fetch_error"
STATUS_PARSE_ERROR = "parse_error"
STATUS_STORE_ERROR = "store_error"
STATUS_ERROR = "error"

feed_fetch_total = Counter(
    "feedagg_feed_fetch_total", "Feed fetch-and-ingest attempts by outcome", ["outcome"]
)
posts_created_total = Counter("feedagg_posts_created_total", "Posts created by ingestion")
tick_duration = Histogram("feedagg_tick_duration_seconds", "Duration of ingestion ticks")
last_tick_gauge = Gauge(
    "feedagg_last_tick_timestamp_seconds", "Completion time of the last ingestion tick"
)

Fetcher = Callable[..., FeedDocument]


@dataclass
class FeedOutcome:
    """What happened to one feed during a tick."""

    feed: FeedRef
    status: str = STATUS_OK
    entries: int = 0
    created: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_OK

    def reset_counts(self) -> None:
        """Forget the per-entry counts of an ingest that was rolled back."""
        self.entries = self.created = self.duplicates = self.skipped = self.failed = 0


@dataclass
class TickReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: List[FeedOutcome] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def selected(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.selected - self.succeeded

    @property
    def posts_created(self) -> int:
        return sum(outcome.created for outcome in self.outcomes)


class IngestionScheduler:
    """Selects due feeds each tick, fetches them concurrently and stores their posts.

    Ticks are serialized: ``run_tick`` holds a lock for the whole tick, so a
    batch is only selected once every task of the previous tick finished.
    ``feed_store`` and ``post_store`` must share one session registry so the
    posts of a feed and its ``last_fetched_at`` commit together.
    """

    def __init__(
        self,
        feed_store: FeedStore,
        post_store: PostStore,
        *,
        fetcher: Fetcher = fetch,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = 10,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        max_body_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than zero")
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be greater than zero")
        self._feed_store = feed_store
        self._post_store = post_store
        self._fetcher = fetcher
        self._clock = clock
        self._batch_size = int(batch_size)
        self._fetch_timeout = float(fetch_timeout)
        self._max_body_bytes = int(max_body_bytes)
        self._tick_lock = threading.Lock()
        self.last_report: Optional[TickReport] = None
        self.ticks = 0

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], *, database_url: Optional[str] = None, **overrides: Any
    ) -> "IngestionScheduler":
        registry = get_session_registry(database_url or config.get("DATABASE_URL"))
        options: dict[str, Any] = {
            "batch_size": int(config.get("FEED_BATCH_SIZE", 10)),
            "fetch_timeout": float(config.get("FEED_FETCH_TIMEOUT", DEFAULT_TIMEOUT)),
            "max_body_bytes": int(config.get("FEED_MAX_BYTES", DEFAULT_MAX_BYTES)),
        }
        options.update(overrides)
        return cls(FeedStore(registry), PostStore(registry), **options)

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_tick(self) -> TickReport:
        with self._tick_lock:
            return self._run_tick()

    def _run_tick(self) -> TickReport:
        start_perf = time.perf_counter()
        report = TickReport(started_at=self._clock())
        try:
            batch = self._select_batch()
        except BatchSelectionError as exc:
            report.aborted = True
            report.error = str(exc)
            LOGGER.error("Ingestion tick aborted: %s", exc)
        else:
            if batch:
                LOGGER.info("Processing batch of %s feeds", len(batch), extra={"batch_size": len(batch)})
                report.outcomes = self._dispatch(batch, report.started_at)

        report.finished_at = self._clock()
        self.ticks += 1
        self.last_report = report
        tick_duration.observe(time.perf_counter() - start_perf)
        last_tick_gauge.set_to_current_time()
        if not report.aborted:
            LOGGER.info(
                "Ingestion tick finished: %s/%s feeds ok, %s posts created",
                report.succeeded,
                report.selected,
                report.posts_created,
                extra={
                    "selected": report.selected,
                    "succeeded": report.succeeded,
                    "failed": report.failed,
                    "posts_created": report.posts_created,
                },
            )
        return report

    def _select_batch(self) -> List[FeedRef]:
        try:
            return self._feed_store.list_due_feeds(self._batch_size)
        except StoreError as exc:
            raise BatchSelectionError(exc) from exc

    def _dispatch(self, batch: List[FeedRef], fetched_at: datetime) -> List[FeedOutcome]:
        """Run one task per feed and collect every outcome.

        The executor context only exits after all tasks terminated; outcomes
        are read from the joined futures, in batch order.
        """
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="feed-fetch") as executor:
            futures = [executor.submit(self.process_feed, feed, fetched_at) for feed in batch]
            wait(futures)

        outcomes: List[FeedOutcome] = []
        for feed, future in zip(batch, futures):
            exc = future.exception()
            if exc is None:
                outcomes.append(future.result())
                continue
            LOGGER.error(
                "Task for feed %s crashed: %s", feed.name, exc, extra={"feed_id": feed.id, "url": feed.url}
            )
            outcomes.append(FeedOutcome(feed=feed, status=STATUS_ERROR, error=repr(exc)))
        return outcomes

    # ------------------------------------------------------------------
    # Per-feed task
    # ------------------------------------------------------------------

    def process_feed(self, feed: FeedRef, fetched_at: datetime) -> FeedOutcome:
        """Fetch ``feed`` and ingest its entries; never raises for per-feed failures."""
        start_perf = time.perf_counter()
        outcome = FeedOutcome(feed=feed)
        log_extra = {"feed_id": feed.id, "url": feed.url}
        try:
            document = self._fetcher(
                feed.url, timeout=self._fetch_timeout, max_bytes=self._max_body_bytes
            )
            self.ingest(feed, document, fetched_at, outcome=outcome)
        except FetchError as exc:
            outcome.status = STATUS_FETCH_ERROR
            outcome.error = str(exc)
            LOGGER.warning("Fetching feed %s failed: %s", feed.name, exc, extra=log_extra)
        except ParseError as exc:
            outcome.status = STATUS_PARSE_ERROR
            outcome.error = str(exc)
            LOGGER.warning("Parsing feed %s failed: %s", feed.name, exc, extra=log_extra)
        except StoreError as exc:
            outcome.status = STATUS_STORE_ERROR
            outcome.error = str(exc)
            outcome.reset_counts()
            LOGGER.error("Storing feed %s failed: %s", feed.name, exc, extra=log_extra)
        except Exception as exc:
            outcome.status = STATUS_ERROR
            outcome.error = repr(exc)
            outcome.reset_counts()
            LOGGER.exception("Ingestion failed for %s", feed.url, extra=log_extra)

        outcome.duration_ms = int((time.perf_counter() - start_perf) * 1000)
        feed_fetch_total.labels(outcome.status).inc()
        if outcome.created:
            posts_created_total.inc(outcome.created)
        return outcome

    def ingest(
        self,
        feed: FeedRef,
        document: FeedDocument,
        fetched_at: datetime,
        *,
        outcome: Optional[FeedOutcome] = None,
    ) -> FeedOutcome:
        """Store every entry of ``document`` and mark ``feed`` fetched, in one transaction.

        Duplicates and single-entry failures are counted and skipped. If the
        marking or the commit fails nothing is kept and ``StoreError`` is raised.
        """
        if outcome is None:
            outcome = FeedOutcome(feed=feed)
        try:
            with self._feed_store.transaction():
                for entry in document.entries:
                    outcome.entries += 1
                    if not entry.key:
                        outcome.skipped += 1
                        continue
                    try:
                        self._post_store.insert_post(
                            feed.id,
                            entry.title,
                            entry.key,
                            description=entry.description,
                            published_at=entry.published_at,
                        )
                    except DuplicateError:
                        outcome.duplicates += 1
                    except StoreError as exc:
                        outcome.failed += 1
                        LOGGER.warning(
                            "Skipping entry %s of feed %s: %s",
                            entry.key,
                            feed.name,
                            exc,
                            extra={"feed_id": feed.id, "url": entry.key},
                        )
                    else:
                        outcome.created += 1
                self._feed_store.mark_fetched(feed.id, fetched_at)
        except SQLAlchemyError as exc:
            raise StoreError("ingest", exc) from exc

        LOGGER.info(
            "Ingested feed %s: %s new, %s duplicate",
            feed.name,
            outcome.created,
            outcome.duplicates,
            extra={
                "feed_id": feed.id,
                "entries": outcome.entries,
                "posts_created": outcome.created,
                "duplicates": outcome.duplicates,
                "skipped": outcome.skipped,
                "failed": outcome.failed,
            },
        )
        return outcome


__all__ = [
    "FeedOutcome",
    "IngestionScheduler",
    "TickReport",
    "STATUS_ERROR",
    "STATUS_FETCH_ERROR",
    "STATUS_OK",
    "STATUS_PARSE_ERROR",
    "STATUS_STORE_ERROR",
]
