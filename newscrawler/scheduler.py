"""Bounded-concurrency fan-out for the sitemap and article stages."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Sequence

from .config import CrawlConfig
from .extractor import ArticleExtractor, ExtractionError
from .http_client import HttpFetchError
from .persistence import PersistenceError, UpsertEngine
from .sitemap import SitemapParseError, SitemapSource

LOGGER = logging.getLogger(__name__)

_MAX_SITEMAP_THREADS = 32
_QUEUE_LOG_EVERY = 100
_STOP = object()


@dataclass(slots=True)
class StageStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class ProgressCounter:
    """Thread-safe completed-unit counter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ProgressReporter:
    """Logs the counter on a fixed wall-clock interval until stopped."""

    def __init__(self, counter: ProgressCounter, total: int, *, interval: float, label: str) -> None:
        self._counter = counter
        self._total = total
        self._interval = interval
        self._label = label
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            LOGGER.info("Processing status: %d/%d %s completed", self._counter.value, self._total, self._label)

    def start(self) -> None:
        if self._interval <= 0 or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"progress-{self._label}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "ProgressReporter":
        self.start()
        return self

    def __exit__(self, *_exc_info) -> None:
        self.stop()


class AdmissionGate:
    """Counting semaphore that also records how many holders are inside."""

    def __init__(self, limit: int) -> None:
        self.limit = max(1, limit)
        self._semaphore = threading.BoundedSemaphore(self.limit)
        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak = 0

    @contextmanager
    def admit(self) -> Iterator[None]:
        with self._semaphore:
            with self._lock:
                self._in_flight += 1
                self.peak = max(self.peak, self._in_flight)
            try:
                yield
            finally:
                with self._lock:
                    self._in_flight -= 1

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight


class Scheduler:
    """Runs sitemap and article units with bounded concurrency.

    Sitemaps are all submitted at once and admitted through an
    :class:`AdmissionGate`.  Articles are handed through a bounded queue to a
    fixed pool of workers.  A failing unit is logged and counted; it never
    stops its siblings.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        sleep: Callable[[float], None] | None = None,
        gate: AdmissionGate | None = None,
    ) -> None:
        self._config = config
        self._sleep = sleep or time.sleep
        self.gate = gate or AdmissionGate(config.rate_limit.max_workers)

    # Sitemaps --------------------------------------------------------------------
    def run_sitemaps(
        self,
        sitemap_urls: Sequence[str],
        source: SitemapSource,
        engine: UpsertEngine,
    ) -> StageStats:
        stats = StageStats(total=len(sitemap_urls))
        if not sitemap_urls:
            return stats

        counter = ProgressCounter()
        thread_count = min(len(sitemap_urls), _MAX_SITEMAP_THREADS)
        with ProgressReporter(
            counter,
            stats.total,
            interval=self._config.rate_limit.progress_interval,
            label="sitemaps",
        ), ThreadPoolExecutor(max_workers=thread_count) as executor:
            futures = {
                executor.submit(self._process_sitemap, url, source, engine, counter, stats.total): url
                for url in sitemap_urls
            }
            for future in as_completed(futures):
                if future.result():
                    stats.succeeded += 1
                else:
                    stats.failed += 1

        LOGGER.info(
            "All sitemaps processed: %d succeeded, %d failed",
            stats.succeeded,
            stats.failed,
        )
        return stats

    def _process_sitemap(
        self,
        sitemap_url: str,
        source: SitemapSource,
        engine: UpsertEngine,
        counter: ProgressCounter,
        total: int,
    ) -> bool:
        with self.gate.admit():
            try:
                document = source.load(sitemap_url)
                result = engine.save_sitemap_entries(
                    document.entries,
                    self._config.website.id,
                    document.status_code,
                    batch_size=self._config.rate_limit.batch_size,
                )
                LOGGER.info(
                    "Successfully processed sitemap %s: %d URLs saved, %d batches failed",
                    sitemap_url,
                    result.saved,
                    result.failed_batches,
                )
                return True
            except (HttpFetchError, SitemapParseError, PersistenceError) as exc:
                LOGGER.error("Error processing sitemap %s: %s", sitemap_url, exc)
                return False
            except Exception:
                LOGGER.exception("Unhandled error for sitemap %s", sitemap_url)
                return False
            finally:
                current = counter.increment()
                LOGGER.info("Progress: %d/%d sitemaps processed", current, total)

    # Articles --------------------------------------------------------------------
    def run_articles(
        self,
        article_urls: Iterable[str],
        extractor: ArticleExtractor,
        engine: UpsertEngine,
        *,
        total: int | None = None,
    ) -> StageStats:
        worker_count = max(1, self._config.rate_limit.max_workers)
        work_queue: "queue.Queue[object]" = queue.Queue(maxsize=max(1, self._config.rate_limit.batch_size))
        succeeded = ProgressCounter()
        failed = ProgressCounter()
        completed = ProgressCounter()
        expected = total or 0

        def _worker() -> None:
            while True:
                item = work_queue.get()
                try:
                    if item is _STOP:
                        return
                    if self._process_article(str(item), extractor, engine):
                        succeeded.increment()
                    else:
                        failed.increment()
                    completed.increment()
                    self._sleep(self._config.rate_limit.article_delay)
                finally:
                    work_queue.task_done()

        queued = 0
        with ProgressReporter(
            completed,
            expected,
            interval=self._config.rate_limit.progress_interval,
            label="articles",
        ), ThreadPoolExecutor(max_workers=worker_count) as executor:
            workers = [executor.submit(_worker) for _ in range(worker_count)]
            try:
                for url in article_urls:
                    work_queue.put(url)
                    queued += 1
                    if queued % _QUEUE_LOG_EVERY == 0:
                        if expected:
                            LOGGER.info(
                                "Progress: %d/%d articles queued (%.2f%%)",
                                queued,
                                expected,
                                queued / expected * 100,
                            )
                        else:
                            LOGGER.info("Progress: %d articles queued", queued)
            finally:
                for _ in workers:
                    work_queue.put(_STOP)
            for worker in workers:
                worker.result()

        stats = StageStats(total=queued, succeeded=succeeded.value, failed=failed.value)
        LOGGER.info(
            "Article scraping completed: %d processed, %d succeeded, %d failed",
            stats.processed,
            stats.succeeded,
            stats.failed,
        )
        return stats

    def _process_article(self, url: str, extractor: ArticleExtractor, engine: UpsertEngine) -> bool:
        with self.gate.admit():
            try:
                article = extractor.extract(url)
            except (HttpFetchError, ExtractionError) as exc:
                LOGGER.error("Error scraping article %s: %s", url, exc)
                return False
            except Exception:
                LOGGER.exception("Unhandled error scraping %s", url)
                return False

            try:
                result = engine.save_article(article)
            except PersistenceError as exc:
                LOGGER.error("Error saving article %s: %s", url, exc)
                return False
            except Exception:
                LOGGER.exception("Unhandled error saving %s", url)
                return False

            if result.written:
                LOGGER.info("Saved article %s (%d categories linked)", url, result.linked_categories)
            return True
