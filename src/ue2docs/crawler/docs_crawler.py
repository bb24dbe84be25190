"""
Concurrent crawl of one documentation subtree.

N worker threads share a CrawlQueue (admission dedup), a VisitedLedger
(terminal outcomes) and a Fetcher. The crawl stops at quiescence, i.e. the
queue is empty while no worker holds an item, or when the cancel event is set.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from ..config import DEFAULT_WORKERS, EMPTY_QUEUE_BACKOFF_S, SHUTDOWN_GRACE_S
from ..storage.state import STATUS_CANCELLED, STATUS_FAILED, STATUS_IN_FLIGHT, VisitedLedger
from .canonicalize import normalize_url, resolve_url
from .downloader import FetchResult, Fetcher, FetcherConfig
from .errors import Cancelled, FetchError, InvalidURL, PermanentFetchError
from .filters import DomainFilter, FilterConfig
from .links import extract_links as default_extract_links
from .logger import get_logger
from .queue import CrawlQueue, FrontierItem

logger = get_logger("crawler")

LinkExtractor = Callable[[FetchResult], Iterable[str]]
ResultSink = Callable[[str, FetchResult], None]


@dataclass
class CrawlFailure:
    url: str
    status: int
    reason: str


@dataclass
class CrawlSummary:
    visited_count: int = 0
    fetched_count: int = 0
    failures: List[CrawlFailure] = field(default_factory=list)
    cancelled: bool = False
    elapsed_s: float = 0.0


class Worker(threading.Thread):
    def __init__(self, worker_id: int, crawler: "DocsCrawler"):
        super().__init__(name=f"crawl-worker-{worker_id}", daemon=True)
        self.worker_id = worker_id
        self.crawler = crawler

    def run(self):
        logger.info("%s started", self.name)
        self.crawler.work_loop()
        logger.info("%s exiting", self.name)


class DocsCrawler:
    def __init__(
        self,
        filter_config: FilterConfig,
        fetcher: Fetcher,
        worker_count: int = DEFAULT_WORKERS,
        cancel: Optional[threading.Event] = None,
        extract_links: LinkExtractor = default_extract_links,
        sink: Optional[ResultSink] = None,
        ledger: Optional[VisitedLedger] = None,
        queue: Optional[CrawlQueue] = None,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.filter = DomainFilter(filter_config)
        self.fetcher = fetcher
        self.worker_count = worker_count
        self.cancel = cancel or threading.Event()
        self.extract_links = extract_links
        self.sink = sink
        self.ledger = ledger or VisitedLedger()
        self.queue = queue or CrawlQueue()

        self._state_lock = threading.Lock()
        self._in_flight = 0
        self._done = threading.Event()
        self._failures: List[CrawlFailure] = []
        self._fetched = 0

    # ---------- worker side ----------

    def _next_item(self) -> Optional[FrontierItem]:
        # pop and in-flight bookkeeping happen together, so "queue empty and
        # nothing in flight" can't be observed while a popped item is unaccounted
        with self._state_lock:
            item = self.queue.pop()
            if item is not None:
                self._in_flight += 1
            elif self._in_flight == 0:
                self._done.set()
            return item

    def _release(self) -> None:
        with self._state_lock:
            self._in_flight -= 1

    def work_loop(self) -> None:
        while not self.cancel.is_set() and not self._done.is_set():
            item = self._next_item()
            if item is None:
                if self._done.is_set():
                    break
                self.cancel.wait(EMPTY_QUEUE_BACKOFF_S)
                continue
            try:
                self.process(item)
            except Exception as exc:
                logger.exception("Unexpected error while processing %s", item.url)
                self._record_failure(item.url, STATUS_FAILED, f"unexpected error: {exc}")
            finally:
                self._release()

    def _record_failure(self, url: str, status: int, reason: str) -> None:
        self.ledger.mark_visited(url, status)
        with self._state_lock:
            self._failures.append(CrawlFailure(url, status, reason))

    def process(self, item: FrontierItem) -> None:
        url = item.url
        if self.ledger.is_resolved(url):
            logger.debug("Already resolved, skipping %s", url)
            return
        self.ledger.mark_visited(url, STATUS_IN_FLIGHT)

        try:
            result = self.fetcher.fetch(item.target, self.cancel)
        except Cancelled:
            self.ledger.mark_visited(url, STATUS_CANCELLED)
            return
        except PermanentFetchError as exc:
            logger.warning("Giving up on %s: %s", url, exc.message)
            self._record_failure(url, exc.status_code, exc.message)
            return
        except FetchError as exc:
            logger.warning("Giving up on %s: %s", url, exc.message)
            self._record_failure(url, STATUS_FAILED, exc.message)
            return

        self.ledger.mark_visited(url, result.status_code)
        with self._state_lock:
            self._fetched += 1
        logger.info("Fetched %s [%s, %d bytes]", url, result.resource_type.value, len(result.body))

        if self.sink is not None:
            try:
                self.sink(url, result)
            except Exception:
                logger.exception("Result sink failed for %s", url)

        if result.resource_type.has_links:
            # relative links resolve against the URL the body was served from
            self.enqueue_links(result.final_url or item.target, self._links_of(result))

    def _links_of(self, result: FetchResult) -> Iterable[str]:
        try:
            return self.extract_links(result) or ()
        except Exception:
            logger.exception("Link extraction failed for %s", result.url)
            return ()

    def enqueue_links(self, base_url: str, raw_links: Iterable[str]) -> int:
        added = 0
        for raw in raw_links:
            try:
                resolved = resolve_url(raw, base_url)
                link = normalize_url(resolved)
                allowed = self.filter.is_allowed(link)
            except InvalidURL as exc:
                logger.debug("Skipping link on %s: %s", base_url, exc)
                continue
            if not allowed:
                logger.debug("Out of scope: %s", link)
                continue
            if self.queue.add(link, self.filter.classify(link), resolved):
                added += 1
        if added:
            logger.debug("Queued %d new links from %s", added, base_url)
        return added

    # ---------- pool side ----------

    def run(self, root_url: str) -> CrawlSummary:
        target = resolve_url(root_url)
        root = normalize_url(target)
        started = time.monotonic()
        self.queue.add(root, self.filter.classify(root), target)
        logger.info("Starting crawl of %s with %d workers", root, self.worker_count)

        workers = [Worker(i, self) for i in range(self.worker_count)]
        for w in workers:
            w.start()

        while not self._done.is_set():
            if self.cancel.wait(EMPTY_QUEUE_BACKOFF_S):
                break

        if self._done.is_set():
            for w in workers:
                w.join()
        else:
            logger.info("Cancellation requested, waiting up to %.1fs for workers", SHUTDOWN_GRACE_S)
            deadline = time.monotonic() + SHUTDOWN_GRACE_S
            for w in workers:
                w.join(max(0.0, deadline - time.monotonic()))
            stuck = [w.name for w in workers if w.is_alive()]
            if stuck:
                logger.warning("Workers still finishing in-flight requests: %s", ", ".join(stuck))

        with self._state_lock:
            summary = CrawlSummary(
                visited_count=self.ledger.resolved_count(),
                fetched_count=self._fetched,
                failures=list(self._failures),
                cancelled=self.cancel.is_set() and not self._done.is_set(),
                elapsed_s=time.monotonic() - started,
            )
        logger.info(
            "Crawl %s: %d visited, %d fetched, %d failed in %.1fs",
            "cancelled" if summary.cancelled else "finished",
            summary.visited_count, summary.fetched_count, len(summary.failures), summary.elapsed_s,
        )
        return summary


def run(
    root_url: str,
    filter_config: Optional[FilterConfig] = None,
    fetcher_config: Optional[FetcherConfig] = None,
    worker_count: int = DEFAULT_WORKERS,
    cancel_signal: Optional[threading.Event] = None,
    extract_links: LinkExtractor = default_extract_links,
    sink: Optional[ResultSink] = None,
) -> CrawlSummary:
    """Crawl everything reachable from ``root_url`` inside the filter's scope."""
    normalize_url(root_url)  # a bad root fails here, before any thread starts
    if filter_config is None:
        filter_config = FilterConfig.from_root_url(root_url)
    with Fetcher(fetcher_config) as fetcher:
        crawler = DocsCrawler(
            filter_config,
            fetcher,
            worker_count=worker_count,
            cancel=cancel_signal,
            extract_links=extract_links,
            sink=sink,
        )
        return crawler.run(root_url)
