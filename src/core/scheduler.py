"""Per-feed polling scheduler.

One coordinator loop owns a table of worker units keyed by feed id. Each
unit is a dedicated thread that performs blocking fetch and parse work and
reports back through a queue on the event loop, so the loop never waits on
a fetch. A unit that dies is retired and recreated on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from core.config import SchedulerConfig
from core.errors import FetchError, ParseError
from core.models import Feed, FetchResult, WorkerExit
from core.ports import FeedRegistryPort, FetcherPort
from core.processor import IngestionPipeline

LOGGER = logging.getLogger(__name__)

WorkerMessage = Union[FetchResult, WorkerExit]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedWorker:
    """Isolated execution unit for a single feed.

    Jobs posted while a fetch is in flight coalesce into one follow-up fetch,
    so a slow page delays that feed instead of piling up duplicate requests.
    """

    def __init__(
        self,
        feed_id: int,
        fetcher: FetcherPort,
        report: Callable[["FeedWorker", WorkerMessage], None],
    ) -> None:
        self.feed_id = feed_id
        self._fetcher = fetcher
        self._report = report
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._pending_handle: Optional[str] = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"feed-worker-{feed_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def post(self, handle: str) -> None:
        with self._lock:
            self._pending_handle = handle
            self._wake.set()

    def stop(self) -> None:
        # In-flight fetches finish; the thread exits before the next job.
        self._stopping.set()
        self._wake.set()

    def _run(self) -> None:
        try:
            while True:
                self._wake.wait()
                if self._stopping.is_set():
                    return
                with self._lock:
                    handle = self._pending_handle
                    self._pending_handle = None
                    self._wake.clear()
                if handle is not None:
                    self._report(self, self._fetch(handle))
        except Exception as exc:
            LOGGER.exception("Worker for feed=%s crashed", self.feed_id)
            self._report(self, WorkerExit(feed_id=self.feed_id, reason=repr(exc)))

    def _fetch(self, handle: str) -> FetchResult:
        try:
            items = self._fetcher.fetch(handle)
        except (FetchError, ParseError) as exc:
            return FetchResult(feed_id=self.feed_id, handle=handle, error=f"{type(exc).__name__}: {exc}")
        return FetchResult(feed_id=self.feed_id, handle=handle, items=tuple(items))


WorkerFactory = Callable[[int, FetcherPort, Callable[[FeedWorker, WorkerMessage], None]], FeedWorker]


class PollScheduler:
    """Dispatches fetch jobs to per-feed workers whenever a feed is due."""

    def __init__(
        self,
        registry: FeedRegistryPort,
        fetcher: FetcherPort,
        pipeline: IngestionPipeline,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
        worker_factory: WorkerFactory = FeedWorker,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._pipeline = pipeline
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._worker_factory = worker_factory
        self._workers: dict[int, FeedWorker] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._results: Optional[asyncio.Queue] = None
        self._ingest_tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def workers(self) -> dict[int, FeedWorker]:
        return dict(self._workers)

    async def start(self) -> None:
        """Run the polling loop until stop() is called."""

        if self._running:
            return
        self._running = True
        self._bind_loop()
        consumer = asyncio.create_task(self.consume_results())
        LOGGER.info("Scheduler started, ticking every %s seconds", self._config.tick_seconds)

        try:
            try:
                await self.refresh_workers()
            except Exception:
                LOGGER.exception("Error while starting workers")
            # The first cycle runs straight away so cold-start items are not missed.
            while self._running:
                try:
                    await self.run_cycle()
                except Exception:
                    LOGGER.exception("Error during scrape cycle")
                try:
                    await self.refresh_workers()
                except Exception:
                    LOGGER.exception("Error while refreshing workers")
                await asyncio.sleep(self._config.tick_seconds)
        finally:
            for worker in self._workers.values():
                worker.stop()
            if self._ingest_tasks:
                await asyncio.gather(*self._ingest_tasks, return_exceptions=True)
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            LOGGER.info("Scheduler stopped")

    def stop(self) -> None:
        self._running = False

    async def refresh_workers(self) -> None:
        """Ensure every registered feed has a live worker; retire the rest."""

        self._bind_loop()
        feeds = await asyncio.to_thread(self._registry.list_feeds)
        known_ids = {feed.id for feed in feeds}

        for feed_id in list(self._workers):
            worker = self._workers[feed_id]
            if feed_id not in known_ids:
                worker.stop()
                del self._workers[feed_id]
                LOGGER.info("Retired worker for removed feed=%s", feed_id)
            elif not worker.is_alive():
                del self._workers[feed_id]
                LOGGER.warning("Retired dead worker for feed=%s", feed_id)

        for feed in feeds:
            if feed.id not in self._workers:
                self._spawn(feed)

    async def run_cycle(self) -> list[int]:
        """Dispatch every due feed and record the poll time in one write."""

        now = self._clock()
        feeds = await asyncio.to_thread(self._registry.list_feeds)

        dispatched: list[int] = []
        for feed in feeds:
            if not feed.is_due(now):
                continue
            worker = self._workers.get(feed.id)
            if worker is None:
                continue
            worker.post(feed.handle)
            dispatched.append(feed.id)

        if dispatched:
            await asyncio.to_thread(self._registry.mark_polled, dispatched, now)
            LOGGER.debug("Dispatched %s feed(s): %s", len(dispatched), dispatched)
        return dispatched

    async def consume_results(self) -> None:
        """Drain worker reports; each successful fetch is ingested concurrently."""

        self._bind_loop()
        assert self._results is not None
        while True:
            worker, message = await self._results.get()
            if isinstance(message, WorkerExit):
                self._retire(worker, message.reason)
                continue
            if not message.ok:
                LOGGER.warning("Fetch failed for feed=%s (%s): %s", message.feed_id, message.handle, message.error)
                continue
            task = asyncio.create_task(self._ingest(message))
            self._ingest_tasks.add(task)
            task.add_done_callback(self._ingest_tasks.discard)

    async def _ingest(self, result: FetchResult) -> None:
        try:
            persisted, alerted = await self._pipeline.ingest(result.feed_id, result.items)
        except Exception:
            LOGGER.exception("Ingestion failed for feed=%s", result.feed_id)
            return
        if persisted:
            LOGGER.info(
                "feed=%s (%s): %s new item(s), %s alerted",
                result.feed_id,
                result.handle,
                persisted,
                alerted,
            )

    def _spawn(self, feed: Feed) -> None:
        worker = self._worker_factory(feed.id, self._fetcher, self._report)
        worker.start()
        self._workers[feed.id] = worker
        LOGGER.info("Started worker for feed=%s (%s)", feed.id, feed.handle)

    def _retire(self, worker: FeedWorker, reason: str) -> None:
        # A replacement may already be registered; only drop the one that died.
        if self._workers.get(worker.feed_id) is worker:
            del self._workers[worker.feed_id]
        LOGGER.error("Worker for feed=%s exited: %s", worker.feed_id, reason)

    def _report(self, worker: FeedWorker, message: WorkerMessage) -> None:
        # Called from worker threads.
        if self._loop is None or self._results is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._results.put_nowait, (worker, message))
        except RuntimeError:
            LOGGER.debug("Event loop closed, dropping report for feed=%s", worker.feed_id)

    def _bind_loop(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._results = asyncio.Queue()
