"""
pipeline.py — Asynchronous crawl pipeline.

Each stage owns a bounded asyncio queue and a small pool of workers:

  fetch   CrawlRequest   → Fetcher                  → ContentCrawled
  parse   ContentCrawled → ExtractionEngine         → ContentParsed | OpportunitiesExtracted(0)
  persist ContentParsed  → Deduplicator, DraftStore → OpportunitiesExtracted

Any stage may end a crawl with ParsingFailed. The two terminal events resolve
the crawl's future and are handed to subscribed listeners.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Union

from config import EXTRACTION_TIMEOUT, QUEUE_SIZE, WORKERS_PER_STAGE
from database import Database
from deduplication import Deduplicator
from drafts import DraftStore
from errors import ExtractionError, ExtractionTimeout, FetchError, NotFoundError
from extractor import ExtractionEngine
from fetcher import Fetcher
from models import CrawlStatus, ParsedOpportunity
from monitoring import get_logger, log_crawl_outcome, log_fetch_failure
from registry import SourceRegistry

logger = get_logger("pipeline")

NO_CONTENT_MESSAGE = "No content provided for AI parsing"
NOT_QUEUED_MESSAGE = "Crawl was cancelled before it could be queued"

# Resolved crawl handles kept around for late wait_for() callers
HANDLE_HISTORY = 1000


@dataclass(frozen=True)
class CrawlRequest:
    log_id: str
    source_id: str
    url: str
    max_results: int


@dataclass(frozen=True)
class ContentCrawled:
    log_id: str
    source_id: str
    source_url: str
    max_results: int
    content: str


@dataclass(frozen=True)
class ContentParsed:
    log_id: str
    source_id: str
    source_url: str
    opportunities: tuple[ParsedOpportunity, ...]


@dataclass(frozen=True)
class ParsingFailed:
    log_id: str
    source_id: str
    error: str


@dataclass(frozen=True)
class OpportunitiesExtracted:
    log_id: str
    source_id: str
    count: int


CrawlOutcome = Union[ParsingFailed, OpportunitiesExtracted]
Listener = Callable[[CrawlOutcome], None]


class CrawlPipeline:
    def __init__(
        self,
        db: Database,
        fetcher: Fetcher,
        extractor: ExtractionEngine,
        deduplicator: Deduplicator,
        draft_store: DraftStore,
        registry: Optional[SourceRegistry] = None,
        queue_size: int = QUEUE_SIZE,
        workers_per_stage: int = WORKERS_PER_STAGE,
        extraction_timeout: float = EXTRACTION_TIMEOUT,
    ):
        self.db = db
        self.fetcher = fetcher
        self.extractor = extractor
        self.deduplicator = deduplicator
        self.draft_store = draft_store
        self.registry = registry or SourceRegistry(db)
        self.queue_size = queue_size
        self.workers_per_stage = max(1, workers_per_stage)
        self.extraction_timeout = extraction_timeout

        self._listeners: list[Listener] = [partial(log_crawl_outcome, logger)]
        self._handles: OrderedDict[str, asyncio.Future] = OrderedDict()
        self._workers: list[asyncio.Task] = []
        self._fetch_queue: Optional[asyncio.Queue] = None
        self._parse_queue: Optional[asyncio.Queue] = None
        self._persist_queue: Optional[asyncio.Queue] = None

    # --- Lifecycle ---

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def subscribe(self, listener: Listener):
        """Register a callback for terminal events (ParsingFailed / OpportunitiesExtracted)."""
        self._listeners.append(listener)

    async def start(self):
        if self._workers:
            return
        self._fetch_queue = asyncio.Queue(maxsize=self.queue_size)
        self._parse_queue = asyncio.Queue(maxsize=self.queue_size)
        self._persist_queue = asyncio.Queue(maxsize=self.queue_size)

        stages = [
            ("fetch", self._fetch_queue, self._handle_request),
            ("parse", self._parse_queue, self._handle_content),
            ("persist", self._persist_queue, self._handle_parsed),
        ]
        for stage, queue, handler in stages:
            for i in range(self.workers_per_stage):
                task = asyncio.create_task(self._worker(stage, queue, handler), name=f"crawl-{stage}-{i}")
                self._workers.append(task)
        logger.info(f"Pipeline started: 3 stages × {self.workers_per_stage} workers, queue size {self.queue_size}")

    async def drain(self):
        """Wait until every submitted crawl has reached a terminal state."""
        # Each stage only feeds the next, so joining in order empties the pipeline
        for queue in (self._fetch_queue, self._parse_queue, self._persist_queue):
            if queue is not None:
                await queue.join()

    async def stop(self, drain: bool = True):
        if not self._workers:
            return
        if drain:
            await self.drain()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Pipeline stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.stop()

    # --- Submission & handles ---

    async def submit(self, request: CrawlRequest) -> asyncio.Future:
        """Enqueue a crawl. Only blocks while the fetch queue is full."""
        await self.start()
        future = asyncio.get_running_loop().create_future()
        self._handles[request.log_id] = future
        try:
            await self._fetch_queue.put(request)
        except BaseException:
            # Cancelled while waiting for a free slot: the request never entered the pipeline
            self._fail(request.log_id, request.source_id, NOT_QUEUED_MESSAGE)
            raise
        return future

    async def wait_for(self, log_id: str, timeout: Optional[float] = None) -> CrawlOutcome:
        """Await the terminal event of a submitted crawl."""
        future = self._handles.get(log_id)
        if future is None:
            raise NotFoundError("Submitted crawl", log_id)
        return await asyncio.wait_for(asyncio.shield(future), timeout)

    # --- Workers ---

    async def _worker(self, stage: str, queue: asyncio.Queue, handler):
        while True:
            event = await queue.get()
            try:
                await handler(event)
            except Exception as e:
                logger.exception(f"[{stage}] Unhandled error for crawl {event.log_id}")
                self._fail(event.log_id, event.source_id, str(e) or type(e).__name__)
            finally:
                queue.task_done()

    async def _handle_request(self, request: CrawlRequest):
        try:
            content = await self.fetcher.fetch_page_content(request.url)
        except FetchError as e:
            log_fetch_failure(logger, request.source_id, e)
            self._fail(request.log_id, request.source_id, e.message)
            return

        await self._parse_queue.put(ContentCrawled(
            log_id=request.log_id,
            source_id=request.source_id,
            source_url=request.url,
            max_results=request.max_results,
            content=content,
        ))

    async def _handle_content(self, event: ContentCrawled):
        if not event.content or not event.content.strip():
            self._fail(event.log_id, event.source_id, NO_CONTENT_MESSAGE)
            return

        logger.info(f"Starting AI parsing for crawl {event.log_id} ({len(event.content)} chars)")
        try:
            opportunities = await asyncio.wait_for(
                self.extractor.parse_content_to_opportunities(event.content, base_url=event.source_url),
                timeout=self.extraction_timeout,
            )
        except asyncio.TimeoutError:
            self._fail(event.log_id, event.source_id, ExtractionTimeout(self.extraction_timeout).message)
            return
        except ExtractionError as e:
            self._fail(event.log_id, event.source_id, e.message)
            return

        if not opportunities:
            logger.info(f"No opportunities found for crawl {event.log_id}")
            self._succeed(event.log_id, event.source_id, 0)
            return

        if len(opportunities) > event.max_results:
            logger.info(f"Capping {len(opportunities)} candidates to max_results={event.max_results}")
            opportunities = opportunities[:event.max_results]

        await self._persist_queue.put(ContentParsed(
            log_id=event.log_id,
            source_id=event.source_id,
            source_url=event.source_url,
            opportunities=tuple(opportunities),
        ))

    async def _handle_parsed(self, event: ContentParsed):
        logger.info(f"Processing {len(event.opportunities)} parsed opportunities for crawl {event.log_id}")
        # rapidfuzz scans and sqlite writes run in a worker thread
        unique = await asyncio.to_thread(self.deduplicator.filter_duplicate_opportunities, list(event.opportunities))
        await asyncio.to_thread(self.draft_store.save_candidates, unique, event.source_url)
        self._succeed(event.log_id, event.source_id, len(unique))

    # --- Terminal transitions ---

    def _succeed(self, log_id: str, source_id: str, count: int):
        # Source first: the log is immutable once terminal
        self.registry.record_crawl_outcome(source_id, success=True)
        self.db.complete_crawl_log(log_id, CrawlStatus.SUCCESS, items_found=count)
        self._finish(OpportunitiesExtracted(log_id=log_id, source_id=source_id, count=count))

    def _fail(self, log_id: str, source_id: str, message: str):
        try:
            if not self.db.complete_crawl_log(log_id, CrawlStatus.FAILED, error_message=message):
                logger.warning(f"Crawl {log_id} already finished; ignoring late failure: {message}")
                return
            self.registry.record_crawl_outcome(source_id, success=False, error_message=message)
        except Exception as e:
            logger.error(f"Could not record failure of crawl {log_id}: {type(e).__name__}: {e}")
        self._finish(ParsingFailed(log_id=log_id, source_id=source_id, error=message))

    def _finish(self, outcome: CrawlOutcome):
        future = self._handles.get(outcome.log_id)
        if future is not None and not future.done():
            future.set_result(outcome)

        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Crawl listener {listener!r} failed: {e}")

        while len(self._handles) > HANDLE_HISTORY:
            oldest_id, oldest = next(iter(self._handles.items()))
            if not oldest.done():
                break
            del self._handles[oldest_id]
