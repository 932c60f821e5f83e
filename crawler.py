"""
crawler.py — Crawl orchestration: starts crawls and hands them to the pipeline.

start_crawl() returns the RUNNING crawl log as soon as it is recorded; the
fetch → extract → dedup → persist chain runs in the background. Failures inside
the pipeline are only visible afterwards, through the crawl log and source health.
"""

import asyncio
import sqlite3
import uuid
from datetime import datetime
from typing import Optional

from database import Database
from deduplication import Deduplicator
from drafts import DraftStore
from errors import ConflictError, InvalidStateError, NotFoundError
from extractor import ExtractionEngine
from fetcher import Fetcher
from health import CrawlMonitor
from models import CrawlLog, CrawlStatus, SourceStatus
from monitoring import get_logger, log_crawl_started
from pipeline import CrawlOutcome, CrawlPipeline, CrawlRequest
from registry import SourceRegistry
from scheduler import DueScheduler

logger = get_logger("crawler")


class CrawlService:
    """Entry point for callers: registry, scheduler, monitor and pipeline wired together."""

    def __init__(
        self,
        db: Database,
        fetcher: Optional[Fetcher] = None,
        extractor: Optional[ExtractionEngine] = None,
        pipeline: Optional[CrawlPipeline] = None,
    ):
        self.db = db
        self.registry = SourceRegistry(db)
        self.scheduler = DueScheduler(db)
        self.monitor = CrawlMonitor(db)
        self.drafts = DraftStore(db)
        self.pipeline = pipeline or CrawlPipeline(
            db,
            fetcher=fetcher or Fetcher(),
            extractor=extractor or ExtractionEngine(),
            deduplicator=Deduplicator(db),
            draft_store=self.drafts,
            registry=self.registry,
        )

    async def __aenter__(self):
        await self.pipeline.start()
        return self

    async def __aexit__(self, *exc):
        await self.pipeline.stop()

    async def start_crawl(self, source_id: str) -> CrawlLog:
        source = self.registry.get_source(source_id)
        if source.status != SourceStatus.ACTIVE:
            raise InvalidStateError("Cannot start crawl for inactive source")
        if self.db.has_running_log(source_id):
            raise ConflictError("There is already a running crawl for this source")

        now = datetime.now()
        log = CrawlLog(
            id=uuid.uuid4().hex,
            source_id=source_id,
            status=CrawlStatus.RUNNING,
            started_at=now,
            created_at=now,
        )
        try:
            self.db.insert_crawl_log(log)
        except sqlite3.IntegrityError:
            raise ConflictError("There is already a running crawl for this source") from None

        self.registry.mark_crawl_started(source_id, now)
        log_crawl_started(logger, source.name, log.id, source.url)

        await self.pipeline.submit(CrawlRequest(
            log_id=log.id,
            source_id=source.id,
            url=source.url,
            max_results=source.max_results,
        ))
        return log

    async def wait_for_crawl(self, log_id: str, timeout: Optional[float] = None) -> CrawlOutcome:
        return await self.pipeline.wait_for(log_id, timeout)

    async def crawl_due_sources(self, now: Optional[datetime] = None) -> dict:
        """Start a crawl for every due source and wait for all of them to finish."""
        due = self.scheduler.get_due_sources(now)
        started: list[CrawlLog] = []
        skipped: list[str] = []

        for source in due:
            try:
                started.append(await self.start_crawl(source.id))
            except (ConflictError, InvalidStateError, NotFoundError) as e:
                logger.warning(f"[{source.name}] Skipped: {e.message}")
                skipped.append(f"{source.name}: {e.message}")

        outcomes = await asyncio.gather(*(self.wait_for_crawl(log.id) for log in started))
        return {
            "due": due,
            "started": started,
            "skipped": skipped,
            "outcomes": list(outcomes),
        }
