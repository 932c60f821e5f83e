"""
scheduler.py — Decides which crawl sources are due for a new crawl.

  hourly  → more than 1 hour since the last crawl
  daily   → more than 24 hours
  weekly  → more than 7 days
  monthly → more than 30 days
  never crawled → always due

This is a pure query over current state; an external timer/cron decides the cadence.
"""

from datetime import datetime, timedelta
from typing import Optional

from database import Database
from models import CrawlFrequency, CrawlSource
from monitoring import get_logger

logger = get_logger("scheduler")

FREQUENCY_INTERVALS = {
    CrawlFrequency.HOURLY: timedelta(hours=1),
    CrawlFrequency.DAILY: timedelta(days=1),
    CrawlFrequency.WEEKLY: timedelta(days=7),
    CrawlFrequency.MONTHLY: timedelta(days=30),
}


def is_due(source: CrawlSource, now: Optional[datetime] = None) -> bool:
    """True if the source has never been crawled or its interval has elapsed."""
    if source.last_crawl is None:
        return True
    now = now or datetime.now()
    return now - source.last_crawl > FREQUENCY_INTERVALS[source.frequency]


class DueScheduler:
    def __init__(self, db: Database):
        self.db = db

    def get_active_sources(self) -> list[CrawlSource]:
        """Active sources, never-crawled first, then oldest last_crawl first."""
        return self.db.list_active_sources()

    def get_due_sources(self, now: Optional[datetime] = None) -> list[CrawlSource]:
        now = now or datetime.now()
        active = self.get_active_sources()
        due = [source for source in active if is_due(source, now)]
        logger.info(f"Due check: {len(due)} of {len(active)} active sources are due")
        return due
