"""
health.py — Crawl log queries, aggregate crawl stats, and per-source health.

Health looks at the most recent crawl logs of a source (newest first):
  consecutive failures ≥ 3          → error
  ≥ 1 failure, or last crawl failed  → warning
  otherwise                          → healthy
"""

from config import CRAWL_LOGS_LIMIT, HEALTH_ERROR_THRESHOLD, HEALTH_WINDOW, RECENT_LOGS_LIMIT
from database import Database
from errors import NotFoundError, ValidationError
from models import CrawlLog, CrawlStats, CrawlStatus, HealthStatus, SourceHealth, SourceStatus
from monitoring import get_logger

logger = get_logger("health")

MAX_LOG_LIMIT = 1000


def round_half_up(value: float) -> int:
    return int(value + 0.5)


def count_consecutive_failures(logs: list[CrawlLog]) -> int:
    """Leading failed logs before the first success. Running/pending logs are skipped."""
    failures = 0
    for log in logs:
        if log.status == CrawlStatus.FAILED:
            failures += 1
        elif log.status == CrawlStatus.SUCCESS:
            break
    return failures


def average_items_found(logs: list[CrawlLog]) -> int:
    successful = [log.items_found for log in logs if log.status == CrawlStatus.SUCCESS]
    if not successful:
        return 0
    return round_half_up(sum(successful) / len(successful))


def _validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LOG_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_LOG_LIMIT}")
    return limit


class CrawlMonitor:
    def __init__(
        self,
        db: Database,
        window: int = HEALTH_WINDOW,
        error_threshold: int = HEALTH_ERROR_THRESHOLD,
    ):
        self.db = db
        self.window = window
        self.error_threshold = error_threshold

    def get_crawl_logs(self, source_id: str, limit: int = CRAWL_LOGS_LIMIT) -> list[CrawlLog]:
        return self.db.get_crawl_logs(source_id, limit=_validate_limit(limit))

    def get_recent_crawl_logs(self, limit: int = RECENT_LOGS_LIMIT) -> list[CrawlLog]:
        return self.db.get_recent_crawl_logs(limit=_validate_limit(limit))

    def get_crawl_stats(self) -> CrawlStats:
        sources = self.db.count_sources_by_status()
        logs = self.db.count_logs_by_status()

        total_crawls = sum(logs.values())
        successful = logs.get(CrawlStatus.SUCCESS.value, 0)
        success_rate = round_half_up(successful / total_crawls * 100) if total_crawls else 0

        return CrawlStats(
            total_sources=sum(sources.values()),
            active_sources=sources.get(SourceStatus.ACTIVE.value, 0),
            paused_sources=sources.get(SourceStatus.PAUSED.value, 0),
            disabled_sources=sources.get(SourceStatus.DISABLED.value, 0),
            total_crawls=total_crawls,
            pending_crawls=logs.get(CrawlStatus.PENDING.value, 0),
            running_crawls=logs.get(CrawlStatus.RUNNING.value, 0),
            successful_crawls=successful,
            failed_crawls=logs.get(CrawlStatus.FAILED.value, 0),
            success_rate=success_rate,
        )

    def get_source_health(self, source_id: str) -> SourceHealth:
        source = self.db.get_source(source_id)
        if source is None:
            raise NotFoundError("Crawl source", source_id)

        recent = self.db.get_crawl_logs(source_id, limit=self.window)
        failures = count_consecutive_failures(recent)

        if failures >= self.error_threshold:
            status = HealthStatus.ERROR
        elif failures >= 1 or not source.last_success:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY

        if status != HealthStatus.HEALTHY:
            logger.debug(f"Source {source_id} health={status.value} ({failures} consecutive failures)")

        return SourceHealth(
            status=status,
            last_crawl=source.last_crawl,
            last_success=source.last_success,
            consecutive_failures=failures,
            average_items_found=average_items_found(recent),
        )
