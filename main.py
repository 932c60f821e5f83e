"""
main.py — Scheduling pass for the opportunity crawler.
Crawls every due source, waits for the outcomes, and logs a summary.
Run it from cron / a systemd timer; cadence is per-source (see scheduler.py).
"""

import asyncio
import time
from datetime import datetime

from config import validate_config
from crawler import CrawlService
from database import Database
from monitoring import setup_logging, get_logger, log_run_summary
from pipeline import ParsingFailed


async def crawl_due(db: Database) -> dict:
    async with CrawlService(db) as service:
        return await service.crawl_due_sources()


def run():
    """Execute one scheduling pass over all crawl sources."""
    # Setup
    setup_logging()
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("OPPORTUNITY CRAWLER — Starting run")
    logger.info(f"Timestamp: {datetime.now().isoformat()}")
    logger.info("=" * 60)

    # Validate configuration
    warnings = validate_config()
    for warning in warnings:
        logger.warning(f"Config: {warning}")

    # Initialize database
    db = Database()
    db.init_db()

    run_start = time.time()
    errors = []

    result = asyncio.run(crawl_due(db))

    failed = [o for o in result["outcomes"] if isinstance(o, ParsingFailed)]
    succeeded = [o for o in result["outcomes"] if not isinstance(o, ParsingFailed)]
    drafts_staged = sum(o.count for o in succeeded)

    errors.extend(result["skipped"])
    errors.extend(f"crawl {o.log_id}: {o.error}" for o in failed)

    if result["started"] and len(failed) == len(result["started"]):
        logger.error("ALL crawls failed — check connectivity and source availability")

    run_duration = time.time() - run_start
    log_run_summary(
        logger,
        sources_due=len(result["due"]),
        crawls_started=len(result["started"]),
        crawls_skipped=len(result["skipped"]),
        crawls_succeeded=len(succeeded),
        crawls_failed=len(failed),
        drafts_staged=drafts_staged,
        errors=errors,
        duration=run_duration,
    )

    logger.info("OPPORTUNITY CRAWLER — Run complete")

    return {
        "due": len(result["due"]),
        "started": len(result["started"]),
        "skipped": len(result["skipped"]),
        "succeeded": len(succeeded),
        "failed": len(failed),
        "drafts_staged": drafts_staged,
        "errors": errors,
        "duration": run_duration,
    }


if __name__ == "__main__":
    run()
