"""
monitoring.py — Logging setup and crawl reporting for the opportunity crawler.
"""

import logging
import sys

from config import LOG_DIR, LOG_FILE


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Set up structured logging to both file and stdout.
    Returns the root logger for the application.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("opportunity_crawler")
    logger.setLevel(level)

    # Prevent duplicate handlers on re-init
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # File handler (append mode, rotated externally via logrotate)
    file_handler = logging.FileHandler(str(LOG_FILE), mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for a specific module."""
    return logging.getLogger(f"opportunity_crawler.{name}")


def log_crawl_started(logger: logging.Logger, source_name: str, log_id: str, url: str):
    logger.info(f"[{source_name}] Crawl {log_id} started for {url}")


def log_fetch_failure(logger: logging.Logger, source_id: str, error: Exception):
    """Log a fetch failure."""
    logger.error(f"[{source_id}] Fetch failed: {type(error).__name__}: {str(error)}")


def log_pipeline_step(logger: logging.Logger, step: str, input_count: int, output_count: int):
    """Log a pipeline step with input/output counts."""
    filtered = input_count - output_count
    logger.info(f"[{step}] {input_count} in → {output_count} out ({filtered} filtered)")


def log_crawl_outcome(logger: logging.Logger, outcome) -> None:
    """Default listener for terminal pipeline events."""
    if getattr(outcome, "error", None) is not None:
        logger.error(
            f"Crawl {outcome.log_id} for source {outcome.source_id} failed: {outcome.error}"
        )
    else:
        logger.info(
            f"Crawl {outcome.log_id} for source {outcome.source_id} completed: "
            f"{outcome.count} opportunities staged for review"
        )


def log_run_summary(
    logger: logging.Logger,
    sources_due: int,
    crawls_started: int,
    crawls_skipped: int,
    crawls_succeeded: int,
    crawls_failed: int,
    drafts_staged: int,
    errors: list[str],
    duration: float
):
    """Log a complete scheduling-pass summary."""
    logger.info("=" * 60)
    logger.info("CRAWL RUN SUMMARY")
    logger.info(f"  Sources due:       {sources_due}")
    logger.info(f"  Crawls started:    {crawls_started}")
    logger.info(f"  Crawls skipped:    {crawls_skipped}")
    logger.info(f"  Succeeded:         {crawls_succeeded}")
    logger.info(f"  Failed:            {crawls_failed}")
    logger.info(f"  Drafts staged:     {drafts_staged}")
    logger.info(f"  Duration:          {duration:.1f}s")

    if errors:
        logger.warning("ERRORS:")
        for err in errors:
            logger.warning(f"  - {err}")

    logger.info("=" * 60)
