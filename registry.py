"""
registry.py — CRUD and validation of crawl sources.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from config import DEFAULT_FREQUENCY, DEFAULT_MAX_RESULTS, SOURCE_LOG_LIMIT
from database import Database
from errors import ConflictError, NotFoundError, ValidationError
from models import CrawlFrequency, CrawlSource, SourceStatus
from monitoring import get_logger

logger = get_logger("registry")

MAX_NAME_LENGTH = 255
MIN_RESULTS, MAX_RESULTS = 1, 1000
PATCHABLE_FIELDS = {"name", "url", "status", "frequency", "max_results"}


def validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be between 1 and {MAX_NAME_LENGTH} characters")
    return name


def validate_url(url) -> str:
    """Accept only absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Must be a valid URL with protocol (http/https)")
    return url


def validate_max_results(max_results) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(max_results, bool) or not isinstance(max_results, int):
        raise ValidationError("Max results must be a number")
    if not MIN_RESULTS <= max_results <= MAX_RESULTS:
        raise ValidationError(f"Max results must be between {MIN_RESULTS} and {MAX_RESULTS}")
    return max_results


def coerce_status(status) -> SourceStatus:
    try:
        return SourceStatus(status)
    except ValueError:
        raise ValidationError("Status must be active, paused, or disabled") from None


def coerce_frequency(frequency) -> CrawlFrequency:
    try:
        return CrawlFrequency(frequency)
    except ValueError:
        raise ValidationError("Frequency must be hourly, daily, weekly, or monthly") from None


class SourceRegistry:
    """Owns creation, validation and lifecycle of crawl sources."""

    def __init__(self, db: Database):
        self.db = db

    def create_source(
        self,
        name: str,
        url: str,
        status=SourceStatus.ACTIVE,
        frequency=DEFAULT_FREQUENCY,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> CrawlSource:
        source = CrawlSource(
            id=uuid.uuid4().hex,
            name=validate_name(name),
            url=validate_url(url),
            status=coerce_status(status),
            frequency=coerce_frequency(frequency),
            max_results=validate_max_results(max_results),
        )

        if self.db.find_source_id_by_url(source.url):
            raise ConflictError("A crawl source with this URL already exists")

        try:
            self.db.insert_source(source)
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent create of the same url
            raise ConflictError("A crawl source with this URL already exists") from None

        logger.info(f"Created crawl source '{source.name}' ({source.url})")
        return source

    def get_source(self, source_id: str) -> CrawlSource:
        """Return the source with its most recent crawl logs."""
        source = self.db.get_source(source_id, log_limit=SOURCE_LOG_LIMIT)
        if source is None:
            raise NotFoundError("Crawl source", source_id)
        return source

    def list_sources(
        self,
        status=None,
        frequency=None,
        search: Optional[str] = None,
    ) -> list[CrawlSource]:
        return self.db.list_sources(
            status=coerce_status(status) if status is not None else None,
            frequency=coerce_frequency(frequency) if frequency is not None else None,
            search=search.strip() if search else None,
        )

    def update_source(self, source_id: str, **patch) -> CrawlSource:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        fields = {}
        if "name" in patch:
            fields["name"] = validate_name(patch["name"])
        if "url" in patch:
            fields["url"] = validate_url(patch["url"])
        if "status" in patch:
            fields["status"] = coerce_status(patch["status"])
        if "frequency" in patch:
            fields["frequency"] = coerce_frequency(patch["frequency"])
        if "max_results" in patch:
            fields["max_results"] = validate_max_results(patch["max_results"])

        if self.db.get_source(source_id) is None:
            raise NotFoundError("Crawl source", source_id)

        if "url" in fields:
            owner = self.db.find_source_id_by_url(fields["url"])
            if owner is not None and owner != source_id:
                raise ConflictError("A crawl source with this URL already exists")

        try:
            self.db.update_source(source_id, fields)
        except sqlite3.IntegrityError:
            raise ConflictError("A crawl source with this URL already exists") from None

        return self.get_source(source_id)

    def delete_source(self, source_id: str):
        if self.db.get_source(source_id) is None:
            raise NotFoundError("Crawl source", source_id)
        if self.db.has_running_log(source_id):
            raise ConflictError(
                "Cannot delete crawl source with running crawls. Please wait for them to complete."
            )
        self.db.delete_source(source_id)
        logger.info(f"Deleted crawl source {source_id}")

    def pause_source(self, source_id: str) -> CrawlSource:
        return self.update_source(source_id, status=SourceStatus.PAUSED)

    def resume_source(self, source_id: str) -> CrawlSource:
        return self.update_source(source_id, status=SourceStatus.ACTIVE)

    def disable_source(self, source_id: str) -> CrawlSource:
        return self.update_source(source_id, status=SourceStatus.DISABLED)

    # --- Crawl bookkeeping (written by orchestration and the pipeline only) ---

    def mark_crawl_started(self, source_id: str, when: datetime):
        self.db.update_source(source_id, {"last_crawl": when})

    def record_crawl_outcome(self, source_id: str, success: bool, error_message: Optional[str] = None):
        self.db.update_source(source_id, {
            "last_success": success,
            "error_message": None if success else error_message,
        })
