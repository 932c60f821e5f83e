"""
deduplication.py — Filters extracted candidates against opportunities already in the database.
Uses rapidfuzz so small title variations ("2024 Scholarship" vs "Scholarship 2024 -") still match.
"""

import re
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlsplit

from rapidfuzz import fuzz

from config import TITLE_MATCH_THRESHOLD
from database import Database
from models import ParsedOpportunity
from monitoring import get_logger, log_pipeline_step
from priority import parse_deadline

logger = get_logger("deduplication")


def normalize_title(title: str) -> str:
    """Normalize an opportunity title for comparison."""
    title = (title or "").lower().strip()
    title = title.replace("&", "and")
    title = re.sub(r'[^\w\s]', ' ', title)
    return " ".join(title.split())


def normalize_link(link: str) -> str:
    """Scheme-, www- and trailing-slash-insensitive form of a URL."""
    link = (link or "").strip().lower()
    if not link:
        return ""
    parts = urlsplit(link if "://" in link else f"//{link}")
    host = parts.netloc.removeprefix("www.")
    path = parts.path.rstrip("/")
    query = f"?{parts.query}" if parts.query else ""
    return f"{host}{path}{query}"


def _deadline_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_deadline(value)
    return parsed.date() if parsed else None


def is_duplicate(candidate: ParsedOpportunity, existing: dict, threshold: int = TITLE_MATCH_THRESHOLD) -> bool:
    """
    A candidate duplicates a persisted opportunity when the titles match
    (fuzzy) AND either the links or the deadline dates are equal.
    """
    similarity = fuzz.ratio(normalize_title(candidate.title), normalize_title(existing["title"]))
    if similarity < threshold:
        return False

    candidate_link = normalize_link(candidate.link)
    if candidate_link and candidate_link == normalize_link(existing.get("link")):
        return True

    candidate_deadline = _deadline_date(candidate.deadline)
    return candidate_deadline is not None and candidate_deadline == _deadline_date(existing.get("deadline"))


class Deduplicator:
    """
    Only persisted data counts: two similar candidates in the same batch are
    never filtered against each other.
    """

    def __init__(self, db: Database, threshold: int = TITLE_MATCH_THRESHOLD):
        self.db = db
        self.threshold = threshold

    def filter_duplicate_opportunities(self, candidates: list[ParsedOpportunity]) -> list[ParsedOpportunity]:
        if not candidates:
            return []

        existing = self.db.get_opportunity_match_keys()
        unique = []
        for candidate in candidates:
            match = next((e for e in existing if is_duplicate(candidate, e, self.threshold)), None)
            if match is not None:
                logger.info(f"Duplicate skipped: '{candidate.title}' matches existing '{match['title']}'")
                continue
            unique.append(candidate)

        log_pipeline_step(logger, "Deduplication", len(candidates), len(unique))
        return unique
