"""
drafts.py — Stages deduplicated candidates as review-pending AI drafts.

Each candidate becomes an Opportunity stub (status=draft) plus a paired AIDraft
carrying the raw candidate. Review/approval belongs to another system; this
module only creates drafts and reads them back.
"""

import json
import uuid
from datetime import datetime, timedelta
from typing import Optional

from config import DEFAULT_DEADLINE_DAYS, DEFAULT_OPPORTUNITY_LOCATION
from database import Database
from errors import NotFoundError
from models import AIDraft, DraftStatus, Opportunity, ParsedOpportunity, Priority
from monitoring import get_logger
from priority import determine_priority, parse_deadline

logger = get_logger("drafts")


def resolve_deadline(raw: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Parsed deadline, or now + DEFAULT_DEADLINE_DAYS when missing/invalid."""
    deadline = parse_deadline(raw)
    if deadline is None:
        deadline = (now or datetime.now()) + timedelta(days=DEFAULT_DEADLINE_DAYS)
    return deadline


class DraftStore:
    def __init__(self, db: Database):
        self.db = db

    def create_draft(
        self,
        candidate: ParsedOpportunity,
        source_url: str,
        now: Optional[datetime] = None,
    ) -> AIDraft:
        """Persist one candidate as an opportunity stub + AI draft (atomically)."""
        now = now or datetime.now()
        extracted = candidate.to_dict()

        opportunity = Opportunity(
            id=uuid.uuid4().hex,
            title=candidate.title.strip(),
            type=candidate.type,
            description=candidate.description.strip(),
            deadline=resolve_deadline(candidate.deadline, now),
            location=candidate.location or DEFAULT_OPPORTUNITY_LOCATION,
            link=candidate.link or "",
            category=candidate.category,
            amount=candidate.amount,
            created_at=now,
        )
        draft = AIDraft(
            id=uuid.uuid4().hex,
            title=candidate.title,
            source=source_url,
            priority=determine_priority(candidate, now),
            opportunity_id=opportunity.id,
            type=candidate.type,
            description=candidate.description,
            link=candidate.link,
            location=candidate.location,
            category=candidate.category,
            deadline=candidate.deadline,
            amount=candidate.amount,
            raw_content=json.dumps(extracted, indent=2),
            extracted_data={
                **extracted,
                "eligibility": [],
                "benefits": [],
                "applicationInstructions": [],
            },
            created_at=now,
        )
        self.db.insert_opportunity_with_draft(opportunity, draft)
        return draft

    def save_candidates(self, candidates: list[ParsedOpportunity], source_url: str) -> list[AIDraft]:
        """
        Best effort: a candidate that fails to persist is logged and skipped,
        the rest are still saved.
        """
        created = []
        for candidate in candidates:
            try:
                draft = self.create_draft(candidate, source_url)
            except Exception as e:
                logger.error(f"Failed to create draft for '{candidate.title}': {type(e).__name__}: {e}")
                continue
            created.append(draft)
            logger.info(f"Created draft '{draft.title}' [{draft.priority.value}] (opportunity {draft.opportunity_id})")

        logger.info(f"Staged {len(created)}/{len(candidates)} candidates from {source_url}")
        return created

    def get_draft(self, draft_id: str) -> AIDraft:
        draft = self.db.get_draft(draft_id)
        if draft is None:
            raise NotFoundError("AI draft", draft_id)
        return draft

    def list_drafts(
        self,
        status: Optional[DraftStatus] = None,
        priority: Optional[Priority] = None,
        limit: int = 50,
    ) -> list[AIDraft]:
        return self.db.list_drafts(
            status=DraftStatus(status) if status is not None else None,
            priority=Priority(priority) if priority is not None else None,
            limit=limit,
        )

    def get_draft_stats(self) -> dict:
        by_status = self.db.count_drafts_by("status")
        by_priority = self.db.count_drafts_by("priority")
        return {
            "total": sum(by_status.values()),
            **{status.value: by_status.get(status.value, 0) for status in DraftStatus},
            "by_priority": {p.value: by_priority.get(p.value, 0) for p in Priority},
        }
