"""
priority.py — Scores a candidate's urgency/value into a review priority.

  amount:   +2 if it mentions "$" or "full", +1 for any other amount
  deadline: +3 within 7 days, +2 within 30 days, +1 otherwise
  type:     +2 fellowship/grant, +1 scholarship

  score >= 5 → high, >= 3 → medium, else low
"""

import math
from datetime import datetime
from typing import Optional

from models import OpportunityType, ParsedOpportunity, Priority

HIGH_THRESHOLD = 5
MEDIUM_THRESHOLD = 3

TYPE_POINTS = {
    OpportunityType.FELLOWSHIP: 2,
    OpportunityType.GRANT: 2,
    OpportunityType.SCHOLARSHIP: 1,
}

DEADLINE_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%d %H:%M:%S",
]


def parse_deadline(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date/datetime string. Returns None when missing or unparsable."""
    if not value:
        return None
    value = str(value).strip()
    for fmt in DEADLINE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def priority_score(candidate: ParsedOpportunity, now: Optional[datetime] = None) -> int:
    score = 0

    if candidate.amount:
        amount = candidate.amount.lower()
        score += 2 if "$" in amount or "full" in amount else 1

    if candidate.deadline:
        deadline = parse_deadline(candidate.deadline)
        if deadline is None:
            # Unparsable deadlines count as "far away"
            score += 1
        else:
            now = now or datetime.now()
            days_left = math.ceil((deadline - now).total_seconds() / 86400)
            if days_left <= 7:
                score += 3
            elif days_left <= 30:
                score += 2
            else:
                score += 1

    score += TYPE_POINTS.get(candidate.type, 0)
    return score


def determine_priority(candidate: ParsedOpportunity, now: Optional[datetime] = None) -> Priority:
    score = priority_score(candidate, now)
    if score >= HIGH_THRESHOLD:
        return Priority.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW
