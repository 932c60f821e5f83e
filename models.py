"""
models.py — Data models for the opportunity crawler.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class SourceStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


class CrawlFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CrawlStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.SUCCESS, CrawlStatus.FAILED)


class OpportunityType(str, Enum):
    SCHOLARSHIP = "scholarship"
    INTERNSHIP = "internship"
    FELLOWSHIP = "fellowship"
    GRANT = "grant"


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class CrawlLog:
    """One attempt to crawl a source."""
    id: str
    source_id: str
    status: CrawlStatus
    items_found: int = 0
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    # Only populated when listed across sources
    source_name: Optional[str] = None
    source_url: Optional[str] = None


@dataclass
class CrawlSource:
    """A registered web origin to be crawled on a schedule."""
    id: str
    name: str
    url: str
    status: SourceStatus = SourceStatus.ACTIVE
    frequency: CrawlFrequency = CrawlFrequency.DAILY
    max_results: int = 50
    last_crawl: Optional[datetime] = None
    last_success: bool = False
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    crawl_logs: list[CrawlLog] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedOpportunity:
    """Candidate opportunity produced by extraction, not yet persisted."""
    title: str
    type: OpportunityType
    description: str
    link: str
    location: str
    category: str
    deadline: Optional[str] = None  # ISO date as returned by the model
    amount: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class Opportunity:
    """Minimal draft-status opportunity stub created alongside an AI draft."""
    id: str
    title: str
    type: OpportunityType
    description: str
    deadline: datetime
    location: str
    link: str
    category: str
    amount: Optional[str] = None
    status: str = "draft"
    eligibility: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)
    application_instructions: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class AIDraft:
    """A staged candidate awaiting human review."""
    id: str
    title: str
    source: str
    priority: Priority
    opportunity_id: str
    type: OpportunityType
    description: str
    link: str
    location: str
    category: str
    deadline: Optional[str] = None
    amount: Optional[str] = None
    raw_content: Optional[str] = None
    extracted_data: dict = field(default_factory=dict)
    status: DraftStatus = DraftStatus.PENDING
    feedback: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class SourceHealth:
    """Derived health signal for one source."""
    status: HealthStatus
    last_crawl: Optional[datetime]
    last_success: bool
    consecutive_failures: int
    average_items_found: int


@dataclass
class CrawlStats:
    """Counts of sources and crawl logs by status."""
    total_sources: int = 0
    active_sources: int = 0
    paused_sources: int = 0
    disabled_sources: int = 0
    total_crawls: int = 0
    pending_crawls: int = 0
    running_crawls: int = 0
    successful_crawls: int = 0
    failed_crawls: int = 0
    success_rate: int = 0  # percent
