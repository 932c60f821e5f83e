"""
database.py — SQLite database setup, queries, and helpers.
SQLite is the single source of truth for sources, crawl logs, opportunity stubs and drafts.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import DB_PATH
from models import (
    AIDraft, CrawlFrequency, CrawlLog, CrawlSource, CrawlStatus, DraftStatus,
    Opportunity, OpportunityType, Priority, SourceStatus,
)

# Columns update_source() is allowed to touch
SOURCE_COLUMNS = {
    "name", "url", "status", "frequency", "max_results",
    "last_crawl", "last_success", "error_message",
}


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime with a fixed width so ISO strings sort chronologically."""
    return value.isoformat(timespec="microseconds") if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _db_value(value):
    if isinstance(value, (SourceStatus, CrawlFrequency, CrawlStatus, DraftStatus, Priority, OpportunityType)):
        return value.value
    if isinstance(value, datetime):
        return _ts(value)
    if isinstance(value, bool):
        return int(value)
    return value


class Database:
    """Thin repository over a single SQLite file. One connection per call."""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection, creating the DB file if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def init_db(self):
        """Create all tables if they don't exist."""
        conn = self.get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS crawl_sources (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                url TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'paused', 'disabled')),
                frequency TEXT NOT NULL DEFAULT 'daily'
                    CHECK (frequency IN ('hourly', 'daily', 'weekly', 'monthly')),
                max_results INTEGER NOT NULL DEFAULT 50,
                last_crawl TEXT,
                last_success INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS crawl_logs (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL REFERENCES crawl_sources(id) ON DELETE CASCADE,
                status TEXT NOT NULL
                    CHECK (status IN ('pending', 'running', 'success', 'failed')),
                items_found INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS opportunities (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                deadline TEXT NOT NULL,
                location TEXT NOT NULL,
                amount TEXT,
                link TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                eligibility TEXT,
                benefits TEXT,
                application_instructions TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ai_drafts (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                source TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                priority TEXT NOT NULL DEFAULT 'medium',
                type TEXT NOT NULL,
                description TEXT,
                deadline TEXT,
                location TEXT,
                amount TEXT,
                link TEXT,
                category TEXT,
                raw_content TEXT,
                extracted_data TEXT NOT NULL,
                opportunity_id TEXT REFERENCES opportunities(id),
                feedback TEXT,
                reviewed_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_logs_one_running
                ON crawl_logs(source_id) WHERE status = 'running';
            CREATE INDEX IF NOT EXISTS idx_logs_source_created ON crawl_logs(source_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_sources_status ON crawl_sources(status);
            CREATE INDEX IF NOT EXISTS idx_drafts_status ON ai_drafts(status);
        """)
        conn.commit()
        conn.close()

    # --- Crawl Sources ---

    def insert_source(self, source: CrawlSource):
        """Store a new crawl source. Raises sqlite3.IntegrityError on a duplicate url."""
        conn = self.get_connection()
        try:
            conn.execute(
                """INSERT INTO crawl_sources
                   (id, name, url, status, frequency, max_results, last_crawl,
                    last_success, error_message, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    source.id, source.name, source.url, source.status.value,
                    source.frequency.value, source.max_results, _ts(source.last_crawl),
                    int(source.last_success), source.error_message,
                    _ts(source.created_at), _ts(source.updated_at),
                )
            )
            conn.commit()
        finally:
            conn.close()

    def get_source(self, source_id: str, log_limit: int = 0) -> Optional[CrawlSource]:
        """Get a source, optionally with its most recent crawl logs attached."""
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM crawl_sources WHERE id = ?", (source_id,)).fetchone()
        conn.close()
        if row is None:
            return None
        source = _row_to_source(row)
        if log_limit:
            source.crawl_logs = self.get_crawl_logs(source_id, limit=log_limit)
        return source

    def find_source_id_by_url(self, url: str) -> Optional[str]:
        conn = self.get_connection()
        row = conn.execute("SELECT id FROM crawl_sources WHERE url = ?", (url,)).fetchone()
        conn.close()
        return row["id"] if row else None

    def list_sources(
        self,
        status: Optional[SourceStatus] = None,
        frequency: Optional[CrawlFrequency] = None,
        search: Optional[str] = None,
    ) -> list[CrawlSource]:
        """List sources, newest first, filtered by status/frequency/free text."""
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if frequency is not None:
            clauses.append("frequency = ?")
            params.append(frequency.value)
        if search:
            clauses.append("(instr(lower(name), lower(?)) > 0 OR instr(lower(url), lower(?)) > 0)")
            params.extend([search, search])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = self.get_connection()
        rows = conn.execute(
            f"SELECT * FROM crawl_sources {where} ORDER BY created_at DESC, rowid DESC",
            params
        ).fetchall()
        conn.close()
        return [_row_to_source(row) for row in rows]

    def list_active_sources(self) -> list[CrawlSource]:
        """Active sources, least recently crawled first (NULL sorts first in SQLite)."""
        conn = self.get_connection()
        rows = conn.execute(
            """SELECT * FROM crawl_sources
               WHERE status = 'active'
               ORDER BY last_crawl ASC, created_at ASC"""
        ).fetchall()
        conn.close()
        return [_row_to_source(row) for row in rows]

    def update_source(self, source_id: str, fields: dict) -> bool:
        """Update the given columns of a source. Returns False if it does not exist."""
        unknown = set(fields) - SOURCE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown crawl source columns: {sorted(unknown)}")
        if not fields:
            return self.get_source(source_id) is not None

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [_db_value(value) for value in fields.values()]
        params.extend([_ts(datetime.now()), source_id])

        conn = self.get_connection()
        try:
            cursor = conn.execute(
                f"UPDATE crawl_sources SET {assignments}, updated_at = ? WHERE id = ?",
                params
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def delete_source(self, source_id: str) -> bool:
        """Delete a source and (via cascade) its crawl logs."""
        conn = self.get_connection()
        cursor = conn.execute("DELETE FROM crawl_sources WHERE id = ?", (source_id,))
        conn.commit()
        conn.close()
        return cursor.rowcount > 0

    def count_sources_by_status(self) -> dict[str, int]:
        conn = self.get_connection()
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM crawl_sources GROUP BY status"
        ).fetchall()
        conn.close()
        return {row["status"]: row["n"] for row in rows}

    # --- Crawl Logs ---

    def insert_crawl_log(self, log: CrawlLog):
        """
        Store a crawl log. Raises sqlite3.IntegrityError if a second RUNNING
        log is inserted for the same source.
        """
        conn = self.get_connection()
        try:
            conn.execute(
                """INSERT INTO crawl_logs
                   (id, source_id, status, items_found, error_message,
                    started_at, completed_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    log.id, log.source_id, log.status.value, log.items_found,
                    log.error_message, _ts(log.started_at), _ts(log.completed_at),
                    _ts(log.created_at),
                )
            )
            conn.commit()
        finally:
            conn.close()

    def get_crawl_log(self, log_id: str) -> Optional[CrawlLog]:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM crawl_logs WHERE id = ?", (log_id,)).fetchone()
        conn.close()
        return _row_to_log(row) if row else None

    def has_running_log(self, source_id: str) -> bool:
        conn = self.get_connection()
        row = conn.execute(
            "SELECT 1 FROM crawl_logs WHERE source_id = ? AND status = 'running'",
            (source_id,)
        ).fetchone()
        conn.close()
        return row is not None

    def complete_crawl_log(
        self,
        log_id: str,
        status: CrawlStatus,
        items_found: int = 0,
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Move a log to a terminal status. Terminal logs are immutable, so this
        is a no-op (returns False) for a log already in success/failed.
        """
        conn = self.get_connection()
        cursor = conn.execute(
            """UPDATE crawl_logs
               SET status = ?, items_found = ?, error_message = ?, completed_at = ?
               WHERE id = ? AND status NOT IN ('success', 'failed')""",
            (status.value, items_found, error_message, _ts(datetime.now()), log_id)
        )
        conn.commit()
        conn.close()
        return cursor.rowcount > 0

    def get_crawl_logs(self, source_id: str, limit: int = 50) -> list[CrawlLog]:
        """Crawl logs for one source, newest first."""
        conn = self.get_connection()
        rows = conn.execute(
            """SELECT * FROM crawl_logs WHERE source_id = ?
               ORDER BY created_at DESC, rowid DESC
               LIMIT ?""",
            (source_id, limit)
        ).fetchall()
        conn.close()
        return [_row_to_log(row) for row in rows]

    def get_recent_crawl_logs(self, limit: int = 100) -> list[CrawlLog]:
        """Crawl logs across all sources, newest first, with source name/url."""
        conn = self.get_connection()
        rows = conn.execute(
            """SELECT l.*, s.name AS source_name, s.url AS source_url
               FROM crawl_logs l
               JOIN crawl_sources s ON l.source_id = s.id
               ORDER BY l.created_at DESC, l.rowid DESC
               LIMIT ?""",
            (limit,)
        ).fetchall()
        conn.close()
        return [_row_to_log(row) for row in rows]

    def count_logs_by_status(self) -> dict[str, int]:
        conn = self.get_connection()
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM crawl_logs GROUP BY status"
        ).fetchall()
        conn.close()
        return {row["status"]: row["n"] for row in rows}

    # --- Opportunities & Drafts ---

    def insert_opportunity_with_draft(self, opportunity: Opportunity, draft: AIDraft):
        """Store an opportunity stub and its AI draft atomically."""
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    """INSERT INTO opportunities
                       (id, title, type, description, deadline, location, amount, link,
                        category, status, eligibility, benefits, application_instructions,
                        created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        opportunity.id, opportunity.title, opportunity.type.value,
                        opportunity.description, _ts(opportunity.deadline),
                        opportunity.location, opportunity.amount, opportunity.link,
                        opportunity.category, opportunity.status,
                        json.dumps(opportunity.eligibility),
                        json.dumps(opportunity.benefits),
                        json.dumps(opportunity.application_instructions),
                        _ts(opportunity.created_at),
                    )
                )
                conn.execute(
                    """INSERT INTO ai_drafts
                       (id, title, source, status, priority, type, description, deadline,
                        location, amount, link, category, raw_content, extracted_data,
                        opportunity_id, feedback, reviewed_at, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        draft.id, draft.title, draft.source, draft.status.value,
                        draft.priority.value, draft.type.value, draft.description,
                        draft.deadline, draft.location, draft.amount, draft.link,
                        draft.category, draft.raw_content, json.dumps(draft.extracted_data),
                        draft.opportunity_id, draft.feedback, _ts(draft.reviewed_at),
                        _ts(draft.created_at),
                    )
                )
        finally:
            conn.close()

    def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM opportunities WHERE id = ?", (opportunity_id,)).fetchone()
        conn.close()
        if row is None:
            return None
        return Opportunity(
            id=row["id"],
            title=row["title"],
            type=OpportunityType(row["type"]),
            description=row["description"],
            deadline=_dt(row["deadline"]),
            location=row["location"],
            link=row["link"],
            category=row["category"],
            amount=row["amount"],
            status=row["status"],
            eligibility=json.loads(row["eligibility"]) if row["eligibility"] else [],
            benefits=json.loads(row["benefits"]) if row["benefits"] else [],
            application_instructions=(
                json.loads(row["application_instructions"]) if row["application_instructions"] else []
            ),
            created_at=_dt(row["created_at"]),
        )

    def get_opportunity_match_keys(self) -> list[dict]:
        """Title/link/deadline of every persisted opportunity, for deduplication."""
        conn = self.get_connection()
        rows = conn.execute("SELECT title, link, deadline FROM opportunities").fetchall()
        conn.close()
        return [
            {"title": row["title"], "link": row["link"], "deadline": _dt(row["deadline"])}
            for row in rows
        ]

    def get_draft(self, draft_id: str) -> Optional[AIDraft]:
        conn = self.get_connection()
        row = conn.execute("SELECT * FROM ai_drafts WHERE id = ?", (draft_id,)).fetchone()
        conn.close()
        return _row_to_draft(row) if row else None

    def list_drafts(
        self,
        status: Optional[DraftStatus] = None,
        priority: Optional[Priority] = None,
        limit: int = 50,
    ) -> list[AIDraft]:
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = self.get_connection()
        rows = conn.execute(
            f"SELECT * FROM ai_drafts {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            params
        ).fetchall()
        conn.close()
        return [_row_to_draft(row) for row in rows]

    def count_drafts_by(self, column: str) -> dict[str, int]:
        if column not in ("status", "priority"):
            raise ValueError(f"Cannot group drafts by {column}")
        conn = self.get_connection()
        rows = conn.execute(
            f"SELECT {column} AS key, COUNT(*) AS n FROM ai_drafts GROUP BY {column}"
        ).fetchall()
        conn.close()
        return {row["key"]: row["n"] for row in rows}


# --- Row mapping ---

def _row_to_source(row: sqlite3.Row) -> CrawlSource:
    return CrawlSource(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        status=SourceStatus(row["status"]),
        frequency=CrawlFrequency(row["frequency"]),
        max_results=row["max_results"],
        last_crawl=_dt(row["last_crawl"]),
        last_success=bool(row["last_success"]),
        error_message=row["error_message"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


def _row_to_log(row: sqlite3.Row) -> CrawlLog:
    keys = row.keys()
    return CrawlLog(
        id=row["id"],
        source_id=row["source_id"],
        status=CrawlStatus(row["status"]),
        items_found=row["items_found"],
        error_message=row["error_message"],
        started_at=_dt(row["started_at"]),
        completed_at=_dt(row["completed_at"]),
        created_at=_dt(row["created_at"]),
        source_name=row["source_name"] if "source_name" in keys else None,
        source_url=row["source_url"] if "source_url" in keys else None,
    )


def _row_to_draft(row: sqlite3.Row) -> AIDraft:
    return AIDraft(
        id=row["id"],
        title=row["title"],
        source=row["source"],
        priority=Priority(row["priority"]),
        opportunity_id=row["opportunity_id"],
        type=OpportunityType(row["type"]),
        description=row["description"],
        link=row["link"],
        location=row["location"],
        category=row["category"],
        deadline=row["deadline"],
        amount=row["amount"],
        raw_content=row["raw_content"],
        extracted_data=json.loads(row["extracted_data"]) if row["extracted_data"] else {},
        status=DraftStatus(row["status"]),
        feedback=row["feedback"],
        reviewed_at=_dt(row["reviewed_at"]),
        created_at=_dt(row["created_at"]),
    )
