"""Database operations for the SEO intelligence pipeline.

This module provides SQLite-based storage for sources, digests and
everything a digest owns (fetch results, recommendations, drafts), plus
the procedure documents, projects and tasks the review workflow mutates.

Database Schema:
    sources: configured content sources (name is unique)
    digests: one row per pipeline run, with status/stage and four counters
    fetch_results: articles persisted for a digest (unique content hash per digest)
    recommendations / citations: analyzer output, citations point at fetch results
    task_drafts / sop_drafts: reviewer-gated proposals
    procedure_sets / procedure_steps / procedure_documents: SOP library
    projects / tasks: targets for applied task drafts
    job_runs: bookkeeping row per pipeline invocation

Invariants enforced here:
    - At most one digest is 'started' (partial unique index + check in an
      IMMEDIATE transaction, so separate processes cannot both start one).
    - Digest counters are incremented in the same transaction that inserts
      the child rows, and only while the digest is still 'started'.
    - Draft mutations are compare-and-set on status='pending'.

Features:
    - WAL mode for concurrent read/write access
    - Foreign keys with ON DELETE CASCADE for digest pruning
    - Context manager support for auto-cleanup
"""

import hashlib
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

from models.digest import AnalysisArticle, Digest, DigestStage, DigestStatus, FetchResult
from models.drafts import DraftStatus, SopDraft, TaskDraft
from models.procedures import (
    ProcedureContext,
    ProcedureDocument,
    ProcedureSet,
    ProcedureStep,
    Project,
    Task,
)
from models.recommendation import Citation, Recommendation
from models.source import Article, Source

logger = logging.getLogger(__name__)


class DigestClosedError(Exception):
    """Raised when adding records to a digest that is not 'started'."""


class DigestAlreadyRunningError(Exception):
    """Raised when a digest is requested while another is still 'started'."""

    def __init__(self, digest_id: str):
        super().__init__(f"Digest {digest_id} is still running")
        self.digest_id = digest_id


class PeriodAlreadyDigestedError(Exception):
    """Raised when a period already has a digest and reruns are not allowed."""

    def __init__(self, period: str, status: str):
        super().__init__(f"period already has a {status} digest")
        self.period = period
        self.status = status


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def content_hash(content: str, url: str = "", title: str = "") -> str:
    """SHA-256 used for per-digest dedupe.

    Keys on the content so mirrored posts collapse. Items with no content
    (title-only entries, bare videos) key on url and title instead.
    """
    key = content if content.strip() else f"{url}\n{title}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


# Counter column per child table; keeps the UPDATE statements in one place.
_COUNTERS = {
    "fetch_results": "sources_fetched",
    "recommendations": "recommendations_generated",
    "task_drafts": "task_drafts_created",
    "sop_drafts": "sop_drafts_created",
}


class Database:
    """SQLite database for the SEO intelligence pipeline.

    The connection runs in autocommit mode; every multi-statement write
    goes through `transaction()`, which opens an IMMEDIATE transaction so
    the read-check-write sequences below are atomic across processes.

    Example:
        >>> with Database("seo_intel.db") as db:
        ...     digest = db.create_digest("2026-10")
        ...     db.add_fetch_results(digest.id, source.id, articles)
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        url TEXT NOT NULL,
        tier TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'general',
        fetch_method TEXT NOT NULL,
        fetch_config TEXT NOT NULL DEFAULT '{}',   -- JSON object
        active INTEGER NOT NULL DEFAULT 1,
        last_fetched_at TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS digests (
        id TEXT PRIMARY KEY,
        period TEXT NOT NULL,                      -- e.g. 2026-10, 2026-W42
        status TEXT NOT NULL DEFAULT 'started',
        stage TEXT NOT NULL DEFAULT 'fetching',
        sources_fetched INTEGER NOT NULL DEFAULT 0,
        recommendations_generated INTEGER NOT NULL DEFAULT 0,
        task_drafts_created INTEGER NOT NULL DEFAULT 0,
        sop_drafts_created INTEGER NOT NULL DEFAULT 0,
        report_url TEXT,
        error_message TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    );

    -- Single active digest
    CREATE UNIQUE INDEX IF NOT EXISTS idx_digests_one_started
        ON digests(status) WHERE status = 'started';
    CREATE INDEX IF NOT EXISTS idx_digests_period ON digests(period);

    CREATE TABLE IF NOT EXISTS fetch_results (
        id TEXT PRIMARY KEY,
        digest_id TEXT NOT NULL REFERENCES digests(id) ON DELETE CASCADE,
        source_id TEXT NOT NULL,                   -- no FK: history outlives sources
        url TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        fetched_at TEXT NOT NULL,
        published_at TEXT,
        UNIQUE (digest_id, content_hash)
    );

    CREATE TABLE IF NOT EXISTS recommendations (
        id TEXT PRIMARY KEY,
        digest_id TEXT NOT NULL REFERENCES digests(id) ON DELETE CASCADE,
        idx INTEGER NOT NULL,
        category TEXT NOT NULL,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        details TEXT NOT NULL DEFAULT '',
        impact TEXT NOT NULL,
        confidence TEXT NOT NULL,
        process_change INTEGER,                    -- NULL = not stated
        created_at TEXT NOT NULL,
        UNIQUE (digest_id, idx)
    );

    CREATE TABLE IF NOT EXISTS citations (
        recommendation_id TEXT NOT NULL REFERENCES recommendations(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        fetch_result_id TEXT NOT NULL REFERENCES fetch_results(id) ON DELETE CASCADE,
        source_id TEXT NOT NULL,
        source_url TEXT NOT NULL,
        source_name TEXT NOT NULL,
        excerpt TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (recommendation_id, position)
    );

    CREATE TABLE IF NOT EXISTS task_drafts (
        id TEXT PRIMARY KEY,
        digest_id TEXT NOT NULL REFERENCES digests(id) ON DELETE CASCADE,
        recommendation_id TEXT NOT NULL,
        recommendation_index INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        suggested_priority TEXT NOT NULL,
        suggested_due_in_days INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        task_id TEXT,
        created_at TEXT NOT NULL,
        reviewed_at TEXT
    );

    CREATE TABLE IF NOT EXISTS sop_drafts (
        id TEXT PRIMARY KEY,
        digest_id TEXT NOT NULL REFERENCES digests(id) ON DELETE CASCADE,
        recommendation_id TEXT,
        recommendation_index INTEGER,
        draft_type TEXT NOT NULL,                  -- update | new
        procedure_set_id TEXT,
        procedure_doc_id TEXT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        before_content TEXT NOT NULL DEFAULT '',
        after_content TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        reviewed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_fetch_results_digest ON fetch_results(digest_id);
    CREATE INDEX IF NOT EXISTS idx_recommendations_digest ON recommendations(digest_id);
    CREATE INDEX IF NOT EXISTS idx_task_drafts_digest ON task_drafts(digest_id);
    CREATE INDEX IF NOT EXISTS idx_sop_drafts_digest ON sop_drafts(digest_id);

    CREATE TABLE IF NOT EXISTS procedure_documents (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS procedure_sets (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        description TEXT NOT NULL DEFAULT '',
        active INTEGER NOT NULL DEFAULT 1,
        document_id TEXT REFERENCES procedure_documents(id) ON DELETE SET NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS procedure_steps (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES procedure_sets(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        due_in_days INTEGER,
        sort_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES projects(id),
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        priority TEXT NOT NULL,
        due_date TEXT NOT NULL,
        source_draft_id TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS job_runs (
        id TEXT PRIMARY KEY,
        job_name TEXT NOT NULL,
        status TEXT NOT NULL,                      -- started | completed | failed
        details TEXT,                              -- JSON object
        started_at TEXT NOT NULL,
        finished_at TEXT
    );
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Initialize database connection.

        Creates the database file if it doesn't exist and sets up
        the schema. Uses WAL mode for better concurrent access.

        Args:
            path: Path to SQLite database file
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path), isolation_level=None, timeout=30)
        self.conn.row_factory = sqlite3.Row  # Enable dict-like row access

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(self.SCHEMA)
        logger.debug("Database initialized | path=%s", self.path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements in one IMMEDIATE transaction."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> Source:
        """Insert a source and return it with its generated id.

        Raises:
            sqlite3.IntegrityError: If a source with the same name exists
        """
        source = source.model_copy(update={"id": source.id or _new_id()})
        self.conn.execute(
            """
            INSERT INTO sources
            (id, name, url, tier, category, fetch_method, fetch_config, active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.name,
                source.url,
                source.tier.value,
                source.category,
                source.fetch_method.value,
                json.dumps(source.fetch_config),
                int(source.active),
                _now(),
            ),
        )
        logger.debug("Source saved | id=%s name=%s", source.id, source.name)
        return source

    def update_source(self, source: Source) -> bool:
        """Overwrite an existing source's editable fields."""
        cursor = self.conn.execute(
            """
            UPDATE sources
            SET name = ?, url = ?, tier = ?, category = ?, fetch_method = ?,
                fetch_config = ?, active = ?
            WHERE id = ?
            """,
            (
                source.name,
                source.url,
                source.tier.value,
                source.category,
                source.fetch_method.value,
                json.dumps(source.fetch_config),
                int(source.active),
                source.id,
            ),
        )
        return cursor.rowcount == 1

    def delete_source(self, source_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cursor.rowcount == 1

    def get_source(self, source_id: str) -> Source | None:
        row = self.conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        return self._row_to_source(row) if row else None

    def get_source_by_name(self, name: str) -> Source | None:
        row = self.conn.execute("SELECT * FROM sources WHERE name = ?", (name,)).fetchone()
        return self._row_to_source(row) if row else None

    def list_sources(self, active_only: bool = False) -> list[Source]:
        query = "SELECT * FROM sources"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY tier, name"
        return [self._row_to_source(row) for row in self.conn.execute(query).fetchall()]

    def mark_source_fetched(self, source_id: str, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        self.conn.execute(
            "UPDATE sources SET last_fetched_at = ? WHERE id = ?",
            (when.isoformat(), source_id),
        )

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            tier=row["tier"],
            category=row["category"],
            fetch_method=row["fetch_method"],
            fetch_config=json.loads(row["fetch_config"] or "{}"),
            active=bool(row["active"]),
            last_fetched_at=row["last_fetched_at"],
        )

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    def create_digest(self, period: str, once_per_period: bool = False) -> Digest:
        """Create a 'started' digest for a period.

        Args:
            period: Period label the digest covers
            once_per_period: Refuse when the period already has any digest

        Raises:
            DigestAlreadyRunningError: If another digest is still 'started'
            PeriodAlreadyDigestedError: If once_per_period and the period has a digest
        """
        digest_id = _new_id()
        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM digests WHERE status = 'started'"
                ).fetchone()
                if row:
                    raise DigestAlreadyRunningError(row["id"])
                if once_per_period:
                    row = conn.execute(
                        "SELECT status FROM digests WHERE period = ? ORDER BY created_at DESC LIMIT 1",
                        (period,),
                    ).fetchone()
                    if row:
                        raise PeriodAlreadyDigestedError(period, row["status"])
                conn.execute(
                    "INSERT INTO digests (id, period, created_at) VALUES (?, ?, ?)",
                    (digest_id, period, _now()),
                )
        except sqlite3.IntegrityError:
            # Lost the race against another process between check and insert
            active = self.active_digest()
            raise DigestAlreadyRunningError(active.id if active else "unknown")
        logger.info("Digest created | id=%s period=%s", digest_id, period)
        return self.get_digest(digest_id)

    def get_digest(self, digest_id: str) -> Digest | None:
        row = self.conn.execute("SELECT * FROM digests WHERE id = ?", (digest_id,)).fetchone()
        return Digest(**dict(row)) if row else None

    def active_digest(self) -> Digest | None:
        row = self.conn.execute("SELECT * FROM digests WHERE status = 'started'").fetchone()
        return Digest(**dict(row)) if row else None

    def digests_for_period(self, period: str) -> list[Digest]:
        cursor = self.conn.execute(
            "SELECT * FROM digests WHERE period = ? ORDER BY created_at", (period,)
        )
        return [Digest(**dict(row)) for row in cursor.fetchall()]

    def list_digests(self, limit: int = 20) -> list[Digest]:
        cursor = self.conn.execute(
            "SELECT * FROM digests ORDER BY created_at DESC LIMIT ?", (limit,)
        )
        return [Digest(**dict(row)) for row in cursor.fetchall()]

    def set_digest_stage(self, digest_id: str, stage: DigestStage) -> None:
        self.conn.execute(
            "UPDATE digests SET stage = ? WHERE id = ? AND status = 'started'",
            (stage.value, digest_id),
        )

    def complete_digest(self, digest_id: str, report_url: str | None = None) -> bool:
        """Move a started digest to 'completed'. Returns False if already terminal."""
        cursor = self.conn.execute(
            """
            UPDATE digests
            SET status = 'completed', stage = 'done', report_url = ?, completed_at = ?
            WHERE id = ? AND status = 'started'
            """,
            (report_url, _now(), digest_id),
        )
        return cursor.rowcount == 1

    def fail_digest(self, digest_id: str, error_message: str) -> bool:
        """Move a started digest to 'failed'. Returns False if already terminal."""
        cursor = self.conn.execute(
            """
            UPDATE digests
            SET status = 'failed', error_message = ?, completed_at = ?
            WHERE id = ? AND status = 'started'
            """,
            (error_message, _now(), digest_id),
        )
        return cursor.rowcount == 1

    def _require_started(self, conn: sqlite3.Connection, digest_id: str) -> None:
        row = conn.execute("SELECT status FROM digests WHERE id = ?", (digest_id,)).fetchone()
        if row is None:
            raise DigestClosedError(f"Digest {digest_id} does not exist")
        if row["status"] != DigestStatus.STARTED.value:
            raise DigestClosedError(f"Digest {digest_id} is {row['status']}")

    def _bump_counter(self, conn: sqlite3.Connection, digest_id: str, table: str, count: int) -> None:
        column = _COUNTERS[table]
        conn.execute(
            f"UPDATE digests SET {column} = {column} + ? WHERE id = ?",
            (count, digest_id),
        )

    # ------------------------------------------------------------------
    # Digest children
    # ------------------------------------------------------------------

    def add_fetch_results(self, digest_id: str, source_id: str, articles: list[Article]) -> int:
        """Persist articles for a digest, skipping content already stored.

        Returns:
            Number of rows actually inserted (and counted)
        """
        inserted = 0
        with self.transaction() as conn:
            self._require_started(conn, digest_id)
            for article in articles:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO fetch_results
                    (id, digest_id, source_id, url, title, content, content_hash,
                     fetched_at, published_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        _new_id(),
                        digest_id,
                        source_id,
                        article.url,
                        article.title,
                        article.content,
                        content_hash(article.content, article.url, article.title),
                        article.fetched_at.isoformat(),
                        article.published_at.isoformat() if article.published_at else None,
                    ),
                )
                inserted += cursor.rowcount
            self._bump_counter(conn, digest_id, "fetch_results", inserted)
        if inserted < len(articles):
            logger.debug(
                "Duplicate articles skipped | digest=%s source=%s skipped=%d",
                digest_id, source_id, len(articles) - inserted,
            )
        return inserted

    def fetch_results_for_digest(self, digest_id: str) -> list[FetchResult]:
        cursor = self.conn.execute(
            "SELECT * FROM fetch_results WHERE digest_id = ? ORDER BY rowid", (digest_id,)
        )
        return [FetchResult(**dict(row)) for row in cursor.fetchall()]

    def analysis_articles(self, digest_id: str) -> list[AnalysisArticle]:
        """Fetch results joined with their source, in insertion order."""
        cursor = self.conn.execute(
            """
            SELECT f.id, f.source_id, f.url, f.title, f.content,
                   COALESCE(s.name, 'Unknown source') AS source_name,
                   COALESCE(s.tier, 'tier_3') AS source_tier,
                   COALESCE(s.category, 'general') AS category
            FROM fetch_results f
            LEFT JOIN sources s ON s.id = f.source_id
            WHERE f.digest_id = ?
            ORDER BY f.rowid
            """,
            (digest_id,),
        )
        return [AnalysisArticle(**dict(row)) for row in cursor.fetchall()]

    def add_recommendations(self, digest_id: str, recommendations: list[Recommendation]) -> int:
        """Persist a batch of recommendations and their citations atomically."""
        with self.transaction() as conn:
            self._require_started(conn, digest_id)
            now = _now()
            for rec in recommendations:
                conn.execute(
                    """
                    INSERT INTO recommendations
                    (id, digest_id, idx, category, title, summary, details, impact,
                     confidence, process_change, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rec.id,
                        digest_id,
                        rec.index,
                        rec.category,
                        rec.title,
                        rec.summary,
                        rec.details,
                        rec.impact.value,
                        rec.confidence.value,
                        None if rec.process_change is None else int(rec.process_change),
                        now,
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO citations
                    (recommendation_id, position, fetch_result_id, source_id,
                     source_url, source_name, excerpt)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (rec.id, pos, c.fetch_result_id, c.source_id, c.source_url, c.source_name, c.excerpt)
                        for pos, c in enumerate(rec.citations)
                    ],
                )
            self._bump_counter(conn, digest_id, "recommendations", len(recommendations))
        return len(recommendations)

    def recommendations_for_digest(self, digest_id: str) -> list[Recommendation]:
        rows = self.conn.execute(
            "SELECT * FROM recommendations WHERE digest_id = ? ORDER BY idx", (digest_id,)
        ).fetchall()
        citations: dict[str, list[Citation]] = {}
        cursor = self.conn.execute(
            """
            SELECT c.* FROM citations c
            JOIN recommendations r ON r.id = c.recommendation_id
            WHERE r.digest_id = ?
            ORDER BY c.recommendation_id, c.position
            """,
            (digest_id,),
        )
        for row in cursor.fetchall():
            citations.setdefault(row["recommendation_id"], []).append(
                Citation(
                    fetch_result_id=row["fetch_result_id"],
                    source_id=row["source_id"],
                    source_url=row["source_url"],
                    source_name=row["source_name"],
                    excerpt=row["excerpt"],
                )
            )
        return [
            Recommendation(
                id=row["id"],
                index=row["idx"],
                category=row["category"],
                title=row["title"],
                summary=row["summary"],
                details=row["details"],
                impact=row["impact"],
                process_change=None if row["process_change"] is None else bool(row["process_change"]),
                citations=citations.get(row["id"], []),
            )
            for row in rows
        ]

    def add_task_drafts(self, digest_id: str, drafts: list[TaskDraft]) -> list[TaskDraft]:
        """Persist task drafts; returns them with ids and digest filled in."""
        now = _now()
        saved = [
            d.model_copy(update={"id": d.id or _new_id(), "digest_id": digest_id, "created_at": now})
            for d in drafts
        ]
        with self.transaction() as conn:
            self._require_started(conn, digest_id)
            conn.executemany(
                """
                INSERT INTO task_drafts
                (id, digest_id, recommendation_id, recommendation_index, title, description,
                 suggested_priority, suggested_due_in_days, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        d.id, digest_id, d.recommendation_id, d.recommendation_index,
                        d.title, d.description, d.suggested_priority.value,
                        d.suggested_due_in_days, d.status.value, now,
                    )
                    for d in saved
                ],
            )
            self._bump_counter(conn, digest_id, "task_drafts", len(saved))
        return saved

    def add_sop_drafts(self, digest_id: str, drafts: list[SopDraft]) -> list[SopDraft]:
        """Persist SOP drafts; returns them with ids and digest filled in."""
        now = _now()
        saved = [
            d.model_copy(update={"id": d.id or _new_id(), "digest_id": digest_id, "created_at": now})
            for d in drafts
        ]
        with self.transaction() as conn:
            self._require_started(conn, digest_id)
            conn.executemany(
                """
                INSERT INTO sop_drafts
                (id, digest_id, recommendation_id, recommendation_index, draft_type,
                 procedure_set_id, procedure_doc_id, title, description,
                 before_content, after_content, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        d.id, digest_id, d.recommendation_id, d.recommendation_index,
                        d.draft_type.value, d.procedure_set_id, d.procedure_doc_id,
                        d.title, d.description, d.before_content, d.after_content,
                        d.status.value, now,
                    )
                    for d in saved
                ],
            )
            self._bump_counter(conn, digest_id, "sop_drafts", len(saved))
        return saved

    def task_drafts_for_digest(self, digest_id: str) -> list[TaskDraft]:
        cursor = self.conn.execute(
            "SELECT * FROM task_drafts WHERE digest_id = ? ORDER BY recommendation_index, rowid",
            (digest_id,),
        )
        return [TaskDraft(**dict(row)) for row in cursor.fetchall()]

    def sop_drafts_for_digest(self, digest_id: str) -> list[SopDraft]:
        cursor = self.conn.execute(
            "SELECT * FROM sop_drafts WHERE digest_id = ? ORDER BY recommendation_index, rowid",
            (digest_id,),
        )
        return [SopDraft(**dict(row)) for row in cursor.fetchall()]

    def get_task_draft(self, draft_id: str) -> TaskDraft | None:
        row = self.conn.execute("SELECT * FROM task_drafts WHERE id = ?", (draft_id,)).fetchone()
        return TaskDraft(**dict(row)) if row else None

    def get_sop_draft(self, draft_id: str) -> SopDraft | None:
        row = self.conn.execute("SELECT * FROM sop_drafts WHERE id = ?", (draft_id,)).fetchone()
        return SopDraft(**dict(row)) if row else None

    def count_children(self, digest_id: str) -> dict[str, int]:
        """Actual row counts keyed by counter column name."""
        return {
            column: self.conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE digest_id = ?", (digest_id,)
            ).fetchone()[0]
            for table, column in _COUNTERS.items()
        }

    # ------------------------------------------------------------------
    # Draft review (compare-and-set on status = 'pending')
    # ------------------------------------------------------------------

    def _claim_draft(self, conn: sqlite3.Connection, table: str, draft_id: str, status: DraftStatus) -> bool:
        cursor = conn.execute(
            f"UPDATE {table} SET status = ?, reviewed_at = ? WHERE id = ? AND status = 'pending'",
            (status.value, _now(), draft_id),
        )
        return cursor.rowcount == 1

    def apply_task_draft(
        self,
        draft: TaskDraft,
        project_id: str,
        due_date: date,
    ) -> Task | None:
        """Create the task for a draft and mark the draft applied.

        Returns:
            The created task, or None if the draft was no longer pending
        """
        task = Task(
            id=_new_id(),
            project_id=project_id,
            title=draft.title,
            description=draft.description,
            priority=draft.suggested_priority.value,
            due_date=due_date,
            source_draft_id=draft.id,
            created_at=_now(),
        )
        with self.transaction() as conn:
            if not self._claim_draft(conn, "task_drafts", draft.id, DraftStatus.APPLIED):
                return None
            conn.execute(
                """
                INSERT INTO tasks
                (id, project_id, title, description, priority, due_date, source_draft_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, task.project_id, task.title, task.description, task.priority,
                    task.due_date.isoformat(), task.source_draft_id, task.created_at.isoformat(),
                ),
            )
            conn.execute("UPDATE task_drafts SET task_id = ? WHERE id = ?", (task.id, draft.id))
        logger.info("Task draft applied | draft=%s task=%s project=%s", draft.id, task.id, project_id)
        return task

    def apply_sop_update(self, draft_id: str, document_id: str, new_content: str) -> bool:
        """Write new document content and mark the draft applied, atomically."""
        with self.transaction() as conn:
            if not self._claim_draft(conn, "sop_drafts", draft_id, DraftStatus.APPLIED):
                return False
            cursor = conn.execute(
                "UPDATE procedure_documents SET content = ?, updated_at = ? WHERE id = ?",
                (new_content, _now(), document_id),
            )
            if cursor.rowcount != 1:
                raise LookupError(f"Procedure document {document_id} disappeared")
        return True

    def apply_sop_new(self, draft_id: str, title: str, content: str, set_id: str | None) -> str | None:
        """Create a procedure document from a draft and mark the draft applied.

        When the draft targets a procedure set without a document, the new
        document is linked to it.

        Returns:
            New document id, or None if the draft was no longer pending
        """
        doc_id = _new_id()
        with self.transaction() as conn:
            if not self._claim_draft(conn, "sop_drafts", draft_id, DraftStatus.APPLIED):
                return None
            now = _now()
            conn.execute(
                "INSERT INTO procedure_documents (id, title, content, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (doc_id, title, content, now, now),
            )
            if set_id:
                conn.execute(
                    "UPDATE procedure_sets SET document_id = ? WHERE id = ? AND document_id IS NULL",
                    (doc_id, set_id),
                )
        return doc_id

    def dismiss_draft(self, table: str, draft_id: str) -> bool:
        with self.transaction() as conn:
            return self._claim_draft(conn, table, draft_id, DraftStatus.DISMISSED)

    def edit_sop_draft(self, draft_id: str, after_content: str) -> bool:
        cursor = self.conn.execute(
            "UPDATE sop_drafts SET after_content = ? WHERE id = ? AND status = 'pending'",
            (after_content, draft_id),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Procedures, projects, tasks
    # ------------------------------------------------------------------

    def add_procedure_set(self, name: str, description: str = "") -> ProcedureSet:
        set_id = _new_id()
        self.conn.execute(
            "INSERT INTO procedure_sets (id, name, description, created_at) VALUES (?, ?, ?, ?)",
            (set_id, name, description, _now()),
        )
        return ProcedureSet(id=set_id, name=name, description=description)

    def add_procedure_step(self, set_id: str, step: ProcedureStep) -> None:
        self.conn.execute(
            """
            INSERT INTO procedure_steps (id, set_id, title, description, due_in_days, sort_order)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (_new_id(), set_id, step.title, step.description, step.due_in_days, step.sort_order),
        )

    def add_procedure_document(self, title: str, content: str, set_id: str | None = None) -> ProcedureDocument:
        doc_id = _new_id()
        now = _now()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO procedure_documents (id, title, content, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (doc_id, title, content, now, now),
            )
            if set_id:
                conn.execute("UPDATE procedure_sets SET document_id = ? WHERE id = ?", (doc_id, set_id))
        return ProcedureDocument(id=doc_id, title=title, content=content, updated_at=now)

    def get_procedure_document(self, doc_id: str) -> ProcedureDocument | None:
        row = self.conn.execute(
            "SELECT id, title, content, updated_at FROM procedure_documents WHERE id = ?", (doc_id,)
        ).fetchone()
        return ProcedureDocument(**dict(row)) if row else None

    def get_procedure_set(self, set_id: str) -> ProcedureSet | None:
        sets = self._load_procedure_sets("WHERE id = ?", (set_id,))
        return sets[0] if sets else None

    def list_procedure_sets(self, active_only: bool = False) -> list[ProcedureSet]:
        return self._load_procedure_sets("WHERE active = 1" if active_only else "", ())

    def _load_procedure_sets(self, where: str, params: tuple) -> list[ProcedureSet]:
        rows = self.conn.execute(
            f"SELECT * FROM procedure_sets {where} ORDER BY name", params
        ).fetchall()
        result = []
        for row in rows:
            steps = self.conn.execute(
                """
                SELECT title, description, due_in_days, sort_order
                FROM procedure_steps WHERE set_id = ? ORDER BY sort_order, rowid
                """,
                (row["id"],),
            ).fetchall()
            result.append(
                ProcedureSet(
                    id=row["id"],
                    name=row["name"],
                    description=row["description"],
                    active=bool(row["active"]),
                    document_id=row["document_id"],
                    steps=[ProcedureStep(**dict(s)) for s in steps],
                )
            )
        return result

    def procedure_contexts(self) -> list[ProcedureContext]:
        """Active procedure sets with their documents loaded."""
        return [
            ProcedureContext(
                procedure_set=ps,
                document=self.get_procedure_document(ps.document_id) if ps.document_id else None,
            )
            for ps in self.list_procedure_sets(active_only=True)
        ]

    def add_project(self, name: str) -> Project:
        project = Project(id=_new_id(), name=name)
        self.conn.execute(
            "INSERT INTO projects (id, name, created_at) VALUES (?, ?, ?)",
            (project.id, project.name, _now()),
        )
        return project

    def get_project(self, project_id: str) -> Project | None:
        row = self.conn.execute("SELECT id, name FROM projects WHERE id = ?", (project_id,)).fetchone()
        return Project(**dict(row)) if row else None

    def list_projects(self) -> list[Project]:
        rows = self.conn.execute("SELECT id, name FROM projects ORDER BY name").fetchall()
        return [Project(**dict(row)) for row in rows]

    def list_tasks(self, project_id: str | None = None) -> list[Task]:
        if project_id:
            cursor = self.conn.execute(
                "SELECT * FROM tasks WHERE project_id = ? ORDER BY due_date", (project_id,)
            )
        else:
            cursor = self.conn.execute("SELECT * FROM tasks ORDER BY due_date")
        return [Task(**dict(row)) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Job runs, maintenance, stats
    # ------------------------------------------------------------------

    def start_job_run(self, job_name: str, details: dict[str, Any] | None = None) -> str:
        run_id = _new_id()
        self.conn.execute(
            "INSERT INTO job_runs (id, job_name, status, details, started_at) VALUES (?, ?, 'started', ?, ?)",
            (run_id, job_name, json.dumps(details or {}), _now()),
        )
        return run_id

    def finish_job_run(self, run_id: str, status: str, details: dict[str, Any]) -> None:
        self.conn.execute(
            "UPDATE job_runs SET status = ?, details = ?, finished_at = ? WHERE id = ?",
            (status, json.dumps(details, default=str), _now(), run_id),
        )

    def list_job_runs(self, limit: int = 10) -> list[dict[str, Any]]:
        cursor = self.conn.execute(
            "SELECT * FROM job_runs ORDER BY started_at DESC LIMIT ?", (limit,)
        )
        runs = []
        for row in cursor.fetchall():
            run = dict(row)
            run["details"] = json.loads(run["details"] or "{}")
            runs.append(run)
        return runs

    def prune_digests(self, days: int) -> int:
        """Delete terminal digests older than specified days.

        Children go with them via ON DELETE CASCADE. Started digests are
        never pruned.

        Args:
            days: Number of days to keep

        Returns:
            Number of digests deleted
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM digests WHERE status != 'started' AND created_at < ?",
                (cutoff,),
            )
            deleted = cursor.rowcount
            conn.execute(
                "DELETE FROM job_runs WHERE status != 'started' AND started_at < ?",
                (cutoff,),
            )
        if deleted > 0:
            logger.info("Database pruned | deleted=%d days=%d", deleted, days)
        return deleted

    def stats(self) -> dict[str, int]:
        """Get database statistics.

        Returns:
            Dictionary with source, digest and pending draft counts
        """
        def count(query: str) -> int:
            return self.conn.execute(query).fetchone()[0] or 0

        return {
            "sources": count("SELECT COUNT(*) FROM sources"),
            "active_sources": count("SELECT COUNT(*) FROM sources WHERE active = 1"),
            "digests": count("SELECT COUNT(*) FROM digests"),
            "pending_task_drafts": count("SELECT COUNT(*) FROM task_drafts WHERE status = 'pending'"),
            "pending_sop_drafts": count("SELECT COUNT(*) FROM sop_drafts WHERE status = 'pending'"),
            "tasks": count("SELECT COUNT(*) FROM tasks"),
        }

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
