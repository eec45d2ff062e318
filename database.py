"""Database operations for the saveflow article pipeline.

This module provides SQLite-based storage for saved articles, the
processing queue, daily digests and per-user settings.

Database Schema:
    articles table:
        - id (TEXT, PK): Opaque article id
        - user_id (TEXT): Owning user
        - url (TEXT): Saved URL (never updated after insert)
        - title/description/content/author/site_name/image_url (TEXT)
        - images, comments, analysis (TEXT): JSON documents
        - status (TEXT): submitted|extracting|analyzing|ready|failed
        - error_message (TEXT): Last error, set when status=failed
        - created_at/updated_at (INTEGER): Unix epoch

    processing_queue table:
        - id (TEXT, PK), article_id (TEXT), job_type (TEXT)
        - status (TEXT): pending|processing|completed|failed
        - attempts (INTEGER): Failed attempts, never decreases
        - last_error (TEXT)
        - created_at/started_at/completed_at/next_eligible_at (INTEGER)

    digests table:
        - id (TEXT, PK), user_id (TEXT), date (TEXT, YYYY-MM-DD)
        - UNIQUE(user_id, date): one digest per user per day

    user_settings table:
        - user_id (TEXT, PK), push_token, push_notifications, timezone

Concurrency:
    Claiming queue jobs is the only operation that needs atomicity across
    processes. It runs inside ``BEGIN IMMEDIATE`` so the select-then-update
    holds the database write lock; a claimed job is invisible to any other
    dispatch cycle. Every other write is also wrapped in a short immediate
    transaction and is conditional on the row's current status, which makes
    terminal writes idempotent.
"""

import json
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from models.article import Article, ArticleAnalysis, ArticleStatus, ExtractedContent
from models.digest import Digest, DigestContent, UserSettings
from models.queue import JobKind, JobStatus, QueueJob

logger = logging.getLogger(__name__)

# Error messages stored on jobs/articles are capped at this length
MAX_ERROR_CHARS = 2000


def _new_id() -> str:
    return uuid.uuid4().hex


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else int(now)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _loads(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON column ignored | value=%s", value[:80])
        return default


def _truncate_error(error: str) -> str:
    if len(error) > MAX_ERROR_CHARS:
        return error[:MAX_ERROR_CHARS] + "..."
    return error


class Database:
    """SQLite store for articles, queue jobs, digests and user settings.

    Example:
        >>> with Database("saveflow.db") as db:
        ...     article, job = db.submit_article("user-1", "https://example.com/a")
        ...     claimed = db.claim_jobs(limit=5, max_retries=3)
    """

    SCHEMA = """
    -- One row per saved article
    CREATE TABLE IF NOT EXISTS articles (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        url TEXT NOT NULL,
        title TEXT,
        description TEXT,
        content TEXT,
        author TEXT,
        site_name TEXT,
        published_time TEXT,             -- as reported by the reader service
        image_url TEXT,
        images TEXT,                     -- JSON list of {url, alt}
        comments TEXT,                   -- JSON list of strings
        analysis TEXT,                   -- JSON ArticleAnalysis
        status TEXT NOT NULL DEFAULT 'submitted',
        error_message TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );

    -- Digest window scan: user + status + creation time
    CREATE INDEX IF NOT EXISTS idx_articles_user_status_created
        ON articles(user_id, status, created_at);

    -- Durable job queue
    CREATE TABLE IF NOT EXISTS processing_queue (
        id TEXT PRIMARY KEY,
        article_id TEXT NOT NULL,
        job_type TEXT NOT NULL DEFAULT 'extract',
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at INTEGER NOT NULL,
        started_at INTEGER,
        completed_at INTEGER,
        next_eligible_at INTEGER
    );

    -- Claim query: pending jobs, oldest first
    CREATE INDEX IF NOT EXISTS idx_queue_status_created
        ON processing_queue(status, created_at);

    CREATE INDEX IF NOT EXISTS idx_queue_article
        ON processing_queue(article_id);

    -- One digest per user per calendar day
    CREATE TABLE IF NOT EXISTS digests (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        overall_summary TEXT NOT NULL,
        top_themes TEXT NOT NULL,
        articles TEXT NOT NULL,
        ai_insights TEXT NOT NULL,
        article_count INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        UNIQUE(user_id, date)
    );

    CREATE TABLE IF NOT EXISTS user_settings (
        user_id TEXT PRIMARY KEY,
        push_token TEXT,
        push_notifications INTEGER NOT NULL DEFAULT 0,
        timezone TEXT,
        updated_at INTEGER NOT NULL
    );
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str, timeout: float = 30.0):
        """Open (and create if needed) the database.

        Args:
            path: Path to SQLite database file
            timeout: Seconds to wait for another connection's write lock
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path), timeout=timeout)
        self.conn.row_factory = sqlite3.Row

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()
        self._migrate()
        logger.debug("Database initialized | path=%s", self.path)

    def _migrate(self) -> None:
        """Add columns introduced after a database was first created."""
        cursor = self.conn.execute("PRAGMA table_info(articles)")
        columns = {row["name"] for row in cursor.fetchall()}

        if "published_time" not in columns:
            self.conn.execute("ALTER TABLE articles ADD COLUMN published_time TEXT")
            self.conn.commit()
            logger.info("Database migrated | added column=published_time")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside ``BEGIN IMMEDIATE``; roll back on any error."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def submit_article(
        self,
        user_id: str,
        url: str,
        title: str | None = None,
        article_id: str | None = None,
        now: int | None = None,
    ) -> tuple[Article, QueueJob]:
        """Create an article and its extract job in one transaction.

        Args:
            user_id: Owning user
            url: URL to process
            title: Optional title supplied by the client
            article_id: Optional client-chosen id
            now: Override creation time (Unix epoch)

        Returns:
            (article, job) as stored
        """
        ts = _now(now)
        article_id = article_id or _new_id()
        job_id = _new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO articles (id, user_id, url, title, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (article_id, user_id, url, title, ArticleStatus.SUBMITTED.value, ts, ts),
            )
            self._insert_job(conn, job_id, article_id, JobKind.EXTRACT, ts)
        logger.info("Article submitted | article=%s job=%s url=%s", article_id, job_id, url[:80])
        article = self.get_article(article_id)
        job = self.get_job(job_id)
        assert article is not None and job is not None
        return article, job

    def get_article(self, article_id: str) -> Article | None:
        row = self.conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        return _row_to_article(row) if row else None

    def list_articles(
        self,
        user_id: str | None = None,
        status: ArticleStatus | None = None,
        limit: int = 50,
    ) -> list[Article]:
        """List articles, newest first, optionally filtered."""
        clauses = []
        params: list[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = self.conn.execute(
            f"SELECT * FROM articles {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            params,
        )
        return [_row_to_article(row) for row in cursor.fetchall()]

    def set_article_status(
        self,
        article_id: str,
        status: ArticleStatus,
        now: int | None = None,
    ) -> bool:
        """Move an article to ``status`` if the state machine allows it.

        Returns:
            True if the row was updated
        """
        sources = ArticleStatus.sources_for(status)
        placeholders = ",".join("?" * len(sources))
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles SET status = ?, updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
                """,
                (status.value, _now(now), article_id, *[s.value for s in sources]),
            )
        return cursor.rowcount == 1

    def save_extraction(
        self,
        article_id: str,
        extracted: ExtractedContent,
        now: int | None = None,
    ) -> bool:
        """Merge extracted content into an article and move it to ``analyzing``.

        The client-supplied title is kept when extraction found none.

        Returns:
            True if the row was updated
        """
        sources = ArticleStatus.sources_for(ArticleStatus.ANALYZING)
        placeholders = ",".join("?" * len(sources))
        images = [image.model_dump() for image in extracted.images]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles SET
                    title = COALESCE(NULLIF(?, ''), title),
                    description = ?,
                    content = ?,
                    author = ?,
                    site_name = ?,
                    published_time = ?,
                    image_url = ?,
                    images = ?,
                    comments = ?,
                    status = ?,
                    updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
                """,
                (
                    extracted.title,
                    extracted.description,
                    extracted.content,
                    extracted.author,
                    extracted.site_name,
                    extracted.published_time,
                    extracted.images[0].url if extracted.images else None,
                    _dumps(images),
                    _dumps(extracted.comments),
                    ArticleStatus.ANALYZING.value,
                    _now(now),
                    article_id,
                    *[s.value for s in sources],
                ),
            )
        return cursor.rowcount == 1

    def save_analysis(
        self,
        article_id: str,
        analysis: ArticleAnalysis,
        now: int | None = None,
    ) -> bool:
        """Write the analysis and mark the article ``ready`` in one update.

        Returns:
            True if the row was updated
        """
        sources = ArticleStatus.sources_for(ArticleStatus.READY)
        placeholders = ",".join("?" * len(sources))
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles SET analysis = ?, status = ?, error_message = NULL, updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
                """,
                (
                    analysis.model_dump_json(),
                    ArticleStatus.READY.value,
                    _now(now),
                    article_id,
                    *[s.value for s in sources],
                ),
            )
        return cursor.rowcount == 1

    def list_ready_articles(self, user_id: str, start: int, end: int) -> list[Article]:
        """Ready articles created within ``[start, end]`` (inclusive), newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM articles
            WHERE user_id = ? AND status = ? AND created_at >= ? AND created_at <= ?
            ORDER BY created_at DESC, rowid DESC
            """,
            (user_id, ArticleStatus.READY.value, start, end),
        )
        return [_row_to_article(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_job(
        conn: sqlite3.Connection,
        job_id: str,
        article_id: str,
        kind: JobKind,
        ts: int,
    ) -> None:
        conn.execute(
            """
            INSERT INTO processing_queue (id, article_id, job_type, status, attempts, created_at)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (job_id, article_id, kind.value, JobStatus.PENDING.value, ts),
        )

    def get_job(self, job_id: str) -> QueueJob | None:
        row = self.conn.execute(
            """
            SELECT q.*, a.url AS url FROM processing_queue q
            LEFT JOIN articles a ON a.id = q.article_id
            WHERE q.id = ?
            """,
            (job_id,),
        ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        article_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[QueueJob]:
        """List jobs, oldest first, optionally filtered."""
        clauses = []
        params: list[Any] = []
        if article_id:
            clauses.append("q.article_id = ?")
            params.append(article_id)
        if status:
            clauses.append("q.status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = self.conn.execute(
            f"""
            SELECT q.*, a.url AS url FROM processing_queue q
            LEFT JOIN articles a ON a.id = q.article_id
            {where}
            ORDER BY q.created_at ASC, q.rowid ASC
            LIMIT ?
            """,
            params,
        )
        return [_row_to_job(row) for row in cursor.fetchall()]

    def claim_jobs(
        self,
        limit: int,
        max_retries: int,
        now: int | None = None,
    ) -> list[QueueJob]:
        """Atomically claim up to ``limit`` eligible pending jobs.

        Eligible means ``status='pending'``, ``attempts < max_retries`` and
        no backoff gate in the future. Jobs are taken oldest-created first
        and flipped to ``processing`` with ``started_at`` inside the same
        immediate transaction, so no two cycles can claim the same job.

        Args:
            limit: Maximum jobs to claim
            max_retries: Attempt ceiling
            now: Override current time (Unix epoch)

        Returns:
            Claimed jobs, oldest first (empty if nothing is eligible)

        Raises:
            sqlite3.Error: If the batch cannot be read or claimed; the
                transaction is rolled back and nothing is claimed.
        """
        ts = _now(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                SELECT id FROM processing_queue
                WHERE status = ? AND attempts < ?
                  AND (next_eligible_at IS NULL OR next_eligible_at <= ?)
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
                """,
                (JobStatus.PENDING.value, max_retries, ts, limit),
            )
            job_ids = [row["id"] for row in cursor.fetchall()]
            if not job_ids:
                return []

            placeholders = ",".join("?" * len(job_ids))
            conn.execute(
                f"""
                UPDATE processing_queue SET status = ?, started_at = ?
                WHERE id IN ({placeholders}) AND status = ?
                """,
                (JobStatus.PROCESSING.value, ts, *job_ids, JobStatus.PENDING.value),
            )
            cursor = conn.execute(
                f"""
                SELECT q.*, a.url AS url FROM processing_queue q
                LEFT JOIN articles a ON a.id = q.article_id
                WHERE q.id IN ({placeholders})
                ORDER BY q.created_at ASC, q.rowid ASC
                """,
                job_ids,
            )
            jobs = [_row_to_job(row) for row in cursor.fetchall()]

        logger.debug("Jobs claimed | count=%d ids=%s", len(jobs), ",".join(j.id[:8] for j in jobs))
        return jobs

    def reclaim_stale_jobs(self, older_than_seconds: int, now: int | None = None) -> int:
        """Return jobs stuck in ``processing`` to ``pending``.

        A job left in ``processing`` past the timeout belongs to a worker
        that died mid-flight. Reclaiming does not consume an attempt.

        Returns:
            Number of jobs reclaimed
        """
        cutoff = _now(now) - older_than_seconds
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_queue
                SET status = ?, last_error = 'reclaimed after stale processing lock'
                WHERE status = ? AND started_at IS NOT NULL AND started_at < ?
                """,
                (JobStatus.PENDING.value, JobStatus.PROCESSING.value, cutoff),
            )
        if cursor.rowcount:
            logger.warning("Stale jobs reclaimed | count=%d cutoff=%d", cursor.rowcount, cutoff)
        return cursor.rowcount

    def complete_job(
        self,
        job_id: str,
        follow_on: JobKind | None = None,
        now: int | None = None,
    ) -> bool:
        """Mark a processing job completed, optionally enqueueing the next stage.

        The follow-on job is inserted in the same transaction, so a completed
        extract job always has its analyze job.

        Returns:
            True if the job was completed by this call
        """
        ts = _now(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_queue SET status = ?, completed_at = ?, next_eligible_at = NULL
                WHERE id = ? AND status = ?
                """,
                (JobStatus.COMPLETED.value, ts, job_id, JobStatus.PROCESSING.value),
            )
            if cursor.rowcount != 1:
                return False
            if follow_on is not None:
                row = conn.execute(
                    "SELECT article_id FROM processing_queue WHERE id = ?", (job_id,)
                ).fetchone()
                self._insert_job(conn, _new_id(), row["article_id"], follow_on, ts)
        return True

    def record_job_failure(
        self,
        job_id: str,
        error: str,
        max_retries: int,
        retry_delay: float = 0.0,
        now: int | None = None,
    ) -> QueueJob | None:
        """Apply retry bookkeeping to a failed processing job.

        Increments ``attempts`` and records the error. Below the ceiling the
        job returns to ``pending`` (gated by ``retry_delay``); at the ceiling
        it becomes ``failed`` and its article is moved to ``failed`` with the
        error message, in the same transaction.

        Args:
            job_id: Job that failed
            error: Failure message
            max_retries: Attempt ceiling
            retry_delay: Seconds before a retried job becomes eligible
            now: Override current time (Unix epoch)

        Returns:
            The updated job, or None if it was not in ``processing``
        """
        ts = _now(now)
        error = _truncate_error(error)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT article_id, status, attempts FROM processing_queue WHERE id = ?",
                (job_id,),
            ).fetchone()
            if not row or row["status"] != JobStatus.PROCESSING.value:
                return None

            attempts = row["attempts"] + 1
            if attempts >= max_retries:
                conn.execute(
                    """
                    UPDATE processing_queue
                    SET status = ?, attempts = ?, last_error = ?, completed_at = ?, next_eligible_at = NULL
                    WHERE id = ?
                    """,
                    (JobStatus.FAILED.value, attempts, error, ts, job_id),
                )
                sources = ArticleStatus.sources_for(ArticleStatus.FAILED)
                placeholders = ",".join("?" * len(sources))
                conn.execute(
                    f"""
                    UPDATE articles SET status = ?, error_message = ?, updated_at = ?
                    WHERE id = ? AND status IN ({placeholders})
                    """,
                    (
                        ArticleStatus.FAILED.value,
                        error,
                        ts,
                        row["article_id"],
                        *[s.value for s in sources],
                    ),
                )
            else:
                next_eligible = ts + int(retry_delay) if retry_delay > 0 else None
                conn.execute(
                    """
                    UPDATE processing_queue
                    SET status = ?, attempts = ?, last_error = ?, next_eligible_at = ?
                    WHERE id = ?
                    """,
                    (JobStatus.PENDING.value, attempts, error, next_eligible, job_id),
                )
        return self.get_job(job_id)

    def queue_stats(self) -> dict[str, int]:
        """Job counts by status."""
        cursor = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM processing_queue GROUP BY status"
        )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({row["status"]: row["n"] for row in cursor.fetchall()})
        return counts

    def article_stats(self) -> dict[str, int]:
        """Article counts by status."""
        cursor = self.conn.execute("SELECT status, COUNT(*) AS n FROM articles GROUP BY status")
        counts = {status.value: 0 for status in ArticleStatus}
        counts.update({row["status"]: row["n"] for row in cursor.fetchall()})
        return counts

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    def upsert_digest(
        self,
        user_id: str,
        date: str,
        content: DigestContent,
        article_count: int,
        now: int | None = None,
    ) -> Digest:
        """Insert or fully replace the digest for (user, date).

        A regeneration keeps the row id and creation time and replaces
        every content field.
        """
        ts = _now(now)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO digests
                    (id, user_id, date, overall_summary, top_themes, articles, ai_insights,
                     article_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    overall_summary = excluded.overall_summary,
                    top_themes = excluded.top_themes,
                    articles = excluded.articles,
                    ai_insights = excluded.ai_insights,
                    article_count = excluded.article_count,
                    updated_at = excluded.updated_at
                """,
                (
                    _new_id(),
                    user_id,
                    date,
                    content.overall_summary,
                    _dumps(content.top_themes),
                    _dumps([a.model_dump() for a in content.articles]),
                    content.ai_insights,
                    article_count,
                    ts,
                    ts,
                ),
            )
        digest = self.get_digest(user_id, date)
        assert digest is not None
        return digest

    def get_digest(self, user_id: str, date: str) -> Digest | None:
        row = self.conn.execute(
            "SELECT * FROM digests WHERE user_id = ? AND date = ?", (user_id, date)
        ).fetchone()
        return _row_to_digest(row) if row else None

    def list_digests(self, user_id: str, limit: int = 30) -> list[Digest]:
        cursor = self.conn.execute(
            "SELECT * FROM digests WHERE user_id = ? ORDER BY date DESC LIMIT ?",
            (user_id, limit),
        )
        return [_row_to_digest(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # User settings
    # ------------------------------------------------------------------

    def get_user_settings(self, user_id: str) -> UserSettings | None:
        row = self.conn.execute(
            "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_settings(row) if row else None

    def list_user_settings(self) -> list[UserSettings]:
        cursor = self.conn.execute("SELECT * FROM user_settings ORDER BY user_id")
        return [_row_to_settings(row) for row in cursor.fetchall()]

    def upsert_user_settings(self, settings: UserSettings, now: int | None = None) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO user_settings (user_id, push_token, push_notifications, timezone, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    push_token = excluded.push_token,
                    push_notifications = excluded.push_notifications,
                    timezone = excluded.timezone,
                    updated_at = excluded.updated_at
                """,
                (
                    settings.user_id,
                    settings.push_token,
                    int(settings.push_notifications),
                    settings.timezone,
                    _now(now),
                ),
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _row_to_article(row: sqlite3.Row) -> Article:
    analysis = _loads(row["analysis"], None)
    return Article(
        id=row["id"],
        user_id=row["user_id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        content=row["content"],
        author=row["author"],
        site_name=row["site_name"],
        published_time=row["published_time"],
        image_url=row["image_url"],
        images=_loads(row["images"], []),
        comments=_loads(row["comments"], []),
        analysis=ArticleAnalysis.model_validate(analysis) if analysis else None,
        status=ArticleStatus(row["status"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_job(row: sqlite3.Row) -> QueueJob:
    return QueueJob(
        id=row["id"],
        article_id=row["article_id"],
        job_type=row["job_type"],
        status=JobStatus(row["status"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        url=row["url"] or "",
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        next_eligible_at=row["next_eligible_at"],
    )


def _row_to_digest(row: sqlite3.Row) -> Digest:
    return Digest(
        id=row["id"],
        user_id=row["user_id"],
        date=row["date"],
        overall_summary=row["overall_summary"],
        top_themes=_loads(row["top_themes"], []),
        articles=_loads(row["articles"], []),
        ai_insights=row["ai_insights"],
        article_count=row["article_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_settings(row: sqlite3.Row) -> UserSettings:
    return UserSettings(
        user_id=row["user_id"],
        push_token=row["push_token"],
        push_notifications=bool(row["push_notifications"]),
        timezone=row["timezone"],
    )
