"""SQLite row store for sources, the moderation queue, published articles and the ledger."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import DEFAULT_SETTINGS
from .errors import DomainError, NotFoundError, PersistenceError
from .models import Draft, GeneratedArticle, LedgerEntry, Provenance, PublishedArticle, Source
from .utils import utc_now_iso


log = logging.getLogger(__name__)

CONTENT_COLUMNS = (
    "title",
    "slug",
    "excerpt",
    "content",
    "category",
    "seo_title",
    "seo_description",
    "seo_keywords",
)
PROVENANCE_COLUMNS = ("source_kind", "source_ref", "source_title", "source_url")


class SQLiteStore:
    """Row-oriented store backed by SQLite.

    The connection runs in autocommit mode; multi-statement operations that must be
    indivisible go through ``transaction()``, which issues ``BEGIN IMMEDIATE``.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('feed', 'theme', 'topic')),
        url TEXT,
        topic_prompt TEXT,
        schedule_day TEXT,
        schedule_theme TEXT,
        category TEXT DEFAULT 'AI',
        active BOOLEAN DEFAULT 1,
        last_fetched_at TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS article_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        slug TEXT NOT NULL,
        excerpt TEXT,
        content TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'AI',
        seo_title TEXT,
        seo_description TEXT,
        seo_keywords TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
        source_kind TEXT NOT NULL,
        source_ref TEXT,
        source_title TEXT,
        source_url TEXT,
        rejection_note TEXT,
        generated_at TEXT NOT NULL,
        reviewed_at TEXT
    );

    CREATE TABLE IF NOT EXISTS articles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        excerpt TEXT,
        content TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'AI',
        seo_title TEXT,
        seo_description TEXT,
        seo_keywords TEXT,
        source_kind TEXT,
        source_ref TEXT,
        source_title TEXT,
        source_url TEXT,
        published_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS generation_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER,
        source_kind TEXT NOT NULL,
        source_ref TEXT,
        draft_id INTEGER,
        outcome TEXT NOT NULL CHECK (outcome IN ('success', 'failed', 'skipped')),
        error_message TEXT,
        tokens_used INTEGER,
        cost_estimate REAL,
        generated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_queue_status ON article_queue(status);
    CREATE INDEX IF NOT EXISTS idx_queue_source ON article_queue(source_kind, source_url);
    CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_kind, source_url);
    CREATE INDEX IF NOT EXISTS idx_log_generated_at ON generation_log(generated_at);
    CREATE INDEX IF NOT EXISTS idx_sources_active ON sources(active);
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self.conn.executescript(self.SCHEMA)
            now = utc_now_iso()
            for key, value in DEFAULT_SETTINGS.items():
                self.conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, json.dumps(value), now),
                )

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one indivisible unit."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self.conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise PersistenceError(f"row store write failed: {exc}") from exc

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # Sources

    def add_source(self, source: Source) -> int:
        cursor = self._write(
            """
            INSERT INTO sources (name, kind, url, topic_prompt, schedule_day, schedule_theme,
                                 category, active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.name,
                source.kind,
                source.url,
                source.topic_prompt,
                source.schedule_day,
                source.schedule_theme,
                source.category,
                int(source.active),
                utc_now_iso(),
            ),
        )
        source.id = cursor.lastrowid
        return source.id

    def list_sources(self, active_only: bool = False) -> list[Source]:
        sql = "SELECT * FROM sources"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY id"
        return [_row_to_source(row) for row in self._read(sql)]

    def get_source(self, source_id: int) -> Source | None:
        rows = self._read("SELECT * FROM sources WHERE id = ?", (source_id,))
        return _row_to_source(rows[0]) if rows else None

    def set_source_active(self, source_id: int, active: bool) -> int:
        return self._write("UPDATE sources SET active = ? WHERE id = ?", (int(active), source_id)).rowcount

    def stamp_source_fetched(self, source_id: int) -> None:
        self._write("UPDATE sources SET last_fetched_at = ? WHERE id = ?", (utc_now_iso(), source_id))

    def delete_source(self, source_id: int) -> int:
        return self._write("DELETE FROM sources WHERE id = ?", (source_id,)).rowcount

    # Settings

    def get_settings(self) -> dict:
        settings = {}
        for row in self._read("SELECT key, value FROM settings"):
            try:
                settings[row["key"]] = json.loads(row["value"])
            except ValueError:
                log.warning("Setting %s holds invalid JSON, ignoring.", row["key"])
        return settings

    def set_setting(self, key: str, value) -> None:
        self._write(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), utc_now_iso()),
        )

    # Drafts

    def insert_draft(self, article: GeneratedArticle, provenance: Provenance) -> int:
        fields = article.content_fields()
        fields["seo_keywords"] = json.dumps(fields["seo_keywords"])
        return self._insert_queue_row(fields, provenance)

    def _insert_queue_row(self, fields: dict, provenance: Provenance) -> int:
        cursor = self._write(
            """
            INSERT INTO article_queue (title, slug, excerpt, content, category, seo_title,
                                       seo_description, seo_keywords, status, source_kind,
                                       source_ref, source_title, source_url, generated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?)
            """,
            tuple(fields[column] for column in CONTENT_COLUMNS)
            + (provenance.kind, provenance.ref, provenance.title, provenance.url, utc_now_iso()),
        )
        return cursor.lastrowid

    def get_draft(self, draft_id: int) -> Draft | None:
        rows = self._read("SELECT * FROM article_queue WHERE id = ?", (draft_id,))
        return _row_to_draft(rows[0]) if rows else None

    def list_drafts(self, status: str | None = None) -> list[Draft]:
        if status:
            rows = self._read(
                "SELECT * FROM article_queue WHERE status = ? ORDER BY generated_at DESC, id DESC",
                (status,),
            )
        else:
            rows = self._read("SELECT * FROM article_queue ORDER BY generated_at DESC, id DESC")
        return [_row_to_draft(row) for row in rows]

    def update_pending_draft(self, draft_id: int, fields: dict) -> int:
        if not fields:
            return 0
        values = dict(fields)
        if "seo_keywords" in values:
            values["seo_keywords"] = json.dumps(values["seo_keywords"])
        assignments = ", ".join(f"{column} = ?" for column in values)
        cursor = self._write(
            f"UPDATE article_queue SET {assignments} WHERE id = ? AND status = 'pending'",
            tuple(values.values()) + (draft_id,),
        )
        return cursor.rowcount

    def delete_draft(self, draft_id: int) -> int:
        return self._write("DELETE FROM article_queue WHERE id = ?", (draft_id,)).rowcount

    # Published articles

    def get_published(self, article_id: int) -> PublishedArticle | None:
        rows = self._read("SELECT * FROM articles WHERE id = ?", (article_id,))
        return _row_to_published(rows[0]) if rows else None

    def get_published_by_slug(self, slug: str) -> PublishedArticle | None:
        rows = self._read("SELECT * FROM articles WHERE slug = ?", (slug,))
        return _row_to_published(rows[0]) if rows else None

    def list_published(self) -> list[PublishedArticle]:
        rows = self._read("SELECT * FROM articles ORDER BY published_at DESC, id DESC")
        return [_row_to_published(row) for row in rows]

    def insert_published(self, article: GeneratedArticle, provenance: Provenance) -> int:
        fields = article.content_fields()
        fields["seo_keywords"] = json.dumps(fields["seo_keywords"])
        try:
            with self.transaction() as conn:
                cursor = self._insert_article_row(conn, fields, provenance, utc_now_iso())
        except sqlite3.IntegrityError as exc:
            raise DomainError(f"an article with slug {article.slug!r} is already published") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"row store write failed: {exc}") from exc
        return cursor.lastrowid

    def delete_published(self, article_id: int) -> int:
        return self._write("DELETE FROM articles WHERE id = ?", (article_id,)).rowcount

    def _insert_article_row(
        self, conn: sqlite3.Connection, fields: dict, provenance: Provenance, published_at: str
    ) -> sqlite3.Cursor:
        return conn.execute(
            """
            INSERT INTO articles (title, slug, excerpt, content, category, seo_title,
                                  seo_description, seo_keywords, source_kind, source_ref,
                                  source_title, source_url, published_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            tuple(fields[column] for column in CONTENT_COLUMNS)
            + (provenance.kind, provenance.ref, provenance.title, provenance.url, published_at),
        )

    def _mark_draft_approved(self, conn: sqlite3.Connection, draft_id: int, reviewed_at: str) -> None:
        conn.execute(
            "UPDATE article_queue SET status = 'approved', reviewed_at = ? WHERE id = ?",
            (reviewed_at, draft_id),
        )

    def approve_draft(self, draft_id: int) -> int:
        """Promote a pending draft to a published article in one transaction."""
        try:
            with self.transaction() as conn:
                rows = conn.execute("SELECT * FROM article_queue WHERE id = ?", (draft_id,)).fetchall()
                if not rows:
                    raise NotFoundError(f"draft {draft_id} not found in queue")
                row = rows[0]
                if row["status"] != "pending":
                    raise DomainError(f"draft {draft_id} is not pending approval (status={row['status']})")
                now = utc_now_iso()
                fields = {column: row[column] for column in CONTENT_COLUMNS}
                provenance = Provenance(
                    kind=row["source_kind"],
                    ref=row["source_ref"],
                    title=row["source_title"],
                    url=row["source_url"],
                )
                cursor = self._insert_article_row(conn, fields, provenance, now)
                self._mark_draft_approved(conn, draft_id, now)
        except sqlite3.IntegrityError as exc:
            raise DomainError(f"draft {draft_id} slug is already published") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"approval of draft {draft_id} failed: {exc}") from exc
        return cursor.lastrowid

    def reject_draft(self, draft_id: int, note: str | None = None) -> None:
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE article_queue SET status = 'rejected', reviewed_at = ?, rejection_note = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (utc_now_iso(), note, draft_id),
                )
                if cursor.rowcount == 0:
                    exists = conn.execute("SELECT 1 FROM article_queue WHERE id = ?", (draft_id,)).fetchone()
                    if exists is None:
                        raise NotFoundError(f"draft {draft_id} not found in queue")
                    raise DomainError(f"draft {draft_id} is not pending approval")
        except sqlite3.Error as exc:
            raise PersistenceError(f"rejection of draft {draft_id} failed: {exc}") from exc

    def feed_origin_links(self) -> set[str]:
        """Origin links already used by feed drafts (any status) or feed-sourced published articles."""
        rows = self._read(
            """
            SELECT source_url FROM article_queue WHERE source_kind = 'feed' AND source_url IS NOT NULL
            UNION
            SELECT source_url FROM articles WHERE source_kind = 'feed' AND source_url IS NOT NULL
            """
        )
        return {row["source_url"] for row in rows}

    # Generation ledger

    def insert_ledger_entry(
        self,
        source_id: int | None,
        source_kind: str,
        outcome: str,
        source_ref: str | None = None,
        draft_id: int | None = None,
        error_message: str | None = None,
        tokens_used: int | None = None,
        cost_estimate: float | None = None,
    ) -> int:
        cursor = self._write(
            """
            INSERT INTO generation_log (source_id, source_kind, source_ref, draft_id, outcome,
                                        error_message, tokens_used, cost_estimate, generated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source_id,
                source_kind,
                source_ref,
                draft_id,
                outcome,
                error_message,
                tokens_used,
                cost_estimate,
                utc_now_iso(),
            ),
        )
        return cursor.lastrowid

    def list_ledger(self, limit: int = 50, source_id: int | None = None) -> list[LedgerEntry]:
        if source_id is None:
            rows = self._read(
                "SELECT * FROM generation_log ORDER BY generated_at DESC, id DESC LIMIT ?", (limit,)
            )
        else:
            rows = self._read(
                "SELECT * FROM generation_log WHERE source_id = ? ORDER BY generated_at DESC, id DESC LIMIT ?",
                (source_id, limit),
            )
        return [LedgerEntry(**dict(row)) for row in rows]

    def count_outcomes_since(self, outcome: str, since: str, kinds: tuple[str, ...]) -> int:
        """Ledger rows with ``outcome`` for the given source kinds written at or after ``since``."""
        placeholders = ", ".join("?" for _ in kinds)
        rows = self._read(
            f"""
            SELECT COUNT(*) AS total FROM generation_log
            WHERE outcome = ? AND generated_at >= ? AND source_kind IN ({placeholders})
            """,
            (outcome, since) + tuple(kinds),
        )
        return rows[0]["total"]


def _keywords(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        kind=row["kind"],
        url=row["url"],
        schedule_day=row["schedule_day"],
        schedule_theme=row["schedule_theme"],
        topic_prompt=row["topic_prompt"],
        category=row["category"] or "AI",
        active=bool(row["active"]),
        last_fetched_at=row["last_fetched_at"],
    )


def _row_to_draft(row: sqlite3.Row) -> Draft:
    data = dict(row)
    data["seo_keywords"] = _keywords(data["seo_keywords"])
    return Draft(**data)


def _row_to_published(row: sqlite3.Row) -> PublishedArticle:
    data = dict(row)
    data["seo_keywords"] = _keywords(data["seo_keywords"])
    return PublishedArticle(**data)
