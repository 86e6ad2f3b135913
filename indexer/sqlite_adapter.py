"""SQLite database adapter for citecrawl.

Stores crawl sessions, navigation steps, pages, chunks with their embeddings,
and an admin log. The corpus (pages and chunks) is replaced in a single
transaction so readers never observe a half-written index.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from pipelines.chunker import TextChunk
from pipelines.models import CrawlSession, CrawlStatus, NavigationStep, Page, utcnow

from .embeddings import deserialize_embedding, serialize_embedding
from .vector_search import IndexedChunk

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS crawl_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL,
    pages_scraped INTEGER NOT NULL DEFAULT 0,
    error TEXT
);

CREATE TABLE IF NOT EXISTS navigation_steps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    crawl_session_id INTEGER NOT NULL REFERENCES crawl_sessions(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    depth INTEGER NOT NULL,
    parent_url TEXT,
    link_text TEXT,
    visited_at TEXT NOT NULL,
    scraped INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS pages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    headings TEXT,
    crawled_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    page_id INTEGER NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    text TEXT NOT NULL,
    embedding BLOB,
    category TEXT NOT NULL,
    source_url TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS admin_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_crawl_sessions_started_at ON crawl_sessions(started_at);
CREATE INDEX IF NOT EXISTS idx_navigation_steps_session ON navigation_steps(crawl_session_id);
CREATE INDEX IF NOT EXISTS idx_navigation_steps_depth ON navigation_steps(depth);
CREATE INDEX IF NOT EXISTS idx_chunks_page_id ON chunks(page_id);
CREATE INDEX IF NOT EXISTS idx_chunks_category ON chunks(category);
CREATE INDEX IF NOT EXISTS idx_admin_logs_action ON admin_logs(action, created_at);
"""

CorpusEntry = Tuple[Page, Sequence[Tuple[TextChunk, Optional[np.ndarray]]]]


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteAdapter:
    """SQLite store for sessions, navigation history and the indexed corpus."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open the connection and ensure the schema exists."""
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(SCHEMA)
        self.conn.commit()
        logger.info(f"SQLite adapter initialized: {self.db_path}")

    async def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("SQLite adapter not initialized. Call initialize() first.")
        return self.conn

    # Crawl sessions

    async def create_session(self, session: CrawlSession) -> int:
        conn = self._require_conn()
        with conn:
            cursor = conn.execute(
                "INSERT INTO crawl_sessions (started_at, completed_at, status, pages_scraped, error) "
                "VALUES (?, ?, ?, ?, ?)",
                (session.started_at.isoformat(),
                 session.completed_at.isoformat() if session.completed_at else None,
                 session.status.value, session.pages_scraped, session.error)
            )
        session.id = cursor.lastrowid
        return session.id

    async def update_session(self, session: CrawlSession):
        conn = self._require_conn()
        with conn:
            conn.execute(
                "UPDATE crawl_sessions SET completed_at = ?, status = ?, pages_scraped = ?, error = ? "
                "WHERE id = ?",
                (session.completed_at.isoformat() if session.completed_at else None,
                 session.status.value, session.pages_scraped, session.error, session.id)
            )

    async def get_session(self, session_id: int) -> Optional[CrawlSession]:
        row = self._require_conn().execute(
            "SELECT * FROM crawl_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._session_from_row(row) if row else None

    async def list_sessions(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent sessions first, with their navigation step counts."""
        rows = self._require_conn().execute(
            """
            SELECT s.*, COUNT(n.id) AS navigation_steps_count
            FROM crawl_sessions s
            LEFT JOIN navigation_steps n ON n.crawl_session_id = s.id
            GROUP BY s.id
            ORDER BY s.started_at DESC, s.id DESC
            LIMIT ?
            """,
            (limit,)
        ).fetchall()

        sessions = []
        for row in rows:
            data = self._session_from_row(row).to_dict()
            data['navigation_steps_count'] = row['navigation_steps_count']
            sessions.append(data)
        return sessions

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> CrawlSession:
        return CrawlSession(
            id=row['id'],
            started_at=_parse_time(row['started_at']),
            completed_at=_parse_time(row['completed_at']),
            status=CrawlStatus(row['status']),
            pages_scraped=row['pages_scraped'],
            error=row['error'],
        )

    # Navigation steps

    async def save_navigation_steps(self, session_id: int, steps: Sequence[NavigationStep]) -> int:
        conn = self._require_conn()
        with conn:
            conn.executemany(
                "INSERT INTO navigation_steps "
                "(crawl_session_id, url, depth, parent_url, link_text, visited_at, scraped) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [(session_id, s.url, s.depth, s.parent_url, s.link_text,
                  s.visited_at.isoformat(), int(s.scraped)) for s in steps]
            )
        return len(steps)

    async def get_navigation_steps(self, session_id: int) -> List[NavigationStep]:
        rows = self._require_conn().execute(
            "SELECT * FROM navigation_steps WHERE crawl_session_id = ? ORDER BY visited_at, id",
            (session_id,)
        ).fetchall()
        return [
            NavigationStep(
                url=row['url'],
                depth=row['depth'],
                parent_url=row['parent_url'],
                link_text=row['link_text'],
                visited_at=_parse_time(row['visited_at']),
                scraped=bool(row['scraped']),
            )
            for row in rows
        ]

    # Corpus

    async def replace_corpus(self, corpus: Sequence[CorpusEntry]) -> int:
        """Delete every page and chunk and write ``corpus`` in one transaction.

        Returns:
            Number of chunks written
        """
        conn = self._require_conn()
        now = utcnow().isoformat()
        chunk_count = 0

        try:
            with conn:
                deleted_chunks = conn.execute("DELETE FROM chunks").rowcount
                deleted_pages = conn.execute("DELETE FROM pages").rowcount
                logger.info(f"Deleting {deleted_chunks} chunks and {deleted_pages} pages")

                for page, chunks in corpus:
                    cursor = conn.execute(
                        "INSERT INTO pages (url, title, content, headings, crawled_at) VALUES (?, ?, ?, ?, ?)",
                        (page.url, page.title, page.content, json.dumps(list(page.headings)), now)
                    )
                    page_id = cursor.lastrowid

                    conn.executemany(
                        "INSERT INTO chunks (page_id, chunk_index, text, embedding, category, source_url, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        [(page_id, chunk.index, chunk.text,
                          serialize_embedding(embedding) if embedding is not None else None,
                          chunk.category, chunk.source_url, now)
                         for chunk, embedding in chunks]
                    )
                    chunk_count += len(chunks)
        except sqlite3.Error as e:
            logger.error(f"Corpus replacement rolled back: {e}")
            raise

        return chunk_count

    async def load_chunks(self) -> List[IndexedChunk]:
        rows = self._require_conn().execute(
            """
            SELECT c.id, c.page_id, c.text, c.embedding, c.category, c.source_url, p.title
            FROM chunks c
            JOIN pages p ON p.id = c.page_id
            ORDER BY c.id
            """
        ).fetchall()
        return [
            IndexedChunk(
                chunk_id=row['id'],
                page_id=row['page_id'],
                text=row['text'],
                category=row['category'],
                source_url=row['source_url'],
                page_title=row['title'],
                embedding=deserialize_embedding(row['embedding']),
            )
            for row in rows
        ]

    async def count_pages(self) -> int:
        return self._require_conn().execute("SELECT COUNT(*) FROM pages").fetchone()[0]

    async def count_chunks(self, with_embedding: bool = False) -> int:
        query = "SELECT COUNT(*) FROM chunks"
        if with_embedding:
            query += " WHERE embedding IS NOT NULL"
        return self._require_conn().execute(query).fetchone()[0]

    async def category_counts(self) -> List[Dict[str, Any]]:
        rows = self._require_conn().execute(
            "SELECT category, COUNT(*) AS count FROM chunks GROUP BY category ORDER BY count DESC, category"
        ).fetchall()
        return [{'category': row['category'], 'count': row['count']} for row in rows]

    # Admin log

    async def log_action(self, action: str, status: str, message: Optional[str] = None,
                         metadata: Optional[Dict[str, Any]] = None):
        conn = self._require_conn()
        with conn:
            conn.execute(
                "INSERT INTO admin_logs (action, status, message, metadata, created_at) VALUES (?, ?, ?, ?, ?)",
                (action, status, message, json.dumps(metadata, default=str) if metadata else None,
                 utcnow().isoformat())
            )

    async def last_action(self, action: str) -> Optional[Dict[str, Any]]:
        row = self._require_conn().execute(
            "SELECT * FROM admin_logs WHERE action = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (action,)
        ).fetchone()
        if not row:
            return None
        return {
            'action': row['action'],
            'status': row['status'],
            'message': row['message'],
            'metadata': json.loads(row['metadata']) if row['metadata'] else None,
            'created_at': _parse_time(row['created_at']),
        }
