"""
SQLite knowledge store for tenant chunks.

Holds every chunk keyed by (client_id, bot_type, section) with two access paths:
    - exact filter, backed by a compound (client_id, bot_type, section) index
    - lexical relevance search, backed by an FTS5 index over the chunk text
      ranked with BM25

Replacing a tenant's chunks is one transaction stamped with a new generation,
so readers never see the old and new sets mixed and concurrent replaces for
the same tenant serialize with the newest generation winning.
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from tenantbot import config
from tenantbot.models.knowledge import DEFAULT_BOT_TYPE, KnowledgeChunk, section_name, utcnow
from tenantbot.rag.errors import StorageUnavailable

logger = logging.getLogger(__name__)

TABLE_NAME = "knowledge_chunks"
FTS_TABLE_NAME = "knowledge_chunks_fts"
GENERATIONS_TABLE_NAME = "knowledge_generations"

DEFAULT_SEARCH_LIMIT = 50

# Letters and digits only, matching how the unicode61 tokenizer splits text
_TERM_RE = re.compile(r"[^\W_]+", re.UNICODE)

_SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        client_id TEXT NOT NULL,
        bot_type TEXT NOT NULL DEFAULT '{DEFAULT_BOT_TYPE}',
        section TEXT NOT NULL,
        text TEXT NOT NULL,
        created_at TEXT NOT NULL,
        generation INTEGER NOT NULL DEFAULT 0
    )
    """,
    # Last generation written per tenant, survives the tenant being emptied
    f"""
    CREATE TABLE IF NOT EXISTS {GENERATIONS_TABLE_NAME} (
        client_id TEXT NOT NULL,
        bot_type TEXT NOT NULL,
        generation INTEGER NOT NULL,
        PRIMARY KEY (client_id, bot_type)
    )
    """,
    # Fast filtering by client + bot + section
    f"""
    CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_tenant_section
    ON {TABLE_NAME}(client_id, bot_type, section)
    """,
    # Text search on chunk content; text is the only scored column
    f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE_NAME} USING fts5(
        text,
        content='{TABLE_NAME}',
        content_rowid='id',
        tokenize='porter unicode61'
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {TABLE_NAME}_ai AFTER INSERT ON {TABLE_NAME} BEGIN
        INSERT INTO {FTS_TABLE_NAME}(rowid, text) VALUES (new.id, new.text);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {TABLE_NAME}_ad AFTER DELETE ON {TABLE_NAME} BEGIN
        INSERT INTO {FTS_TABLE_NAME}({FTS_TABLE_NAME}, rowid, text) VALUES ('delete', old.id, old.text);
    END
    """,
]

ChunkInput = Union[KnowledgeChunk, Tuple[str, str]]


def build_match_query(query_text: str) -> str:
    """Turn free text into an FTS5 MATCH expression matching any of its terms.

    Each term is quoted so user input can never be parsed as FTS5 syntax.
    Returns an empty string when the text has no searchable terms.
    """
    terms = []
    for term in _TERM_RE.findall(str(query_text or "").lower()):
        if term not in terms:
            terms.append(term)
    return " OR ".join(f'"{t}"' for t in terms)


def _row_to_chunk(row: sqlite3.Row) -> KnowledgeChunk:
    keys = row.keys()
    return KnowledgeChunk(
        id=row["id"],
        client_id=row["client_id"],
        bot_type=row["bot_type"],
        section=row["section"],
        text=row["text"],
        created_at=datetime.fromisoformat(row["created_at"]),
        generation=row["generation"],
        score=row["score"] if "score" in keys else None,
    )


def _to_pair(chunk: ChunkInput) -> Tuple[str, str]:
    if isinstance(chunk, KnowledgeChunk):
        return section_name(chunk.section), chunk.text
    section, text = chunk
    return section_name(section), text


class KnowledgeStore:
    """Chunk storage for all tenants in one SQLite file.

    Each call opens its own short-lived connection, so one store instance can
    be shared across request handlers and threads.
    """

    def __init__(self, db_path: str = None, timeout: float = None, create: bool = True):
        self.db_path = db_path or config.KNOWLEDGE_DB_PATH
        self.timeout = config.KNOWLEDGE_DB_TIMEOUT if timeout is None else timeout
        if create:
            self.ensure_indexes()

    @contextmanager
    def get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as e:
            logger.error(f"[KNOWLEDGE_STORE] Cannot open {self.db_path}: {e}")
            raise StorageUnavailable(f"Cannot open knowledge store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"[KNOWLEDGE_STORE] Query failed on {self.db_path}: {e}")
            raise StorageUnavailable(f"Knowledge store operation failed: {e}") from e
        finally:
            conn.close()

    def ensure_indexes(self) -> None:
        """Create the chunk table, compound index and text index. Safe to re-run."""
        with self.get_conn() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        logger.info(f"[KNOWLEDGE_STORE] Indexes ensured on {self.db_path}")

    def replace_chunks(
        self,
        client_id: str,
        bot_type: str,
        chunks: Iterable[ChunkInput],
    ) -> int:
        """Replace every chunk of (client_id, bot_type) with a new set.

        New rows are inserted under the next generation and older generations
        are deleted, all inside one IMMEDIATE transaction. A crash rolls back
        to the previous set. An empty `chunks` empties the tenant.

        Args:
            client_id: Tenant key.
            bot_type: Bot variant.
            chunks: KnowledgeChunk objects or (section, text) pairs.

        Returns:
            Number of chunks inserted.
        """
        inserted, _ = self.replace_chunks_versioned(client_id, bot_type, chunks)
        return inserted

    def replace_chunks_versioned(
        self,
        client_id: str,
        bot_type: str,
        chunks: Iterable[ChunkInput],
    ) -> Tuple[int, int]:
        """Same as replace_chunks, but also returns the generation this call wrote.

        Returns:
            (chunks inserted, generation)
        """
        bot_type = bot_type or DEFAULT_BOT_TYPE
        pairs = [_to_pair(c) for c in chunks]
        pairs = [(s, t) for s, t in pairs if t and t.strip()]
        created_at = utcnow().isoformat()

        with self.get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                generation = self._read_generation(conn, client_id, bot_type) + 1
                conn.execute(
                    f"INSERT INTO {GENERATIONS_TABLE_NAME} (client_id, bot_type, generation) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT(client_id, bot_type) DO UPDATE SET generation = excluded.generation",
                    (client_id, bot_type, generation),
                )

                conn.executemany(
                    f"INSERT INTO {TABLE_NAME} "
                    "(client_id, bot_type, section, text, created_at, generation) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    [(client_id, bot_type, s, t, created_at, generation) for s, t in pairs],
                )
                deleted = conn.execute(
                    f"DELETE FROM {TABLE_NAME} "
                    "WHERE client_id = ? AND bot_type = ? AND generation < ?",
                    (client_id, bot_type, generation),
                ).rowcount
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

        logger.info(
            f"[KNOWLEDGE_STORE] Replaced chunks for {client_id}/{bot_type}: "
            f"{deleted} removed, {len(pairs)} inserted (generation {generation})"
        )
        return len(pairs), generation

    def search(
        self,
        client_id: str,
        bot_type: str,
        query_text: str,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[KnowledgeChunk]:
        """Rank the tenant's chunks by BM25 relevance to the query.

        Returns:
            Up to `limit` chunks, best first, each with `score` set
            (higher is better). Empty when the query has no searchable terms.
        """
        match = build_match_query(query_text)
        if not match:
            return []

        with self.get_conn() as conn:
            rows = conn.execute(
                f"""
                SELECT c.*, m.score AS score
                FROM (
                    SELECT rowid, -bm25({FTS_TABLE_NAME}) AS score
                    FROM {FTS_TABLE_NAME}
                    WHERE {FTS_TABLE_NAME} MATCH ?
                ) m
                JOIN {TABLE_NAME} c ON c.id = m.rowid
                WHERE c.client_id = ? AND c.bot_type = ?
                ORDER BY m.score DESC, c.id ASC
                LIMIT ?
                """,
                (match, client_id, bot_type or DEFAULT_BOT_TYPE, limit),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def list_recent(self, client_id: str, bot_type: str, limit: int) -> List[KnowledgeChunk]:
        """Most recently created chunks of the tenant, newest first."""
        with self.get_conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE client_id = ? AND bot_type = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (client_id, bot_type or DEFAULT_BOT_TYPE, limit),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def list_chunks(
        self,
        client_id: str,
        bot_type: str,
        section: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[KnowledgeChunk]:
        """Chunks of the tenant in insertion order, optionally for one section."""
        sql = f"SELECT * FROM {TABLE_NAME} WHERE client_id = ? AND bot_type = ?"
        params: List[Any] = [client_id, bot_type or DEFAULT_BOT_TYPE]
        if section is not None:
            sql += " AND section = ?"
            params.append(section_name(section))
        sql += " ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self.get_conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, client_id: str, bot_type: Optional[str] = None) -> int:
        """Count chunks of a tenant; all bot variants when bot_type is None."""
        sql = f"SELECT COUNT(*) FROM {TABLE_NAME} WHERE client_id = ?"
        params: List[Any] = [client_id]
        if bot_type is not None:
            sql += " AND bot_type = ?"
            params.append(bot_type)
        with self.get_conn() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def delete_chunks(self, client_id: str, bot_type: Optional[str] = None) -> int:
        """Delete chunks of a tenant; all bot variants when bot_type is None."""
        sql = f"DELETE FROM {TABLE_NAME} WHERE client_id = ?"
        params: List[Any] = [client_id]
        if bot_type is not None:
            sql += " AND bot_type = ?"
            params.append(bot_type)
        with self.get_conn() as conn:
            deleted = conn.execute(sql, params).rowcount
        logger.info(f"[KNOWLEDGE_STORE] Deleted {deleted} chunks for {client_id}/{bot_type or '*'}")
        return deleted

    @staticmethod
    def _read_generation(conn, client_id: str, bot_type: str) -> int:
        row = conn.execute(
            f"SELECT generation FROM {GENERATIONS_TABLE_NAME} WHERE client_id = ? AND bot_type = ?",
            (client_id, bot_type),
        ).fetchone()
        return row[0] if row else 0

    def current_generation(self, client_id: str, bot_type: str) -> int:
        """Generation of the tenant's latest replace (0 if never written)."""
        with self.get_conn() as conn:
            return self._read_generation(conn, client_id, bot_type or DEFAULT_BOT_TYPE)

    def get_store_info(self) -> Dict[str, Any]:
        """Row counts for the whole store, grouped by tenant and bot variant."""
        with self.get_conn() as conn:
            rows = conn.execute(
                f"SELECT client_id, bot_type, COUNT(*) AS n, MAX(generation) AS generation "
                f"FROM {TABLE_NAME} GROUP BY client_id, bot_type ORDER BY client_id, bot_type"
            ).fetchall()
        tenants = [
            {"client_id": r["client_id"], "bot_type": r["bot_type"],
             "count": r["n"], "generation": r["generation"]}
            for r in rows
        ]
        return {
            "path": self.db_path,
            "count": sum(t["count"] for t in tenants),
            "tenants": tenants,
        }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    info = KnowledgeStore().get_store_info()
    print(f"Store: {info['path']}")
    print(f"Chunks stored: {info['count']}")
    for t in info["tenants"]:
        print(f"  {t['client_id']}/{t['bot_type']}: {t['count']} chunks (generation {t['generation']})")
