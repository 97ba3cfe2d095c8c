"""
Raw dataset persistence.

Keeps the pre-chunking section texts of each (client_id, bot_type) so the
chunks can be rebuilt later without the client uploading again. Lives in the
same SQLite file as the chunks.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from tenantbot import config
from tenantbot.models.knowledge import DEFAULT_BOT_TYPE, RawDataset, utcnow
from tenantbot.rag.errors import StorageUnavailable

logger = logging.getLogger(__name__)

TABLE_NAME = "datasets"

_STATUS_COLUMNS = ("knowledge_status", "sections_present", "coverage_warnings", "knowledge_built_at")


class DatasetStore:
    """Upsert/read access to raw datasets, one row per (client_id, bot_type)."""

    def __init__(self, db_path: str = None, timeout: float = None):
        self.db_path = db_path or config.KNOWLEDGE_DB_PATH
        self.timeout = config.KNOWLEDGE_DB_TIMEOUT if timeout is None else timeout
        self.init_db()

    @contextmanager
    def get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            logger.error(f"[DATASET_STORE] Cannot open {self.db_path}: {e}")
            raise StorageUnavailable(f"Cannot open dataset store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"[DATASET_STORE] Query failed on {self.db_path}: {e}")
            raise StorageUnavailable(f"Dataset store operation failed: {e}") from e
        finally:
            conn.close()

    def init_db(self):
        with self.get_conn() as conn:
            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                client_id TEXT NOT NULL,
                bot_type TEXT NOT NULL DEFAULT '{DEFAULT_BOT_TYPE}',
                raw_sections TEXT NOT NULL DEFAULT '{{}}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                knowledge_status TEXT,
                sections_present TEXT,
                coverage_warnings TEXT,
                knowledge_built_at TEXT,
                PRIMARY KEY (client_id, bot_type)
            )
            """)

            # Files created before coverage tracking lack these columns
            cursor = conn.execute(f"PRAGMA table_info({TABLE_NAME})")
            columns = [row[1] for row in cursor.fetchall()]
            for column in _STATUS_COLUMNS:
                if column not in columns:
                    logger.info(f"[DATASET_STORE] Adding '{column}' column to {TABLE_NAME} table")
                    conn.execute(f"ALTER TABLE {TABLE_NAME} ADD COLUMN {column} TEXT")
            conn.commit()

    def save_dataset(self, client_id: str, bot_type: str, raw_sections: Dict[str, str]) -> RawDataset:
        """Insert or overwrite the raw sections of (client_id, bot_type).

        The first `created_at` is kept on overwrite.
        """
        bot_type = bot_type or DEFAULT_BOT_TYPE
        now = utcnow().isoformat()
        payload = json.dumps(dict(raw_sections or {}), ensure_ascii=False)
        with self.get_conn() as conn:
            conn.execute(f"""
                INSERT INTO {TABLE_NAME} (client_id, bot_type, raw_sections, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(client_id, bot_type) DO UPDATE SET
                    raw_sections = excluded.raw_sections,
                    updated_at = excluded.updated_at;
            """, (client_id, bot_type, payload, now, now))
            conn.commit()
        logger.info(f"[DATASET_STORE] Saved dataset for {client_id}/{bot_type} ({len(raw_sections or {})} sections)")
        return self.get_dataset(client_id, bot_type)

    def get_dataset(self, client_id: str, bot_type: str = DEFAULT_BOT_TYPE) -> Optional[RawDataset]:
        """Retrieves the stored dataset, or None if nothing was saved."""
        with self.get_conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE client_id = ? AND bot_type = ?",
                (client_id, bot_type or DEFAULT_BOT_TYPE),
            ).fetchone()
        if not row:
            return None
        return RawDataset(
            client_id=row["client_id"],
            bot_type=row["bot_type"],
            raw_sections=json.loads(row["raw_sections"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def list_bot_types(self, client_id: str) -> List[str]:
        with self.get_conn() as conn:
            rows = conn.execute(
                f"SELECT bot_type FROM {TABLE_NAME} WHERE client_id = ? ORDER BY bot_type",
                (client_id,),
            ).fetchall()
        return [r["bot_type"] for r in rows]

    def save_status(self, client_id: str, bot_type: str, report: Dict[str, Any]) -> bool:
        """Record the coverage report of the last build on the dataset row.

        Returns:
            False if no dataset is stored for (client_id, bot_type).
        """
        bot_type = bot_type or DEFAULT_BOT_TYPE
        with self.get_conn() as conn:
            cursor = conn.execute(f"""
                UPDATE {TABLE_NAME} SET
                    knowledge_status = ?,
                    sections_present = ?,
                    coverage_warnings = ?,
                    knowledge_built_at = ?
                WHERE client_id = ? AND bot_type = ?
            """, (
                report.get("knowledge_status"),
                json.dumps(list(report.get("sections_present") or [])),
                json.dumps(list(report.get("coverage_warnings") or []), ensure_ascii=False),
                utcnow().isoformat(),
                client_id,
                bot_type,
            ))
            conn.commit()
        return cursor.rowcount > 0

    def get_status(self, client_id: str, bot_type: str = DEFAULT_BOT_TYPE) -> Optional[Dict[str, Any]]:
        """Last recorded coverage report, or None if nothing was built yet."""
        with self.get_conn() as conn:
            row = conn.execute(
                f"SELECT knowledge_status, sections_present, coverage_warnings, knowledge_built_at "
                f"FROM {TABLE_NAME} WHERE client_id = ? AND bot_type = ?",
                (client_id, bot_type or DEFAULT_BOT_TYPE),
            ).fetchone()
        if not row or not row["knowledge_built_at"]:
            return None
        return {
            "knowledge_status": row["knowledge_status"],
            "sections_present": json.loads(row["sections_present"] or "[]"),
            "coverage_warnings": json.loads(row["coverage_warnings"] or "[]"),
            "knowledge_built_at": datetime.fromisoformat(row["knowledge_built_at"]),
        }
