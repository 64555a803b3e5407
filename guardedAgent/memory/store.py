"""Simple SQLite-based document storage for persisted knowledge."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)


class DocumentStore:
    """Named JSON documents in one SQLite table.

    Use ":memory:" as db_path for a store that lives only as long as the object.
    """

    def __init__(self, db_path: str = "data/knowledge.db"):
        if db_path != ":memory:":
            db_dir = os.path.dirname(db_path)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        # An in-memory database disappears with its connection, so keep one open
        self._memory_conn = sqlite3.connect(":memory:") if db_path == ":memory:" else None
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        if self._memory_conn is not None:
            return self._memory_conn
        return sqlite3.connect(self.db_path)

    def _close(self, conn: sqlite3.Connection) -> None:
        if conn is not self._memory_conn:
            conn.close()

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    name TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            self._close(conn)

    def save(self, name: str, document: Dict[str, Any]) -> None:
        payload = json.dumps(document, ensure_ascii=False, default=str)
        now = datetime.now(timezone.utc).isoformat()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO documents (name, payload_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET payload_json = excluded.payload_json,
                                                updated_at = excluded.updated_at
                """,
                (name, payload, now),
            )
            conn.commit()
        finally:
            self._close(conn)
        LOGGER.debug(f"Saved document '{name}' ({len(payload)} chars)")

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT payload_json FROM documents WHERE name = ?", (name,)).fetchone()
        finally:
            self._close(conn)

        if row is None:
            return None
        try:
            document = json.loads(row[0])
        except json.JSONDecodeError as e:
            LOGGER.warning(f"Document '{name}' is corrupt, ignoring it: {e}")
            return None
        return document if isinstance(document, dict) else None

    def delete(self, name: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM documents WHERE name = ?", (name,))
            conn.commit()
        finally:
            self._close(conn)

    def list_documents(self) -> List[Tuple[str, str]]:
        """(name, updated_at) pairs, most recent first."""
        conn = self._connect()
        try:
            return conn.execute("SELECT name, updated_at FROM documents ORDER BY updated_at DESC").fetchall()
        finally:
            self._close(conn)
