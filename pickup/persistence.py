"""SQLite persistence for full-document client snapshots (cart, session, tokens)."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pickup.config import DB_PATH

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SnapshotStore:
    """Key/value store where every value is one whole JSON document.

    Reads and writes always move the complete document; nothing is patched in place.
    """

    def __init__(self, db_path: str | Path = DB_PATH) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def bootstrap_schema(self) -> None:
        """Create persistence schema if it does not already exist."""
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    document TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def read(self, key: str) -> str | None:
        """Return the raw stored document, or ``None`` when the key is absent."""
        with self._connect() as conn:
            row = conn.execute("SELECT document FROM snapshots WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row[0])

    def read_json(self, key: str) -> Any:
        """Return the decoded document. Raises ``ValueError`` on undecodable JSON."""
        raw = self.read(key)
        if raw is None:
            return None
        return json.loads(raw)

    def write(self, key: str, document: dict[str, Any]) -> None:
        payload = json.dumps(document, ensure_ascii=False)
        with self._connect() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO snapshots (key, document, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET document = excluded.document, updated_at = excluded.updated_at
                    """,
                    (key, payload, _utc_now_iso()),
                )

    def write_raw(self, key: str, payload: str) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO snapshots (key, document, updated_at) VALUES (?, ?, ?)",
                    (key, payload, _utc_now_iso()),
                )

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute("DELETE FROM snapshots WHERE key = ?", (key,))
        logger.debug("snapshot_deleted key=%s", key)
