"""
Pomodoro Sync — Server-side KV storage.

One SQLite table holds every profile's values, keyed by (client_id, k).
Values are stored as JSON text; ``updated_at`` is epoch milliseconds of
the last write. Writes are upserts, so the last writer wins per key.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UPSERT = (
    "INSERT INTO kv (client_id, k, v, updated_at) VALUES (?, ?, ?, ?) "
    "ON CONFLICT (client_id, k) DO UPDATE SET v = excluded.v, updated_at = excluded.updated_at"
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _loads_or_none(text: str, key: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("Stored value for %s is not valid JSON, returning null", key)
        return None


class KVStore:
    """SQLite-backed storage for the remote KV API."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.KV_DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    client_id  TEXT    NOT NULL,
                    k          TEXT    NOT NULL,
                    v          TEXT    NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (client_id, k)
                )
            """)
        logger.debug("KV table initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Single keys
    # ------------------------------------------------------------------

    def get(self, client_id: str, key: str) -> tuple[Any, int] | None:
        """Return ``(value, updated_at)`` or None when the key is absent.

        A stored value that is not valid JSON comes back as None.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT v, updated_at FROM kv WHERE client_id = ? AND k = ?",
                (client_id, key),
            ).fetchone()
        if row is None:
            return None
        return _loads_or_none(row["v"], key), row["updated_at"]

    def put(self, client_id: str, key: str, value: Any) -> int:
        """Upsert one key. Returns the new ``updated_at``."""
        now = _now_ms()
        with self._connect() as conn:
            conn.execute(_UPSERT, (client_id, key, json.dumps(value, ensure_ascii=False), now))
        return now

    # ------------------------------------------------------------------
    # Whole profile
    # ------------------------------------------------------------------

    def dump(self, client_id: str) -> dict[str, Any]:
        """Every key of a profile, ordered by key."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT k, v FROM kv WHERE client_id = ? ORDER BY k", (client_id,),
            ).fetchall()
        return {row["k"]: _loads_or_none(row["v"], row["k"]) for row in rows}

    def put_many(self, client_id: str, data: dict[str, Any]) -> tuple[int, int]:
        """Upsert all non-blank keys in one transaction. Returns ``(count, updated_at)``."""
        now = _now_ms()
        rows = [
            (client_id, k, json.dumps(v, ensure_ascii=False), now)
            for k, v in data.items()
            if isinstance(k, str) and k.strip()
        ]
        if rows:
            with self._connect() as conn:
                conn.executemany(_UPSERT, rows)
        return len(rows), now

    def delete_all(self, client_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM kv WHERE client_id = ?", (client_id,))
        logger.info("Deleted %d key(s) for client %s", cursor.rowcount, client_id)
        return cursor.rowcount
