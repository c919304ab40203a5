"""
Pomodoro Sync — Local Cache.

A durable per-profile JSON key-value cache in SQLite. It survives
restarts but is never shared between devices; the remote KV store is the
shared copy. Both operations are best-effort: ``load`` never raises and
``save`` logs and drops storage errors.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_ID_KEY = "pomodoro:clientId"


class LocalCache:
    """SQLite-backed JSON values keyed by string."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.CACHE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _init_db(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS cache (
                        k TEXT PRIMARY KEY,
                        v TEXT NOT NULL
                    )
                """)
        except sqlite3.Error as exc:
            logger.warning("Local cache unavailable at %s: %s", self._db_path, exc)
        else:
            logger.debug("Local cache initialized at %s", self._db_path)

    def load(self, key: str, fallback: T) -> T | Any:
        """Return the cached JSON value for ``key``, or ``fallback``.

        A missing key, unparseable JSON and storage errors all yield the
        fallback.
        """
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT v FROM cache WHERE k = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Local cache read failed for %s: %s", key, exc)
            return fallback

        if row is None or not row[0]:
            return fallback
        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning("Discarding corrupt cached value for %s", key)
            return fallback

    def save(self, key: str, value: Any) -> None:
        """Serialize ``value`` to JSON and store it under ``key``."""
        try:
            text = json.dumps(value, ensure_ascii=False)
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO cache (k, v) VALUES (?, ?) "
                    "ON CONFLICT (k) DO UPDATE SET v = excluded.v",
                    (key, text),
                )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("Local cache write failed for %s: %s", key, exc)


def get_or_create_client_id(cache: LocalCache) -> str:
    """Return this profile's opaque client id, generating it on first use."""
    existing = cache.load(CLIENT_ID_KEY, None)
    if isinstance(existing, str) and existing.strip():
        return existing.strip()

    client_id = str(uuid.uuid4())
    cache.save(CLIENT_ID_KEY, client_id)
    logger.info("Generated new client id %s", client_id)
    return client_id
