"""Shared test fixtures and configuration.

Sets up fake environment variables before any src import, and provides
common fixtures: a temp local cache and an in-memory fake of the remote
KV store.
"""

import asyncio
import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("KV_API_URL", "http://kv.test/api")

import pytest

from src.ports.store_port import NOT_FOUND, Found, NetworkError


class FakeRemoteStore:
    """In-memory RemoteStorePort.

    ``data`` holds the remote values. Set ``fail_get`` / ``fail_put`` to
    make calls raise NetworkError, or clear ``get_gate`` to hold every
    hydration GET until the test sets it again.
    """

    def __init__(self, data=None):
        self.data = dict(data or {})
        self.puts = []
        self.keepalive_puts = []
        self.snapshot_imports = []
        self.deleted = 0
        self.fail_get = False
        self.fail_put = False
        self.fail_snapshot = False
        self.keepalive_ok = True
        self.get_gate = asyncio.Event()
        self.get_gate.set()

    async def get(self, key):
        await self.get_gate.wait()
        if self.fail_get:
            raise NetworkError("GET failed")
        if key not in self.data:
            return NOT_FOUND
        return Found(value=self.data[key], updated_at=1)

    async def put(self, key, value):
        await asyncio.sleep(0)
        if self.fail_put:
            raise NetworkError("PUT failed", 500)
        self.puts.append((key, value))
        self.data[key] = value

    def put_keepalive(self, key, value):
        self.keepalive_puts.append((key, value))
        if self.keepalive_ok:
            self.data[key] = value
        return self.keepalive_ok

    async def delete_all(self):
        if self.fail_snapshot:
            raise NetworkError("DELETE failed")
        self.deleted += 1
        self.data.clear()

    async def export_snapshot(self):
        if self.fail_snapshot:
            raise NetworkError("GET /snapshot failed")
        return {"version": 1, "exportedAt": "2026-01-01T00:00:00.000Z", "data": dict(self.data)}

    async def import_snapshot(self, data):
        if self.fail_snapshot:
            raise NetworkError("PUT /snapshot failed")
        self.snapshot_imports.append(dict(data))
        self.data.update(data)
        return len(data)

    def puts_for(self, key):
        return [value for k, value in self.puts if k == key]


@pytest.fixture
def tmp_cache_path(tmp_path):
    """Return a temporary SQLite path for the local cache."""
    return str(tmp_path / "test_cache.db")


@pytest.fixture
def cache(tmp_cache_path):
    """Return a LocalCache backed by a temp file."""
    from src.data.local_cache import LocalCache
    return LocalCache(db_path=tmp_cache_path)


@pytest.fixture
def remote():
    """Return an empty FakeRemoteStore."""
    return FakeRemoteStore()
