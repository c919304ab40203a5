"""Tests for src.data.local_cache — best-effort durable JSON cache."""

import sqlite3

from src.data.local_cache import CLIENT_ID_KEY, LocalCache, get_or_create_client_id


class TestLocalCache:
    def test_missing_key_returns_fallback(self, cache):
        assert cache.load("pomodoro:records", []) == []

    def test_save_then_load(self, cache):
        cache.save("pomodoro:records", [{"id": "r1"}])
        assert cache.load("pomodoro:records", []) == [{"id": "r1"}]

    def test_survives_reopen(self, tmp_cache_path):
        LocalCache(tmp_cache_path).save("k", {"a": 1})
        assert LocalCache(tmp_cache_path).load("k", None) == {"a": 1}

    def test_corrupt_json_returns_fallback(self, cache, tmp_cache_path):
        with sqlite3.connect(tmp_cache_path) as conn:
            conn.execute("INSERT INTO cache (k, v) VALUES (?, ?)", ("bad", "{not json"))
        assert cache.load("bad", "fallback") == "fallback"

    def test_unserializable_value_is_dropped(self, cache):
        cache.save("k", object())
        assert cache.load("k", None) is None

    def test_null_is_a_value(self, cache):
        cache.save("pomodoro:active", None)
        assert cache.load("pomodoro:active", "missing") is None


class TestClientId:
    def test_generated_once(self, cache):
        first = get_or_create_client_id(cache)
        assert first
        assert get_or_create_client_id(cache) == first
        assert cache.load(CLIENT_ID_KEY, None) == first
