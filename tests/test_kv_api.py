"""Tests for src.server.kv_api — the remote KV HTTP contract."""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from src.server.kv_api import create_app, normalize_snapshot

HEADERS = {"x-client-id": "client-1"}


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "kv.db")


@pytest.fixture
def client(db_path):
    return TestClient(create_app(db_path))


class TestKvEndpoint:
    def test_missing_client_id(self, client):
        resp = client.get("/api/kv", params={"key": "k"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_client_id"}

    def test_missing_key(self, client):
        resp = client.get("/api/kv", headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_key"}

    def test_not_found(self, client):
        resp = client.get("/api/kv", params={"key": "k"}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"found": False}

    def test_put_then_get(self, client):
        put = client.put("/api/kv", json={"key": "k", "value": {"a": [1, 2]}}, headers=HEADERS)
        assert put.status_code == 200
        assert put.json()["ok"] is True

        body = client.get("/api/kv", params={"key": "k"}, headers=HEADERS).json()
        assert body["found"] is True
        assert body["value"] == {"a": [1, 2]}
        assert body["updatedAt"] == put.json()["updatedAt"]

    def test_put_overwrites(self, client):
        client.put("/api/kv", json={"key": "k", "value": 1}, headers=HEADERS)
        client.put("/api/kv", json={"key": "k", "value": 2}, headers=HEADERS)
        assert client.get("/api/kv", params={"key": "k"}, headers=HEADERS).json()["value"] == 2

    def test_put_missing_key(self, client):
        resp = client.put("/api/kv", json={"value": 1}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_key"}

    def test_put_invalid_body(self, client):
        resp = client.put("/api/kv", content=b"{oops", headers=HEADERS)
        assert resp.status_code == 400

    def test_other_methods_not_allowed(self, client):
        resp = client.post("/api/kv", json={"key": "k"}, headers=HEADERS)
        assert resp.status_code == 405
        assert resp.json() == {"error": "method_not_allowed"}

    def test_corrupt_stored_value_served_as_null(self, client, db_path):
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                "INSERT INTO kv (client_id, k, v, updated_at) VALUES (?, ?, ?, ?)",
                ("client-1", "k", "{broken", 7),
            )
        body = client.get("/api/kv", params={"key": "k"}, headers=HEADERS).json()
        assert body == {"found": True, "value": None, "updatedAt": 7}


class TestSnapshotEndpoint:
    def test_import_then_export(self, client):
        resp = client.put(
            "/api/snapshot",
            json={"version": 1, "data": {"b": 2, "a": 1, " ": 3}},
            headers=HEADERS,
        )
        assert resp.json()["count"] == 2

        body = client.get("/api/snapshot", headers=HEADERS).json()
        assert body["version"] == 1
        assert body["data"] == {"a": 1, "b": 2}
        assert list(body["data"]) == ["a", "b"]

    def test_bare_object_accepted(self, client):
        client.put("/api/snapshot", json={"x": True}, headers=HEADERS)
        assert client.get("/api/snapshot", headers=HEADERS).json()["data"] == {"x": True}

    def test_defaults_to_shared_scope_without_header(self, client):
        client.put("/api/snapshot", json={"data": {"x": 1}})
        assert client.get("/api/snapshot").json()["data"] == {"x": 1}
        assert client.get("/api/snapshot", headers=HEADERS).json()["data"] == {}

    def test_delete_clears_only_this_scope(self, client):
        client.put("/api/kv", json={"key": "k", "value": 1}, headers=HEADERS)
        client.put("/api/kv", json={"key": "k", "value": 1}, headers={"x-client-id": "other"})

        assert client.delete("/api/snapshot", headers=HEADERS).json() == {"ok": True}
        assert client.get("/api/snapshot", headers=HEADERS).json()["data"] == {}
        assert client.get("/api/snapshot", headers={"x-client-id": "other"}).json()["data"] == {"k": 1}

    def test_snapshot_sees_kv_writes(self, client):
        client.put("/api/kv", json={"key": "pomodoro:active", "value": None}, headers=HEADERS)
        assert client.get("/api/snapshot", headers=HEADERS).json()["data"] == {"pomodoro:active": None}


class TestNormalizeSnapshot:
    def test_variants(self):
        assert normalize_snapshot({"data": {"a": 1}}) == {"a": 1}
        assert normalize_snapshot({"a": 1}) == {"a": 1}
        assert normalize_snapshot(None) == {}
        assert normalize_snapshot([1, 2]) == {}
