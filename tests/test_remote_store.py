"""Tests for src.integrations.remote_store — httpx client for the KV API."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from src.integrations.remote_store import RemoteStoreClient
from src.ports.store_port import NOT_FOUND, Found, NetworkError
from src.server.kv_api import create_app


def _mock_client(json_body=None, raise_exc=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = json_body
    mock_resp.raise_for_status = MagicMock(side_effect=raise_exc)

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.request = AsyncMock(return_value=mock_resp)
    return mock_client


def _store():
    return RemoteStoreClient("http://kv.test/api/", "client-1")


class TestMockedTransport:
    @pytest.mark.asyncio
    async def test_get_found(self):
        mock_client = _mock_client({"found": True, "value": [1, 2], "updatedAt": 42})
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            result = await _store().get("pomodoro:records")

        assert result == Found(value=[1, 2], updated_at=42)
        args, kwargs = mock_client.request.call_args
        assert args == ("GET", "http://kv.test/api/kv")
        assert kwargs["params"] == {"key": "pomodoro:records"}
        assert kwargs["headers"] == {"x-client-id": "client-1"}

    @pytest.mark.asyncio
    async def test_get_not_found(self):
        mock_client = _mock_client({"found": False})
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            result = await _store().get("pomodoro:records")
        assert result is NOT_FOUND
        assert not result

    @pytest.mark.asyncio
    async def test_put_sends_key_and_value(self):
        mock_client = _mock_client({"ok": True, "updatedAt": 1})
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            await _store().put("pomodoro:active", None)
        args, kwargs = mock_client.request.call_args
        assert args[0] == "PUT"
        assert kwargs["json"] == {"key": "pomodoro:active", "value": None}

    @pytest.mark.asyncio
    async def test_http_status_error_becomes_network_error(self):
        response = MagicMock(status_code=503)
        exc = httpx.HTTPStatusError("unavailable", request=MagicMock(), response=response)
        mock_client = _mock_client(raise_exc=exc)
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NetworkError) as info:
                await _store().get("k")
        assert info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_becomes_network_error(self):
        mock_client = _mock_client()
        mock_client.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NetworkError):
                await _store().put("k", 1)

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_network_error(self):
        mock_client = _mock_client()
        mock_client.request.return_value.json.side_effect = ValueError("bad json")
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NetworkError):
                await _store().get("k")

    @pytest.mark.asyncio
    async def test_export_rejects_unexpected_body(self):
        mock_client = _mock_client({"version": 1, "data": "nope"})
        with patch("src.integrations.remote_store.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NetworkError):
                await _store().export_snapshot()


class TestKeepalive:
    def test_success(self):
        mock_client = MagicMock()
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        with patch("src.integrations.remote_store.httpx.Client", return_value=mock_client):
            assert _store().put_keepalive("k", {"a": 1}) is True
        _, kwargs = mock_client.put.call_args
        assert kwargs["json"] == {"key": "k", "value": {"a": 1}}

    def test_failure_never_raises(self):
        with patch("src.integrations.remote_store.httpx.Client", side_effect=httpx.ConnectError("down")):
            assert _store().put_keepalive("k", 1) is False


class TestAgainstServer:
    """Full round trips through the FastAPI app over an in-process transport."""

    def _client(self, tmp_path, client_id="client-1"):
        app = create_app(str(tmp_path / "kv.db"))
        return RemoteStoreClient(
            "http://kv.test/api", client_id, transport=httpx.ASGITransport(app=app),
        ), app

    @pytest.mark.asyncio
    async def test_put_then_get(self, tmp_path):
        store, _ = self._client(tmp_path)
        assert await store.get("pomodoro:records") is NOT_FOUND
        await store.put("pomodoro:records", [{"id": "r1"}])
        result = await store.get("pomodoro:records")
        assert isinstance(result, Found)
        assert result.value == [{"id": "r1"}]
        assert result.updated_at > 0

    @pytest.mark.asyncio
    async def test_snapshot_import_export_delete(self, tmp_path):
        store, _ = self._client(tmp_path)
        count = await store.import_snapshot({"a": 1, "b": [2]})
        assert count == 2

        snapshot = await store.export_snapshot()
        assert snapshot["version"] == 1
        assert snapshot["data"] == {"a": 1, "b": [2]}

        await store.delete_all()
        assert (await store.export_snapshot())["data"] == {}

    @pytest.mark.asyncio
    async def test_clients_are_isolated(self, tmp_path):
        app = create_app(str(tmp_path / "kv.db"))
        transport = httpx.ASGITransport(app=app)
        alice = RemoteStoreClient("http://kv.test/api", "alice", transport=transport)
        bob = RemoteStoreClient("http://kv.test/api", "bob", transport=transport)

        await alice.put("k", "alice's")
        assert await bob.get("k") is NOT_FOUND
