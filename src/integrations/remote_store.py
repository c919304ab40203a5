"""Remote KV store client — GET/PUT/DELETE against the /kv and /snapshot API.

Every request identifies the profile with the ``x-client-id`` header.
Transport failures and non-2xx answers are normalized into NetworkError;
callers in the sync path log and tolerate it.

``put_keepalive`` is the teardown transport: a blocking request on its
own short-lived connection, so it completes even while the event loop
is shutting down.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.core.time_utils import now_iso
from src.ports.store_port import NOT_FOUND, Found, NetworkError, _NotFound

logger = logging.getLogger(__name__)

_CLIENT_ID_HEADER = "x-client-id"
SNAPSHOT_VERSION = 1


class RemoteStoreClient:
    """httpx implementation of RemoteStorePort."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        timeout: float = 5.0,
        keepalive_timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._timeout = timeout
        self._keepalive_timeout = keepalive_timeout
        self._transport = transport

    @property
    def client_id(self) -> str:
        return self._client_id

    def _headers(self) -> dict[str, str]:
        return {_CLIENT_ID_HEADER: self._client_id}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: Any = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                resp = await client.request(
                    method, url, params=params, json=json, headers=self._headers(),
                )
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise NetworkError(f"{method} {path} failed with HTTP {status}", status) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"{method} {path} returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Per-key operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Found | _NotFound:
        """Fetch one key. Returns NOT_FOUND when the store has no row."""
        data = await self._request("GET", "/kv", params={"key": key})
        if not isinstance(data, dict) or not data.get("found"):
            return NOT_FOUND
        return Found(value=data.get("value"), updated_at=data.get("updatedAt"))

    async def put(self, key: str, value: Any) -> None:
        """Upsert one key; last write wins on the server."""
        await self._request("PUT", "/kv", json={"key": key, "value": value})
        logger.debug("Remote put %s", key)

    def put_keepalive(self, key: str, value: Any) -> bool:
        """Blocking best-effort PUT used on teardown. Never raises."""
        url = f"{self._base_url}/kv"
        try:
            with httpx.Client(timeout=self._keepalive_timeout) as client:
                resp = client.put(
                    url, json={"key": key, "value": value}, headers=self._headers(),
                )
                resp.raise_for_status()
        except Exception as exc:
            logger.warning("Teardown flush of %s failed: %s", key, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Snapshot operations (whole-profile export / import / reset)
    # ------------------------------------------------------------------

    async def export_snapshot(self) -> dict:
        """Return ``{version, exportedAt, data}`` for every stored key."""
        data = await self._request("GET", "/snapshot")
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise NetworkError("GET /snapshot returned an unexpected body")
        return data

    async def import_snapshot(self, data: dict[str, Any]) -> int:
        """Upsert every key of ``data``. Returns the number of keys written."""
        body = {"version": SNAPSHOT_VERSION, "exportedAt": now_iso(), "data": data}
        result = await self._request("PUT", "/snapshot", json=body)
        count = result.get("count", len(data)) if isinstance(result, dict) else len(data)
        logger.info("Imported snapshot with %d keys", count)
        return count

    async def delete_all(self) -> None:
        """Delete every key stored for this profile."""
        await self._request("DELETE", "/snapshot")
        logger.info("Deleted all remote data for client %s", self._client_id)
