"""
Pomodoro Sync — Remote KV HTTP API.

A small FastAPI app over KVStore, serving the contract RemoteStoreClient
speaks:

    GET    /api/kv?key=K        -> {found: false} | {found: true, value, updatedAt}
    PUT    /api/kv  {key, value} -> {ok: true, updatedAt}
    GET    /api/snapshot        -> {version: 1, exportedAt, data}
    PUT    /api/snapshot        -> {ok: true, updatedAt, count}
    DELETE /api/snapshot        -> {ok: true}

/kv requires the ``x-client-id`` header. /snapshot is scoped by the same
header; the shared "default" scope is used only for header-less callers.
"""

from __future__ import annotations

import logging
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.core.time_utils import now_iso
from src.data.kv_store import KVStore

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "x-client-id"
DEFAULT_CLIENT_ID = "default"
SNAPSHOT_VERSION = 1


def _error(code: str, status: int) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def normalize_snapshot(body: Any) -> dict[str, Any]:
    """Accept ``{version, data: {...}}`` or a bare ``{key: value}`` object."""
    obj = body if isinstance(body, dict) else {}
    raw = obj.get("data") if isinstance(obj.get("data"), dict) else obj
    return raw if isinstance(raw, dict) else {}


def create_app(db_path: str | None = None) -> FastAPI:
    store = KVStore(db_path)
    app = FastAPI(title="Pomodoro Sync KV API")
    app.state.store = store

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return _error("method_not_allowed", 405)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.get("/health")
    async def health():
        return {"ok": True}

    # ------------------------------------------------------------------
    # Single keys
    # ------------------------------------------------------------------

    @app.get("/api/kv")
    async def get_key(request: Request):
        client_id = request.headers.get(CLIENT_ID_HEADER, "").strip()
        if not client_id:
            return _error("missing_client_id", 400)
        key = request.query_params.get("key", "").strip()
        if not key:
            return _error("missing_key", 400)

        row = store.get(client_id, key)
        if row is None:
            return {"found": False}
        value, updated_at = row
        return {"found": True, "value": value, "updatedAt": updated_at}

    @app.put("/api/kv")
    async def put_key(request: Request):
        client_id = request.headers.get(CLIENT_ID_HEADER, "").strip()
        if not client_id:
            return _error("missing_client_id", 400)
        body = await _json_body(request)
        key = body.get("key") if isinstance(body, dict) else None
        key = key.strip() if isinstance(key, str) else ""
        if not key:
            return _error("missing_key", 400)

        updated_at = store.put(client_id, key, body.get("value"))
        logger.debug("PUT %s for client %s", key, client_id)
        return {"ok": True, "updatedAt": updated_at}

    # ------------------------------------------------------------------
    # Whole profile
    # ------------------------------------------------------------------

    def _snapshot_client(request: Request) -> str:
        return request.headers.get(CLIENT_ID_HEADER, "").strip() or DEFAULT_CLIENT_ID

    @app.get("/api/snapshot")
    async def export_snapshot(request: Request):
        data = store.dump(_snapshot_client(request))
        return {"version": SNAPSHOT_VERSION, "exportedAt": now_iso(), "data": data}

    @app.put("/api/snapshot")
    async def import_snapshot(request: Request):
        client_id = _snapshot_client(request)
        data = normalize_snapshot(await _json_body(request))
        count, updated_at = store.put_many(client_id, data)
        logger.info("Imported %d key(s) for client %s", count, client_id)
        return {"ok": True, "updatedAt": updated_at, "count": count}

    @app.delete("/api/snapshot")
    async def delete_snapshot(request: Request):
        store.delete_all(_snapshot_client(request))
        return {"ok": True}

    return app


def main() -> None:
    """Run the KV API with uvicorn on the configured host and port."""
    from src.config import settings

    logger.info("Starting KV API on %s:%d (db: %s)", settings.KV_HOST, settings.KV_PORT, settings.KV_DATABASE_PATH)
    uvicorn.run(create_app(settings.KV_DATABASE_PATH), host=settings.KV_HOST, port=settings.KV_PORT)
