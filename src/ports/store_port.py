"""Remote store port — abstract interface for the shared key-value store.

The sync layer depends on this protocol, never on the HTTP client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class NetworkError(Exception):
    """Raised when the remote store is unreachable or answers non-2xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Found:
    """A key that exists remotely, with its JSON value."""

    value: Any
    updated_at: int | None = None


class _NotFound:
    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()


class RemoteStorePort(Protocol):
    """Per-key JSON storage scoped by an opaque client id."""

    async def get(self, key: str) -> Found | _NotFound: ...

    async def put(self, key: str, value: Any) -> None: ...

    def put_keepalive(self, key: str, value: Any) -> bool: ...

    async def delete_all(self) -> None: ...

    async def export_snapshot(self) -> dict: ...

    async def import_snapshot(self, data: dict[str, Any]) -> int: ...
