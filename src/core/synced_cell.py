"""
Pomodoro Sync — Cloud-synced state cell.

A SyncedCell binds one named value to three representations:

- in memory (authoritative for reads, updated synchronously by ``write``),
- the local cache (survives restarts, seeded on construction),
- the remote KV store (shared between devices, authoritative once hydrated).

Hydration runs once, as a task started by the constructor. Writes issued
while it is still in flight are applied to the in-memory value right away
*and* recorded; when the remote value arrives they are replayed on top of
it in call order. A direct replacement therefore wins over the remote
value, while an updater function is rebased onto it. Updater functions
must be pure for this reason.

Remote writes are debounced (trailing edge) and dispatched by a single
worker per cell, so at most one PUT is in flight and the last enqueued
value is always the last to land. Failed PUTs are logged and not retried;
the "last sent" marker only advances on success, so the next mutation
re-sends naturally.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar, Union

from src.ports.store_port import Found, NetworkError

if TYPE_CHECKING:
    from src.data.local_cache import LocalCache
    from src.ports.store_port import RemoteStorePort

logger = logging.getLogger(__name__)

T = TypeVar("T")

Updater = Union[T, Callable[[T], T]]

_MISSING = object()


def serialize(payload: Any) -> str:
    """Canonical JSON used to compare values with what was last sent."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _apply(updater: Any, current: Any) -> Any:
    return updater(current) if callable(updater) else updater


class SyncedCell(Generic[T]):
    """One named value kept in sync between memory, local cache and remote.

    Must be constructed inside a running event loop.

    Args:
        key: Store key, e.g. ``"pomodoro:records"``.
        default: Value used when neither the cache nor the remote has one.
        remote: Remote store port.
        cache: Local cache.
        encode: Converts the in-memory value to JSON-compatible data.
        decode: Inverse of ``encode``; may raise on malformed data.
        debounce_seconds: Quiet period before a background sync.
    """

    def __init__(
        self,
        key: str,
        default: T,
        *,
        remote: RemoteStorePort,
        cache: LocalCache,
        encode: Callable[[T], Any] | None = None,
        decode: Callable[[Any], T] | None = None,
        debounce_seconds: float = 0.5,
    ) -> None:
        self._key = key
        self._default = default
        self._remote = remote
        self._cache = cache
        self._encode: Callable[[T], Any] = encode or (lambda v: v)
        self._decode: Callable[[Any], T] = decode or (lambda raw: raw)
        self._debounce_seconds = debounce_seconds

        cached = cache.load(key, _MISSING)
        self._value: T = default if cached is _MISSING else self._decode_or(cached, default)
        self._initial_serialized = self._serialize(self._value)

        self._loading = True
        self._hydrated = False
        self._closed = False
        self._remote_found: bool | None = None
        self._last_sent: str | None = None
        self._pending: list[tuple[Any, bool]] = []
        self._subscribers: list[Callable[[T], None]] = []

        self._loop = asyncio.get_running_loop()
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._queue: asyncio.Queue[tuple[str, Any, bool]] = asyncio.Queue()
        self._ready = asyncio.Event()
        self._worker = self._loop.create_task(self._dispatch_worker())
        self._hydration = self._loop.create_task(self._hydrate())

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        return self._key

    @property
    def default(self) -> T:
        return self._default

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def remote_found(self) -> bool | None:
        """True/False once hydration reached the store, None if it did not."""
        return self._remote_found

    @property
    def has_unsent_changes(self) -> bool:
        return self._serialize(self._value) != self._last_sent

    def read(self) -> T:
        return self._value

    def encoded(self) -> Any:
        """The current value as JSON-compatible data."""
        return self._encode(self._value)

    def decode(self, raw: Any) -> T:
        """Decode external JSON data (e.g. an import) into this cell's type."""
        return self._decode(raw)

    def write(self, updater: Updater, immediate: bool = False) -> T:
        """Apply ``updater`` (a value or ``prev -> next``) and return the result.

        The in-memory value and the local cache are updated synchronously.
        ``immediate`` bypasses the debounce and enqueues an unconditional
        sync; while hydrating, syncing is deferred until hydration ends.
        """
        new_value = _apply(updater, self._value)
        self._value = new_value
        self._save_local()

        if self._closed:
            logger.warning("Write to closed cell %s kept locally only", self._key)
        elif self._loading:
            self._pending.append((updater, immediate))
        else:
            self._schedule_sync(immediate)

        self._notify()
        return new_value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback(value)`` for every change. Returns an unsubscriber."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def ready(self) -> None:
        """Wait until hydration has completed (successfully or not)."""
        await self._ready.wait()

    async def sync_now(self) -> None:
        """Send the current value if it differs from the last one sent, and
        wait until every queued sync has been dispatched."""
        await self.ready()
        if self._closed:
            return
        self._cancel_debounce()
        if self.has_unsent_changes:
            self._enqueue(force=False)
        await self._queue.join()

    def reset_local(self, value: T) -> None:
        """Replace the value without syncing it, treating it as already sent.

        Used after the remote data has been wiped, so the defaults are not
        written straight back.
        """
        self._cancel_debounce()
        self._pending.clear()
        self._value = value
        self._last_sent = self._serialize(value)
        self._save_local()
        self._notify()

    def flush(self) -> bool:
        """Teardown flush: best-effort blocking PUT of unsent changes.

        Returns True if a value was delivered.
        """
        self._cancel_debounce()
        if not self._hydrated and not self._pending_has_replacement():
            return False
        serialized = self._serialize(self._value)
        if serialized == self._last_sent:
            return False
        delivered = self._remote.put_keepalive(self._key, self._encode(self._value))
        if delivered:
            self._last_sent = serialized
            logger.info("Flushed %s on teardown", self._key)
        return delivered

    async def aclose(self) -> None:
        """Cancel hydration, the debounce timer and the dispatch worker."""
        self._closed = True
        self._cancel_debounce()
        tasks = [t for t in (self._hydration, self._worker) if not t.done()]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.debug("Cell %s task error during close: %s", self._key, result)
        self._ready.set()

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def _hydrate(self) -> None:
        # Cancellation leaves the cell unhydrated: loading stays set and
        # nothing is marked as sent.
        try:
            result = await self._remote.get(self._key)
        except NetworkError as exc:
            logger.warning("Hydration of %s failed, keeping local value: %s", self._key, exc)
            self._last_sent = self._initial_serialized
        except Exception:
            logger.exception("Unexpected error hydrating %s, keeping local value", self._key)
            self._last_sent = self._initial_serialized
        else:
            if isinstance(result, Found):
                self._adopt_remote(result.value)
            else:
                self._remote_found = False
                self._last_sent = self._initial_serialized
                logger.debug("No remote value for %s", self._key)
        self._hydrated = True
        self._loading = False
        self._ready.set()

        pending, self._pending = self._pending, []
        if pending and not self._closed:
            self._schedule_sync(any(immediate for _, immediate in pending))
        self._notify()

    def _adopt_remote(self, raw: Any) -> None:
        self._remote_found = True
        decoded = self._decode_or(raw, _MISSING)
        if decoded is _MISSING:
            logger.warning("Remote value for %s is malformed, keeping local value", self._key)
            self._last_sent = self._initial_serialized
            return

        self._last_sent = self._serialize(decoded)
        value = decoded
        for updater, _ in self._pending:
            value = _apply(updater, value)
        self._value = value
        self._save_local()
        logger.debug("Hydrated %s from remote (%d local writes replayed)", self._key, len(self._pending))

    # ------------------------------------------------------------------
    # Debounce and dispatch
    # ------------------------------------------------------------------

    def _schedule_sync(self, immediate: bool) -> None:
        self._cancel_debounce()
        if immediate:
            self._enqueue(force=True)
            return
        if self._serialize(self._value) == self._last_sent:
            return
        self._debounce_handle = self._loop.call_later(
            self._debounce_seconds, self._on_debounce_elapsed,
        )

    def _on_debounce_elapsed(self) -> None:
        self._debounce_handle = None
        if not self._closed:
            self._enqueue(force=False)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _enqueue(self, force: bool) -> None:
        payload = self._encode(self._value)
        self._queue.put_nowait((serialize(payload), payload, force))

    async def _dispatch_worker(self) -> None:
        """Send queued values one at a time, in enqueue order."""
        while True:
            serialized, payload, force = await self._queue.get()
            try:
                if not force and serialized == self._last_sent:
                    continue
                await self._remote.put(self._key, payload)
                self._last_sent = serialized
                logger.debug("Synced %s", self._key)
            except NetworkError as exc:
                logger.warning("Sync of %s failed: %s", self._key, exc)
            except Exception:
                logger.exception("Unexpected error syncing %s", self._key)
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _serialize(self, value: T) -> str:
        return serialize(self._encode(value))

    def _pending_has_replacement(self) -> bool:
        """True if a write made during hydration replaced the value outright,
        so the result no longer depends on the remote value."""
        return any(not callable(updater) for updater, _ in self._pending)

    def _decode_or(self, raw: Any, fallback: Any) -> Any:
        try:
            return self._decode(raw)
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Could not decode value for %s: %s", self._key, exc)
            return fallback

    def _save_local(self) -> None:
        try:
            payload = self._encode(self._value)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not encode value for %s: %s", self._key, exc)
            return
        self._cache.save(self._key, payload)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._value)
            except Exception:
                logger.exception("Subscriber of %s failed", self._key)


class CellRegistry:
    """Owns the cells of one process, at most one per key."""

    def __init__(
        self,
        remote: RemoteStorePort,
        cache: LocalCache,
        debounce_seconds: float = 0.5,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._debounce_seconds = debounce_seconds
        self._cells: dict[str, SyncedCell] = {}

    def create(
        self,
        key: str,
        default: T,
        *,
        encode: Callable[[T], Any] | None = None,
        decode: Callable[[Any], T] | None = None,
    ) -> SyncedCell[T]:
        if key in self._cells:
            raise ValueError(f"A synced cell for {key!r} already exists")
        cell: SyncedCell[T] = SyncedCell(
            key,
            default,
            remote=self._remote,
            cache=self._cache,
            encode=encode,
            decode=decode,
            debounce_seconds=self._debounce_seconds,
        )
        self._cells[key] = cell
        return cell

    def get(self, key: str) -> SyncedCell | None:
        return self._cells.get(key)

    def cells(self) -> list[SyncedCell]:
        return list(self._cells.values())

    async def ready(self) -> None:
        await asyncio.gather(*(cell.ready() for cell in self._cells.values()))

    async def sync_all(self) -> None:
        await asyncio.gather(*(cell.sync_now() for cell in self._cells.values()))

    def flush_all(self) -> int:
        """Teardown flush of every cell. Returns how many values were delivered."""
        return sum(1 for cell in self._cells.values() if cell.flush())

    async def aclose(self) -> None:
        for cell in self._cells.values():
            await cell.aclose()
