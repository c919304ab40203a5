"""
Pomodoro Sync — Application context.

PomodoroApp owns everything that is process-wide: the local cache, the
client id, the remote store client, the cell registry, the session state
machine and the alarm capability. The UI layer receives one instance
instead of reaching for module globals, so tests can build it around
fakes.

It also carries the whole-profile operations that are not part of the
session machine: snapshot export / import / reset, the deadline list,
the hardware report history and the two LLM reports. User-triggered
operations propagate their errors (NetworkError, LLMError) so the UI can
show them inline.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable

from src.core.reports import new_hardware_call_id, request_hardware_report, request_mentor_review
from src.core.session import MAX_DURATION_SEC, SessionMachine
from src.core.synced_cell import CellRegistry
from src.core.time_utils import clamp_int, now_iso, parse_iso, to_iso, utc_now
from src.data.models import DEADLINE_STATUSES, DeadlineEvent, HardwareCall
from src.integrations.remote_store import SNAPSHOT_VERSION
from src.ports.store_port import NetworkError

if TYPE_CHECKING:
    from src.data.local_cache import LocalCache
    from src.data.models import PomodoroRecord
    from src.ports.alarm_port import AlarmPort
    from src.ports.store_port import RemoteStorePort

logger = logging.getLogger(__name__)

KEY_HARDWARE_CALLS = "pomodoro:hardwareCalls"
KEY_DEADLINES = "pomodoro:ddlEvents"
MAX_HARDWARE_CALLS = 20

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"


@dataclass
class ExportResult:
    """A snapshot payload and where it came from ("remote" or "local")."""

    payload: dict
    source: str


def _encode_list(items: list) -> list[dict]:
    return [item.to_dict() for item in items]


def _decode_hardware_calls(raw: Any) -> list[HardwareCall]:
    if not isinstance(raw, list):
        raise ValueError("hardware calls must be a list")
    return [HardwareCall.from_dict(c) for c in raw if isinstance(c, dict)]


def _decode_deadlines(raw: Any) -> list[DeadlineEvent]:
    if not isinstance(raw, list):
        raise ValueError("deadlines must be a list")
    return [DeadlineEvent.from_dict(d) for d in raw if isinstance(d, dict) and d.get("id")]


def extract_snapshot_data(parsed: Any) -> dict[str, Any]:
    """Accept either ``{version, data: {...}}`` or a bare ``{key: value}`` map."""
    raw = parsed.get("data") if isinstance(parsed, dict) and "data" in parsed else parsed
    if not isinstance(raw, dict):
        raise ValueError("Snapshot content is not a JSON object")
    return raw


class PomodoroApp:
    """Process-wide context: persisted state, session machine and reports."""

    def __init__(
        self,
        remote: RemoteStorePort,
        cache: LocalCache,
        alarm: AlarmPort | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        debounce_seconds: float = 0.5,
        tick_interval: float = 0.25,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._clock = clock
        self.registry = CellRegistry(remote, cache, debounce_seconds=debounce_seconds)
        self.session = SessionMachine(
            self.registry, alarm, clock=clock, tick_interval=tick_interval,
        )
        self._hardware_cell = self.registry.create(
            KEY_HARDWARE_CALLS, [], encode=_encode_list, decode=_decode_hardware_calls,
        )
        self._deadline_cell = self.registry.create(
            KEY_DEADLINES, [], encode=_encode_list, decode=_decode_deadlines,
        )

    @classmethod
    def from_settings(cls, alarm: AlarmPort | None = None) -> PomodoroApp:
        """Build the app from env configuration. Needs a running event loop."""
        from src.config import settings
        from src.data.local_cache import LocalCache, get_or_create_client_id
        from src.integrations.remote_store import RemoteStoreClient

        cache = LocalCache(settings.CACHE_PATH)
        client_id = get_or_create_client_id(cache)
        remote = RemoteStoreClient(
            settings.KV_API_URL,
            client_id,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            keepalive_timeout=settings.KEEPALIVE_TIMEOUT_SECONDS,
        )
        logger.info("Pomodoro app using %s as client %s", settings.KV_API_URL, client_id)
        return cls(
            remote,
            cache,
            alarm,
            debounce_seconds=settings.SYNC_DEBOUNCE_SECONDS,
            tick_interval=settings.TICK_INTERVAL_SECONDS,
        )

    async def ready(self) -> None:
        await self.registry.ready()
        await self.session.ready()

    @property
    def loading(self) -> bool:
        return any(cell.is_loading for cell in self.registry.cells())

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, event_name: str, duration_sec: int) -> PomodoroRecord | None:
        """Remember the duration as the new default, then start the countdown."""
        if self.session.active is not None or self.session.alarm is not None:
            return self.session.start(event_name, duration_sec)

        duration = clamp_int(duration_sec, 1, MAX_DURATION_SEC)
        self.session.update_settings(
            lambda prev: replace(prev, default_duration_sec=duration), immediate=True,
        )
        return self.session.start(event_name, duration)

    def records_for_day(self, day: date | None = None) -> list[PomodoroRecord]:
        """Records whose start falls on ``day`` in local time (default: today)."""
        target = day or self._clock().astimezone().date()
        result = []
        for record in self.session.records:
            started = parse_iso(record.started_at)
            if started is not None and started.astimezone().date() == target:
                result.append(record)
        return result

    # ------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------

    @property
    def deadlines(self) -> list[DeadlineEvent]:
        return sorted(self._deadline_cell.read(), key=lambda d: d.ddl_at or "")

    def add_deadline(self, title: str, ddl_at: str, status: str = "not_started") -> DeadlineEvent | None:
        title = (title or "").strip()
        when = parse_iso(ddl_at)
        if not title or when is None or status not in DEADLINE_STATUSES:
            return None
        item = DeadlineEvent(
            id=str(uuid.uuid4()), title=title, ddl_at=to_iso(when),
            status=status, created_at=now_iso(),
        )
        self._deadline_cell.write(lambda prev: [item, *prev], immediate=True)
        return item

    def update_deadline(
        self, deadline_id: str, *, ddl_at: str | None = None, status: str | None = None,
    ) -> bool:
        if status is not None and status not in DEADLINE_STATUSES:
            return False
        new_when = parse_iso(ddl_at) if ddl_at is not None else None
        if ddl_at is not None and new_when is None:
            return False
        if not any(d.id == deadline_id for d in self._deadline_cell.read()):
            return False

        def _update(prev: list[DeadlineEvent]) -> list[DeadlineEvent]:
            result = []
            for d in prev:
                if d.id == deadline_id:
                    d = DeadlineEvent(
                        id=d.id,
                        title=d.title,
                        ddl_at=to_iso(new_when) if new_when is not None else d.ddl_at,
                        status=status or d.status,
                        created_at=d.created_at,
                    )
                result.append(d)
            return result

        self._deadline_cell.write(_update, immediate=True)
        return True

    def remove_deadline(self, deadline_id: str) -> bool:
        before = len(self._deadline_cell.read())
        self._deadline_cell.write(lambda prev: [d for d in prev if d.id != deadline_id], immediate=True)
        return len(self._deadline_cell.read()) < before

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @property
    def hardware_calls(self) -> list[HardwareCall]:
        return self._hardware_cell.read()

    async def mentor_review(self, day: date | None = None) -> str:
        return await request_mentor_review(
            self.session.settings.ai, self.records_for_day(day), self.deadlines,
        )

    async def hardware_report(self, day: date | None = None) -> HardwareCall:
        records = self.records_for_day(day)
        report = await request_hardware_report(self.session.settings.ai, records)
        call = HardwareCall(
            id=new_hardware_call_id(),
            timestamp=int(time.time() * 1000),
            source_records_count=len(records),
            report=report,
        )
        self._hardware_cell.write(lambda prev: [call, *prev][:MAX_HARDWARE_CALLS], immediate=True)
        return call

    # ------------------------------------------------------------------
    # Snapshot export / import / reset
    # ------------------------------------------------------------------

    def local_snapshot(self) -> dict:
        return {
            "version": SNAPSHOT_VERSION,
            "exportedAt": now_iso(),
            "data": {cell.key: cell.encoded() for cell in self.registry.cells()},
        }

    async def export_snapshot(self) -> ExportResult:
        """Export from the remote store, falling back to the in-memory state."""
        try:
            await self.registry.sync_all()
            payload = await self._remote.export_snapshot()
        except NetworkError as exc:
            logger.warning("Remote export failed, exporting local state: %s", exc)
            return ExportResult(payload=self.local_snapshot(), source=SOURCE_LOCAL)
        return ExportResult(payload=payload, source=SOURCE_REMOTE)

    async def import_snapshot(self, parsed: Any) -> int:
        """Apply a snapshot to every known field, then upload it as a whole.

        Session fields are repaired after applying, so a partial snapshot
        cannot leave an active session without its running record.

        Raises ValueError for content that is not a snapshot and
        NetworkError when the upload fails (local state is already applied).
        """
        data = extract_snapshot_data(parsed)
        applied = 0
        for cell in self.registry.cells():
            if cell.key not in data:
                continue
            raw = data[cell.key]
            try:
                value = cell.decode(raw)
            except (TypeError, ValueError, KeyError, AttributeError):
                value = [] if isinstance(cell.default, list) else cell.default
            cell.write(value)
            applied += 1
        self.session.repair()
        logger.info("Imported %d field(s) locally", applied)

        await self._remote.import_snapshot(data)
        return applied

    async def reset_all(self) -> None:
        """Delete all remote data, then return every field to its default."""
        await self._remote.delete_all()
        for cell in self.registry.cells():
            cell.reset_local(cell.default)
        logger.info("All data reset")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> int:
        """Teardown flush of unsent values (blocking, best-effort)."""
        return self.registry.flush_all()

    async def shutdown(self, grace_seconds: float = 2.0) -> None:
        """Try a normal sync, flush whatever is left, then stop all tasks."""
        try:
            await asyncio.wait_for(self.registry.sync_all(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Sync did not finish within %.1fs, flushing", grace_seconds)
        await self.session.aclose()
        await self.registry.aclose()
        delivered = self.flush()
        if delivered:
            logger.info("Flushed %d value(s) on shutdown", delivered)

    async def aclose(self) -> None:
        await self.session.aclose()
        await self.registry.aclose()

