"""
Pomodoro Sync — Session state machine.

Tracks at most one running countdown and at most one pending alarm:

    Idle --start--> Running --finish--> Alarming --acknowledge--> Idle
                       \\---stop (abandoned, no alarm)---------> Idle

Every persisted field (settings, event catalog, records, active session,
alarm) lives in a SyncedCell, so the state survives restarts and follows
the user across devices. Precondition violations (e.g. start while
running) are ignored with a warning: the UI is expected to hide the
triggering command.

Remaining time is always derived from the wall clock (``endsAt - now``).
While a session runs, two independent triggers end it: a deadline timer
for the exact remaining time, and a tick that finishes the session as
soon as it sees remaining <= 0 (covers a late or lost timer). Both go
through the same reentrancy-guarded ``finish``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from src.core.time_utils import (
    add_seconds_iso,
    clamp_int,
    now_iso,
    seconds_until,
    to_iso,
    utc_now,
)
from src.data.models import (
    ENDED_FINISHED,
    ENDED_STOPPED,
    ActiveSession,
    AlarmState,
    AppSettings,
    PomodoroEvent,
    PomodoroRecord,
)
from src.ports.alarm_port import AlarmMessage

if TYPE_CHECKING:
    from src.core.synced_cell import CellRegistry, SyncedCell
    from src.ports.alarm_port import AlarmLoopHandle, AlarmPort

logger = logging.getLogger(__name__)

KEY_SETTINGS = "pomodoro:settings"
KEY_EVENTS = "pomodoro:events"
KEY_RECORDS = "pomodoro:records"
KEY_ACTIVE = "pomodoro:active"
KEY_ALARM = "pomodoro:alarm"

STATE_IDLE = "idle"
STATE_RUNNING = "running"
STATE_ALARMING = "alarming"

DEFAULT_EVENT_NAME = "Slacking off"
ALARM_TITLE = "Pomodoro finished"
MAX_DURATION_SEC = 24 * 60 * 60

_ALARM_LINES = [
    "Stop pretending to be busy, '{name}' is over.",
    "Time's up. Did that session earn the anxiety you spent on it?",
    "'{name}' is done. No self-congratulation, next round.",
    "Time's up. Procrastination is not rest, it is slow self-sabotage.",
    "'{name}' is over. Put the phone down and wrap it up.",
]


def pick_alarm_line(event_name: str) -> str:
    """A randomly chosen, deliberately rude end-of-session line."""
    return random.choice(_ALARM_LINES).format(name=event_name)


def normalize_events(events: list[PomodoroEvent]) -> list[PomodoroEvent]:
    """Trim names, drop empty and duplicate names (first wins), sort by creation."""
    seen: dict[str, PomodoroEvent] = {}
    for event in events:
        name = (event.name or "").strip()
        if not name or name in seen:
            continue
        seen[name] = PomodoroEvent(name=name, created_at=event.created_at or now_iso())
    return sorted(seen.values(), key=lambda e: e.created_at)


# ---------------------------------------------------------------------------
# Cell codecs
# ---------------------------------------------------------------------------


def _modalities(settings: AppSettings) -> tuple[bool, bool, bool]:
    return settings.enable_beep, settings.enable_buzzer_mp3, settings.enable_speech


def _encode_list(items: list) -> list[dict]:
    return [item.to_dict() for item in items]


def _decode_settings(raw: Any) -> AppSettings:
    return AppSettings.from_dict(raw if isinstance(raw, dict) else {})


def _decode_events(raw: Any) -> list[PomodoroEvent]:
    if not isinstance(raw, list):
        raise ValueError("events must be a list")
    return normalize_events([PomodoroEvent.from_dict(e) for e in raw if isinstance(e, dict)])


def _decode_records(raw: Any) -> list[PomodoroRecord]:
    if not isinstance(raw, list):
        raise ValueError("records must be a list")
    return [PomodoroRecord.from_dict(r) for r in raw if isinstance(r, dict) and r.get("id")]


def _encode_optional(item: Any) -> dict | None:
    return item.to_dict() if item is not None else None


def _decode_active(raw: Any) -> ActiveSession | None:
    if not isinstance(raw, dict) or not raw.get("recordId"):
        return None
    return ActiveSession.from_dict(raw)


def _decode_alarm(raw: Any) -> AlarmState | None:
    if not isinstance(raw, dict) or not raw.get("recordId"):
        return None
    return AlarmState.from_dict(raw)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class SessionMachine:
    """Countdown/alarm state machine persisted through synced cells.

    Args:
        registry: Creates the five persisted cells.
        alarm: Alarm capability started when a session finishes.
        clock: Returns the current aware datetime (injectable for tests).
        tick_interval: Seconds between remaining-time checks while running.
        id_factory: Generates record ids.
    """

    def __init__(
        self,
        registry: CellRegistry,
        alarm: AlarmPort | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        tick_interval: float = 0.25,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._alarm_port = alarm
        self._clock = clock
        self._tick_interval = tick_interval
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

        self._settings_cell: SyncedCell[AppSettings] = registry.create(
            KEY_SETTINGS, AppSettings(),
            encode=lambda s: s.to_dict(), decode=_decode_settings,
        )
        self._events_cell: SyncedCell[list[PomodoroEvent]] = registry.create(
            KEY_EVENTS, [PomodoroEvent(name=DEFAULT_EVENT_NAME)],
            encode=_encode_list, decode=_decode_events,
        )
        self._records_cell: SyncedCell[list[PomodoroRecord]] = registry.create(
            KEY_RECORDS, [], encode=_encode_list, decode=_decode_records,
        )
        self._active_cell: SyncedCell[ActiveSession | None] = registry.create(
            KEY_ACTIVE, None, encode=_encode_optional, decode=_decode_active,
        )
        self._alarm_cell: SyncedCell[AlarmState | None] = registry.create(
            KEY_ALARM, None, encode=_encode_optional, decode=_decode_alarm,
        )

        self._finishing_record_id: str | None = None
        self._alarm_loop: AlarmLoopHandle | None = None
        self._alarm_loop_record_id: str | None = None
        self._alarm_loop_modalities: tuple[bool, bool, bool] | None = None
        self._tick_task: asyncio.Task | None = None
        self._deadline_handle: asyncio.TimerHandle | None = None
        self._deadline_ends_at: str | None = None

        self._unsubscribers = [
            self._active_cell.subscribe(self._on_active_changed),
            self._alarm_cell.subscribe(self._on_alarm_changed),
            self._settings_cell.subscribe(self._on_settings_changed),
        ]

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------

    @property
    def cells(self) -> dict[str, SyncedCell]:
        return {
            KEY_SETTINGS: self._settings_cell,
            KEY_EVENTS: self._events_cell,
            KEY_RECORDS: self._records_cell,
            KEY_ACTIVE: self._active_cell,
            KEY_ALARM: self._alarm_cell,
        }

    @property
    def settings(self) -> AppSettings:
        return self._settings_cell.read()

    @property
    def events(self) -> list[PomodoroEvent]:
        return self._events_cell.read()

    @property
    def records(self) -> list[PomodoroRecord]:
        return self._records_cell.read()

    @property
    def active(self) -> ActiveSession | None:
        return self._active_cell.read()

    @property
    def alarm(self) -> AlarmState | None:
        return self._alarm_cell.read()

    @property
    def loading(self) -> bool:
        return any(cell.is_loading for cell in self.cells.values())

    async def ready(self) -> None:
        """Wait for hydration of every field, then repair cross-field invariants."""
        await asyncio.gather(*(cell.ready() for cell in self.cells.values()))
        self.repair()

    def repair(self) -> None:
        """Restore cross-field consistency after hydration or an import.

        Afterwards a session is active iff exactly one record is unstopped,
        and that record is the active one. Records left unstopped by another
        device or a crash are closed as stopped.
        """
        active = self.active
        alarm = self.alarm
        if active is not None and alarm is not None and active.record_id == alarm.record_id:
            logger.warning("Session %s was both running and alarming; keeping the alarm", active.record_id)
            self._active_cell.write(None)
            active = None

        if active is not None and not any(
            r.id == active.record_id and not r.is_stopped for r in self.records
        ):
            logger.warning("Session %s has no running record; clearing it", active.record_id)
            self._active_cell.write(None)
            active = None

        keep_id = active.record_id if active is not None else None
        orphans = [r for r in self.records if not r.is_stopped and r.id != keep_id]
        if not orphans:
            return

        now = self._clock()

        def _close(records: list[PomodoroRecord]) -> list[PomodoroRecord]:
            closed = []
            for r in records:
                if r.is_stopped or r.id == keep_id:
                    closed.append(r)
                    continue
                planned_end = add_seconds_iso(r.started_at, r.duration_sec)
                stopped_at = min(planned_end, to_iso(now))
                closed.append(
                    PomodoroRecord(
                        id=r.id, event_name=r.event_name, duration_sec=r.duration_sec,
                        started_at=r.started_at, stopped_at=stopped_at, ended_by=ENDED_STOPPED,
                    )
                )
            return closed

        logger.warning("Closing %d orphaned unstopped record(s)", len(orphans))
        self._records_cell.write(_close)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        if self.alarm is not None:
            return STATE_ALARMING
        if self.active is not None:
            return STATE_RUNNING
        return STATE_IDLE

    @property
    def remaining_sec(self) -> int:
        active = self.active
        if active is None:
            return 0
        remaining = seconds_until(active.ends_at, self._clock())
        return max(0, math.ceil(remaining))

    @property
    def is_running(self) -> bool:
        active = self.active
        return active is not None and seconds_until(active.ends_at, self._clock()) > 0

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, event_name: str, duration_sec: int) -> PomodoroRecord | None:
        """Start a countdown. No-op while a session or an alarm exists."""
        if self.active is not None or self.alarm is not None:
            logger.warning("start ignored: a session or alarm is already in progress")
            return None

        name = (event_name or "").strip() or "Untitled"
        duration = clamp_int(duration_sec, 1, MAX_DURATION_SEC)
        now = self._clock()
        started_at = to_iso(now)
        record = PomodoroRecord(
            id=self._id_factory(),
            event_name=name,
            duration_sec=duration,
            started_at=started_at,
        )

        self._records_cell.write(lambda prev: [record, *prev])
        self._active_cell.write(
            ActiveSession(
                record_id=record.id,
                event_name=name,
                duration_sec=duration,
                started_at=started_at,
                ends_at=add_seconds_iso(started_at, duration),
            )
        )
        logger.info("Session %s started: %s for %ds", record.id, name, duration)
        return record

    def stop(self) -> PomodoroRecord | None:
        """Abandon the running session (no alarm)."""
        active = self.active
        if active is None:
            logger.warning("stop ignored: no active session")
            return None

        record = self._close_record(active.record_id, to_iso(self._clock()), ENDED_STOPPED)
        self._active_cell.write(None)
        logger.info("Session %s stopped", active.record_id)
        return record

    def finish(self, at: str | None = None) -> PomodoroRecord | None:
        """Complete the running session and raise the alarm.

        Reentrancy-guarded per session: the deadline timer, the tick and a
        manual "end now" may all fire for the same session, only the first
        one has any effect.
        """
        active = self.active
        if active is None:
            return None
        if self._finishing_record_id == active.record_id:
            logger.debug("finish ignored: session %s already finishing", active.record_id)
            return None
        self._finishing_record_id = active.record_id

        stopped_at = at or to_iso(self._clock())
        record = self._close_record(active.record_id, stopped_at, ENDED_FINISHED)
        self._active_cell.write(None)
        self._alarm_cell.write(
            AlarmState(
                record_id=active.record_id,
                event_name=active.event_name,
                body=pick_alarm_line(active.event_name),
                triggered_at=to_iso(self._clock()),
            )
        )
        logger.info("Session %s finished", active.record_id)
        return record

    def acknowledge_alarm(self) -> bool:
        """Silence and clear the pending alarm."""
        self._stop_alarm_loop()
        if self.alarm is None:
            return False
        self._alarm_cell.write(None)
        logger.info("Alarm acknowledged")
        return True

    async def replay_alarm(self) -> bool:
        if self._alarm_loop is None:
            return False
        return await self._alarm_loop.replay()

    def delete_record(self, record_id: str) -> bool:
        """Delete a stopped record. The running session's record is protected."""
        active = self.active
        if active is not None and active.record_id == record_id:
            logger.warning("delete_record ignored: %s is still running", record_id)
            return False

        before = len(self.records)
        self._records_cell.write(lambda prev: [r for r in prev if r.id != record_id])
        removed = len(self.records) < before

        alarm = self.alarm
        if alarm is not None and alarm.record_id == record_id:
            self.acknowledge_alarm()
        return removed

    def clear_records(self) -> bool:
        """Delete every record. Not allowed while a session runs."""
        if self.active is not None:
            logger.warning("clear_records ignored: a session is running")
            return False
        self._records_cell.write([])
        if self.alarm is not None:
            self.acknowledge_alarm()
        return True

    def tick(self) -> int:
        """Recompute remaining time; finish the session if it has elapsed."""
        active = self.active
        if active is None:
            return 0
        if seconds_until(active.ends_at, self._clock()) <= 0:
            self.finish(active.ends_at)
            return 0
        return self.remaining_sec

    def _close_record(self, record_id: str, stopped_at: str, ended_by: str) -> PomodoroRecord | None:
        closed: list[PomodoroRecord] = []

        def _update(prev: list[PomodoroRecord]) -> list[PomodoroRecord]:
            result = []
            for r in prev:
                if r.id == record_id and not r.is_stopped:
                    r = PomodoroRecord(
                        id=r.id, event_name=r.event_name, duration_sec=r.duration_sec,
                        started_at=r.started_at, stopped_at=stopped_at, ended_by=ended_by,
                    )
                    closed.append(r)
                result.append(r)
            return result

        self._records_cell.write(_update)
        return closed[0] if closed else None

    # ------------------------------------------------------------------
    # Event catalog and settings
    # ------------------------------------------------------------------

    def add_event(self, name: str) -> bool:
        trimmed = (name or "").strip()
        if not trimmed:
            return False
        self._events_cell.write(
            lambda prev: normalize_events([*prev, PomodoroEvent(name=trimmed, created_at=to_iso(self._clock()))])
        )
        return True

    def remove_event(self, name: str) -> bool:
        before = len(self.events)
        self._events_cell.write(lambda prev: [e for e in prev if e.name != name])
        return len(self.events) < before

    def update_settings(self, updater: Callable[[AppSettings], AppSettings], immediate: bool = True) -> AppSettings:
        """Settings changes are discrete user actions, so they sync immediately by default."""
        return self._settings_cell.write(updater, immediate=immediate)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _on_active_changed(self, active: ActiveSession | None) -> None:
        if active is None:
            self._cancel_deadline()
            self._cancel_tick()
            return

        if self._deadline_ends_at != active.ends_at:
            self._cancel_deadline()
            delay = max(0.0, seconds_until(active.ends_at, self._clock()))
            loop = asyncio.get_running_loop()
            self._deadline_handle = loop.call_later(delay, self._on_deadline, active.ends_at)
            self._deadline_ends_at = active.ends_at

        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())

    def _on_deadline(self, ends_at: str) -> None:
        self._deadline_handle = None
        self._deadline_ends_at = None
        active = self.active
        if active is not None and active.ends_at == ends_at:
            self.finish(ends_at)

    async def _tick_loop(self) -> None:
        while self.active is not None:
            self.tick()
            await asyncio.sleep(self._tick_interval)

    def _cancel_deadline(self) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        self._deadline_handle = None
        self._deadline_ends_at = None

    def _cancel_tick(self) -> None:
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Alarm loop
    # ------------------------------------------------------------------

    def _on_alarm_changed(self, alarm: AlarmState | None) -> None:
        if alarm is None:
            self._stop_alarm_loop()
            return
        if self._alarm_loop is not None and self._alarm_loop_record_id == alarm.record_id:
            return
        self._start_alarm_loop(alarm)

    def _on_settings_changed(self, settings: AppSettings) -> None:
        alarm = self.alarm
        if self._alarm_loop is None or alarm is None:
            return
        if self._alarm_loop_modalities != _modalities(settings):
            logger.info("Alarm settings changed, restarting the alarm loop")
            self._start_alarm_loop(alarm)

    def _start_alarm_loop(self, alarm: AlarmState) -> None:
        self._stop_alarm_loop()
        if self._alarm_port is None:
            return

        settings = self.settings
        # Notifications always repeat until acknowledged; sound toggles only pick the channels.
        message = AlarmMessage(
            title=ALARM_TITLE,
            body=alarm.body,
            beep=settings.enable_beep or settings.enable_buzzer_mp3,
            speech=settings.enable_speech,
            repeat=True,
        )
        self._alarm_loop = self._alarm_port.start(message)
        self._alarm_loop_record_id = alarm.record_id
        self._alarm_loop_modalities = _modalities(settings)

    def _stop_alarm_loop(self) -> None:
        loop = self._alarm_loop
        self._alarm_loop = None
        self._alarm_loop_record_id = None
        self._alarm_loop_modalities = None
        if loop is not None:
            loop.stop()

    async def aclose(self) -> None:
        """Cancel timers and silence the alarm (persisted state is untouched)."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._cancel_deadline()
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._stop_alarm_loop()
