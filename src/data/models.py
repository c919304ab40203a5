"""
Pomodoro Sync — Data Models.

Every model round-trips through the remote KV store as JSON, so each one
carries explicit ``to_dict`` / ``from_dict`` methods using the camelCase
field names already stored there. ``from_dict`` is lenient: missing or
mistyped fields fall back to defaults instead of raising, because the
stored JSON may come from older clients or a hand-edited export.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.time_utils import now_iso

ENDED_FINISHED = "finished"
ENDED_STOPPED = "stopped"

DEADLINE_STATUSES = ("not_started", "ongoing", "done")

DEFAULT_AI_BASE_URL = "https://x666.me"
DEFAULT_AI_MODEL = "gemini-3-flash-preview"
DEFAULT_AI_PROVIDER = "openai"


def _str(raw: dict, key: str, default: str = "") -> str:
    value = raw.get(key)
    return value if isinstance(value, str) else default


def _int(raw: dict, key: str, default: int = 0) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    return value if isinstance(value, bool) else default


@dataclass
class PomodoroEvent:
    """A named activity the user can time (e.g. "Deep work")."""

    name: str
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, raw: dict) -> PomodoroEvent:
        return cls(name=_str(raw, "name"), created_at=_str(raw, "createdAt") or now_iso())


@dataclass
class PomodoroRecord:
    """One countdown session, running or historical.

    ``stopped_at`` is None only while the session is active.
    """

    id: str
    event_name: str
    duration_sec: int
    started_at: str
    stopped_at: str | None = None
    ended_by: str = ENDED_FINISHED

    @property
    def is_stopped(self) -> bool:
        return bool(self.stopped_at)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "eventName": self.event_name,
            "durationSec": self.duration_sec,
            "startedAt": self.started_at,
            "endedBy": self.ended_by,
        }
        if self.stopped_at:
            data["stoppedAt"] = self.stopped_at
        return data

    @classmethod
    def from_dict(cls, raw: dict) -> PomodoroRecord:
        ended_by = _str(raw, "endedBy", ENDED_FINISHED)
        if ended_by not in (ENDED_FINISHED, ENDED_STOPPED):
            ended_by = ENDED_FINISHED
        return cls(
            id=_str(raw, "id"),
            event_name=_str(raw, "eventName"),
            duration_sec=_int(raw, "durationSec"),
            started_at=_str(raw, "startedAt"),
            stopped_at=_str(raw, "stoppedAt") or None,
            ended_by=ended_by,
        )


@dataclass
class ActiveSession:
    """The single running countdown (``ends_at = started_at + duration_sec``)."""

    record_id: str
    event_name: str
    duration_sec: int
    started_at: str
    ends_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordId": self.record_id,
            "eventName": self.event_name,
            "durationSec": self.duration_sec,
            "startedAt": self.started_at,
            "endsAt": self.ends_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> ActiveSession:
        return cls(
            record_id=_str(raw, "recordId"),
            event_name=_str(raw, "eventName"),
            duration_sec=_int(raw, "durationSec"),
            started_at=_str(raw, "startedAt"),
            ends_at=_str(raw, "endsAt"),
        )


@dataclass
class AlarmState:
    """A finished session waiting for the user to acknowledge it."""

    record_id: str
    event_name: str
    body: str
    triggered_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordId": self.record_id,
            "eventName": self.event_name,
            "body": self.body,
            "triggeredAt": self.triggered_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> AlarmState:
        return cls(
            record_id=_str(raw, "recordId"),
            event_name=_str(raw, "eventName"),
            body=_str(raw, "body"),
            triggered_at=_str(raw, "triggeredAt"),
        )


@dataclass
class AiSettings:
    """Connection settings for the OpenAI-compatible chat endpoint."""

    base_url: str = DEFAULT_AI_BASE_URL
    model: str = DEFAULT_AI_MODEL
    api_key: str | None = None
    provider: str = DEFAULT_AI_PROVIDER

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "baseUrl": self.base_url,
            "model": self.model,
            "provider": self.provider,
        }
        if self.api_key:
            data["apiKey"] = self.api_key
        return data

    @classmethod
    def from_dict(cls, raw: dict) -> AiSettings:
        return cls(
            base_url=_str(raw, "baseUrl") or DEFAULT_AI_BASE_URL,
            model=_str(raw, "model") or DEFAULT_AI_MODEL,
            api_key=_str(raw, "apiKey") or None,
            provider=_str(raw, "provider") or DEFAULT_AI_PROVIDER,
        )


@dataclass
class AppSettings:
    """Durable user preferences.

    ``from_dict`` merges over the defaults (the nested ``ai`` block key by
    key), so settings saved by an older client gain new fields on load.
    """

    default_duration_sec: int = 25 * 60
    enable_speech: bool = True
    enable_beep: bool = True
    enable_buzzer_mp3: bool = True
    ai: AiSettings = field(default_factory=AiSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaultDurationSec": self.default_duration_sec,
            "enableSpeech": self.enable_speech,
            "enableBeep": self.enable_beep,
            "enableBuzzerMp3": self.enable_buzzer_mp3,
            "ai": self.ai.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> AppSettings:
        defaults = cls()
        duration = _int(raw, "defaultDurationSec", defaults.default_duration_sec)
        ai_raw = raw.get("ai")
        return cls(
            default_duration_sec=duration if duration > 0 else defaults.default_duration_sec,
            enable_speech=_bool(raw, "enableSpeech", defaults.enable_speech),
            enable_beep=_bool(raw, "enableBeep", defaults.enable_beep),
            enable_buzzer_mp3=_bool(raw, "enableBuzzerMp3", defaults.enable_buzzer_mp3),
            ai=AiSettings.from_dict(ai_raw) if isinstance(ai_raw, dict) else AiSettings(),
        )


@dataclass
class DeadlineEvent:
    """An external deadline ("DDL") the mentor review takes into account."""

    id: str
    title: str
    ddl_at: str
    status: str = "not_started"
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "ddlAt": self.ddl_at,
            "status": self.status,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> DeadlineEvent:
        status = _str(raw, "status", "not_started")
        return cls(
            id=_str(raw, "id"),
            title=_str(raw, "title"),
            ddl_at=_str(raw, "ddlAt"),
            status=status if status in DEADLINE_STATUSES else "not_started",
            created_at=_str(raw, "createdAt") or now_iso(),
        )


@dataclass
class HardwareParameter:
    label: str
    value: int
    unit: str = ""
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value, "unit": self.unit, "note": self.note}


@dataclass
class HardwareChartPoint:
    t: str
    value: int

    def to_dict(self) -> dict[str, Any]:
        return {"t": self.t, "value": self.value}


@dataclass
class HardwareReport:
    """The "bio-kernel" narration of a day's records, as returned by the LLM."""

    title: str
    summary: str
    pseudo_code: str
    parameters: list[HardwareParameter]
    chart_title: str
    chart_points: list[HardwareChartPoint]
    interpretation: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "pseudoCode": self.pseudo_code,
            "parameters": [p.to_dict() for p in self.parameters],
            "chartTitle": self.chart_title,
            "chartPoints": [p.to_dict() for p in self.chart_points],
            "interpretation": self.interpretation,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> HardwareReport:
        params = raw.get("parameters") if isinstance(raw.get("parameters"), list) else []
        points = raw.get("chartPoints") if isinstance(raw.get("chartPoints"), list) else []
        return cls(
            title=_str(raw, "title"),
            summary=_str(raw, "summary"),
            pseudo_code=_str(raw, "pseudoCode"),
            parameters=[
                HardwareParameter(
                    label=_str(p, "label"), value=_int(p, "value"),
                    unit=_str(p, "unit"), note=_str(p, "note"),
                )
                for p in params if isinstance(p, dict)
            ],
            chart_title=_str(raw, "chartTitle"),
            chart_points=[
                HardwareChartPoint(t=_str(p, "t"), value=_int(p, "value"))
                for p in points if isinstance(p, dict)
            ],
            interpretation=_str(raw, "interpretation"),
            created_at=_str(raw, "createdAt"),
        )


@dataclass
class HardwareCall:
    """One stored hardware report, newest first in the history list."""

    id: str
    timestamp: int             # epoch milliseconds
    source_records_count: int
    report: HardwareReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "sourceRecordsCount": self.source_records_count,
            "report": self.report.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> HardwareCall:
        report = raw.get("report")
        return cls(
            id=_str(raw, "id"),
            timestamp=_int(raw, "timestamp"),
            source_records_count=_int(raw, "sourceRecordsCount"),
            report=HardwareReport.from_dict(report if isinstance(report, dict) else {}),
        )
