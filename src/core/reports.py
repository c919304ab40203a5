"""
Pomodoro Sync — LLM-backed reports.

Two novelty features built on the day's records:

- Mentor review: a blunt critique of the schedule plus concrete advice,
  taking open deadlines into account. Returned as plain text.
- Bio-kernel hardware report: the schedule narrated as fictional
  biological "hardware" telemetry. The model is asked for strict JSON,
  but whatever comes back is coerced leniently: alias keys are accepted,
  numbers are clamped to 0..100, and unparseable output degrades to a
  clearly labelled placeholder report instead of an error.

Prompt construction and coercion are pure; only the two ``request_*``
functions touch the network (via ``src.core.llm.complete``).
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from typing import TYPE_CHECKING, Any

from src.core.llm import complete
from src.core.time_utils import format_datetime, format_duration_sec, now_iso
from src.data.models import HardwareChartPoint, HardwareParameter, HardwareReport

if TYPE_CHECKING:
    from src.data.models import AiSettings, DeadlineEvent, PomodoroRecord

logger = logging.getLogger(__name__)

MAX_PROMPT_RECORDS = 60
MAX_PROMPT_DEADLINES = 40

FALLBACK_TITLE = "BIO-KERNEL OS / consciousness-hardware bridge"
FAILED_TITLE = "BIO-KERNEL OS / translation failed"
DEFAULT_CHART_TITLE = "Hardware metric fluctuation"

_STATUS_LABELS = {
    "not_started": "not yet",
    "ongoing": "in progress",
    "done": "finished",
}


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def _record_rows(records: list[PomodoroRecord], with_ended_by: bool) -> list[str]:
    header = "# | name | timer | started | stopped"
    if with_ended_by:
        header += " | ended by"
    lines = [header]
    for idx, r in enumerate(records[:MAX_PROMPT_RECORDS], start=1):
        stop = format_datetime(r.stopped_at) if r.stopped_at else "(running)"
        row = (
            f"{idx} | {r.event_name} | {format_duration_sec(r.duration_sec)} | "
            f"{format_datetime(r.started_at)} | {stop}"
        )
        if with_ended_by:
            row += f" | {r.ended_by}"
        lines.append(row)
    return lines


def build_mentor_prompt(
    records: list[PomodoroRecord],
    deadlines: list[DeadlineEvent],
) -> tuple[str, str]:
    """Return (system, user) messages for the mentor review."""
    rows = sorted(deadlines[:MAX_PROMPT_DEADLINES], key=lambda d: d.ddl_at or "")
    if rows:
        deadline_lines = ["# | title | deadline | status"] + [
            f"{idx} | {d.title} | {format_datetime(d.ddl_at)} | {_STATUS_LABELS.get(d.status, d.status)}"
            for idx, d in enumerate(rows, start=1)
        ]
    else:
        deadline_lines = ["(none)"]

    user = "\n".join([
        "You are a sharp-tongued but responsible mentor.",
        "Judge, from my pomodoro records, whether my schedule looks like a human being's.",
        "Requirements:",
        "1) Open with a 1-2 sentence, very blunt summary.",
        "2) Then give 5 concrete, actionable suggestions, each under 20 words.",
        "3) Finish with an action list that fits within one hour (with times).",
        "",
        "My deadlines (weigh their pressure and priority in the plan):",
        *deadline_lines,
        "",
        "My pomodoro records:",
        *_record_rows(records, with_ended_by=False),
    ])
    system = "You are a strict mentor. Be direct, no filler."
    return system, user


def build_hardware_prompt(records: list[PomodoroRecord]) -> tuple[str, str]:
    """Return (system, user) messages for the bio-kernel hardware report."""
    system = "\n".join([
        'You are a consciousness-to-hardware interface translator called "Bio-Kernel OS".',
        "Compile my pomodoro records into: hardware parameters + a line chart + a pseudo-code compile log + an interpretation.",
        "Output strict JSON only (no Markdown, no extra text).",
        "Non-empty: title/summary/chartTitle/interpretation must not be empty; pseudoCode must have at least 12 lines.",
        "Numbers: all percentages are 0-100; chartPoints.value is 0-100 too.",
        "parameters: 4-8 entries, each with label/value/unit/note.",
        "chartPoints: 12-24 points, t formatted HH:MM:SS.",
        "pseudoCode uses an invented pseudo-language; module names may look like Metabolism/NeuralNetwork/Cardiovascular/Endocrine.",
        "Use exactly this structure (field names are case-sensitive):",
        "{",
        '  "title": "...",',
        '  "summary": "...",',
        '  "chartTitle": "...",',
        '  "parameters": [{"label":"...","value":0,"unit":"%","note":"..."}],',
        '  "chartPoints": [{"t":"09:30:05","value":0}],',
        '  "pseudoCode": "multi-line string, each line a compile log entry or pseudo call",',
        '  "interpretation": "6-10 sentences",',
        '  "createdAt": "ISO8601"',
        "}",
    ])
    user = "\n".join(["My pomodoro records:", *_record_rows(records, with_ended_by=True)])
    return system, user


# ---------------------------------------------------------------------------
# Lenient JSON coercion
# ---------------------------------------------------------------------------


def safe_json_parse(raw: str) -> Any:
    """Parse JSON, falling back to the outermost {...} span. None on failure."""
    try:
        return json.loads(raw)
    except ValueError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start >= 0 and end > start:
            try:
                return json.loads(raw[start:end + 1])
            except ValueError:
                return None
        return None


def _as_number(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    return value if math.isfinite(value) else fallback


def _clamp_percent(value: float) -> int:
    return max(0, min(100, round(value)))


def _first_string(root: dict, keys: list[str], fallback: str) -> str:
    for key in keys:
        value = root.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return fallback


def _first_list(root: dict, keys: list[str]) -> list:
    for key in keys:
        value = root.get(key)
        if isinstance(value, list):
            return value
    return []


def _first_dict(root: dict, keys: list[str]) -> dict | None:
    for key in keys:
        value = root.get(key)
        if isinstance(value, dict):
            return value
    return None


def _pick(item: dict, *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def placeholder_report(raw: str) -> HardwareReport:
    """The report shown when the model output is not a JSON object."""
    trimmed = raw.strip()
    return HardwareReport(
        title=FAILED_TITLE,
        summary="The model did not return parseable JSON." if trimmed else "The model returned empty content.",
        pseudo_code=trimmed or "(empty)",
        parameters=[],
        chart_title=DEFAULT_CHART_TITLE,
        chart_points=[],
        interpretation="Try again, or switch to another model or endpoint.",
        created_at=now_iso(),
    )


def coerce_hardware_report(raw: str) -> HardwareReport:
    """Turn raw model output into a HardwareReport. Never raises."""
    parsed = safe_json_parse(raw)
    if not isinstance(parsed, dict):
        logger.warning("Hardware report was not a JSON object, using placeholder")
        return placeholder_report(raw)

    source = _first_dict(parsed, ["report", "data", "result"]) or parsed

    parameters = []
    for item in _first_list(source, ["parameters", "params", "parameterList"]):
        item = item if isinstance(item, dict) else {}
        label = _pick(item, "label", "name")
        note = _pick(item, "note", "desc")
        unit = item.get("unit")
        param = HardwareParameter(
            label=label if isinstance(label, str) else "parameter",
            value=_clamp_percent(_as_number(item.get("value"), 0)),
            unit=unit if isinstance(unit, str) else "",
            note=note if isinstance(note, str) else "",
        )
        if param.label.strip():
            parameters.append(param)

    points = []
    for item in _first_list(source, ["chartPoints", "points", "series"]):
        item = item if isinstance(item, dict) else {}
        t = _pick(item, "t", "time")
        if isinstance(t, str) and t:
            points.append(HardwareChartPoint(t=t, value=_clamp_percent(_as_number(item.get("value"), 0))))

    pseudo_code = _first_string(
        source, ["pseudoCode", "pseudocode", "pseudo_code", "pseudo", "compileLog", "log", "code"], "",
    )
    interpretation = _first_string(
        source, ["interpretation", "explain", "explanation", "analysis", "comment", "notes"], "",
    )

    return HardwareReport(
        title=_first_string(source, ["title", "name"], FALLBACK_TITLE),
        summary=_first_string(source, ["summary", "overview", "digest", "intro"], "(no summary)"),
        pseudo_code=pseudo_code if pseudo_code.strip() else "(the model provided no pseudo-code compile log)",
        parameters=parameters,
        chart_title=_first_string(source, ["chartTitle", "chart_name", "chart"], DEFAULT_CHART_TITLE),
        chart_points=points,
        interpretation=interpretation if interpretation.strip() else "(the model provided no interpretation)",
        created_at=_first_string(source, ["createdAt", "timestamp", "time"], now_iso()),
    )


# ---------------------------------------------------------------------------
# Network calls
# ---------------------------------------------------------------------------


async def request_mentor_review(
    ai: AiSettings,
    records: list[PomodoroRecord],
    deadlines: list[DeadlineEvent],
) -> str:
    """Ask the LLM for a mentor review. Raises LLMError on failure."""
    system, user = build_mentor_prompt(records, deadlines)
    content = await complete(system, user, ai=ai, max_tokens=1024, temperature=0.7)
    return content.strip()


async def request_hardware_report(ai: AiSettings, records: list[PomodoroRecord]) -> HardwareReport:
    """Ask the LLM for a hardware report.

    Raises LLMError when the request itself fails; malformed output
    degrades to ``placeholder_report``.
    """
    system, user = build_hardware_prompt(records)
    raw = await complete(system, user, ai=ai, max_tokens=2048, temperature=0.6, json_mode=True)
    return coerce_hardware_report(raw)


def new_hardware_call_id() -> str:
    return f"hw-{uuid.uuid4()}"
