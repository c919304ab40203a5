"""Tests for src.core.reports — prompts and lenient hardware-report coercion."""

import json

import pytest
from unittest.mock import AsyncMock, patch

from src.core.llm import LLMError
from src.core.reports import (
    DEFAULT_CHART_TITLE,
    FAILED_TITLE,
    FALLBACK_TITLE,
    MAX_PROMPT_RECORDS,
    build_hardware_prompt,
    build_mentor_prompt,
    coerce_hardware_report,
    request_hardware_report,
    request_mentor_review,
    safe_json_parse,
)
from src.data.models import AiSettings, DeadlineEvent, PomodoroRecord


def _record(i, stopped=True):
    return PomodoroRecord(
        id=f"r{i}", event_name=f"Task {i}", duration_sec=1500,
        started_at="2026-02-07T09:00:00.000Z",
        stopped_at="2026-02-07T09:25:00.000Z" if stopped else None,
    )


class TestPrompts:
    def test_mentor_prompt_lists_records_and_sorted_deadlines(self):
        deadlines = [
            DeadlineEvent(id="d2", title="Later", ddl_at="2026-03-01T00:00:00.000Z", status="done"),
            DeadlineEvent(id="d1", title="Sooner", ddl_at="2026-02-10T00:00:00.000Z"),
        ]
        system, user = build_mentor_prompt([_record(1), _record(2, stopped=False)], deadlines)

        assert "mentor" in system
        assert user.index("Sooner") < user.index("Later")
        assert "Task 1" in user
        assert "(running)" in user

    def test_mentor_prompt_without_deadlines(self):
        _, user = build_mentor_prompt([], [])
        assert "(none)" in user

    def test_record_rows_are_capped(self):
        records = [_record(i) for i in range(MAX_PROMPT_RECORDS + 10)]
        _, user = build_hardware_prompt(records)
        assert f"Task {MAX_PROMPT_RECORDS - 1}" in user
        assert f"Task {MAX_PROMPT_RECORDS} " not in user

    def test_hardware_prompt_asks_for_json_and_includes_ended_by(self):
        system, user = build_hardware_prompt([_record(1)])
        assert "strict JSON" in system
        assert "ended by" in user
        assert "finished" in user


class TestSafeJsonParse:
    def test_plain_json(self):
        assert safe_json_parse('{"a": 1}') == {"a": 1}

    def test_embedded_json(self):
        assert safe_json_parse('Sure! ```json\n{"a": 1}\n``` done') == {"a": 1}

    def test_garbage(self):
        assert safe_json_parse("no braces here") is None
        assert safe_json_parse("{ broken") is None


class TestCoerceHardwareReport:
    def test_full_report(self):
        raw = json.dumps({
            "title": "Kernel",
            "summary": "All good",
            "chartTitle": "Focus",
            "parameters": [{"label": "Dopamine", "value": 150, "unit": "%", "note": "high"}],
            "chartPoints": [{"t": "09:00:00", "value": -5}],
            "pseudoCode": "BOOT\nRUN",
            "interpretation": "Fine.",
            "createdAt": "2026-02-07T10:00:00.000Z",
        })
        report = coerce_hardware_report(raw)

        assert report.title == "Kernel"
        assert report.parameters[0].value == 100
        assert report.chart_points[0].value == 0
        assert report.pseudo_code == "BOOT\nRUN"
        assert report.created_at == "2026-02-07T10:00:00.000Z"

    def test_alias_keys_and_nested_report(self):
        raw = json.dumps({"report": {
            "name": "Aliased",
            "overview": "via alias",
            "params": [{"name": "Cortisol", "value": 42.6, "desc": "stress"}],
            "series": [{"time": "10:00:00", "value": 10}],
            "log": "COMPILE",
            "analysis": "ok",
        }})
        report = coerce_hardware_report(raw)

        assert report.title == "Aliased"
        assert report.summary == "via alias"
        assert report.parameters[0].label == "Cortisol"
        assert report.parameters[0].value == 43
        assert report.parameters[0].note == "stress"
        assert report.chart_points[0].t == "10:00:00"
        assert report.pseudo_code == "COMPILE"
        assert report.interpretation == "ok"

    def test_missing_fields_get_fallbacks(self):
        report = coerce_hardware_report("{}")
        assert report.title == FALLBACK_TITLE
        assert report.chart_title == DEFAULT_CHART_TITLE
        assert report.parameters == []
        assert report.pseudo_code
        assert report.interpretation

    def test_non_numeric_values_become_zero(self):
        raw = json.dumps({"parameters": [{"label": "X", "value": "lots"}, "junk"]})
        report = coerce_hardware_report(raw)
        assert report.parameters[0].value == 0
        assert report.parameters[1].label == "parameter"

    @pytest.mark.parametrize("raw", ["", "I cannot comply", "[1, 2, 3]"])
    def test_placeholder_on_non_object(self, raw):
        report = coerce_hardware_report(raw)
        assert report.title == FAILED_TITLE
        assert report.parameters == []


class TestRequests:
    @pytest.mark.asyncio
    async def test_mentor_review_strips_answer(self):
        with patch("src.core.reports.complete", AsyncMock(return_value="  Be better.  ")) as mock:
            result = await request_mentor_review(AiSettings(api_key="k"), [_record(1)], [])
        assert result == "Be better."
        assert mock.await_args.kwargs["ai"].api_key == "k"

    @pytest.mark.asyncio
    async def test_hardware_report_uses_json_mode(self):
        with patch("src.core.reports.complete", AsyncMock(return_value='{"title": "T"}')) as mock:
            report = await request_hardware_report(AiSettings(api_key="k"), [_record(1)])
        assert report.title == "T"
        assert mock.await_args.kwargs["json_mode"] is True

    @pytest.mark.asyncio
    async def test_llm_errors_propagate(self):
        with patch("src.core.reports.complete", AsyncMock(side_effect=LLMError("Missing API key"))):
            with pytest.raises(LLMError):
                await request_hardware_report(AiSettings(), [])
