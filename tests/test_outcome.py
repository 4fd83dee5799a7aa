"""Tests for planflow.execution.outcome — rule-based tool result classification.

Covers:
- Wrapped MCP tool results: isError, successful=false, empty data, bad JSON
- Error-typed, tool_result-typed and final_answer-typed results
- Unknown shapes default to success (and are logged)
- Shape priority: a wrapped envelope wins over a ``type`` key
- Replan trigger heuristic: defaults, case-insensitivity, custom triggers
- Classification is pure
"""

from __future__ import annotations

import copy
import json
import logging

import pytest
from pydantic import BaseModel

from planflow.execution.outcome import (
    analyze_step_result,
    parse_action_result,
    should_replan,
    unwrapped_content,
)
from planflow.execution.schemas import (
    DEFAULT_REPLAN_TRIGGERS,
    ErrorOutcome,
    FinalAnswerOutcome,
    ToolResultOutcome,
    UnknownOutcome,
    WrappedToolOutcome,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _wrapped(payload, is_error: bool = False) -> dict:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"result": {"isError": is_error, "content": [{"type": "text", "text": text}]}}


def _pair(result, **kwargs) -> tuple[bool, bool]:
    analysis = analyze_step_result(result, **kwargs)
    return analysis.success, analysis.should_replan


# ---------------------------------------------------------------------------
# parse_action_result
# ---------------------------------------------------------------------------


class TestParseActionResult:
    def test_wrapped_envelope(self):
        outcome = parse_action_result(_wrapped({"successful": True, "data": {"a": 1}}))
        assert isinstance(outcome, WrappedToolOutcome)
        assert outcome.is_error is False

    def test_wrapped_envelope_with_error_flag(self):
        outcome = parse_action_result(_wrapped("boom", is_error=True))
        assert isinstance(outcome, WrappedToolOutcome)
        assert outcome.is_error is True
        assert outcome.text == "boom"

    def test_typed_results(self):
        assert isinstance(parse_action_result({"type": "error", "error": "x"}), ErrorOutcome)
        assert isinstance(parse_action_result({"type": "tool_result", "content": "x"}), ToolResultOutcome)
        assert isinstance(parse_action_result({"type": "final_answer", "content": "x"}), FinalAnswerOutcome)

    def test_unknown_shapes(self):
        assert isinstance(parse_action_result({"foo": 1}), UnknownOutcome)
        assert isinstance(parse_action_result("plain string"), UnknownOutcome)
        assert isinstance(parse_action_result(None), UnknownOutcome)

    def test_non_text_content_is_not_wrapped(self):
        raw = {"result": {"content": [{"type": "image", "data": "..."}]}}
        assert isinstance(parse_action_result(raw), UnknownOutcome)

    def test_empty_content_list_is_not_wrapped(self):
        assert isinstance(parse_action_result({"result": {"content": []}}), UnknownOutcome)

    def test_already_parsed_outcome_is_returned_as_is(self):
        outcome = ToolResultOutcome(content="x")
        assert parse_action_result(outcome) is outcome

    def test_pydantic_model_input(self):
        class ActionResult(BaseModel):
            type: str
            content: str = ""

        outcome = parse_action_result(ActionResult(type="tool_result", content="hello"))
        assert isinstance(outcome, ToolResultOutcome)
        assert outcome.content == "hello"


# ---------------------------------------------------------------------------
# Wrapped tool results
# ---------------------------------------------------------------------------


class TestWrappedToolResults:
    def test_success_with_data(self):
        assert _pair(_wrapped({"successful": True, "data": {"ok": 1}})) == (True, False)

    def test_success_flag_absent_but_data_present(self):
        assert _pair(_wrapped({"data": {"id": "x"}})) == (True, False)

    def test_non_empty_list_data_succeeds(self):
        assert _pair(_wrapped({"data": [1, 2]})) == (True, False)

    def test_is_error_fails_and_replans(self):
        analysis = analyze_step_result(_wrapped("Tool crashed", is_error=True))
        assert (analysis.success, analysis.should_replan) == (False, True)
        assert analysis.error == "Tool crashed"

    def test_unsuccessful_with_trigger_error_replans(self):
        analysis = analyze_step_result(_wrapped({"successful": False, "error": "Page not found"}))
        assert (analysis.success, analysis.should_replan) == (False, True)
        assert analysis.error == "Page not found"

    def test_unsuccessful_with_notion_error_replans(self):
        raw = _wrapped({"successful": False, "error": "X is neither a page nor a database"})
        assert _pair(raw) == (False, True)

    def test_unsuccessful_with_other_error_does_not_replan(self):
        assert _pair(_wrapped({"successful": False, "error": "disk full"})) == (False, False)

    def test_unsuccessful_without_error_uses_default_message(self):
        analysis = analyze_step_result(_wrapped({"successful": False}))
        assert analysis.success is False
        assert analysis.error == "Tool execution failed"
        assert analysis.should_replan is False

    def test_empty_data_object_fails_and_replans(self):
        analysis = analyze_step_result(_wrapped({"successful": True, "data": {}}))
        assert (analysis.success, analysis.should_replan) == (False, True)
        assert analysis.error == "Tool returned empty data"

    def test_missing_data_fails_and_replans(self):
        assert _pair(_wrapped({"successful": True})) == (False, True)

    def test_null_data_fails_and_replans(self):
        assert _pair(_wrapped({"successful": True, "data": None})) == (False, True)

    def test_unparseable_json_fails_and_replans(self):
        analysis = analyze_step_result(_wrapped("this is not json"))
        assert (analysis.success, analysis.should_replan) == (False, True)
        assert analysis.error.startswith("Unparseable tool response")

    def test_bare_json_value_fails_and_replans(self):
        assert _pair(_wrapped("42")) == (False, True)

    def test_wrapped_shape_takes_priority_over_type_key(self):
        raw = _wrapped({"successful": True, "data": {"a": 1}})
        raw["type"] = "error"
        raw["error"] = "should be ignored"
        assert _pair(raw) == (True, False)


# ---------------------------------------------------------------------------
# Typed action results
# ---------------------------------------------------------------------------


class TestTypedResults:
    def test_error_with_trigger_replans(self):
        analysis = analyze_step_result({"type": "error", "error": "Rate limit exceeded"})
        assert (analysis.success, analysis.should_replan) == (False, True)
        assert analysis.error == "Rate limit exceeded"

    def test_error_without_trigger_does_not_replan(self):
        assert _pair({"type": "error", "error": "division by zero"}) == (False, False)

    def test_structured_error_is_stringified(self):
        analysis = analyze_step_result({"type": "error", "error": {"code": 403, "message": "Permission denied"}})
        assert analysis.success is False
        assert analysis.should_replan is True
        assert "Permission denied" in analysis.error

    @pytest.mark.parametrize("raw", [{"type": "error"}, {"type": "error", "error": None}, {"type": "error", "error": ""}])
    def test_error_without_message_uses_default(self, raw):
        analysis = analyze_step_result(raw)
        assert analysis.success is False
        assert analysis.error == "Tool returned an error"

    @pytest.mark.parametrize("content", ["ok", {"a": 1}, [1], 0, False])
    def test_tool_result_with_content_succeeds(self, content):
        assert _pair({"type": "tool_result", "content": content}) == (True, False)

    @pytest.mark.parametrize("content", [None, "", "   ", {}, [], ()])
    def test_tool_result_without_content_fails_without_replan(self, content):
        assert _pair({"type": "tool_result", "content": content}) == (False, False)

    def test_final_answer_always_succeeds(self):
        assert _pair({"type": "final_answer", "content": ""}) == (True, False)

    def test_unknown_shape_defaults_to_success_and_logs(self, caplog):
        with caplog.at_level(logging.WARNING, logger="planflow.execution.outcome"):
            assert _pair({"something": "else"}) == (True, False)
        assert "Unrecognized action result shape" in caplog.text


# ---------------------------------------------------------------------------
# Heuristic + purity
# ---------------------------------------------------------------------------


class TestReplanHeuristic:
    def test_default_trigger_list(self):
        assert DEFAULT_REPLAN_TRIGGERS == (
            "tool not found",
            "tool unavailable",
            "missing required parameter",
            "authentication failed",
            "permission denied",
            "quota exceeded",
            "service unavailable",
            "timeout",
            "rate limit",
            "not found",
            "neither a page nor a database",
            "invalid",
        )

    def test_case_insensitive(self):
        assert should_replan("Gateway TIMEOUT after 30s") is True
        assert should_replan("Authentication Failed for user") is True

    def test_no_match(self):
        assert should_replan("disk full") is False

    def test_custom_triggers(self):
        raw = {"type": "error", "error": "disk full"}
        assert _pair(raw, triggers=["Disk Full"]) == (False, True)
        assert _pair(raw) == (False, False)


class TestPurity:
    @pytest.mark.parametrize("raw", [
        _wrapped({"successful": True, "data": {"ok": 1}}),
        _wrapped({"successful": False, "error": "invalid id"}),
        _wrapped("garbage"),
        {"type": "error", "error": "timeout"},
        {"type": "tool_result", "content": ""},
        {"unknown": True},
    ])
    def test_same_input_same_analysis(self, raw):
        before = copy.deepcopy(raw)
        first = analyze_step_result(raw)
        second = analyze_step_result(raw)
        assert first == second
        assert raw == before


class TestUnwrappedContent:
    def test_tool_result_content(self):
        assert unwrapped_content(parse_action_result({"type": "tool_result", "content": {"x": 1}})) == {"x": 1}

    def test_wrapped_inner_payload(self):
        payload = {"successful": True, "data": {"id": 7}}
        assert unwrapped_content(parse_action_result(_wrapped(payload))) == payload

    def test_wrapped_unparseable_returns_raw(self):
        raw = _wrapped("nope")
        assert unwrapped_content(parse_action_result(raw)) == raw

    def test_error_returns_raw(self):
        raw = {"type": "error", "error": "x"}
        assert unwrapped_content(parse_action_result(raw)) == raw
