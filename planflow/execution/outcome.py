"""Rule-based classification of tool/action results.

Raw collaborator output is parsed once, at the boundary, into one of the
``ActionOutcome`` variants; ``analyze_step_result`` then decides success and
whether the failure should send the plan back to the planner.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from planflow.execution.envelope import as_mapping, extract_wrapped_text
from planflow.execution.schemas import (
    DEFAULT_REPLAN_TRIGGERS,
    ActionOutcome,
    ErrorOutcome,
    FinalAnswerOutcome,
    StepAnalysis,
    ToolResultOutcome,
    UnknownOutcome,
    WrappedToolOutcome,
)

logger = logging.getLogger(__name__)

_OUTCOME_TYPES = (
    WrappedToolOutcome,
    ErrorOutcome,
    ToolResultOutcome,
    FinalAnswerOutcome,
    UnknownOutcome,
)


def error_text(error: Any) -> str:
    """Stringify an error payload; non-strings are JSON-encoded."""
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error, default=str)
    except (TypeError, ValueError):
        return str(error)


def should_replan(message: str, triggers: Iterable[str] = DEFAULT_REPLAN_TRIGGERS) -> bool:
    """Case-insensitive substring match of *message* against the trigger list."""
    lowered = message.lower()
    return any(trigger.lower() in lowered for trigger in triggers)


def parse_action_result(raw: Any) -> ActionOutcome:
    """Convert raw ``act`` output into exactly one outcome variant."""
    if isinstance(raw, _OUTCOME_TYPES):
        return raw

    wrapped = extract_wrapped_text(raw)
    if wrapped is not None:
        is_error, text = wrapped
        return WrappedToolOutcome(is_error=is_error, text=text, raw=raw)

    data = as_mapping(raw)
    kind = data.get("type") if isinstance(data, dict) else None
    if kind == "error":
        return ErrorOutcome(error=data.get("error"), raw=raw)
    if kind == "tool_result":
        return ToolResultOutcome(content=data.get("content"), raw=raw)
    if kind == "final_answer":
        return FinalAnswerOutcome(content=data.get("content"), raw=raw)
    return UnknownOutcome(raw=raw)


def _has_content(content: Any) -> bool:
    if content is None:
        return False
    if isinstance(content, str):
        return bool(content.strip())
    if isinstance(content, (dict, list, tuple)):
        return bool(content)
    return True


def _analyze_wrapped(outcome: WrappedToolOutcome, triggers: Iterable[str]) -> StepAnalysis:
    if outcome.is_error:
        return StepAnalysis(success=False, should_replan=True, error=outcome.text or "Tool returned an error")

    try:
        inner = json.loads(outcome.text)
    except ValueError as e:
        return StepAnalysis(success=False, should_replan=True, error=f"Unparseable tool response: {e}")

    if not isinstance(inner, dict):
        # Bare JSON values carry no data envelope.
        return StepAnalysis(success=False, should_replan=True, error="Tool returned empty data")

    if inner.get("successful") is False:
        message = error_text(inner.get("error") or "Tool execution failed")
        return StepAnalysis(success=False, should_replan=should_replan(message, triggers), error=message)

    data = inner.get("data")
    if not data:
        return StepAnalysis(success=False, should_replan=True, error="Tool returned empty data")

    return StepAnalysis(success=True, should_replan=False)


def analyze_step_result(
    result: Any,
    triggers: Iterable[str] = DEFAULT_REPLAN_TRIGGERS,
) -> StepAnalysis:
    """Classify one action result as success/failure and decide on replanning.

    Accepts raw ``act`` output or an already-parsed outcome. Pure: the same
    input always yields the same analysis.
    """
    outcome = parse_action_result(result)
    triggers = tuple(triggers)

    if isinstance(outcome, WrappedToolOutcome):
        return _analyze_wrapped(outcome, triggers)

    if isinstance(outcome, ErrorOutcome):
        message = error_text(outcome.error) if outcome.error else "Tool returned an error"
        return StepAnalysis(success=False, should_replan=should_replan(message, triggers), error=message)

    if isinstance(outcome, ToolResultOutcome):
        if _has_content(outcome.content):
            return StepAnalysis(success=True, should_replan=False)
        return StepAnalysis(success=False, should_replan=False, error="Tool returned no content")

    if isinstance(outcome, FinalAnswerOutcome):
        return StepAnalysis(success=True, should_replan=False)

    logger.warning(
        "Unrecognized action result shape %s; treating as success",
        type(outcome.raw).__name__,
    )
    return StepAnalysis(success=True, should_replan=False)


def unwrapped_content(outcome: ActionOutcome) -> Any:
    """Content worth storing on the step for later argument resolution."""
    if isinstance(outcome, ToolResultOutcome):
        return outcome.content
    if isinstance(outcome, WrappedToolOutcome):
        try:
            return json.loads(outcome.text)
        except ValueError:
            return outcome.raw
    return outcome.raw
