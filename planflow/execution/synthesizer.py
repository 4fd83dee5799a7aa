"""Turn the executed step results of one run into a ``PlanExecutionResult``."""

from __future__ import annotations

import json
from typing import Any

from planflow.execution.dag_utils import (
    all_steps_terminal,
    find_downstream,
    has_executable_steps,
)
from planflow.execution.schemas import (
    ExecutionPlan,
    ExecutorConfig,
    PlanExecutionResultType,
    PlanSignals,
    ReplanContextData,
    StepExecutionResult,
)

# Ordered (substrings, classification) pairs; the first match wins.
PRIMARY_CAUSE_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("invalid",), "Invalid input provided"),
    (("not found",), "Resource not found"),
    (("permission", "auth"), "Permission or authentication error"),
    (("timeout", "unavailable"), "Service unavailable or timeout"),
)

UNKNOWN_CAUSE = "Unknown failure"


def classify_primary_cause(
    error: str,
    rules: tuple[tuple[tuple[str, ...], str], ...] = PRIMARY_CAUSE_RULES,
) -> str:
    """Short classification of an error string, or the string itself."""
    lowered = error.lower()
    for patterns, classification in rules:
        if any(p in lowered for p in patterns):
            return classification
    return error


def extract_signals(plan: ExecutionPlan) -> PlanSignals | None:
    """Planner signals, preferring the ``metadata["signals"]`` mirror."""
    raw = plan.metadata.get("signals") if plan.metadata else None
    if raw is None:
        return plan.signals
    if isinstance(raw, PlanSignals):
        return raw
    if isinstance(raw, dict):
        return PlanSignals.model_validate(raw)
    return plan.signals


class ExecutionSummary:
    """Partition of a run's step ids into successful / failed / skipped."""

    def __init__(self, plan: ExecutionPlan, executed: list[StepExecutionResult]) -> None:
        self.executed = executed
        self.successful: list[str] = []
        self.failed: list[str] = []
        for r in executed:
            bucket = self.successful if r.success else self.failed
            if r.step_id not in bucket:
                bucket.append(r.step_id)
        attempted = set(self.successful) | set(self.failed)
        self.skipped = [s.id for s in plan.steps if s.id not in attempted]
        self.total = len(plan.steps)

    def tally(self) -> str:
        return (
            f"Success: {len(self.successful)}, Failed: {len(self.failed)}, "
            f"Skipped: {len(self.skipped)}"
        )


def determine_result_type(
    plan: ExecutionPlan,
    summary: ExecutionSummary,
    signals: PlanSignals | None,
    config: ExecutorConfig,
) -> tuple[PlanExecutionResultType, str]:
    """Ordered decision table mapping a finished run to ``(type, feedback)``."""
    if signals is not None and signals.has_problems:
        replans = int((plan.metadata or {}).get("replansCount", 0) or 0)
        if config.max_replans is not None and replans >= config.max_replans:
            return (
                PlanExecutionResultType.EXECUTION_COMPLETE,
                f"Replan limit reached ({replans}/{config.max_replans}). "
                f"Cannot continue with missing inputs: {json.dumps(signals.needs)}",
            )
        return (
            PlanExecutionResultType.NEEDS_REPLAN,
            f"Plan needs replanning due to signals. Success: {len(summary.successful)}, "
            f"Failed: {len(summary.failed)}, "
            f"Signals: {signals.model_dump_json(exclude_none=True)}",
        )

    if not summary.failed and len(summary.successful) == summary.total:
        return (
            PlanExecutionResultType.EXECUTION_COMPLETE,
            f"Plan executed successfully. Completed {len(summary.successful)}/{summary.total} steps.",
        )

    if summary.failed or (all_steps_terminal(plan) and summary.skipped):
        return (
            PlanExecutionResultType.NEEDS_REPLAN,
            f"Plan needs replanning. {summary.tally()}",
        )

    if not has_executable_steps(plan) and len(summary.successful) < summary.total:
        return (
            PlanExecutionResultType.DEADLOCK,
            "Execution deadlock: no more steps can be executed",
        )

    return (
        PlanExecutionResultType.EXECUTION_COMPLETE,
        f"Execution finished. {summary.tally()}",
    )


def build_replan_context(
    plan: ExecutionPlan,
    summary: ExecutionSummary,
    signals: PlanSignals | None,
    config: ExecutorConfig,
) -> ReplanContextData:
    """Preserved steps, failure patterns and a primary cause for the re-planner."""
    failures = [r for r in summary.executed if not r.success]

    patterns: list[str] = []
    primary_cause = UNKNOWN_CAUSE
    for result in failures:
        if not result.error:
            continue
        lowered = result.error.lower()
        if lowered not in patterns:
            patterns.append(lowered)
        if primary_cause == UNKNOWN_CAUSE:
            primary_cause = classify_primary_cause(result.error)

    blocked: dict[str, list[str]] = {}
    for step_id in summary.failed:
        downstream = find_downstream(step_id, plan.steps)
        if downstream:
            blocked[step_id] = [s.id for s in plan.steps if s.id in downstream]

    context: dict[str, Any] = {
        "successful_steps": list(summary.successful),
        "failed_steps": list(summary.failed),
        "skipped_steps": list(summary.skipped),
        "blocked_steps": blocked,
        "has_signals_problems": bool(signals and signals.has_problems),
        "signals": signals.model_dump(exclude_none=True) if signals else {},
    }

    return ReplanContextData(
        preserved_steps=[r for r in summary.executed if r.success],
        failure_patterns=patterns,
        primary_cause=primary_cause,
        suggested_strategy=config.suggested_strategy,
        context_for_replan=context,
    )
