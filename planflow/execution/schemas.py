"""Pydantic schemas for plan execution state, tool outcomes and results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _PlanModel(BaseModel):
    """Accepts both snake_case and the planner's camelCase keys on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Status vocabulary
# ---------------------------------------------------------------------------


class UnifiedStatus(str, Enum):
    """Status shared by plans and steps."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    REPLANNING = "replanning"
    WAITING_INPUT = "waiting_input"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    REWRITING = "rewriting"
    OBSERVING = "observing"
    PARALLEL = "parallel"

    STAGNATED = "stagnated"
    TIMEOUT = "timeout"
    DEADLOCK = "deadlock"

    FINAL_ANSWER_RESULT = "final_answer_result"


_S = UnifiedStatus

VALID_STATUS_TRANSITIONS: dict[UnifiedStatus, frozenset[UnifiedStatus]] = {
    _S.PENDING: frozenset({_S.EXECUTING, _S.WAITING_INPUT, _S.CANCELLED, _S.SKIPPED}),
    _S.EXECUTING: frozenset({
        _S.COMPLETED, _S.FAILED, _S.REPLANNING, _S.WAITING_INPUT, _S.PAUSED,
        _S.CANCELLED, _S.REWRITING, _S.OBSERVING, _S.PARALLEL, _S.STAGNATED,
        _S.TIMEOUT, _S.DEADLOCK,
    }),
    _S.COMPLETED: frozenset(),
    _S.FAILED: frozenset({_S.REPLANNING, _S.CANCELLED}),
    _S.REPLANNING: frozenset({_S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.WAITING_INPUT: frozenset({_S.EXECUTING, _S.CANCELLED}),
    _S.PAUSED: frozenset({_S.EXECUTING, _S.CANCELLED}),
    _S.CANCELLED: frozenset(),
    _S.SKIPPED: frozenset(),
    _S.REWRITING: frozenset({_S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.OBSERVING: frozenset({_S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.PARALLEL: frozenset({_S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.STAGNATED: frozenset({_S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.TIMEOUT: frozenset({_S.REPLANNING, _S.CANCELLED}),
    _S.DEADLOCK: frozenset({_S.REPLANNING, _S.CANCELLED}),
    _S.FINAL_ANSWER_RESULT: frozenset(),
}

# Statuses a step cannot leave during a run.
TERMINAL_STEP_STATUSES: frozenset[UnifiedStatus] = frozenset({
    _S.COMPLETED, _S.FAILED, _S.SKIPPED,
})


def is_valid_status_transition(from_status: UnifiedStatus, to_status: UnifiedStatus) -> bool:
    """Return True if ``from_status -> to_status`` is in the transition table."""
    return UnifiedStatus(to_status) in VALID_STATUS_TRANSITIONS[UnifiedStatus(from_status)]


class StepType(str, Enum):
    ACTION = "action"
    DECISION = "decision"
    VERIFICATION = "verification"
    DELEGATION = "delegation"
    AGGREGATION = "aggregation"
    CHECKPOINT = "checkpoint"


# ---------------------------------------------------------------------------
# Plan model
# ---------------------------------------------------------------------------


class PlanSignals(_PlanModel):
    """Structured hints attached by the planner."""

    needs: list[str] = []
    no_discovery_path: list[str] = []
    errors: list[str] = []
    suggested_next_step: str | None = None
    confidence: float | None = None
    estimated_duration: float | None = None
    risk_level: Literal["low", "medium", "high"] | None = None

    @property
    def has_problems(self) -> bool:
        return bool(
            self.needs
            or self.no_discovery_path
            or self.errors
            or self.suggested_next_step
        )


class PlanStep(_PlanModel):
    """One unit of planned work."""

    id: str
    description: str = ""
    type: StepType | None = None
    tool: str | None = None
    agent: str | None = None
    arguments: dict[str, Any] | None = None
    dependencies: list[str] = []
    status: UnifiedStatus = UnifiedStatus.PENDING
    optional: bool = False

    result: Any = None
    error: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    duration_ms: int | None = None

    reasoning: str = ""
    metadata: dict[str, Any] = {}


class ExecutionPlan(_PlanModel):
    """A goal plus an ordered, dependency-linked list of steps."""

    id: str
    strategy: str = ""
    version: str | None = None
    goal: str = ""
    reasoning: str = ""
    steps: list[PlanStep] = []
    status: UnifiedStatus = UnifiedStatus.PENDING
    current_step_index: int = 0
    signals: PlanSignals | None = None
    created_at: float | None = None
    updated_at: float | None = None
    execution_start_time: float | None = None
    execution_end_time: float | None = None
    metadata: dict[str, Any] = {}

    def get_step(self, step_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


# ---------------------------------------------------------------------------
# Actions and parsed action results
# ---------------------------------------------------------------------------


class ToolCallAction(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    tool_name: str
    input: dict[str, Any] = {}


class FinalAnswerAction(BaseModel):
    type: Literal["final_answer"] = "final_answer"
    content: Any = None


class WrappedToolOutcome(BaseModel):
    """MCP envelope: ``{"result": {"isError"?, "content": [{"type": "text", "text": ...}]}}``."""

    kind: Literal["wrapped_tool"] = "wrapped_tool"
    is_error: bool = False
    text: str
    raw: Any = None


class ErrorOutcome(BaseModel):
    kind: Literal["error"] = "error"
    error: Any = None
    raw: Any = None


class ToolResultOutcome(BaseModel):
    kind: Literal["tool_result"] = "tool_result"
    content: Any = None
    raw: Any = None


class FinalAnswerOutcome(BaseModel):
    kind: Literal["final_answer"] = "final_answer"
    content: Any = None
    raw: Any = None


class UnknownOutcome(BaseModel):
    kind: Literal["unknown"] = "unknown"
    raw: Any = None


ActionOutcome = Union[
    WrappedToolOutcome,
    ErrorOutcome,
    ToolResultOutcome,
    FinalAnswerOutcome,
    UnknownOutcome,
]


class StepAnalysis(BaseModel):
    """Classification of one action result."""

    model_config = ConfigDict(frozen=True)

    success: bool
    should_replan: bool
    error: str | None = None


class ArgumentResolution(BaseModel):
    args: dict[str, Any] = {}
    missing: list[str] = []


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


class ExecutionContext(_PlanModel):
    """Caller-supplied context for one run.

    ``agent_context`` may be any object exposing ``session.add_entry(input, details)``;
    the executor uses it only as an event sink.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    agent_context: Any = None
    planner_metadata: dict[str, Any] = {}
    user_context: dict[str, Any] = {}
    agent_identity: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class StepExecutionResult(BaseModel):
    """Record of one execution attempt of one step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    step: PlanStep
    success: bool
    result: Any = None
    error: str | None = None
    executed_at: float
    duration_ms: int = 0


class PlanExecutionResultType(str, Enum):
    EXECUTION_COMPLETE = "execution_complete"
    NEEDS_REPLAN = "needs_replan"
    DEADLOCK = "deadlock"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    BUDGET_EXCEEDED = "budget_exceeded"


class ReplanContextData(BaseModel):
    """Payload handed to the upstream re-planner."""

    preserved_steps: list[StepExecutionResult] = []
    failure_patterns: list[str] = []
    primary_cause: str = "Unknown failure"
    suggested_strategy: str = "plan-execute"
    context_for_replan: dict[str, Any] = {}


class PlanExecutionResult(BaseModel):
    """Outcome of one ``PlanExecutor.run`` call."""

    type: PlanExecutionResultType
    plan_id: str
    strategy: str = ""
    total_steps: int
    executed_steps: list[StepExecutionResult] = []
    successful_steps: list[str] = []
    failed_steps: list[str] = []
    skipped_steps: list[str] = []
    has_signals_problems: bool = False
    signals: PlanSignals | None = None
    execution_time_ms: int = 0
    feedback: str = ""
    replan_context: ReplanContextData | None = None


class ResultAnalysis(BaseModel):
    """Legacy summary shape kept for older callers."""

    is_complete: bool
    is_successful: bool
    feedback: str
    should_continue: bool
    suggested_next_action: str | None = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_REPLAN_TRIGGERS: tuple[str, ...] = (
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


class ExecutorConfig(BaseModel):
    """Configuration for the plan executor."""

    enable_rewoo: bool = False  # tags step events only
    max_retries: int = 0  # reserved; retries belong to the act collaborator
    max_execution_rounds: int = Field(default=10, ge=1)
    replan_triggers: list[str] = list(DEFAULT_REPLAN_TRIGGERS)
    max_replans: int | None = None  # None disables the signals replan limit
    suggested_strategy: str = "plan-execute"
