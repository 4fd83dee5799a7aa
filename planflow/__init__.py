"""planflow — execution engine for planner-produced step DAGs.

Exports
-------
PlanExecutor
    Runs an ``ExecutionPlan`` round by round and returns a
    ``PlanExecutionResult`` telling the caller whether to replan.
resolve_step_arguments
    Default ``resolve_args`` collaborator.

The agentfield node lives in ``planflow.app`` and is not imported here, so
the executor can be embedded without an AgentField server.
"""

from __future__ import annotations

from planflow.execution.arguments import resolve_step_arguments
from planflow.execution.plan_executor import PlanExecutor
from planflow.execution.schemas import (
    ExecutionContext,
    ExecutionPlan,
    ExecutorConfig,
    PlanExecutionResult,
    PlanExecutionResultType,
    PlanStep,
    UnifiedStatus,
)

__all__ = [
    "ExecutionContext",
    "ExecutionPlan",
    "ExecutorConfig",
    "PlanExecutionResult",
    "PlanExecutionResultType",
    "PlanExecutor",
    "PlanStep",
    "UnifiedStatus",
    "resolve_step_arguments",
]
