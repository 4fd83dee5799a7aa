"""planflow.app — plan executor Agent entry point.

Exposes:
  - ``app``: Agent instance with node_id='planflow'
  - ``execute_plan``: reasoner that drives one plan through ``PlanExecutor``
  - ``main``: entry point for ``python -m planflow``
"""

from __future__ import annotations

import os
from typing import Callable

from agentfield import Agent
from planflow.execution.arguments import resolve_step_arguments
from planflow.execution.envelope import unwrap_call_result as _unwrap
from planflow.execution.plan_executor import PlanExecutor
from planflow.execution.schemas import (
    ExecutionContext,
    ExecutionPlan,
    ExecutorConfig,
    ToolCallAction,
)

NODE_ID = os.getenv("NODE_ID", "planflow")

app = Agent(
    node_id=NODE_ID,
    version="1.0.0",
    description="Plan executor: runs planner-produced step DAGs and reports replan decisions",
    agentfield_server=os.getenv("AGENTFIELD_SERVER", "http://localhost:8080"),
    api_key=os.getenv("AGENTFIELD_API_KEY"),
)


def make_call_act(call_fn: Callable, tool_node: str) -> Callable:
    """Build an ``act`` collaborator that dispatches tool calls through ``call_fn``.

    Each tool step becomes ``call_fn(f"{tool_node}.{tool_name}", **input)``.
    A failed call envelope is reported as an error result rather than raised.
    """

    async def act(action: ToolCallAction):
        target = f"{tool_node}.{action.tool_name}" if tool_node else action.tool_name
        raw = await call_fn(target, **action.input)
        try:
            return _unwrap(raw, target)
        except RuntimeError as e:
            return {"type": "error", "error": str(e)}

    return act


@app.reasoner()
async def execute_plan(
    plan: dict,
    context: dict | None = None,
    config: dict | None = None,
    tool_node: str = "",
) -> dict:
    """Run every executable step of *plan* and return the execution summary.

    Tool steps are dispatched to ``{tool_node}.{step.tool}`` via ``app.call``.
    Returns ``{"result": PlanExecutionResult, "plan": ExecutionPlan}`` dumps so
    the caller can persist the mutated plan and hand ``result.replan_context``
    to its planner.
    """
    cfg = ExecutorConfig(**(config or {}))
    execution_plan = ExecutionPlan.model_validate(plan)
    execution_context = ExecutionContext(**(context or {}))

    executor = PlanExecutor(
        act=make_call_act(app.call, tool_node),
        resolve_args=resolve_step_arguments,
        config=cfg,
        note_fn=app.note,
    )
    result = await executor.run(execution_plan, execution_context)

    return {
        "result": result.model_dump(mode="json"),
        "plan": execution_plan.model_dump(mode="json"),
    }


def main() -> None:
    """Entry point for ``python -m planflow`` and the ``planflow`` console script."""
    app.run(port=int(os.getenv("PORT", "8005")), host="0.0.0.0")


if __name__ == "__main__":
    main()
