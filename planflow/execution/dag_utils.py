"""Pure dependency-graph helpers over an ``ExecutionPlan``'s steps."""

from __future__ import annotations

import logging
from collections import defaultdict, deque

from planflow.execution.schemas import (
    TERMINAL_STEP_STATUSES,
    ExecutionPlan,
    PlanStep,
    UnifiedStatus,
    is_valid_status_transition,
)

logger = logging.getLogger(__name__)


def get_ready_steps(plan: ExecutionPlan) -> list[PlanStep]:
    """Pending steps whose dependencies are all ``completed``, in plan order.

    A failed (or unknown) dependency keeps the dependent out of the ready set
    for the rest of the run.
    """
    status_by_id = {s.id: s.status for s in plan.steps}
    ready: list[PlanStep] = []
    for step in plan.steps:
        if step.status != UnifiedStatus.PENDING:
            continue
        if all(status_by_id.get(dep) == UnifiedStatus.COMPLETED for dep in step.dependencies):
            ready.append(step)
    return ready


def has_executable_steps(plan: ExecutionPlan) -> bool:
    """True while a step is in flight or could still be started."""
    if any(s.status == UnifiedStatus.EXECUTING for s in plan.steps):
        return True
    return bool(get_ready_steps(plan))


def all_steps_terminal(plan: ExecutionPlan) -> bool:
    return all(s.status in TERMINAL_STEP_STATUSES for s in plan.steps)


def find_downstream(step_id: str, steps: list[PlanStep]) -> set[str]:
    """Ids of all steps transitively dependent on ``step_id`` (excluding itself)."""
    dependents: dict[str, list[str]] = defaultdict(list)
    for step in steps:
        for dep in step.dependencies:
            dependents[dep].append(step.id)

    visited: set[str] = set()
    queue = deque(dependents.get(step_id, []))
    while queue:
        name = queue.popleft()
        if name in visited or name == step_id:
            continue
        visited.add(name)
        queue.extend(dependents.get(name, []))

    return visited


def find_unknown_dependencies(plan: ExecutionPlan) -> dict[str, list[str]]:
    """Map step id -> dependency ids that name no step in the plan."""
    known = {s.id for s in plan.steps}
    unknown: dict[str, list[str]] = {}
    for step in plan.steps:
        missing = [dep for dep in step.dependencies if dep not in known]
        if missing:
            unknown[step.id] = missing
    return unknown


def transition_step(step: PlanStep, to_status: UnifiedStatus) -> None:
    """Move *step* to *to_status*; off-table transitions are logged, not refused."""
    if step.status != to_status and not is_valid_status_transition(step.status, to_status):
        logger.debug(
            "Unexpected step transition %s: %s -> %s",
            step.id, UnifiedStatus(step.status).value, UnifiedStatus(to_status).value,
        )
    step.status = UnifiedStatus(to_status)


def normalize_plan_for_execution(plan: ExecutionPlan) -> ExecutionPlan:
    """Repair step statuses left behind by an interrupted or blocked run.

    Steps stuck in ``executing`` (crash mid-step) or parked in ``waiting_input``
    (missing arguments) go back to ``pending``. ``current_step_index`` then
    points at the first pending step, if any.
    """
    first_pending = -1
    for index, step in enumerate(plan.steps):
        if step.status in (UnifiedStatus.EXECUTING, UnifiedStatus.WAITING_INPUT):
            logger.debug("Resetting step %s from %s to pending", step.id, UnifiedStatus(step.status).value)
            step.status = UnifiedStatus.PENDING
        if first_pending == -1 and step.status == UnifiedStatus.PENDING:
            first_pending = index

    if first_pending >= 0:
        plan.current_step_index = first_pending

    for step_id, missing in find_unknown_dependencies(plan).items():
        logger.warning("Step %s depends on unknown steps %s; it will never become ready", step_id, missing)

    return plan


def is_plan_complete(plan: ExecutionPlan) -> bool:
    """Every step completed or skipped; optional steps may also have failed."""
    return all(
        s.status in (UnifiedStatus.COMPLETED, UnifiedStatus.SKIPPED)
        or (s.optional and s.status == UnifiedStatus.FAILED)
        for s in plan.steps
    )


def get_plan_progress(plan: ExecutionPlan) -> dict[str, int]:
    total = len(plan.steps)
    completed = sum(1 for s in plan.steps if s.status == UnifiedStatus.COMPLETED)
    failed = sum(1 for s in plan.steps if s.status == UnifiedStatus.FAILED)
    skipped = sum(1 for s in plan.steps if s.status == UnifiedStatus.SKIPPED)
    percentage = round(completed / total * 100) if total else 0
    return {
        "total": total,
        "completed": completed,
        "failed": failed,
        "skipped": skipped,
        "percentage": percentage,
    }
