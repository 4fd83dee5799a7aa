"""Plan executor: run every step that can run, then report whether to replan."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from planflow.execution.arguments import find_unresolved_placeholders
from planflow.execution.dag_utils import (
    get_plan_progress,
    get_ready_steps,
    normalize_plan_for_execution,
    transition_step,
)
from planflow.execution.events import PlanEventSink, emit_event, resolve_event_sink
from planflow.execution.outcome import (
    analyze_step_result,
    parse_action_result,
    unwrapped_content,
)
from planflow.execution.schemas import (
    ArgumentResolution,
    ExecutionPlan,
    ExecutorConfig,
    FinalAnswerAction,
    PlanExecutionResult,
    PlanExecutionResultType,
    PlanStep,
    ResultAnalysis,
    StepExecutionResult,
    ToolCallAction,
    UnifiedStatus,
)
from planflow.execution.synthesizer import (
    ExecutionSummary,
    build_replan_context,
    determine_result_type,
    extract_signals,
)

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _coerce_resolution(value: Any) -> ArgumentResolution:
    if isinstance(value, ArgumentResolution):
        return value
    if isinstance(value, tuple) and len(value) == 2:
        return ArgumentResolution(args=value[0] or {}, missing=list(value[1] or []))
    return ArgumentResolution.model_validate(value)


class PlanExecutor:
    """Executes an ``ExecutionPlan`` round by round.

    Args:
        act: Async callable ``(action) -> raw result``. Receives a
            ``ToolCallAction`` for every step bound to a tool.
        resolve_args: Async callable ``(raw_args, steps, context)`` returning an
            ``ArgumentResolution`` (or an equivalent ``{"args", "missing"}`` dict).
        config: Executor configuration. Uses defaults if not provided.
        note_fn: Optional observability callback (e.g. ``app.note``), used as the
            event sink when the context carries no session.
        event_sink: Optional explicit ``PlanEventSink``; wins over both of the above.
    """

    def __init__(
        self,
        act: Callable,
        resolve_args: Callable,
        config: ExecutorConfig | None = None,
        note_fn: Callable | None = None,
        event_sink: PlanEventSink | None = None,
    ) -> None:
        if not callable(act):
            raise TypeError("act must be callable")
        if not callable(resolve_args):
            raise TypeError("resolve_args must be callable")
        self.act = act
        self.resolve_args = resolve_args
        self.config = config or ExecutorConfig()
        self.note_fn = note_fn
        self.event_sink = event_sink

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    async def resume_if_waiting_input(
        self, plan: ExecutionPlan, context: Any, sink: PlanEventSink,
    ) -> None:
        """Flip a ``waiting_input`` plan back to ``executing`` once its next step can run."""
        if plan.status != UnifiedStatus.WAITING_INPUT:
            return

        next_pending = next((s for s in plan.steps if s.status == UnifiedStatus.PENDING), None)

        if next_pending is not None and next_pending.arguments:
            try:
                resolution = _coerce_resolution(
                    await self.resolve_args(next_pending.arguments, plan.steps, context)
                )
            except Exception:
                logger.exception("Argument resolution failed while resuming plan %s", plan.id)
                resolution = None
            if resolution is not None and not resolution.missing:
                plan.status = UnifiedStatus.EXECUTING
        else:
            plan.status = UnifiedStatus.EXECUTING

        logger.info("Plan %s resume check: waiting_input -> %s", plan.id, UnifiedStatus(plan.status).value)
        await emit_event(
            sink,
            "plan.status.changed",
            {"planId": plan.id},
            {
                "type": "status_changed",
                "from": UnifiedStatus.WAITING_INPUT.value,
                "to": UnifiedStatus(plan.status).value,
                "at": time.time(),
            },
        )

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    def _failed(self, step: PlanStep, error: str, start: float, result: Any = None) -> StepExecutionResult:
        return StepExecutionResult(
            step_id=step.id,
            step=step,
            success=False,
            result=result,
            error=error,
            executed_at=time.time(),
            duration_ms=_elapsed_ms(start),
        )

    async def execute_step_safe(
        self, plan: ExecutionPlan, step: PlanStep, context: Any, sink: PlanEventSink | None = None,
    ) -> StepExecutionResult:
        """Execute one step; every failure becomes a failed ``StepExecutionResult``."""
        sink = sink or resolve_event_sink(context, self.event_sink, self.note_fn)
        start = time.monotonic()

        try:
            # 1. Resolve arguments from previous step results
            if step.arguments:
                resolution = _coerce_resolution(
                    await self.resolve_args(step.arguments, plan.steps, context)
                )
                step.arguments = resolution.args
                missing = list(resolution.missing)
                for name in find_unresolved_placeholders(resolution.args):
                    if name not in missing:
                        missing.append(name)

                if missing:
                    error = f"Missing inputs: {', '.join(missing)}"
                    logger.info("Step %s blocked on input: %s", step.id, missing)
                    transition_step(step, UnifiedStatus.WAITING_INPUT)
                    step.error = error
                    plan.status = UnifiedStatus.WAITING_INPUT
                    return self._failed(step, error, start)

            # 2. Mark as executing
            transition_step(step, UnifiedStatus.EXECUTING)
            step.start_time = time.time()
            await emit_event(
                sink,
                "plan.step.started",
                {"planId": plan.id, "stepId": step.id},
                {
                    "type": "step_started",
                    "at": step.start_time,
                    "description": step.description,
                    "tool": step.tool,
                    "rewooMode": self.config.enable_rewoo,
                },
            )

            # 3. Run the action
            if step.tool and step.tool != "none":
                raw = await self.act(ToolCallAction(tool_name=step.tool, input=step.arguments or {}))
            else:
                raw = FinalAnswerAction(content=step.description).model_dump()
            outcome = parse_action_result(raw)

            # 4. Classify and record on the step
            analysis = analyze_step_result(outcome, self.config.replan_triggers)
            transition_step(step, UnifiedStatus.COMPLETED if analysis.success else UnifiedStatus.FAILED)
            step.result = unwrapped_content(outcome)
            step.error = None if analysis.success else (analysis.error or "Step failed")
            step.end_time = time.time()
            step.duration_ms = _elapsed_ms(start)

            if not analysis.success:
                logger.info(
                    "Step %s failed (replan=%s): %s",
                    step.id, analysis.should_replan, step.error,
                )

            await emit_event(
                sink,
                "plan.step.finished",
                {"planId": plan.id, "stepId": step.id},
                {
                    "type": "step_finished",
                    "at": step.end_time,
                    "success": analysis.success,
                    "shouldReplan": analysis.should_replan,
                    "rewooMode": self.config.enable_rewoo,
                },
            )

            return StepExecutionResult(
                step_id=step.id,
                step=step,
                success=analysis.success,
                result=outcome.raw,
                error=step.error,
                executed_at=time.time(),
                duration_ms=_elapsed_ms(start),
            )

        except Exception as e:
            logger.exception("Step %s raised during execution", step.id)
            step.status = UnifiedStatus.FAILED
            step.error = str(e) or type(e).__name__
            step.end_time = time.time()
            return self._failed(step, step.error, start)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    async def execute_all_possible_steps(
        self, plan: ExecutionPlan, context: Any, sink: PlanEventSink | None = None,
    ) -> list[StepExecutionResult]:
        """Run ready steps round by round until none are ready or the round budget is spent."""
        sink = sink or resolve_event_sink(context, self.event_sink, self.note_fn)
        executed: list[StepExecutionResult] = []
        rounds = 0

        while rounds < self.config.max_execution_rounds:
            ready = get_ready_steps(plan)
            if not ready:
                break

            logger.debug("Plan %s round %d: %s", plan.id, rounds + 1, [s.id for s in ready])
            # Sequential on purpose: later steps may resolve arguments from earlier ones.
            for step in ready:
                executed.append(await self.execute_step_safe(plan, step, context, sink))

            rounds += 1

        if rounds >= self.config.max_execution_rounds and get_ready_steps(plan):
            logger.warning(
                "Plan %s stopped after %d rounds with steps still ready",
                plan.id, rounds,
            )

        return executed

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, plan: ExecutionPlan, context: Any = None) -> PlanExecutionResult:
        """Execute all possible steps of *plan* and summarize the outcome.

        Mutates *plan* in place (step statuses, results, resolved arguments).
        Never raises for step-level failures.
        """
        start = time.monotonic()
        sink = resolve_event_sink(context, self.event_sink, self.note_fn)

        normalize_plan_for_execution(plan)
        await self.resume_if_waiting_input(plan, context, sink)

        signals = extract_signals(plan)
        has_signals_problems = bool(signals and signals.has_problems)
        plan.execution_start_time = time.time()

        await emit_event(
            sink,
            "plan.execution.started",
            {"planId": plan.id},
            {
                "type": "plan_started",
                "at": plan.execution_start_time,
                "totalSteps": len(plan.steps),
                "hasSignalsProblems": has_signals_problems,
                "signals": signals.model_dump(exclude_none=True) if signals else None,
            },
        )

        executed = await self.execute_all_possible_steps(plan, context, sink)

        summary = ExecutionSummary(plan, executed)
        result_type, feedback = determine_result_type(plan, summary, signals, self.config)
        execution_time_ms = _elapsed_ms(start)
        plan.execution_end_time = time.time()

        logger.info(
            "Plan %s finished: %s (%s)", plan.id, result_type.value, summary.tally(),
        )

        await emit_event(
            sink,
            "plan.execution.completed",
            {"planId": plan.id},
            {
                "type": "plan_completed",
                "at": plan.execution_end_time,
                "executionTime": execution_time_ms,
                "resultType": result_type.value,
                "successfulSteps": len(summary.successful),
                "failedSteps": len(summary.failed),
                "skippedSteps": len(summary.skipped),
                "hasSignalsProblems": has_signals_problems,
                "progress": get_plan_progress(plan)["percentage"],
            },
        )

        replan_context = None
        if result_type == PlanExecutionResultType.NEEDS_REPLAN:
            replan_context = build_replan_context(plan, summary, signals, self.config)

        return PlanExecutionResult(
            type=result_type,
            plan_id=plan.id,
            strategy=plan.strategy,
            total_steps=len(plan.steps),
            executed_steps=executed,
            successful_steps=summary.successful,
            failed_steps=summary.failed,
            skipped_steps=summary.skipped,
            has_signals_problems=has_signals_problems,
            signals=signals,
            execution_time_ms=execution_time_ms,
            feedback=feedback,
            replan_context=replan_context,
        )

    async def run_legacy(self, plan: ExecutionPlan, context: Any = None) -> ResultAnalysis:
        """``run`` mapped onto the older ``ResultAnalysis`` shape."""
        result = await self.run(plan, context)
        complete = result.type == PlanExecutionResultType.EXECUTION_COMPLETE
        replan = result.type == PlanExecutionResultType.NEEDS_REPLAN
        return ResultAnalysis(
            is_complete=complete,
            is_successful=complete,
            feedback=result.feedback,
            should_continue=replan,
            suggested_next_action="Replan" if replan else None,
        )
