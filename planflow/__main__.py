"""CLI for planflow.

Usage:
    planflow                     Start the AgentField node (default)
    planflow inspect PLAN.json   Show readiness and progress of a saved plan
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Sequence


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="planflow",
        description="planflow: plan execution engine for LLM agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Show which steps of a saved plan are ready, blocked or done",
    )
    inspect_parser.add_argument("path", help="Path to a plan JSON file")
    inspect_parser.add_argument(
        "--normalize",
        "-n",
        action="store_true",
        help="Reset interrupted steps to pending before inspecting",
    )

    return parser.parse_args(argv)


def _inspect(args: argparse.Namespace) -> int:
    from planflow.execution.dag_utils import (
        find_unknown_dependencies,
        get_plan_progress,
        get_ready_steps,
        normalize_plan_for_execution,
    )
    from planflow.execution.schemas import ExecutionPlan

    with open(args.path, encoding="utf-8") as f:
        plan = ExecutionPlan.model_validate(json.load(f))

    if args.normalize:
        normalize_plan_for_execution(plan)

    progress = get_plan_progress(plan)
    print(f"Plan:     {plan.id} ({plan.strategy or 'no strategy'})")
    print(f"Status:   {plan.status.value}")
    print(
        f"Progress: {progress['completed']}/{progress['total']} completed, "
        f"{progress['failed']} failed, {progress['skipped']} skipped "
        f"({progress['percentage']}%)"
    )

    ready = [s.id for s in get_ready_steps(plan)]
    print(f"Ready:    {', '.join(ready) if ready else '(none)'}")

    for step_id, missing in find_unknown_dependencies(plan).items():
        print(f"  ! {step_id} depends on unknown steps: {', '.join(missing)}")

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI."""
    args = _parse_args(argv)

    if args.command == "inspect":
        return _inspect(args)

    from planflow.app import main as server_main

    server_main()
    return 0


if __name__ == "__main__":
    sys.exit(main())
