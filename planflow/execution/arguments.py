"""Step argument resolution.

``resolve_step_arguments`` is the default ``resolve_args`` collaborator: it
fills ``{{step.result.path}}`` templates from earlier step results and
``CONTEXT.<root>.<path>`` references from the execution context, and reports
everything it could not fill in ``missing``.

``find_unresolved_placeholders`` is applied by the executor to whatever a
resolver returns, so placeholder text substituted by a lenient resolver
still counts as a missing input.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from planflow.execution.envelope import as_mapping, unwrap_tool_payload
from planflow.execution.schemas import ArgumentResolution, PlanStep, UnifiedStatus

logger = logging.getLogger(__name__)

SENTINEL_VALUES: tuple[str, ...] = (
    "NOT_FOUND",
    "MISSING",
    "INVALID",
    "ERROR",
    "NULL",
    "UNDEFINED",
)

_TEMPLATE_RE = re.compile(r"\{\{([^.}]+)\.result([\w\[\]\.]*)\}\}")
_PATH_SEGMENT_RE = re.compile(r"\w+|\[\d+\]")
_STEP_NUMBER_RE = re.compile(r"^step-(\d+)$")

# CONTEXT.<root> -> ExecutionContext field
_CONTEXT_ROOTS = {
    "userContext": "user_context",
    "plannerMetadata": "planner_metadata",
    "agentIdentity": "agent_identity",
}

_NOT_FOUND = object()


def sentinel_input_name(value: str) -> str | None:
    """Return the missing-input name a sentinel string stands for, else None.

    ``"NOT_FOUND"`` -> ``"NOT_FOUND"``; ``"MISSING:channel_id"`` -> ``"channel_id"``.
    """
    for sentinel in SENTINEL_VALUES:
        if value == sentinel:
            return value
        if value.startswith(sentinel + ":"):
            return value.split(":")[1].strip() or "invalid_value"
    return None


def find_unresolved_placeholders(value: Any) -> list[str]:
    """Scan a resolved argument tree for sentinel strings (dicts/lists recursively)."""
    found: list[str] = []

    def _walk(node: Any) -> None:
        if isinstance(node, str):
            name = sentinel_input_name(node)
            if name is not None and name not in found:
                found.append(name)
        elif isinstance(node, dict):
            for child in node.values():
                _walk(child)
        elif isinstance(node, (list, tuple)):
            for child in node:
                _walk(child)

    _walk(value)
    return found


def evaluate_path(obj: Any, path: str) -> Any:
    """Follow ``.a[0].b`` style paths; returns a private sentinel when absent."""
    current = obj
    for segment in _PATH_SEGMENT_RE.findall(path.lstrip(".")):
        current = as_mapping(current)
        if segment.startswith("["):
            index = int(segment[1:-1])
            if not isinstance(current, (list, tuple)) or index >= len(current):
                return _NOT_FOUND
            current = current[index]
        elif isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return _NOT_FOUND
    return current


def _find_step(identifier: str, steps: list[PlanStep]) -> PlanStep | None:
    for step in steps:
        if step.id == identifier:
            return step
    match = _STEP_NUMBER_RE.match(identifier)
    if match:
        index = int(match.group(1)) - 1
        if 0 <= index < len(steps):
            return steps[index]
    return None


def _context_value(context: Any, dotted: str) -> Any:
    root, _, rest = dotted.partition(".")
    field = _CONTEXT_ROOTS.get(root)
    if field is None or context is None:
        return None
    if isinstance(context, dict):
        base = context.get(field, context.get(root))
    else:
        base = getattr(context, field, None)
    if not rest:
        return base
    value = evaluate_path(base, rest)
    return None if value is _NOT_FOUND else value


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class _Resolver:
    def __init__(self, steps: list[PlanStep], context: Any) -> None:
        self.steps = steps
        self.context = context
        self.missing: list[str] = []

    def _add_missing(self, name: str) -> None:
        if name not in self.missing:
            self.missing.append(name)

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        return value

    def _resolve_string(self, value: str) -> Any:
        sentinel = sentinel_input_name(value)
        if sentinel is not None:
            logger.warning("Placeholder value %r in step arguments", value)
            self._add_missing(sentinel)
            return value

        if value == "NEEDS-INPUT":
            self._add_missing("input")
            return value
        if value.startswith("NEEDS-INPUT:"):
            self._add_missing(value[len("NEEDS-INPUT:"):].strip() or "input")
            return value
        if value.startswith("NO-DISCOVERY-PATH:"):
            self._add_missing(value[len("NO-DISCOVERY-PATH:"):].strip() or "no_discovery_path")
            return value

        if value.startswith("CONTEXT."):
            ctx_path = value[len("CONTEXT."):]
            resolved = _context_value(self.context, ctx_path)
            if resolved is None:
                self._add_missing(value)
                return value
            return resolved

        matches = list(_TEMPLATE_RE.finditer(value))
        if not matches:
            return value

        if len(matches) == 1 and matches[0].group(0) == value:
            resolved = self._resolve_template(matches[0])
            return value if resolved is _NOT_FOUND else resolved

        def _substitute(match: re.Match) -> str:
            resolved = self._resolve_template(match)
            return match.group(0) if resolved is _NOT_FOUND else _stringify(resolved)

        return _TEMPLATE_RE.sub(_substitute, value)

    def _resolve_template(self, match: re.Match) -> Any:
        reference, identifier, path = match.group(0), match.group(1).strip(), match.group(2)
        step = _find_step(identifier, self.steps)
        if step is None:
            logger.warning("Template %s references unknown step", reference)
            self._add_missing(reference)
            return _NOT_FOUND
        if step.result is None:
            self._add_missing(reference)
            return _NOT_FOUND
        if step.status != UnifiedStatus.COMPLETED:
            # Not an error yet: the step may still complete later in the run.
            return _NOT_FOUND

        payload = unwrap_tool_payload(step.result)
        resolved = evaluate_path(payload, path)
        if resolved is _NOT_FOUND and isinstance(payload, dict) and "data" in payload:
            resolved = evaluate_path(payload["data"], path)
        if resolved is _NOT_FOUND:
            self._add_missing(reference)
        return resolved


async def resolve_step_arguments(
    raw_args: dict[str, Any],
    steps: list[PlanStep],
    context: Any = None,
) -> ArgumentResolution:
    """Fill step argument placeholders from prior step results and context."""
    resolver = _Resolver(steps, context)
    args = resolver.resolve(dict(raw_args or {}))
    if resolver.missing:
        logger.debug("Unresolved step arguments: %s", resolver.missing)
    return ArgumentResolution(args=args, missing=resolver.missing)
