"""Lifecycle event sinks for plan runs.

Every sink receives ``(event_type, input, details)``. Emission is always
best-effort: ``emit_event`` logs and swallows whatever a sink raises.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class PlanEventSink(Protocol):
    async def emit(self, event_type: str, input: dict[str, Any], details: dict[str, Any]) -> None:
        ...


class NullEventSink:
    """Discards every event."""

    async def emit(self, event_type: str, input: dict[str, Any], details: dict[str, Any]) -> None:
        return None


class SessionEventSink:
    """Forwards events to ``session.add_entry({"type": ..., **input}, details)``."""

    def __init__(self, session: Any) -> None:
        self.session = session

    async def emit(self, event_type: str, input: dict[str, Any], details: dict[str, Any]) -> None:
        ret = self.session.add_entry({"type": event_type, **input}, details)
        if inspect.isawaitable(ret):
            await ret


class NoteEventSink:
    """Renders events as ``note_fn(message, tags=[...])`` observability notes."""

    def __init__(self, note_fn: Callable) -> None:
        self.note_fn = note_fn

    async def emit(self, event_type: str, input: dict[str, Any], details: dict[str, Any]) -> None:
        ids = ", ".join(f"{k}={v}" for k, v in input.items())
        summary = ", ".join(
            f"{k}={v}" for k, v in details.items()
            if k not in ("type", "at") and not isinstance(v, (dict, list))
        )
        message = f"{event_type} [{ids}]" + (f": {summary}" if summary else "")
        ret = self.note_fn(message, tags=["plan_executor", *event_type.split(".")[1:]])
        if inspect.isawaitable(ret):
            await ret


def session_from_context(context: Any) -> Any:
    """Return ``context.agent_context.session`` if present, else None."""
    agent_context = getattr(context, "agent_context", None)
    if agent_context is None and isinstance(context, dict):
        agent_context = context.get("agent_context")
    if agent_context is None:
        return None
    if isinstance(agent_context, dict):
        return agent_context.get("session")
    return getattr(agent_context, "session", None)


def resolve_event_sink(
    context: Any,
    event_sink: PlanEventSink | None = None,
    note_fn: Callable | None = None,
) -> PlanEventSink:
    """Pick the sink for one run: explicit sink, then session, then note_fn."""
    if event_sink is not None:
        return event_sink
    session = session_from_context(context)
    if session is not None and hasattr(session, "add_entry"):
        return SessionEventSink(session)
    if note_fn is not None:
        return NoteEventSink(note_fn)
    return NullEventSink()


async def emit_event(
    sink: PlanEventSink,
    event_type: str,
    input: dict[str, Any],
    details: dict[str, Any] | None = None,
) -> None:
    try:
        await sink.emit(event_type, input, details or {})
    except Exception:
        logger.debug("Event sink failed for %s", event_type, exc_info=True)
