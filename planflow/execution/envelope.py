"""Helpers for the two envelopes tool output arrives in.

- The agentfield **call envelope** returned by ``app.call()`` on its sync
  fallback path (``status`` / ``result`` / ``error_message`` ...).
- The MCP **tool envelope** ``{"result": {"isError"?, "content": [{"type": "text",
  "text": "<json>"}]}}`` produced by tool-call transports.
"""

from __future__ import annotations

import json
from typing import Any

# Keys present in the execution envelope returned by _build_execute_response.
_ENVELOPE_KEYS = frozenset({
    "execution_id", "run_id", "node_id", "type", "target",
    "status", "duration_ms", "timestamp", "result",
    "error_message", "cost",
})

# A tool result carries a "type" of its own, so "type" + "result" alone is
# not enough to call something a call envelope.
_CALL_ONLY_KEYS = _ENVELOPE_KEYS - {"type", "result"}


def unwrap_call_result(result, label: str = "call"):
    """Extract the actual tool output from an ``app.call()`` response.

    Raises
    ------
    RuntimeError
        If the envelope indicates a terminal failure status.
    """
    if not isinstance(result, dict):
        return result

    if not _CALL_ONLY_KEYS.intersection(result):
        return result

    status = str(result.get("status", "")).lower()
    if status in ("failed", "error", "cancelled", "timeout"):
        err = result.get("error_message") or result.get("error") or "unknown"
        raise RuntimeError(f"{label} failed (status={status}): {err}")

    inner = result.get("result")
    if inner is not None:
        return inner

    return result


def as_mapping(value: Any) -> Any:
    """Return pydantic models as plain dicts; leave everything else alone."""
    if hasattr(value, "model_dump") and callable(value.model_dump):
        return value.model_dump()
    return value


def extract_wrapped_text(value: Any) -> tuple[bool, str] | None:
    """Return ``(is_error, text)`` if *value* is an MCP tool envelope, else None."""
    value = as_mapping(value)
    if not isinstance(value, dict):
        return None
    inner = as_mapping(value.get("result"))
    if not isinstance(inner, dict):
        return None
    content = inner.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = as_mapping(content[0])
    if not isinstance(first, dict) or first.get("type") != "text":
        return None
    text = first.get("text")
    if not isinstance(text, str):
        return None
    return inner.get("isError") is True, text


def unwrap_tool_payload(value: Any) -> Any:
    """Return the parsed JSON inside an MCP tool envelope, or *value* unchanged."""
    wrapped = extract_wrapped_text(value)
    if wrapped is None:
        return value
    try:
        return json.loads(wrapped[1])
    except ValueError:
        return value
