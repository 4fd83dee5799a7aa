"""Root-level shared pytest fixtures for the planflow test suite.

Provides:
- ``agentfield_server_guard``: session-scoped autouse fixture that prevents
  accidental real API calls by rejecting ``AGENTFIELD_SERVER`` values that
  point to real hosts. ``AGENTFIELD_SERVER`` defaults to a local address so
  ``planflow.app`` can be imported without a running server.
- ``recording_session``: a session double that records ``add_entry`` calls.
"""

from __future__ import annotations

import os
import re
from types import SimpleNamespace
from typing import Any

import pytest

os.environ.setdefault("AGENTFIELD_SERVER", "http://localhost:9999")

# Fragments that indicate a real external host.
_BLOCKED_FRAGMENTS: tuple[str, ...] = (
    "agentfield" + ".io",
    "open" + "ai.com",
)

_LOCAL_RE = re.compile(
    r"^https?://(localhost|127\.0\.0\.1)(:\d+)?(/.*)?$",
    re.IGNORECASE,
)


def _is_real_host(server_url: str) -> bool:
    """Return True if *server_url* looks like a real external API host."""
    if _LOCAL_RE.match(server_url):
        return False
    lower = server_url.lower()
    if any(frag in lower for frag in _BLOCKED_FRAGMENTS):
        return True
    return bool(re.match(r"https?://", server_url, re.IGNORECASE))


@pytest.fixture(scope="session", autouse=True)
def agentfield_server_guard() -> None:
    """Raise if ``AGENTFIELD_SERVER`` points to a real external host."""
    server = os.environ.get("AGENTFIELD_SERVER", "")
    if _is_real_host(server):
        raise RuntimeError(
            f"AGENTFIELD_SERVER={server!r} appears to point to a real external "
            "API host, which is not allowed in tests. "
            "Set AGENTFIELD_SERVER to a local address such as http://localhost:9999."
        )


class RecordingSession:
    """Stands in for ``agent_context.session``; records every entry."""

    def __init__(self) -> None:
        self.entries: list[tuple[dict[str, Any], dict[str, Any]]] = []

    async def add_entry(self, input: dict[str, Any], details: dict[str, Any]) -> None:
        self.entries.append((input, details))

    @property
    def types(self) -> list[str]:
        return [entry[0]["type"] for entry in self.entries]


@pytest.fixture
def recording_session() -> RecordingSession:
    return RecordingSession()


@pytest.fixture
def session_context(recording_session: RecordingSession):
    """An ``ExecutionContext`` whose agent_context carries ``recording_session``."""
    from planflow.execution.schemas import ExecutionContext  # noqa: PLC0415

    return ExecutionContext(agent_context=SimpleNamespace(session=recording_session))
