"""Session state persistence in the note store.

One session document per project lives at ``sessions/session``; per-agent
context lives at ``sessions/agent-{agent}``. Writes are whole-document JSON
with Last-Write-Wins semantics.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.sessions.models import AgentInvocation, SessionState, now_iso

logger = get_logger(__name__)

SESSION_PATH = "sessions/session"
AGENT_CONTEXT_PREFIX = "sessions/agent-"


def agent_context_path(agent: str) -> str:
    return f"{AGENT_CONTEXT_PREFIX}{agent}"


def _extract_json(text: str) -> Any:
    """Parse a note body as JSON, tolerating frontmatter or markdown around it."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


class SessionPersistence:
    """Reads and writes session documents through the note store client.

    Transport failures propagate as ``BrainUnavailableError`` so callers can
    fail closed; absent, empty, tombstoned or unparseable documents load as
    ``None``.
    """

    def __init__(self, client: NoteStoreClient):
        self.client = client

    async def save_session(self, state: SessionState) -> None:
        logger.debug("Saving session", note_path=SESSION_PATH, version=state.version)
        await self.client.write_note(SESSION_PATH, json.dumps(state.to_json_dict(), indent=2))
        logger.info("Session saved", version=state.version)

    async def load_session(self) -> SessionState | None:
        text = await self.client.read_note(SESSION_PATH)
        if text is None:
            logger.debug("Session note empty or not found")
            return None
        try:
            data = _extract_json(text)
        except json.JSONDecodeError:
            logger.warning("Failed to parse session state JSON")
            return None
        if not isinstance(data, dict) or data.get("deleted"):
            return None
        try:
            return SessionState.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("Session state failed validation", error=str(exc))
            return None

    async def delete_session(self) -> None:
        tombstone = {"deleted": True, "deletedAt": now_iso()}
        await self.client.write_note(SESSION_PATH, json.dumps(tombstone, indent=2))
        logger.info("Session deleted")

    async def save_agent_context(self, agent: str, invocation: AgentInvocation) -> None:
        path = agent_context_path(agent)
        await self.client.write_note(path, json.dumps(invocation.to_json_dict(), indent=2))
        logger.debug("Agent context saved", agent=agent)

    async def load_agent_context(self, agent: str) -> AgentInvocation | None:
        text = await self.client.read_note(agent_context_path(agent))
        if text is None:
            return None
        try:
            return AgentInvocation.model_validate(_extract_json(text))
        except (json.JSONDecodeError, PydanticValidationError):
            logger.debug("Agent context unreadable", agent=agent)
            return None
