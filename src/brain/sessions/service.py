"""Session state service.

Every mutation goes through `commit`, which bumps ``version``, stamps
``updatedAt``, saves the document and emits ``session/state.update``.
"""

from __future__ import annotations

from typing import Any, Callable

from brain.errors import SessionConsistencyError, SessionNotFoundError, ValidationError
from brain.observability.logging import get_logger, get_session_id
from brain.sessions.logs import SessionLogService
from brain.sessions.models import (
    MODE_DESCRIPTIONS,
    ModeHistoryEntry,
    SessionState,
    create_default_session_state,
    get_recent_mode_history,
    is_workflow_mode,
    now_iso,
)
from brain.sessions.persistence import SessionPersistence
from brain.workflows.events import SESSION_MODE_CHANGED, SESSION_STATE_UPDATE, EventBus

logger = get_logger(__name__)

_UNSET: Any = object()


def bump_version(state: SessionState) -> SessionState:
    state.version += 1
    state.updated_at = now_iso()
    return state


def apply_mode(state: SessionState, mode: str) -> bool:
    """Switch mode and append to the history. Returns True when the mode changed."""
    if not is_workflow_mode(mode):
        raise ValidationError(f"Invalid mode: {mode}")
    if state.current_mode == mode:
        return False
    state.current_mode = mode  # type: ignore[assignment]
    state.mode_history.append(ModeHistoryEntry(mode=mode, timestamp=now_iso()))  # type: ignore[arg-type]
    return True


class SessionService:
    """Read and mutate the per-project SessionState."""

    def __init__(
        self,
        persistence: SessionPersistence,
        *,
        bus: EventBus | None = None,
        logs: SessionLogService | None = None,
        session_id: Callable[[], str] = get_session_id,
    ):
        self.persistence = persistence
        self.bus = bus
        self.logs = logs
        self._session_id = session_id

    def current_session_id(self) -> str:
        return self._session_id() or "default"

    async def get_session(self) -> SessionState | None:
        return await self.persistence.load_session()

    async def get_or_create_session(self) -> SessionState:
        """Load the session, creating and saving a default one when absent."""
        state = await self.persistence.load_session()
        if state is None:
            state = create_default_session_state()
            await self.persistence.save_session(state)
            logger.info("Session state initialized", version=state.version)
        return state

    async def require_session(self) -> SessionState:
        state = await self.persistence.load_session()
        if state is None:
            raise SessionNotFoundError("Session not found")
        return state

    async def commit(
        self, state: SessionState, *, session_id: str | None = None, bump: bool = True
    ) -> SessionState:
        if bump:
            bump_version(state)
        await self.persistence.save_session(state)
        if self.bus is not None:
            await self.bus.emit(
                SESSION_STATE_UPDATE,
                {"sessionId": session_id or self.current_session_id(), "version": state.version},
            )
        return state

    async def set_session(
        self,
        *,
        mode: str | None = None,
        task: str | None = _UNSET,
        feature: str | None = _UNSET,
        session_id: str | None = None,
    ) -> SessionState:
        """Apply partial updates.

        An empty string clears a field. Changing the feature clears the task
        unless a task is given in the same call.
        """
        if mode is None and task is _UNSET and feature is _UNSET:
            raise ValidationError("No updates provided. Specify mode, task, or feature to update.")

        state = await self.get_or_create_session()
        previous_mode = state.current_mode
        changed_mode = apply_mode(state, mode) if mode is not None else False

        if feature is not _UNSET:
            new_feature = feature or None
            if new_feature != state.active_feature:
                state.active_feature = new_feature
                state.active_task = (task or None) if task is not _UNSET else None
        if task is not _UNSET:
            state.active_task = task or None

        await self.commit(state, session_id=session_id)

        if changed_mode and self.bus is not None:
            await self.bus.emit(
                SESSION_MODE_CHANGED,
                {
                    "sessionId": session_id or self.current_session_id(),
                    "previousMode": previous_mode,
                    "newMode": state.current_mode,
                },
            )
        logger.info(
            "Session updated",
            mode=state.current_mode,
            task=state.active_task,
            feature=state.active_feature,
            version=state.version,
        )
        return state

    async def get_state_summary(self) -> dict[str, Any] | None:
        """The workflow-state payload hooks and the CLI read, or None without a session."""
        state = await self.persistence.load_session()
        if state is None:
            return None

        open_sessions: list[dict[str, Any]] = []
        active_session: dict[str, Any] | None = None
        if self.logs is not None:
            open_sessions = [s.to_json_dict() for s in await self.logs.query_open_sessions()]
            try:
                active = await self.logs.query_active_session(
                    mode=state.current_mode, task=state.active_task
                )
            except SessionConsistencyError as exc:
                logger.error("Session consistency error", session_ids=exc.session_ids)
                active = None
            active_session = active.to_json_dict() if active else None

        return {
            "mode": state.current_mode,
            "modeDescription": MODE_DESCRIPTIONS[state.current_mode],
            "task": state.active_task,
            "feature": state.active_feature,
            "updatedAt": state.updated_at,
            "version": state.version,
            "recentModeHistory": [e.to_json_dict() for e in get_recent_mode_history(state, 5)],
            "openSessions": open_sessions,
            "activeSession": active_session,
        }


def describe_update(
    state: SessionState,
    *,
    mode: str | None = None,
    task: str | None = _UNSET,
    feature: str | None = _UNSET,
) -> str:
    """Human-readable confirmation for a `set_session` call."""
    parts: list[str] = []
    if mode:
        parts.append(f'Mode set to "{state.current_mode}"')
        parts.append(MODE_DESCRIPTIONS[state.current_mode])
    if task is not _UNSET:
        parts.append(f"Task: {state.active_task}" if task else "Task cleared")
    if feature is not _UNSET:
        parts.append(f"Feature: {state.active_feature}" if feature else "Feature cleared")
    return "\n".join(parts)
