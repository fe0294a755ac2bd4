"""Domain-specific exceptions and helpers for consistent workflow errors.

Every error carries an ``error`` code (used in structured JSON responses) and a
``retriable`` flag that the step runner consults before retrying.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

__all__ = [
    "WorkflowErrorType",
    "BrainError",
    "ValidationError",
    "ConfigurationError",
    "BrainUnavailableError",
    "SessionNotFoundError",
    "InvalidStatusTransitionError",
    "AutoPauseFailedError",
    "SessionConsistencyError",
    "AgentFailure",
    "MigrationFailure",
    "format_workflow_error",
    "is_retriable",
    "validate_feature_id",
    "validate_required_context",
    "wrap_agent_execution",
]


class WorkflowErrorType(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    AGENT_FAILURE = "AGENT_FAILURE"
    BRAIN_UNAVAILABLE = "BRAIN_UNAVAILABLE"


class BrainError(Exception):
    """Base class for Brain domain errors."""

    error: str = "brain_error"
    retriable: bool = False
    error_type: WorkflowErrorType | None = None

    def __init__(
        self,
        message: str,
        *,
        error: str | None = None,
        retriable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if error:
            self.error = error
        if retriable is not None:
            self.retriable = retriable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.error.upper(), "message": self.message}


class ValidationError(BrainError):
    error = "validation_error"
    error_type = WorkflowErrorType.VALIDATION_ERROR


class ConfigurationError(BrainError):
    error = "configuration_error"
    error_type = WorkflowErrorType.CONFIGURATION_ERROR


class BrainUnavailableError(BrainError):
    """Note-store transport failure."""

    error = "brain_unavailable"
    retriable = True
    error_type = WorkflowErrorType.BRAIN_UNAVAILABLE


class SessionNotFoundError(BrainError):
    error = "session_not_found"
    error_type = WorkflowErrorType.VALIDATION_ERROR


class InvalidStatusTransitionError(BrainError):
    error = "invalid_status_transition"
    error_type = WorkflowErrorType.VALIDATION_ERROR

    def __init__(self, session_id: str, current: str, target: str):
        super().__init__(
            f"Cannot transition session {session_id} from {current} to {target}",
            context={"sessionId": session_id, "from": current, "to": target},
        )
        self.session_id = session_id
        self.current = current
        self.target = target


class AutoPauseFailedError(BrainError):
    error = "auto_pause_failed"


class SessionConsistencyError(BrainError):
    """More than one session log is IN_PROGRESS for a project."""

    error = "session_consistency_error"

    def __init__(self, session_ids: list[str]):
        super().__init__(
            f"Found {len(session_ids)} sessions IN_PROGRESS, expected at most one: "
            + ", ".join(session_ids),
            context={"sessionIds": session_ids},
        )
        self.session_ids = session_ids


class AgentFailure(BrainError):
    """A specialist agent returned no verdict."""

    error = "agent_failure"
    retriable = True
    error_type = WorkflowErrorType.AGENT_FAILURE

    def __init__(self, agent: str, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(f"Agent {agent} failed: {message}", context=context)
        self.agent = agent


class MigrationFailure(BrainError):
    error = "migration_failure"


def format_workflow_error(error_type: WorkflowErrorType | str, message: str) -> str:
    value = error_type.value if isinstance(error_type, WorkflowErrorType) else error_type
    return f"[{value}] {message}"


_NON_RETRIABLE_PATTERNS = [
    re.compile(r"invalid.*id", re.IGNORECASE),
    re.compile(r"not found", re.IGNORECASE),
    re.compile(r"missing required", re.IGNORECASE),
    re.compile(r"configuration error", re.IGNORECASE),
    re.compile(r"validation failed", re.IGNORECASE),
]


def is_retriable(exc: BaseException) -> bool:
    """Decide whether a failed step may be retried."""
    if isinstance(exc, BrainError):
        return exc.retriable
    message = str(exc)
    return not any(pattern.search(message) for pattern in _NON_RETRIABLE_PATTERNS)


def validate_feature_id(feature_id: object) -> str:
    if not isinstance(feature_id, str) or not feature_id.strip():
        raise ValidationError(
            format_workflow_error(
                WorkflowErrorType.VALIDATION_ERROR, "featureId must be a non-empty string"
            ),
            context={"featureId": feature_id},
        )
    return feature_id


def validate_required_context(context: object, fields: list[str] | None = None) -> dict[str, Any]:
    if not isinstance(context, dict):
        raise ValidationError(
            format_workflow_error(WorkflowErrorType.VALIDATION_ERROR, "context must be an object")
        )
    missing = [name for name in fields or [] if context.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            format_workflow_error(
                WorkflowErrorType.VALIDATION_ERROR,
                f"Missing required context fields: {', '.join(missing)}",
            ),
            context={"missing": missing},
        )
    return context


async def wrap_agent_execution(agent: str, func: Callable[[], Awaitable[T]]) -> T:
    """Run an agent callable, converting unexpected errors into AgentFailure."""
    try:
        return await func()
    except BrainError:
        raise
    except Exception as exc:
        raise AgentFailure(agent, str(exc)) from exc
