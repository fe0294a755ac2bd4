"""Session state, session logs and their persistence in the note store."""

from brain.sessions.models import (
    AGENT_TYPES,
    DEFAULT_MODE,
    MODE_DESCRIPTIONS,
    WORKFLOW_MODES,
    AgentInvocation,
    OrchestratorWorkflow,
    SessionState,
    create_default_session_state,
    get_total_invocation_count,
)
from brain.sessions.logs import SessionLogService
from brain.sessions.persistence import SessionPersistence
from brain.sessions.service import SessionService

__all__ = [
    "AGENT_TYPES",
    "DEFAULT_MODE",
    "MODE_DESCRIPTIONS",
    "WORKFLOW_MODES",
    "AgentInvocation",
    "OrchestratorWorkflow",
    "SessionState",
    "SessionLogService",
    "SessionPersistence",
    "SessionService",
    "create_default_session_state",
    "get_total_invocation_count",
]
