"""Session state models.

The session document is stored as camelCase JSON in the note store. Python
code uses snake_case attributes; aliases handle the translation.
"""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from brain.timestamps import now_iso

WorkflowMode = Literal["analysis", "planning", "coding", "disabled"]
WorkflowPhase = Literal["planning", "execution", "validation", "complete"]
InvocationStatus = Literal["in_progress", "completed", "blocked", "failed"]
DecisionType = Literal["architectural", "technical", "process", "scope"]
VerdictDecision = Literal["approve", "reject", "conditional", "needs_revision"]
SessionStatus = Literal["IN_PROGRESS", "PAUSED", "COMPLETE"]

AgentType = Literal[
    "orchestrator",
    "analyst",
    "architect",
    "planner",
    "implementer",
    "critic",
    "qa",
    "security",
    "devops",
    "retrospective",
    "memory",
    "skillbook",
    "independent-thinker",
    "high-level-advisor",
    "explainer",
    "task-generator",
    "pr-comment-responder",
]

WORKFLOW_MODES: tuple[str, ...] = get_args(WorkflowMode)
AGENT_TYPES: tuple[str, ...] = get_args(AgentType)
SESSION_STATUSES: tuple[str, ...] = get_args(SessionStatus)

DEFAULT_MODE: WorkflowMode = "analysis"

MODE_DESCRIPTIONS: dict[str, str] = {
    "analysis": "Read-only exploration. Blocks Edit, Write, Bash.",
    "planning": "Design phase. Blocks Edit, Write. Allows Bash for research.",
    "coding": "Full access. All tools allowed.",
    "disabled": "Mode enforcement disabled. All tools allowed.",
}


def is_agent_type(value: object) -> bool:
    return isinstance(value, str) and value in AGENT_TYPES


def is_workflow_mode(value: object) -> bool:
    return isinstance(value, str) and value in WORKFLOW_MODES


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ModeHistoryEntry(CamelModel):
    mode: WorkflowMode
    timestamp: str


class AgentInvocationInput(CamelModel):
    prompt: str
    context: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[str] = Field(default_factory=list)


class AgentInvocationOutput(CamelModel):
    artifacts: list[str] = Field(default_factory=list)
    summary: str = ""
    recommendations: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)


class AgentInvocation(CamelModel):
    agent: AgentType
    started_at: str
    completed_at: str | None = None
    status: InvocationStatus = "in_progress"
    input: AgentInvocationInput
    output: AgentInvocationOutput | None = None
    handoff_from: AgentType | None = None
    handoff_to: AgentType | None = None
    handoff_reason: str = ""

    @model_validator(mode="after")
    def check_lifecycle(self) -> "AgentInvocation":
        in_progress = self.status == "in_progress"
        if in_progress != (self.completed_at is None and self.output is None):
            raise ValueError(
                "in_progress invocations have no completedAt/output; finished ones have both"
            )
        if self.status == "blocked" and not (self.output and self.output.blockers):
            raise ValueError("blocked invocations must list at least one blocker")
        return self


class Decision(CamelModel):
    id: str
    type: DecisionType
    description: str
    rationale: str = ""
    decided_by: AgentType
    approved_by: list[AgentType] = Field(default_factory=list)
    rejected_by: list[AgentType] = Field(default_factory=list)
    timestamp: str = Field(default_factory=now_iso)


class Verdict(CamelModel):
    agent: AgentType
    decision: VerdictDecision
    confidence: float = Field(default=1.0, ge=0, le=1)
    reasoning: str = ""
    conditions: list[str] | None = None
    blockers: list[str] | None = None
    timestamp: str = Field(default_factory=now_iso)


class Handoff(CamelModel):
    from_agent: AgentType
    to_agent: AgentType
    reason: str
    context: str = ""
    artifacts: list[str] = Field(default_factory=list)
    preserved_context: dict[str, Any] | None = None
    created_at: str = Field(default_factory=now_iso)


class CompactionEntry(CamelModel):
    note_path: str
    compacted_at: str
    count: int = Field(ge=0)


class OrchestratorWorkflow(CamelModel):
    active_agent: AgentType | None = None
    workflow_phase: WorkflowPhase = "planning"
    agent_history: list[AgentInvocation] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    verdicts: list[Verdict] = Field(default_factory=list)
    pending_handoffs: list[Handoff] = Field(default_factory=list)
    compaction_history: list[CompactionEntry] = Field(default_factory=list)
    started_at: str = Field(default_factory=now_iso)
    last_agent_change: str = Field(default_factory=now_iso)

    def in_progress_count(self, agent: str) -> int:
        return sum(1 for inv in self.agent_history if inv.agent == agent and inv.status == "in_progress")

    def find_latest_in_progress(self, agent: str) -> int:
        """Index of the newest in_progress invocation for `agent`, or -1."""
        for index in range(len(self.agent_history) - 1, -1, -1):
            inv = self.agent_history[index]
            if inv.agent == agent and inv.status == "in_progress":
                return index
        return -1


def create_empty_workflow() -> OrchestratorWorkflow:
    now = now_iso()
    return OrchestratorWorkflow(started_at=now, last_agent_change=now)


def get_total_invocation_count(workflow: OrchestratorWorkflow) -> int:
    return len(workflow.agent_history) + sum(entry.count for entry in workflow.compaction_history)


class SessionState(CamelModel):
    current_mode: WorkflowMode = DEFAULT_MODE
    mode_history: list[ModeHistoryEntry] = Field(default_factory=list)
    protocol_start_complete: bool = False
    protocol_end_complete: bool = False
    protocol_start_evidence: dict[str, str] = Field(default_factory=dict)
    protocol_end_evidence: dict[str, str] = Field(default_factory=dict)
    orchestrator_workflow: OrchestratorWorkflow | None = None
    active_feature: str | None = None
    active_task: str | None = None
    version: int = Field(default=1, ge=1)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def check_mode_history(self) -> "SessionState":
        if not self.mode_history:
            self.mode_history = [ModeHistoryEntry(mode=self.current_mode, timestamp=self.created_at)]
        elif self.mode_history[-1].mode != self.current_mode:
            raise ValueError("modeHistory must end with currentMode")
        return self

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=False)


def create_default_session_state() -> SessionState:
    now = now_iso()
    return SessionState(
        current_mode=DEFAULT_MODE,
        mode_history=[ModeHistoryEntry(mode=DEFAULT_MODE, timestamp=now)],
        created_at=now,
        updated_at=now,
    )


def get_recent_mode_history(state: SessionState, count: int = 5) -> list[ModeHistoryEntry]:
    return state.mode_history[-count:] if count > 0 else []


# --- session logs ---


class SessionCheck(BaseModel):
    name: str
    passed: bool


class OpenSession(CamelModel):
    session_id: str
    status: Literal["IN_PROGRESS", "PAUSED"]
    date: str
    branch: str | None = None
    topic: str | None = None
    permalink: str


class ActiveSession(CamelModel):
    session_id: str
    status: Literal["IN_PROGRESS"] = "IN_PROGRESS"
    path: str
    mode: str | None = None
    task: str | None = None
    branch: str | None = None
    date: str
    topic: str | None = None
    is_valid: bool = True
    checks: list[SessionCheck] = Field(default_factory=list)


class CreateSessionResult(CamelModel):
    success: Literal[True] = True
    session_id: str
    path: str
    auto_paused: str | None = None


class SessionStatusChangeResult(CamelModel):
    success: Literal[True] = True
    session_id: str
    previous_status: SessionStatus
    new_status: SessionStatus
