"""Orchestrator workflow engine.

Records agent invocations in the session document and moves them through
their lifecycle:

- ``orchestrator/agent.invoked`` appends an ``in_progress`` invocation. An
  older ``in_progress`` entry for the same agent is marked ``failed`` so there
  is never more than one per agent.
- ``orchestrator/agent.completed`` finishes the newest ``in_progress``
  invocation for the agent (``blocked`` when the output lists blockers) and
  compacts the history once it grows past ``COMPACTION_THRESHOLD``.

Decisions and verdicts are append-only and are never compacted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from brain.errors import SessionNotFoundError, ValidationError, WorkflowErrorType, format_workflow_error
from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.sessions.models import (
    AgentInvocation,
    AgentInvocationInput,
    AgentInvocationOutput,
    CompactionEntry,
    Decision,
    OrchestratorWorkflow,
    SessionState,
    Verdict,
    create_empty_workflow,
    is_agent_type,
)
from brain.sessions.service import SessionService, bump_version
from brain.timestamps import now_iso, path_safe
from brain.workflows.events import AgentCompletedPayload, AgentInvokedPayload, WorkflowEvent
from brain.workflows.retry import RetryConfig
from brain.workflows.steps import StepJournal, StepRunner

logger = get_logger(__name__)

COMPACTION_THRESHOLD = 10
INVOCATIONS_TO_KEEP = 3
SUPERSEDED_SUMMARY = "Superseded by a new invocation"


@dataclass
class AgentInvokedResult:
    success: bool
    session_id: str
    agent: str
    version: int
    superseded: bool = False


@dataclass
class AgentCompletedResult:
    success: bool
    session_id: str
    agent: str
    status: str
    version: int
    compacted: bool = False
    compaction_note_path: str | None = None


def history_note_path(session_id: str, timestamp: str) -> str:
    return f"sessions/session-{session_id}-history-{path_safe(timestamp)}"


def _listed(values: list[str]) -> str:
    return ", ".join(values) if values else "None"


def render_history_archive(invocations: list[AgentInvocation], session_id: str, timestamp: str) -> str:
    """Markdown body of a compaction archive note."""
    lines = [
        "# Agent History Archive",
        "",
        f"**Session ID**: {session_id}",
        f"**Archived At**: {timestamp}",
        f"**Invocation Count**: {len(invocations)}",
        "",
        "## Invocations",
        "",
    ]
    for index, inv in enumerate(invocations, start=1):
        if index > 1:
            lines += ["---", ""]
        lines += [
            f"### {index}. {inv.agent}",
            "",
            f"- **Started**: {inv.started_at}",
            f"- **Completed**: {inv.completed_at or 'N/A'}",
            f"- **Status**: {inv.status}",
            f"- **Handoff From**: {inv.handoff_from or 'orchestrator'}",
            f"- **Handoff To**: {inv.handoff_to or 'orchestrator'}",
            f"- **Handoff Reason**: {inv.handoff_reason or 'N/A'}",
            "",
            "#### Input",
            "",
            f"- **Prompt**: {inv.input.prompt}",
            f"- **Artifacts**: {_listed(inv.input.artifacts)}",
            "",
            "#### Output",
            "",
        ]
        if inv.output is None:
            lines.append("Not completed")
        else:
            lines += [
                f"- **Summary**: {inv.output.summary}",
                f"- **Artifacts**: {_listed(inv.output.artifacts)}",
                f"- **Recommendations**: {_listed(inv.output.recommendations)}",
                f"- **Blockers**: {_listed(inv.output.blockers)}",
            ]
        lines.append("")
    return "\n".join(lines)


def _finish(
    invocation: AgentInvocation,
    *,
    status: str,
    output: AgentInvocationOutput,
    completed_at: str,
    handoff_to: str | None = None,
    handoff_reason: str | None = None,
) -> AgentInvocation:
    data = invocation.model_dump()
    data.update(
        status=status,
        output=output.model_dump(),
        completed_at=completed_at,
    )
    if handoff_to is not None:
        data["handoff_to"] = handoff_to
    if handoff_reason is not None:
        data["handoff_reason"] = handoff_reason
    return AgentInvocation.model_validate(data)


def _invalid(message: str, **context: Any) -> ValidationError:
    return ValidationError(format_workflow_error(WorkflowErrorType.VALIDATION_ERROR, message), context=context)


def _validate_agent(agent: Any, field: str = "agent") -> str:
    if not isinstance(agent, str) or not agent:
        raise _invalid(f"Event data must include a valid {field} string")
    if not is_agent_type(agent):
        raise _invalid(f"Unknown agent type: {agent}", agent=agent)
    return agent


class OrchestratorEngine:
    """Handlers for the agent-invoked and agent-completed events."""

    def __init__(
        self,
        sessions: SessionService,
        notes: NoteStoreClient,
        *,
        journal: StepJournal | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.sessions = sessions
        self.notes = notes
        self.journal = journal
        self.retry_config = retry_config

    def _runner(self, run_id: str | None) -> StepRunner:
        return StepRunner(run_id or str(uuid4()), self.journal, config=self.retry_config)

    # --- event handlers ---

    async def handle_agent_invoked(self, event: WorkflowEvent) -> AgentInvokedResult:
        return await self.agent_invoked(event.data, run_id=event.id)

    async def handle_agent_completed(self, event: WorkflowEvent) -> AgentCompletedResult:
        return await self.agent_completed(event.data, run_id=event.id)

    # --- agent-invoked ---

    async def agent_invoked(self, data: dict[str, Any], *, run_id: str | None = None) -> AgentInvokedResult:
        runner = self._runner(run_id)

        async def validate() -> dict[str, Any]:
            if not isinstance(data.get("sessionId"), str) or not data["sessionId"]:
                raise _invalid("Event data must include a valid sessionId string")
            _validate_agent(data.get("agent"))
            if not isinstance(data.get("prompt"), str):
                raise _invalid("Event data must include a prompt string")
            if data.get("handoffFrom") is not None:
                _validate_agent(data["handoffFrom"], "handoffFrom")
            try:
                return AgentInvokedPayload.model_validate(data).to_json_dict()
            except PydanticValidationError as exc:
                raise _invalid(f"Invalid agent invocation: {exc}") from exc

        payload = AgentInvokedPayload.model_validate(await runner.run("validate-input", validate))

        async def record() -> dict[str, Any]:
            state = await self._load(payload.session_id)
            result = await self._record_invocation(state, payload)
            return asdict(result)

        stored = await runner.run("record-invocation", record)
        return AgentInvokedResult(**stored)

    async def _record_invocation(self, state: SessionState, payload: AgentInvokedPayload) -> AgentInvokedResult:
        workflow = state.orchestrator_workflow
        if workflow is None:
            workflow = create_empty_workflow()
            state.orchestrator_workflow = workflow

        now = now_iso()
        superseded = False
        previous = workflow.find_latest_in_progress(payload.agent)
        if previous >= 0:
            workflow.agent_history[previous] = _finish(
                workflow.agent_history[previous],
                status="failed",
                output=AgentInvocationOutput(summary=SUPERSEDED_SUMMARY),
                completed_at=now,
            )
            superseded = True
            logger.warning("Superseding in-progress invocation", agent=payload.agent, index=previous)

        invocation = AgentInvocation(
            agent=payload.agent,  # type: ignore[arg-type]
            started_at=now,
            status="in_progress",
            input=AgentInvocationInput(
                prompt=payload.prompt,
                context=payload.context,
                artifacts=payload.artifacts,
            ),
            handoff_from=payload.handoff_from,  # type: ignore[arg-type]
            handoff_reason=payload.handoff_reason,
        )
        workflow.agent_history.append(invocation)
        workflow.active_agent = payload.agent  # type: ignore[assignment]
        workflow.last_agent_change = max(now, workflow.started_at)

        await self.sessions.persistence.save_agent_context(payload.agent, invocation)
        await self.sessions.commit(state, session_id=payload.session_id)
        logger.info(
            "Agent invocation recorded",
            session_id=payload.session_id,
            agent=payload.agent,
            version=state.version,
        )
        return AgentInvokedResult(
            success=True,
            session_id=payload.session_id,
            agent=payload.agent,
            version=state.version,
            superseded=superseded,
        )

    # --- agent-completed ---

    async def agent_completed(self, data: dict[str, Any], *, run_id: str | None = None) -> AgentCompletedResult:
        runner = self._runner(run_id)

        async def validate() -> dict[str, Any]:
            if not isinstance(data.get("sessionId"), str) or not data["sessionId"]:
                raise _invalid("Event data must include a valid sessionId string")
            _validate_agent(data.get("agent"))
            if not isinstance(data.get("output"), dict):
                raise _invalid("Event data must include an output object")
            handoff_to = data.get("handoffTo")
            if handoff_to is not None:
                _validate_agent(handoff_to, "handoffTo")
            try:
                AgentInvocationOutput.model_validate(data["output"])
                return AgentCompletedPayload.model_validate(data).to_json_dict()
            except PydanticValidationError as exc:
                raise _invalid(f"Invalid agent output: {exc}") from exc

        payload = AgentCompletedPayload.model_validate(await runner.run("validate-input", validate))

        async def record() -> dict[str, Any]:
            state = await self._load(payload.session_id)
            result = await self._complete_invocation(state, payload)
            return asdict(result)

        stored = await runner.run("complete-invocation", record)
        return AgentCompletedResult(**stored)

    async def _complete_invocation(
        self, state: SessionState, payload: AgentCompletedPayload
    ) -> AgentCompletedResult:
        workflow = state.orchestrator_workflow
        if workflow is None:
            raise _invalid("Session has no orchestrator workflow", sessionId=payload.session_id)

        index = workflow.find_latest_in_progress(payload.agent)
        if index == -1:
            raise _invalid(
                f"No in_progress invocation found for agent {payload.agent}",
                sessionId=payload.session_id,
                agent=payload.agent,
            )

        output = AgentInvocationOutput.model_validate(payload.output)
        now = now_iso()
        handoff_to = payload.handoff_to if payload.handoff_to != "orchestrator" else None
        completed = _finish(
            workflow.agent_history[index],
            status="blocked" if output.blockers else "completed",
            output=output,
            completed_at=now,
            handoff_to=handoff_to,
            handoff_reason=payload.handoff_reason,
        )
        workflow.agent_history[index] = completed
        workflow.active_agent = handoff_to  # type: ignore[assignment]
        workflow.last_agent_change = max(now, workflow.started_at)

        note_path: str | None = None
        if len(workflow.agent_history) > COMPACTION_THRESHOLD:
            note_path = await self._compact(workflow, payload.session_id)
            # Compaction counts as its own write on top of the completion
            bump_version(state)

        await self.sessions.persistence.save_agent_context(payload.agent, completed)
        await self.sessions.commit(state, session_id=payload.session_id)
        logger.info(
            "Agent completion recorded",
            session_id=payload.session_id,
            agent=payload.agent,
            status=completed.status,
            compacted=note_path is not None,
            version=state.version,
        )
        return AgentCompletedResult(
            success=True,
            session_id=payload.session_id,
            agent=payload.agent,
            status=completed.status,
            version=state.version,
            compacted=note_path is not None,
            compaction_note_path=note_path,
        )

    async def _compact(self, workflow: OrchestratorWorkflow, session_id: str) -> str:
        """Archive all but the newest invocations. The archive note is written first."""
        timestamp = now_iso()
        cut = len(workflow.agent_history) - INVOCATIONS_TO_KEEP
        archived = workflow.agent_history[:cut]
        note_path = history_note_path(session_id, timestamp)

        await self.notes.write_note(note_path, render_history_archive(archived, session_id, timestamp))

        workflow.agent_history = workflow.agent_history[cut:]
        workflow.compaction_history.append(
            CompactionEntry(note_path=note_path, compacted_at=timestamp, count=len(archived))
        )
        logger.info(
            "Agent history compacted",
            session_id=session_id,
            note_path=note_path,
            archived=len(archived),
            kept=len(workflow.agent_history),
        )
        return note_path

    # --- decisions and verdicts ---

    async def record_decision(self, decision: Decision, *, session_id: str | None = None) -> SessionState:
        state = await self.sessions.require_session()
        workflow = state.orchestrator_workflow or create_empty_workflow()
        state.orchestrator_workflow = workflow
        workflow.decisions.append(decision)
        logger.info("Decision recorded", decision_id=decision.id, type=decision.type)
        return await self.sessions.commit(state, session_id=session_id)

    async def record_verdict(self, verdict: Verdict, *, session_id: str | None = None) -> SessionState:
        state = await self.sessions.require_session()
        workflow = state.orchestrator_workflow or create_empty_workflow()
        state.orchestrator_workflow = workflow
        workflow.verdicts.append(verdict)
        logger.info("Verdict recorded", agent=verdict.agent, decision=verdict.decision)
        return await self.sessions.commit(state, session_id=session_id)

    async def _load(self, session_id: str) -> SessionState:
        state = await self.sessions.get_session()
        if state is None:
            raise SessionNotFoundError("Session not found", context={"sessionId": session_id})
        return state
