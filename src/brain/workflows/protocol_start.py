"""Session protocol start workflow.

Runs the eight start-of-session steps, each journaled so that a replay skips
what already completed, then records the evidence in the session state:

1. initialize the note store (``build_context``)
2. read the HANDOFF note
3. reuse the active session log or create one
4. count skill scripts under ``.claude/skills``
5. read the git branch
6. read the usage-mandatory note
7. read ``.agents/governance/PROJECT-CONSTRAINTS.md``
8. read the memory-index notes

Only step 1 can fail the run; the others degrade to empty evidence.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from brain.errors import BrainError, BrainUnavailableError, ValidationError, WorkflowErrorType, format_workflow_error
from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.project.git import DEFAULT_GIT_TIMEOUT, GitRunner, current_branch, run_git
from brain.sessions.logs import SessionLogService
from brain.sessions.service import SessionService
from brain.timestamps import now_iso
from brain.workflows.events import WorkflowEvent
from brain.workflows.retry import RetryConfig
from brain.workflows.steps import StepJournal, StepRunner

logger = get_logger(__name__)

HANDOFF_NOTE = "HANDOFF"
USAGE_MANDATORY_NOTE = "usage-mandatory"
MEMORY_INDEX_NOTES: tuple[str, ...] = (
    "session-context",
    "active-features",
    "recent-decisions",
    "project-patterns",
)
CONSTRAINTS_PATH = Path(".agents") / "governance" / "PROJECT-CONSTRAINTS.md"
SKILLS_DIR = Path(".claude") / "skills"
DEFAULT_SESSION_TOPIC = "session"


class MemoryIndexNote(BaseModel):
    identifier: str
    content: str


class SessionProtocolContext(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    working_directory: str
    brain_mcp_status: str = "initialized"
    handoff_content: str | None = None
    session_log_path: str | None = None
    skill_scripts: list[str] = Field(default_factory=list)
    git_branch: str | None = None
    usage_mandatory: str | None = None
    project_constraints: str | None = None
    memory_index_notes: list[MemoryIndexNote] = Field(default_factory=list)
    evidence: dict[str, str] = Field(default_factory=dict)


class SessionProtocolStartResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    session_id: str
    context: SessionProtocolContext

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def find_skill_scripts(working_directory: str) -> list[str]:
    """``SKILL.md``, ``*.sh`` and ``*.ps1`` files directly inside each skill directory."""
    skills_dir = Path(working_directory) / SKILLS_DIR
    if not skills_dir.is_dir():
        return []
    scripts: list[str] = []
    for skill in sorted(p for p in skills_dir.iterdir() if p.is_dir()):
        for entry in sorted(skill.iterdir()):
            if entry.is_file() and (entry.name == "SKILL.md" or entry.suffix in (".sh", ".ps1")):
                scripts.append(str(entry))
    return scripts


def read_project_constraints(working_directory: str) -> str | None:
    path = Path(working_directory) / CONSTRAINTS_PATH
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return None


class SessionProtocolStartWorkflow:
    def __init__(
        self,
        sessions: SessionService,
        logs: SessionLogService,
        notes: NoteStoreClient,
        *,
        journal: StepJournal | None = None,
        retry_config: RetryConfig | None = None,
        git_runner: GitRunner = run_git,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
    ):
        self.sessions = sessions
        self.logs = logs
        self.notes = notes
        self.journal = journal
        self.retry_config = retry_config
        self.git_runner = git_runner
        self.git_timeout = git_timeout

    async def handle_protocol_start(self, event: WorkflowEvent) -> SessionProtocolStartResult:
        return await self.run(
            event.data.get("sessionId"),
            event.data.get("workingDirectory"),
            run_id=event.id,
        )

    async def _optional_note(self, identifier: str) -> str | None:
        try:
            return await self.notes.read_note(identifier)
        except BrainUnavailableError as exc:
            logger.warning("Optional note unavailable", identifier=identifier, error=exc.message)
            return None

    async def run(
        self,
        session_id: Any,
        working_directory: Any,
        *,
        run_id: str | None = None,
        topic: str = DEFAULT_SESSION_TOPIC,
        retry_config: RetryConfig | None = None,
        create_log: bool = True,
    ) -> SessionProtocolStartResult:
        """Run the start protocol for `session_id` in `working_directory`.

        `retry_config` overrides the workflow default for this run. With
        `create_log` false an existing IN_PROGRESS log is still reused, but no
        new log is created; the evidence records `deferred` instead.
        """
        runner = StepRunner(run_id or str(uuid4()), self.journal, config=retry_config or self.retry_config)

        async def validate() -> None:
            for field, value in (("sessionId", session_id), ("workingDirectory", working_directory)):
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(
                        format_workflow_error(
                            WorkflowErrorType.VALIDATION_ERROR,
                            f"Event data must include a valid {field} string",
                        )
                    )
            logger.info(
                "Session protocol start workflow initiated",
                session_id=session_id,
                working_directory=working_directory,
            )

        await runner.run("validate-input", validate)

        async def init_note_store() -> str:
            await self.notes.build_context("memory://*")
            return now_iso()

        async def create_session_log() -> str | None:
            try:
                active = await self.logs.query_active_session()
                if active is not None:
                    return active.path
                if not create_log:
                    return None
                created = await self.logs.create_session(topic)
                return created.path
            except BrainError as exc:
                logger.warning("Session log creation failed", error=exc.message)
                return None

        async def load_memory_index() -> list[dict[str, str]]:
            loaded = []
            for identifier in MEMORY_INDEX_NOTES:
                content = await self._optional_note(identifier)
                if content:
                    loaded.append({"identifier": identifier, "content": content})
            return loaded

        async def skill_scripts() -> list[str]:
            return find_skill_scripts(working_directory)

        async def git_branch() -> str | None:
            return current_branch(working_directory, runner=self.git_runner, timeout=self.git_timeout)

        async def handoff() -> str | None:
            return await self._optional_note(HANDOFF_NOTE)

        async def usage_mandatory() -> str | None:
            return await self._optional_note(USAGE_MANDATORY_NOTE)

        async def constraints() -> str | None:
            return read_project_constraints(working_directory)

        initialized_at = await runner.run("init-brain-mcp", init_note_store)
        handoff_content = await runner.run("load-handoff", handoff)
        session_log_path = await runner.run("create-session-log", create_session_log)
        scripts = await runner.run("verify-skills", skill_scripts)
        branch = await runner.run("verify-git", git_branch)
        usage = await runner.run("read-usage-mandatory", usage_mandatory)
        project_constraints = await runner.run("read-constraints", constraints)
        memory_index = await runner.run("load-memory-index", load_memory_index)

        evidence = {
            "brainMcpInitialized": initialized_at,
            "handoffRead": "yes" if handoff_content else "no",
            "sessionLogPath": session_log_path or ("failed" if create_log else "deferred"),
            "skillScriptsCount": str(len(scripts)),
            "gitBranch": branch or "unknown",
            "usageMandatoryRead": "yes" if usage else "no",
            "constraintsRead": "yes" if project_constraints else "no",
            "memoryIndexCount": str(len(memory_index)),
            "completedAt": now_iso(),
        }

        async def update_state() -> int:
            state = await self.sessions.get_or_create_session()
            state.protocol_start_complete = True
            state.protocol_start_evidence = evidence
            await self.sessions.commit(state, session_id=session_id)
            return state.version

        await runner.run("update-session-state", update_state)

        if session_log_path:
            log_id = session_log_path.rsplit("/", 1)[-1]
            try:
                await self.logs.check_session_start(log_id)
            except BrainError as exc:
                logger.warning("Could not tick session start checklist", session_log=log_id, error=exc.message)

        context = SessionProtocolContext(
            session_id=session_id,
            working_directory=working_directory,
            handoff_content=handoff_content,
            session_log_path=session_log_path,
            skill_scripts=scripts,
            git_branch=branch,
            usage_mandatory=usage,
            project_constraints=project_constraints,
            memory_index_notes=[MemoryIndexNote(**note) for note in memory_index],
            evidence=evidence,
        )
        logger.info(
            "Session protocol start workflow completed",
            session_id=session_id,
            handoff_read=bool(handoff_content),
            session_log_created=bool(session_log_path),
            skill_scripts_count=len(scripts),
            git_branch=branch,
            memory_index_count=len(memory_index),
        )
        return SessionProtocolStartResult(success=True, session_id=session_id, context=context)
