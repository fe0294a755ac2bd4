"""Session protocol end workflow.

Seven validation steps gate the end of a session. The workflow only reports:
the verdict is PASS when every step passed, otherwise FAIL with one blocker
per failed step. The host is never blocked by it.
"""

from __future__ import annotations

import shlex
import subprocess  # nosec B404
from typing import Any, Callable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from brain.errors import BrainError, SessionConsistencyError, ValidationError
from brain.observability.logging import get_logger
from brain.project.git import DEFAULT_GIT_TIMEOUT, GitRunner, run_git, status_porcelain
from brain.sessions.logs import SessionLog, SessionLogService
from brain.sessions.service import SessionService
from brain.timestamps import now_iso
from brain.workflows.events import WorkflowEvent
from brain.workflows.retry import RetryConfig
from brain.workflows.steps import StepJournal, StepRunner
from brain.workflows.validation import consistency_problems, protocol_problems, session_end_problem

logger = get_logger(__name__)

MAX_LISTED_FILES = 5

LintRunner = Callable[[str, str, float], "tuple[bool, str]"]


class ProtocolEndStep(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    label: str
    passed: bool
    message: str
    evidence: str | None = None


class ProtocolEndResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    verdict: str
    steps: list[ProtocolEndStep] = Field(default_factory=list)
    completed_at: str = Field(default_factory=now_iso)
    blockers: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def run_markdown_lint(command: str, cwd: str, timeout: float) -> tuple[bool, str]:
    """Run the lint command without a shell. Returns (passed, message)."""
    args = shlex.split(command)
    try:
        result = subprocess.run(  # nosec B603
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            shell=False,
        )
    except subprocess.TimeoutExpired:
        return False, f"Markdown lint timed out after {timeout:g}s"
    except OSError as exc:
        return False, f"Markdown lint could not run: {exc.strerror or exc}"
    if result.returncode != 0:
        output = (result.stdout or result.stderr or "").strip().splitlines()
        detail = output[0] if output else f"exit code {result.returncode}"
        return False, f"Markdown lint failed: {detail}"
    return True, "Markdown lint passed"


def describe_uncommitted(files: list[str]) -> str:
    listed = ", ".join(files[:MAX_LISTED_FILES])
    extra = len(files) - MAX_LISTED_FILES
    suffix = f" and {extra} more" if extra > 0 else ""
    return f"Uncommitted changes: {listed}{suffix}"


class SessionProtocolEndWorkflow:
    def __init__(
        self,
        sessions: SessionService,
        logs: SessionLogService,
        *,
        journal: StepJournal | None = None,
        retry_config: RetryConfig | None = None,
        git_runner: GitRunner = run_git,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
        lint_command: str = "",
        lint_timeout: float = 60.0,
        lint_runner: LintRunner = run_markdown_lint,
    ):
        self.sessions = sessions
        self.logs = logs
        self.journal = journal
        self.retry_config = retry_config
        self.git_runner = git_runner
        self.git_timeout = git_timeout
        self.lint_command = lint_command
        self.lint_timeout = lint_timeout
        self.lint_runner = lint_runner

    async def handle_protocol_end(self, event: WorkflowEvent) -> ProtocolEndResult:
        return await self.run(
            event.data.get("sessionId"),
            event.data.get("workingDirectory"),
            run_id=event.id,
        )

    async def _active_log(self) -> tuple[SessionLog | None, str | None]:
        try:
            active = await self.logs.query_active_session()
        except SessionConsistencyError as exc:
            return None, exc.message
        if active is None:
            return None, "Session log not found"
        log = await self.logs.get_session_log(active.session_id)
        if log is None:
            return None, "Session log not found"
        return log, None

    async def run(
        self,
        session_id: Any,
        working_directory: Any,
        *,
        run_id: str | None = None,
    ) -> ProtocolEndResult:
        for field, value in (("sessionId", session_id), ("workingDirectory", working_directory)):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Event data must include a valid {field} string")

        runner = StepRunner(run_id or str(uuid4()), self.journal, config=self.retry_config)
        logger.info("Session protocol end workflow initiated", session_id=session_id)

        async def session_log_step() -> dict[str, Any]:
            log, problem = await self._active_log()
            if log is not None:
                problem = session_end_problem(log)
            if problem:
                return _step("Session log", False, problem)
            return _step("Session log", True, "Session log complete", log.path)

        async def memory_step() -> dict[str, Any]:
            return _step("Brain memory", True, "Brain memory update responsibility acknowledged")

        async def lint_step() -> dict[str, Any]:
            if not self.lint_command.strip():
                return _step("Markdown lint", True, "Markdown lint skipped (no command configured)")
            passed, message = self.lint_runner(self.lint_command, working_directory, self.lint_timeout)
            return _step("Markdown lint", passed, message)

        async def git_step() -> dict[str, Any]:
            files = status_porcelain(working_directory, runner=self.git_runner, timeout=self.git_timeout)
            if files is None:
                return _step("Git", False, "Uncommitted changes: unable to read git status")
            if files:
                return _step("Git", False, describe_uncommitted(files))
            return _step("Git", True, "All changes committed")

        async def protocol_step() -> dict[str, Any]:
            log, problem = await self._active_log()
            if log is None:
                return _step("Protocol validation", False, problem or "Session log not found")
            problems = protocol_problems(log)
            if problems:
                return _step("Protocol validation", False, "; ".join(problems))
            return _step("Protocol validation", True, "Protocol validation passed")

        async def consistency_step() -> dict[str, Any]:
            problems = consistency_problems(working_directory)
            if problems:
                return _step("Consistency validation", False, "; ".join(problems))
            return _step("Consistency validation", True, "Consistency validation passed")

        steps: list[ProtocolEndStep] = []
        for step_id, func in (
            ("validate-session-log", session_log_step),
            ("acknowledge-memory", memory_step),
            ("markdown-lint", lint_step),
            ("verify-git", git_step),
            ("protocol-validation", protocol_step),
            ("consistency-validation", consistency_step),
        ):
            steps.append(ProtocolEndStep.model_validate(await runner.run(step_id, func)))

        async def close_step() -> dict[str, Any]:
            if not all(step.passed for step in steps):
                return _step("Session state", False, "Cannot close session: previous validations failed")
            log, problem = await self._active_log()
            if log is None:
                return _step("Session state", False, problem or "Session log not found")
            try:
                await self.logs.complete_session(log.session_id)
            except BrainError as exc:
                if exc.retriable:
                    raise
                return _step("Session state", False, exc.message)

            state = await self.sessions.get_or_create_session()
            state.active_task = None
            state.active_feature = None
            state.protocol_end_complete = True
            state.protocol_end_evidence = {
                **{_evidence_key(step.label): step.message for step in steps},
                "sessionLog": log.path,
                "completedAt": now_iso(),
            }
            await self.sessions.commit(state, session_id=session_id)
            return _step("Session state", True, "Session closed", f"version {state.version}")

        steps.append(ProtocolEndStep.model_validate(await runner.run("close-session", close_step)))

        blockers = [f"{step.label}: {step.message}" for step in steps if not step.passed]
        result = ProtocolEndResult(
            session_id=session_id,
            verdict="FAIL" if blockers else "PASS",
            steps=steps,
            blockers=blockers,
        )
        log_method = logger.warning if blockers else logger.info
        log_method(
            "Session protocol end workflow completed",
            session_id=session_id,
            verdict=result.verdict,
            blockers=len(blockers),
        )
        return result


def _step(label: str, passed: bool, message: str, evidence: str | None = None) -> dict[str, Any]:
    return {"label": label, "passed": passed, "message": message, "evidence": evidence}


def _evidence_key(label: str) -> str:
    words = label.split()
    return words[0].lower() + "".join(word.capitalize() for word in words[1:])
