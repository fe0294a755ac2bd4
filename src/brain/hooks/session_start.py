"""Session-start hook: git context, session instructions and workflow state.

The hook runs the protocol-start workflow once, without retries, before it
renders the context, so the context names the session log that run reused or
created. When paused logs exist the hook creates nothing and asks the agent to
let the user choose.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from brain.errors import BrainError, SessionConsistencyError
from brain.hooks.normalize import HookResponse, NormalizedHookEvent
from brain.hooks.user_prompt import load_state_summary
from brain.observability.logging import get_logger
from brain.project.git import current_branch, recent_commits, status_porcelain
from brain.sessions.models import ActiveSession, OpenSession
from brain.workflows.events import SESSION_PROTOCOL_START
from brain.workflows.protocol_start import SessionProtocolStartResult
from brain.workflows.retry import NO_RETRY, MaxRetriesExceeded

if TYPE_CHECKING:
    from brain.runtime import BrainRuntime

logger = get_logger(__name__)

NO_PROJECT_INSTRUCTIONS = """DO THE FOLLOWING IMMEDIATELY, DO NOT WAIT FOR THE USER TO PROMPT YOU.

No active project is set.

Use AskUserQuestion to ask the user which project they want to work with.

After the user selects a project:
1. Set the project: active_project with operation="set" and project=<selected>
2. Run full session start protocol:
   - Call bootstrap_context to load project context
   - Create a session log with the session tool (operation="create")
   - Load session state
   - Verify git branch and commit

Available projects can be found with: list_projects
"""

PROTOCOL_FOOTER = (
    "**THEN** complete the session start protocol:\n"
    "- Call bootstrap_context to load full project context\n"
    "- Verify git branch with `git branch --show-current`\n"
    "- Load and acknowledge session state\n"
)


@dataclass
class GitContext:
    branch: str | None = None
    status: str | None = None
    recent_commits: list[str] = field(default_factory=list)


def collect_git_context(cwd: str, runtime: BrainRuntime) -> GitContext:
    timeout = runtime.settings.git_timeout_seconds
    runner = runtime.protocol_start.git_runner
    changed = status_porcelain(cwd, runner=runner, timeout=timeout)
    if changed is None:
        status = None
    elif changed:
        status = f"dirty ({len(changed)} changed files)"
    else:
        status = "clean"
    return GitContext(
        branch=current_branch(cwd, runner=runner, timeout=timeout),
        status=status,
        recent_commits=recent_commits(cwd, 5, runner=runner, timeout=timeout),
    )


def _display_name(session_id: str, topic: str | None) -> str:
    return f"{session_id} - {topic}" if topic else session_id


def format_session_instructions(open_sessions: list[OpenSession]) -> str:
    lines = ["DO THE FOLLOWING IMMEDIATELY, without waiting for user input, BEFORE anything else:", ""]
    if open_sessions:
        lines += ["### Open Sessions Detected", "", f"Found {len(open_sessions)} session(s) that can be resumed:", ""]
        for index, session in enumerate(open_sessions, start=1):
            lines.append(f"{index}. **{_display_name(session.session_id, session.topic)}** ({session.status})")
            if session.date:
                lines.append(f"   - Date: {session.date}")
            if session.branch:
                lines.append(f"   - Branch: {session.branch}")
        lines += [
            "",
            "**MANDATORY ACTION**: Use the AskUserQuestion tool to ask the user:",
            "",
            "```",
            "I found open sessions. Would you like to:",
            "1. Start a new session",
        ]
        for index, session in enumerate(open_sessions, start=2):
            lines.append(f"{index}. Continue session: {_display_name(session.session_id, session.topic)}")
        lines += [
            "```",
            "",
            "**AFTER user responds**:",
            "",
            "- If user selects existing session: Use the `session` tool with operation=`resume` "
            "and sessionId=`<selected session ID>`",
            "- If user selects new session: Use AskUserQuestion to ask about the session topic, "
            "then use the `session` tool with operation=`create` and topic=`<user's response>`",
            "",
        ]
    else:
        lines += [
            "### No Active Session",
            "",
            "**MANDATORY ACTION**: Use the AskUserQuestion tool to ask the user:",
            "",
            "```",
            "What would you like to work on in this session? (This will be the session topic)",
            "```",
            "",
            "**AFTER user responds**: Use the `session` tool with operation=`create` and topic=`<user's response>`",
            "",
        ]
    return "\n".join(lines) + "\n" + PROTOCOL_FOOTER


def format_active_session(active: ActiveSession) -> str:
    lines = [
        "### Active Session",
        "",
        f"**Session**: {_display_name(active.session_id, active.topic)}",
        f"**Status**: {active.status}",
        f"**Date**: {active.date}",
    ]
    if active.branch:
        lines.append(f"**Branch**: {active.branch}")
    if active.mode:
        lines.append(f"**Mode**: {active.mode}")
    if active.task:
        lines.append(f"**Current Task**: {active.task}")
    lines.append("")
    if active.is_valid:
        lines.append("**Validation**: All checks passed")
    else:
        lines.append("**Validation**: Some checks failed")
        lines += [f"- {check.name}: [{'PASS' if check.passed else 'FAIL'}]" for check in active.checks]
    lines += ["", "**Continue with session start protocol**: Load context and verify state."]
    return "\n".join(lines) + "\n"


def render_session_context(
    git: GitContext,
    *,
    active: ActiveSession | None,
    open_sessions: list[OpenSession],
    summary: dict[str, Any] | None,
    warning: str | None = None,
) -> str:
    parts: list[str] = []
    header = []
    if git.branch:
        header.append(f"**Branch:** {git.branch}")
    if git.status:
        header.append(f"**Status:** {git.status}")
    if git.recent_commits:
        header.append("**Recent Commits:**")
        header += [f"- {commit}" for commit in git.recent_commits]
    parts.append("\n".join(header) + "\n" if header else "")

    # An active session suppresses the open-session list
    if active is not None:
        parts.append(format_active_session(active))
    else:
        parts.append(format_session_instructions(open_sessions))

    if warning:
        parts.append(f"**Warning:** {warning}\n")

    if summary is not None:
        state = ["### Workflow State", f"**Mode:** {summary.get('mode')}"]
        if summary.get("task"):
            state.append(f"**Task:** {summary['task']}")
        if summary.get("feature"):
            state.append(f"**Feature:** {summary['feature']}")
        if summary.get("version"):
            state.append(f"**Version:** {summary['version']}")
        parts.append("\n".join(state) + "\n")
    return "\n".join(part for part in parts if part)


async def _load_sessions(runtime: BrainRuntime) -> tuple[list[OpenSession], ActiveSession | None, str | None]:
    try:
        open_sessions = await runtime.logs.query_open_sessions()
        active = await runtime.logs.query_active_session()
    except SessionConsistencyError as exc:
        return [], None, exc.message
    except BrainError as exc:
        logger.warning("session_logs_unavailable", error=exc.message)
        return [], None, f"Session logs unavailable: {exc.message}"
    return open_sessions, active, None


async def run_protocol_start(
    runtime: BrainRuntime, session_id: str, cwd: str, *, create_log: bool
) -> SessionProtocolStartResult | None:
    """Run protocol start once, inside the hook's time budget.

    Failures are logged and leave the evidence unrecorded; the operator can
    rerun it with ``brain workflow start-session``.
    """
    event = runtime.bus.record(SESSION_PROTOCOL_START, {"sessionId": session_id, "workingDirectory": cwd})
    try:
        return await runtime.protocol_start.run(
            session_id, cwd, run_id=event.id, retry_config=NO_RETRY, create_log=create_log
        )
    except (BrainError, MaxRetriesExceeded) as exc:
        logger.warning("protocol_start_failed", session_id=session_id, error=str(exc))
        return None


async def handle_session_start(event: NormalizedHookEvent, runtime: BrainRuntime | None) -> HookResponse:
    if runtime is None or runtime.project is None:
        return HookResponse(additional_context=NO_PROJECT_INSTRUCTIONS)

    cwd = runtime.project.effective_cwd
    git = collect_git_context(cwd, runtime)

    # Paused logs wait for the user to choose between resuming and starting fresh
    open_sessions, active, warning = await _load_sessions(runtime)
    session_id = event.session_id or runtime.sessions.current_session_id()
    started = await run_protocol_start(
        runtime, session_id, cwd, create_log=warning is None and not open_sessions
    )

    if started is not None:
        open_sessions, active, warning = await _load_sessions(runtime)

    summary = await load_state_summary(runtime)
    if active is not None and summary is not None:
        active = active.model_copy(update={"mode": summary.get("mode"), "task": summary.get("task")})

    context = render_session_context(
        git, active=active, open_sessions=open_sessions, summary=summary, warning=warning
    )
    return HookResponse(
        additional_context=context,
        env={"BRAIN_PROJECT": runtime.project.project_name},
    )
