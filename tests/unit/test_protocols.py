"""Unit tests for the session protocol start and end workflows."""

from __future__ import annotations

from datetime import date

import pytest

from brain.errors import BrainUnavailableError, ValidationError
from brain.sessions.logs import SessionLog, SessionLogService, check_section_items
from brain.sessions.persistence import SessionPersistence
from brain.sessions.service import SessionService
from brain.workflows.events import SESSION_PROTOCOL_END, EventBus
from brain.workflows.protocol_end import SessionProtocolEndWorkflow, describe_uncommitted
from brain.workflows.protocol_start import SessionProtocolStartWorkflow, find_skill_scripts
from brain.workflows.retry import RetryConfig
from brain.workflows.steps import InMemoryStepJournal
from brain.workflows.validation import consistency_problems, has_requirements

FAST = RetryConfig(max_attempts=2, base_delay=0)


def fake_git(status: str = "", branch: str = "main"):
    def run(args, cwd, timeout):
        if args[0] == "status":
            return status
        if args[0] == "branch":
            return f"{branch}\n"
        return None

    return run


@pytest.fixture
def logs(notes) -> SessionLogService:
    return SessionLogService(notes, git_branch=lambda: "main", today=lambda: date(2026, 3, 14))


@pytest.fixture
def sessions(notes, logs) -> SessionService:
    return SessionService(SessionPersistence(notes), bus=EventBus(), logs=logs, session_id=lambda: "s-1")


@pytest.fixture
def workspace(tmp_path):
    skill = tmp_path / ".claude" / "skills" / "memory"
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text("# memory skill")
    (skill / "sync.sh").write_text("echo")
    (skill / "notes.txt").write_text("ignored")
    governance = tmp_path / ".agents" / "governance"
    governance.mkdir(parents=True)
    (governance / "PROJECT-CONSTRAINTS.md").write_text("No force pushes.")
    return tmp_path


def start_workflow(sessions, logs, notes, **kwargs) -> SessionProtocolStartWorkflow:
    return SessionProtocolStartWorkflow(sessions, logs, notes, retry_config=FAST, git_runner=fake_git(), **kwargs)


# --- protocol start ---


def test_find_skill_scripts_only_lists_known_files(workspace):
    names = [path.rsplit("/", 1)[-1] for path in find_skill_scripts(str(workspace))]

    assert names == ["SKILL.md", "sync.sh"]


@pytest.mark.asyncio
async def test_protocol_start_collects_evidence(sessions, logs, notes, note_store, workspace):
    note_store.put("HANDOFF", "Last time we fixed auth.", project="demo")
    note_store.put("session-context", "ctx", project="demo")

    result = await start_workflow(sessions, logs, notes).run("s-1", str(workspace))

    evidence = result.context.evidence
    assert evidence["handoffRead"] == "yes"
    assert evidence["skillScriptsCount"] == "2"
    assert evidence["gitBranch"] == "main"
    assert evidence["constraintsRead"] == "yes"
    assert evidence["usageMandatoryRead"] == "no"
    assert evidence["memoryIndexCount"] == "1"
    assert result.context.session_log_path.startswith("sessions/SESSION-2026-03-14_01-")

    state = await sessions.get_session()
    assert state.protocol_start_complete is True
    assert (await logs.query_active_session()).is_valid is True


@pytest.mark.asyncio
async def test_protocol_start_reuses_active_session_log(sessions, logs, notes, workspace):
    created = await logs.create_session("existing work")

    result = await start_workflow(sessions, logs, notes).run("s-1", str(workspace))

    assert result.context.session_log_path == created.path
    assert len(await logs.list_sessions()) == 1


@pytest.mark.asyncio
async def test_protocol_start_can_defer_log_creation(sessions, logs, notes, workspace):
    deferred = await start_workflow(sessions, logs, notes).run("s-1", str(workspace), create_log=False)

    assert deferred.context.evidence["sessionLogPath"] == "deferred"
    assert await logs.list_sessions() == []

    created = await logs.create_session("existing work")
    reused = await start_workflow(sessions, logs, notes).run("s-1", str(workspace), create_log=False)
    assert reused.context.session_log_path == created.path


@pytest.mark.asyncio
async def test_protocol_start_replay_skips_completed_steps(sessions, logs, notes, workspace):
    journal = InMemoryStepJournal()
    workflow = start_workflow(sessions, logs, notes, journal=journal)

    first = await workflow.run("s-1", str(workspace), run_id="run-1")
    second = await workflow.run("s-1", str(workspace), run_id="run-1")

    assert second.context.session_log_path == first.context.session_log_path
    assert len(await logs.list_sessions()) == 1
    assert "init-brain-mcp" in journal.steps("run-1")


@pytest.mark.asyncio
async def test_protocol_start_fails_when_note_store_is_down(sessions, logs, notes, note_store, workspace):
    note_store.inject_failure("build_context", times=5)

    with pytest.raises(BrainUnavailableError):
        await start_workflow(sessions, logs, notes).run("s-1", str(workspace))


@pytest.mark.asyncio
async def test_protocol_start_requires_working_directory(sessions, logs, notes):
    with pytest.raises(ValidationError, match="workingDirectory"):
        await start_workflow(sessions, logs, notes).run("s-1", "")


@pytest.mark.asyncio
async def test_optional_notes_degrade_when_unavailable(sessions, logs, notes, note_store, workspace):
    note_store.inject_failure("read_note", when=lambda args: args["identifier"] == "HANDOFF", times=5)

    result = await start_workflow(sessions, logs, notes).run("s-1", str(workspace))

    assert result.context.evidence["handoffRead"] == "no"


# --- protocol end ---


async def _ready_session(logs, note_store) -> SessionLog:
    created = await logs.create_session("auth work")
    await logs.check_session_start(created.session_id)
    log = await logs.get_session_log(created.session_id)
    finished = SessionLog(log.session_id, log.path, log.frontmatter, check_section_items(log.body, "Session End"))
    note_store.put(finished.path, finished.render(), project="demo")
    return finished


def end_workflow(sessions, logs, **kwargs) -> SessionProtocolEndWorkflow:
    kwargs.setdefault("git_runner", fake_git())
    return SessionProtocolEndWorkflow(sessions, logs, retry_config=FAST, **kwargs)


def test_describe_uncommitted_truncates():
    files = [f"f{i}.py" for i in range(7)]

    assert describe_uncommitted(files) == "Uncommitted changes: f0.py, f1.py, f2.py, f3.py, f4.py and 2 more"


@pytest.mark.asyncio
async def test_protocol_end_passes_and_closes_session(sessions, logs, note_store, tmp_path):
    log = await _ready_session(logs, note_store)

    result = await end_workflow(sessions, logs).run("s-1", str(tmp_path))

    assert result.verdict == "PASS", result.blockers
    assert [step.label for step in result.steps] == [
        "Session log",
        "Brain memory",
        "Markdown lint",
        "Git",
        "Protocol validation",
        "Consistency validation",
        "Session state",
    ]
    assert (await logs.get_session_log(log.session_id)).status == "COMPLETE"
    state = await sessions.get_session()
    assert state.protocol_end_complete is True
    assert state.protocol_end_evidence["sessionLog"] == log.path


@pytest.mark.asyncio
async def test_protocol_end_reports_every_blocker(sessions, logs, note_store, tmp_path):
    created = await logs.create_session("auth work")
    dirty = " M a.py\n?? b.py\n"

    result = await end_workflow(
        sessions,
        logs,
        git_runner=fake_git(status=dirty),
        lint_command="markdownlint **/*.md",
        lint_runner=lambda command, cwd, timeout: (False, "Markdown lint failed: MD013"),
    ).run("s-1", str(tmp_path))

    assert result.verdict == "FAIL"
    assert "Git: Uncommitted changes: a.py, b.py" in result.blockers
    assert "Markdown lint: Markdown lint failed: MD013" in result.blockers
    assert any(b.startswith("Session log: ") and "incomplete checklist items" in b for b in result.blockers)
    assert result.blockers[-1] == "Session state: Cannot close session: previous validations failed"
    assert (await logs.get_session_log(created.session_id)).status == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_protocol_end_without_session_log(sessions, logs, tmp_path):
    result = await end_workflow(sessions, logs).run("s-1", str(tmp_path))

    assert "Session log: Session log not found" in result.blockers


@pytest.mark.asyncio
async def test_protocol_end_git_failure_blocks(sessions, logs, note_store, tmp_path):
    await _ready_session(logs, note_store)

    result = await end_workflow(sessions, logs, git_runner=lambda args, cwd, timeout: None).run("s-1", str(tmp_path))

    assert "Git: Uncommitted changes: unable to read git status" in result.blockers


@pytest.mark.asyncio
async def test_protocol_end_event_dispatch(sessions, logs, note_store, tmp_path):
    await _ready_session(logs, note_store)
    bus = EventBus()
    bus.subscribe(SESSION_PROTOCOL_END, end_workflow(sessions, logs).handle_protocol_end)

    [result] = await bus.emit(SESSION_PROTOCOL_END, {"sessionId": "s-1", "workingDirectory": str(tmp_path)})

    assert result.verdict == "PASS"


# --- planning consistency ---


def test_has_requirements_needs_a_bullet_under_heading():
    assert has_requirements("# PRD\n\n## Acceptance Criteria\n\n- user can log in\n")
    assert not has_requirements("# PRD\n\n## Requirements\n\nTBD\n\n## Notes\n- unrelated\n")


def test_consistency_problems(tmp_path):
    planning = tmp_path / ".agents" / "planning"
    planning.mkdir(parents=True)
    (planning / "prd-auth.md").write_text("## Requirements\n- login\n")
    (planning / "prd-billing.md").write_text("## Overview\nSoon.\n")
    (planning / "tasks-billing.md").write_text("- [ ] invoices\n")

    assert consistency_problems(str(tmp_path)) == [
        "prd-auth.md: missing tasks-auth.md",
        "prd-billing.md: no requirements or acceptance criteria",
    ]
    assert consistency_problems(str(tmp_path / "elsewhere")) == []
