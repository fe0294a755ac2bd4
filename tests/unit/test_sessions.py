"""Unit tests for session state, persistence and session logs."""

from __future__ import annotations

import json
from datetime import date

import pytest

from brain.errors import (
    AutoPauseFailedError,
    BrainUnavailableError,
    InvalidStatusTransitionError,
    SessionConsistencyError,
    SessionNotFoundError,
    ValidationError,
)
from brain.sessions.frontmatter import render_frontmatter, split_frontmatter, validate_session_frontmatter
from brain.sessions.logs import SessionLogService, slugify_topic
from brain.sessions.models import AgentInvocation, SessionState, create_default_session_state
from brain.sessions.persistence import SESSION_PATH, SessionPersistence
from brain.sessions.service import SessionService
from brain.workflows.events import SESSION_MODE_CHANGED, SESSION_STATE_UPDATE, EventBus

TODAY = date(2026, 3, 14)


@pytest.fixture
def persistence(notes) -> SessionPersistence:
    return SessionPersistence(notes)


@pytest.fixture
def logs(notes) -> SessionLogService:
    return SessionLogService(notes, git_branch=lambda: "feature/x", today=lambda: TODAY)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def sessions(persistence, logs, bus) -> SessionService:
    return SessionService(persistence, bus=bus, logs=logs, session_id=lambda: "s-1")


# --- models ---


def test_default_state_starts_in_analysis():
    state = create_default_session_state()

    assert state.current_mode == "analysis"
    assert state.version == 1
    assert [entry.mode for entry in state.mode_history] == ["analysis"]
    assert state.to_json_dict()["currentMode"] == "analysis"


def test_mode_history_must_end_with_current_mode():
    with pytest.raises(Exception):
        SessionState.model_validate(
            {"currentMode": "coding", "modeHistory": [{"mode": "analysis", "timestamp": "t"}]}
        )


def test_in_progress_invocation_cannot_have_output():
    with pytest.raises(Exception):
        AgentInvocation.model_validate(
            {
                "agent": "qa",
                "startedAt": "t",
                "status": "in_progress",
                "input": {"prompt": "p"},
                "output": {"summary": "done"},
            }
        )


def test_blocked_invocation_requires_blockers():
    with pytest.raises(Exception):
        AgentInvocation.model_validate(
            {
                "agent": "qa",
                "startedAt": "t",
                "completedAt": "t2",
                "status": "blocked",
                "input": {"prompt": "p"},
                "output": {"blockers": []},
            }
        )


# --- persistence ---


@pytest.mark.asyncio
async def test_persistence_roundtrip_and_tombstone(persistence):
    assert await persistence.load_session() is None

    await persistence.save_session(create_default_session_state())
    loaded = await persistence.load_session()
    assert loaded is not None and loaded.current_mode == "analysis"

    await persistence.delete_session()
    assert await persistence.load_session() is None


@pytest.mark.asyncio
async def test_persistence_tolerates_markdown_around_json(note_store, persistence):
    state = create_default_session_state().to_json_dict()
    note_store.put(SESSION_PATH, f"# Session\n\n```json\n{json.dumps(state)}\n```\n", project="demo")

    assert (await persistence.load_session()).current_mode == "analysis"


@pytest.mark.asyncio
async def test_persistence_unparseable_is_none(note_store, persistence):
    note_store.put(SESSION_PATH, "not json at all", project="demo")

    assert await persistence.load_session() is None


@pytest.mark.asyncio
async def test_persistence_transport_failure_propagates(note_store, persistence):
    note_store.inject_failure("read_note")

    with pytest.raises(BrainUnavailableError):
        await persistence.load_session()


# --- session service ---


@pytest.mark.asyncio
async def test_set_session_mode_bumps_version_and_emits(sessions, bus):
    await sessions.get_or_create_session()

    state = await sessions.set_session(mode="planning")

    assert state.current_mode == "planning"
    assert state.version == 2
    assert [e.mode for e in state.mode_history] == ["analysis", "planning"]
    assert [e.name for e in bus.sent] == [SESSION_STATE_UPDATE, SESSION_MODE_CHANGED]
    assert bus.sent[0].data == {"sessionId": "s-1", "version": 2}
    assert bus.sent[1].data["previousMode"] == "analysis"


@pytest.mark.asyncio
async def test_set_session_same_mode_does_not_emit_mode_changed(sessions, bus):
    await sessions.set_session(mode="analysis")

    assert [e.name for e in bus.sent] == [SESSION_STATE_UPDATE]


@pytest.mark.asyncio
async def test_feature_change_clears_task(sessions):
    await sessions.set_session(feature="auth", task="write tests")
    state = await sessions.set_session(feature="billing")

    assert state.active_feature == "billing"
    assert state.active_task is None


@pytest.mark.asyncio
async def test_empty_string_clears_field(sessions):
    await sessions.set_session(task="t1")
    state = await sessions.set_session(task="")

    assert state.active_task is None


@pytest.mark.asyncio
async def test_set_session_rejects_invalid_and_empty_updates(sessions):
    with pytest.raises(ValidationError, match="Invalid mode: yolo"):
        await sessions.set_session(mode="yolo")
    with pytest.raises(ValidationError, match="No updates provided"):
        await sessions.set_session()


@pytest.mark.asyncio
async def test_require_session_raises_when_absent(sessions):
    with pytest.raises(SessionNotFoundError):
        await sessions.require_session()


@pytest.mark.asyncio
async def test_state_summary_includes_active_session(sessions, logs):
    assert await sessions.get_state_summary() is None
    created = await logs.create_session("Auth work")
    await sessions.set_session(mode="coding", task="login")

    summary = await sessions.get_state_summary()

    assert summary["mode"] == "coding"
    assert summary["modeDescription"] == "Full access. All tools allowed."
    assert summary["activeSession"]["sessionId"] == created.session_id
    assert summary["activeSession"]["task"] == "login"
    assert [s["sessionId"] for s in summary["openSessions"]] == [created.session_id]


# --- frontmatter ---


def test_frontmatter_roundtrip_normalizes_dates():
    text = render_frontmatter({"title": "SESSION-2026-03-14_01-x", "date": "2026-03-14"}, "\n# Body\n")
    frontmatter, body = split_frontmatter(text)

    assert frontmatter["date"] == "2026-03-14"
    assert body == "\n# Body\n"

    frontmatter, _ = split_frontmatter("---\ndate: 2026-03-14\n---\n")
    assert frontmatter["date"] == "2026-03-14"


def test_validate_session_frontmatter_reports_each_field():
    errors = validate_session_frontmatter({"title": "bad", "type": "note", "status": "DONE", "date": "14/03/2026"})

    assert [e.constraint for e in errors] == ["title_invalid", "type_invalid", "status_invalid", "date_invalid"]
    assert validate_session_frontmatter(None)[0].constraint == "frontmatter_required"


# --- session logs ---


def test_slugify_topic():
    assert slugify_topic("Fix the  Login Bug!") == "fix-the-login-bug"
    assert len(slugify_topic("x" * 80)) == 50


@pytest.mark.asyncio
async def test_create_session_numbers_and_auto_pauses(logs, note_store):
    first = await logs.create_session("Auth work")
    second = await logs.create_session("Billing")

    assert first.session_id == "SESSION-2026-03-14_01-auth-work"
    assert second.session_id == "SESSION-2026-03-14_02-billing"
    assert second.auto_paused == first.session_id
    assert (await logs.get_session_log(first.session_id)).status == "PAUSED"

    log = await logs.get_session_log(second.session_id)
    assert log.frontmatter["branch"] == "feature/x"
    assert "## Session Start" in log.body
    assert "**Session ID**: SESSION-2026-03-14_02-billing" in log.body


@pytest.mark.asyncio
async def test_create_session_requires_topic(logs):
    with pytest.raises(ValidationError):
        await logs.create_session("   ")


@pytest.mark.asyncio
async def test_create_failure_restores_auto_paused_session(logs, note_store):
    first = await logs.create_session("Auth work")
    note_store.inject_failure("write_note", when=lambda args: "billing" in args["path"])

    with pytest.raises(BrainUnavailableError):
        await logs.create_session("Billing")

    assert (await logs.get_session_log(first.session_id)).status == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_auto_pause_failure_is_reported(logs, note_store):
    await logs.create_session("Auth work")
    note_store.inject_failure("write_note")

    with pytest.raises(AutoPauseFailedError):
        await logs.create_session("Billing")


@pytest.mark.asyncio
async def test_status_transitions(logs):
    created = await logs.create_session("Auth work")

    paused = await logs.pause_session(created.session_id)
    assert (paused.previous_status, paused.new_status) == ("IN_PROGRESS", "PAUSED")

    with pytest.raises(InvalidStatusTransitionError):
        await logs.complete_session(created.session_id)

    await logs.resume_session(created.session_id)
    done = await logs.complete_session(created.session_id)
    assert done.new_status == "COMPLETE"

    with pytest.raises(InvalidStatusTransitionError):
        await logs.resume_session(created.session_id)
    with pytest.raises(SessionNotFoundError):
        await logs.pause_session("SESSION-2026-03-14_09-ghost")


@pytest.mark.asyncio
async def test_resume_auto_pauses_the_other_session(logs):
    first = await logs.create_session("Auth work")
    second = await logs.create_session("Billing")

    await logs.resume_session(first.session_id)

    assert (await logs.get_session_log(second.session_id)).status == "PAUSED"
    assert (await logs.query_active_session()).session_id == first.session_id


@pytest.mark.asyncio
async def test_open_sessions_newest_first_and_active_checks(logs):
    first = await logs.create_session("Auth work")
    second = await logs.create_session("Billing")

    open_sessions = await logs.query_open_sessions()
    assert [s.session_id for s in open_sessions] == [second.session_id, first.session_id]

    active = await logs.query_active_session()
    assert active.is_valid is False
    assert {c.name: c.passed for c in active.checks}["session_start_complete"] is False

    await logs.check_session_start(second.session_id)
    assert (await logs.query_active_session()).is_valid is True


@pytest.mark.asyncio
async def test_two_in_progress_sessions_is_a_consistency_error(logs, note_store):
    for suffix in ("01-a", "02-b"):
        sid = f"SESSION-2026-03-14_{suffix}"
        note_store.put(
            f"sessions/{sid}",
            render_frontmatter({"title": sid, "type": "session", "status": "IN_PROGRESS", "date": "2026-03-14"}, ""),
            project="demo",
        )

    with pytest.raises(SessionConsistencyError) as exc_info:
        await logs.query_active_session()
    assert len(exc_info.value.session_ids) == 2


@pytest.mark.asyncio
async def test_missing_status_reads_as_complete(logs, note_store):
    sid = "SESSION-2026-03-14_01-old"
    note_store.put(f"sessions/{sid}", render_frontmatter({"title": sid}, ""), project="demo")

    assert (await logs.get_session_log(sid)).status == "COMPLETE"
    assert await logs.query_open_sessions() == []
