"""Unit tests for the orchestrator engine and verdict aggregation."""

from __future__ import annotations

import pytest

from brain.errors import SessionNotFoundError, ValidationError
from brain.sessions.models import (
    AgentInvocation,
    AgentInvocationInput,
    AgentInvocationOutput,
    Decision,
    Verdict,
    create_empty_workflow,
    get_total_invocation_count,
)
from brain.sessions.persistence import SessionPersistence
from brain.sessions.service import SessionService
from brain.workflows.events import AGENT_COMPLETED, AGENT_INVOKED, EventBus
from brain.workflows.orchestrator import (
    COMPACTION_THRESHOLD,
    INVOCATIONS_TO_KEEP,
    SUPERSEDED_SUMMARY,
    OrchestratorEngine,
)
from brain.workflows.retry import RetryConfig
from brain.workflows.verdicts import AgentVerdict, can_proceed, merge_verdicts

FAST = RetryConfig(max_attempts=2, base_delay=0)


@pytest.fixture
def sessions(notes) -> SessionService:
    return SessionService(SessionPersistence(notes), bus=EventBus(), session_id=lambda: "s-1")


@pytest.fixture
def engine(sessions, notes) -> OrchestratorEngine:
    return OrchestratorEngine(sessions, notes, retry_config=FAST)


def _invoked(agent: str = "analyst", **extra) -> dict:
    return {"sessionId": "s-1", "agent": agent, "prompt": f"do {agent} work", **extra}


def _completed(agent: str = "analyst", **output) -> dict:
    return {"sessionId": "s-1", "agent": agent, "output": {"summary": "done", **output}}


@pytest.mark.asyncio
async def test_invoke_requires_existing_session(engine):
    with pytest.raises(SessionNotFoundError):
        await engine.agent_invoked(_invoked())


@pytest.mark.asyncio
async def test_invoke_records_in_progress_invocation(engine, sessions, notes):
    await sessions.get_or_create_session()

    result = await engine.agent_invoked(_invoked(handoffFrom="orchestrator"))

    assert result.success and not result.superseded
    state = await sessions.get_session()
    workflow = state.orchestrator_workflow
    assert workflow.active_agent == "analyst"
    assert workflow.agent_history[-1].status == "in_progress"
    assert workflow.agent_history[-1].handoff_from == "orchestrator"
    assert (await sessions.persistence.load_agent_context("analyst")).status == "in_progress"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, message",
    [
        ({"agent": "qa", "prompt": "p"}, "sessionId"),
        ({"sessionId": "s-1", "agent": "wizard", "prompt": "p"}, "Unknown agent type: wizard"),
        ({"sessionId": "s-1", "agent": "qa"}, "prompt"),
        ({"sessionId": "s-1", "agent": "qa", "prompt": "p", "handoffFrom": "nobody"}, "Unknown agent type"),
    ],
)
async def test_invoke_validation_errors(engine, sessions, data, message):
    await sessions.get_or_create_session()

    with pytest.raises(ValidationError, match=message):
        await engine.agent_invoked(data)


@pytest.mark.asyncio
async def test_second_invoke_supersedes_in_progress(engine, sessions):
    await sessions.get_or_create_session()
    await engine.agent_invoked(_invoked("qa"))

    result = await engine.agent_invoked(_invoked("qa"))

    assert result.superseded is True
    history = (await sessions.get_session()).orchestrator_workflow.agent_history
    assert [inv.status for inv in history] == ["failed", "in_progress"]
    assert history[0].output.summary == SUPERSEDED_SUMMARY
    assert (await sessions.get_session()).orchestrator_workflow.in_progress_count("qa") == 1


@pytest.mark.asyncio
async def test_complete_marks_completed_and_hands_off(engine, sessions):
    await sessions.get_or_create_session()
    await engine.agent_invoked(_invoked("architect"))

    result = await engine.agent_completed({**_completed("architect"), "handoffTo": "planner"})

    assert result.status == "completed"
    workflow = (await sessions.get_session()).orchestrator_workflow
    assert workflow.active_agent == "planner"
    assert workflow.agent_history[-1].handoff_to == "planner"
    assert workflow.agent_history[-1].completed_at is not None


@pytest.mark.asyncio
async def test_complete_with_blockers_is_blocked_and_handoff_to_orchestrator_clears_active(engine, sessions):
    await sessions.get_or_create_session()
    await engine.agent_invoked(_invoked("qa"))

    result = await engine.agent_completed({**_completed("qa", blockers=["tests red"]), "handoffTo": "orchestrator"})

    assert result.status == "blocked"
    workflow = (await sessions.get_session()).orchestrator_workflow
    assert workflow.active_agent is None
    assert workflow.agent_history[-1].handoff_to is None


@pytest.mark.asyncio
async def test_complete_without_in_progress_invocation_fails(engine, sessions):
    await sessions.get_or_create_session()
    await engine.agent_invoked(_invoked("qa"))

    with pytest.raises(ValidationError, match="No in_progress invocation found for agent analyst"):
        await engine.agent_completed(_completed("analyst"))


@pytest.mark.asyncio
async def test_complete_without_workflow_fails(engine, sessions):
    await sessions.get_or_create_session()

    with pytest.raises(ValidationError, match="no orchestrator workflow"):
        await engine.agent_completed(_completed())


@pytest.mark.asyncio
async def test_compaction_archives_all_but_newest(engine, sessions, note_store):
    await sessions.get_or_create_session()
    agents = ["analyst", "architect", "planner", "implementer", "critic", "qa", "security", "devops"]
    agents += ["retrospective", "memory", "explainer"]
    assert len(agents) == COMPACTION_THRESHOLD + 1

    results = []
    for agent in agents:
        await engine.agent_invoked(_invoked(agent))
        results.append(await engine.agent_completed(_completed(agent)))

    assert not any(r.compacted for r in results[:-1])
    last = results[-1]
    assert last.compacted is True
    assert last.version == results[-2].version + 3  # invoke, completion, compaction

    workflow = (await sessions.get_session()).orchestrator_workflow
    assert len(workflow.agent_history) == INVOCATIONS_TO_KEEP
    assert [inv.agent for inv in workflow.agent_history] == agents[-INVOCATIONS_TO_KEEP:]
    assert workflow.compaction_history[0].count == len(agents) - INVOCATIONS_TO_KEEP
    assert get_total_invocation_count(workflow) == len(agents)

    archive = note_store.get(last.compaction_note_path, project="demo")
    assert archive.startswith("# Agent History Archive")
    assert "### 1. analyst" in archive
    assert "**Invocation Count**: 8" in archive


def _finished(agent: str) -> AgentInvocation:
    return AgentInvocation(
        agent=agent,
        started_at="2026-03-14T10:00:00.000Z",
        completed_at="2026-03-14T10:05:00.000Z",
        status="completed",
        input=AgentInvocationInput(prompt=f"do {agent} work"),
        output=AgentInvocationOutput(summary="done"),
    )


@pytest.mark.asyncio
async def test_compaction_keeps_decisions_and_verdicts(engine, sessions):
    state = await sessions.get_or_create_session()
    state.orchestrator_workflow = create_empty_workflow()
    state.orchestrator_workflow.agent_history = [_finished(agent) for agent in ["analyst", "architect"] * 5 + ["qa"]]
    await sessions.commit(state)
    await engine.record_decision(
        Decision(id="d1", type="architectural", description="Use events", decided_by="architect")
    )
    await engine.record_verdict(Verdict(agent="critic", decision="approve", confidence=0.9))
    await engine.agent_invoked(_invoked("security"))
    before = await sessions.get_session()
    assert len(before.orchestrator_workflow.agent_history) == 12

    result = await engine.agent_completed(_completed("security"))

    after = await sessions.get_session()
    workflow = after.orchestrator_workflow
    assert result.compacted is True
    assert after.version == before.version + 2  # completion, compaction
    assert workflow.compaction_history[-1].count == 9
    assert [inv.agent for inv in workflow.agent_history] == ["architect", "qa", "security"]
    assert workflow.decisions == before.orchestrator_workflow.decisions
    assert workflow.verdicts == before.orchestrator_workflow.verdicts
    assert get_total_invocation_count(workflow) == 12


@pytest.mark.asyncio
async def test_failed_archive_write_leaves_history_intact(engine, sessions, note_store):
    await sessions.get_or_create_session()
    for agent in ["analyst", "architect", "planner", "implementer", "critic", "qa", "security", "devops", "memory", "explainer"]:
        await engine.agent_invoked(_invoked(agent))
        await engine.agent_completed(_completed(agent))
    await engine.agent_invoked(_invoked("retrospective"))
    note_store.inject_failure("write_note", when=lambda args: "-history-" in args["path"], times=5)

    with pytest.raises(Exception):
        await engine.agent_completed(_completed("retrospective"))

    workflow = (await sessions.get_session()).orchestrator_workflow
    assert len(workflow.agent_history) == COMPACTION_THRESHOLD + 1
    assert workflow.compaction_history == []


@pytest.mark.asyncio
async def test_event_handlers_dispatch_through_bus(engine, sessions):
    await sessions.get_or_create_session()
    bus = sessions.bus
    bus.subscribe(AGENT_INVOKED, engine.handle_agent_invoked)
    bus.subscribe(AGENT_COMPLETED, engine.handle_agent_completed)

    [invoked] = await bus.emit(AGENT_INVOKED, _invoked("critic"))
    [completed] = await bus.emit(AGENT_COMPLETED, _completed("critic"))

    assert invoked.agent == completed.agent == "critic"
    assert completed.status == "completed"


@pytest.mark.asyncio
async def test_decisions_and_verdicts_are_appended(engine, sessions):
    await sessions.get_or_create_session()

    await engine.record_decision(
        Decision(id="d1", type="architectural", description="Use events", decided_by="architect")
    )
    state = await engine.record_verdict(Verdict(agent="critic", decision="approve", confidence=0.9))

    workflow = state.orchestrator_workflow
    assert [d.id for d in workflow.decisions] == ["d1"]
    assert workflow.verdicts[0].decision == "approve"


# --- verdict aggregation ---


def _v(agent: str, verdict: str, details: str | None = None) -> AgentVerdict:
    return AgentVerdict(agent=agent, verdict=verdict, details=details)


def test_merge_empty_is_pass():
    final = merge_verdicts([])

    assert final.verdict == "PASS"
    assert can_proceed(final)


def test_merge_blocking_beats_everything():
    final = merge_verdicts([_v("qa", "PASS"), _v("analyst", "WARN"), _v("architect", "NEEDS_REVIEW"), _v("roadmap", "FAIL")])

    assert final.verdict == "FAIL"
    assert final.is_blocking is True
    assert final.blocking_agents == ["architect", "roadmap"]
    assert final.warning_agents == ["analyst"]
    assert final.reason == "Blocked by 2 agents: architect (NEEDS_REVIEW), roadmap (FAIL)"
    assert not can_proceed(final)


def test_merge_single_blocker_reason_includes_details():
    final = merge_verdicts([_v("qa", "CRITICAL_FAIL", "tests missing"), _v("analyst", "PASS")])

    assert final.reason == "Blocked by qa agent with CRITICAL_FAIL: tests missing"


def test_merge_warning_class_is_not_blocking():
    final = merge_verdicts([_v("qa", "PARTIAL"), _v("analyst", "WARN"), _v("architect", "COMPLIANT")])

    assert final.verdict == "WARN"
    assert final.is_blocking is False
    assert final.reason.startswith("Warnings from 2 agents")


def test_merge_all_passing_prefers_compliant():
    final = merge_verdicts([_v("qa", "PASS"), _v("analyst", "COMPLIANT")])

    assert final.verdict == "COMPLIANT"
    assert final.reason == "All 2 agents passed validation"
    assert final.to_json_dict()["agentResults"]["qa"] == {"agent": "qa", "verdict": "PASS"}


def test_merge_repeated_agent_counts_once_with_most_severe_verdict():
    final = merge_verdicts([_v("qa", "PASS"), _v("analyst", "PASS"), _v("qa", "FAIL", "flaky suite"), _v("qa", "WARN")])

    assert final.verdict == "FAIL"
    assert final.blocking_agents == ["qa"]
    assert final.warning_agents == []
    assert final.passing_agents == ["analyst"]
    assert final.agent_results["qa"] == _v("qa", "FAIL", "flaky suite")
    assert final.reason == "Blocked by qa agent with FAIL: flaky suite"
