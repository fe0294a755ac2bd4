"""Unit tests for hook normalization, the mode gate and the hook handlers."""

from __future__ import annotations

import json

import pytest

from brain.errors import BrainUnavailableError
from brain.hooks.gate import check_tool_blocked, perform_gate_check
from brain.hooks.normalize import (
    HookResponse,
    PreToolUsePayload,
    blocking_semantics,
    detect_platform,
    exit_code_for,
    format_response,
    normalize_event,
)
from brain.hooks.runner import parse_hook_input, run_hook
from brain.hooks.scenario import detect_scenario, has_planning_keywords
from brain.hooks.session_start import NO_PROJECT_INSTRUCTIONS
from brain.hooks.stop import validate_session, validate_stop_readiness
from brain.project.resolver import ProjectResolution
from brain.runtime import build_runtime
from brain.workflows.events import SESSION_PROTOCOL_START
from brain.workflows.retry import RetryConfig


def fake_git(args, cwd, timeout):
    if args[0] == "branch":
        return "main\n"
    if args[0] == "status":
        return ""
    if args[0] == "log":
        return "abc123 Initial commit\n"
    return None


@pytest.fixture
def runtime(settings, note_store, tmp_path):
    project = ProjectResolution("demo", str(tmp_path))
    return build_runtime(settings, notes=note_store, project=project, git_runner=fake_git)


async def _hook(name: str, payload, runtime):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return await run_hook(name, text, lambda event: runtime)


# --- normalization ---


def test_detect_platform_by_hook_event_name():
    assert detect_platform({"hook_event_name": "stop"}) == "secondary"
    assert detect_platform({"session_id": "s"}) == "primary"


@pytest.mark.parametrize(
    "raw, hint, expected",
    [
        ({"prompt": "hi"}, None, "prompt-submit"),
        ({"tool_name": "Edit", "tool_input": {}}, None, "pre-tool-use"),
        ({"session_id": "abc"}, None, "session-start"),
        ({"session_id": "abc", "stop_hook_active": False}, "Stop", "stop"),
        ({}, "pre-tool-use", "pre-tool-use"),
    ],
)
def test_primary_event_inference(raw, hint, expected):
    assert normalize_event(raw, hint).event == expected


def test_secondary_read_file_maps_to_read_tool():
    event = normalize_event(
        {
            "hook_event_name": "beforeReadFile",
            "conversation_id": "c-1",
            "workspace_roots": ["/work/repo"],
            "file_path": "src/app.py",
        },
        "prompt-submit",
    )

    assert event.platform == "secondary"
    assert event.event == "pre-tool-use"
    assert event.session_id == "c-1"
    assert event.workspace_root == "/work/repo"
    assert event.payload == PreToolUsePayload(tool_name="Read", tool_input={"file_path": "src/app.py"})


def test_blocking_semantics_per_platform():
    assert blocking_semantics("pre-tool-use", "secondary").can_block is True
    assert blocking_semantics("prompt-submit", "secondary").info_only is True
    assert blocking_semantics("stop", "primary").can_block is True
    assert blocking_semantics("session-start", "primary").can_block is False


def test_blocked_response_on_info_only_event_exits_zero():
    event = normalize_event({"hook_event_name": "beforeSubmitPrompt", "prompt": "x"})
    response = HookResponse(blocked=True, reason="no")

    assert exit_code_for(event, response) == 0
    assert format_response(event, response) == {"continue": False, "user_message": "no"}


def test_primary_context_envelope_uses_host_event_name():
    event = normalize_event({"prompt": "x"}, "UserPromptSubmit")

    envelope = format_response(event, HookResponse(additional_context="ctx"))

    assert envelope == {"hookSpecificOutput": {"hookEventName": "UserPromptSubmit", "additionalContext": "ctx"}}


def test_parse_hook_input_plain_text_prompt():
    assert parse_hook_input("fix the bug", "prompt-submit") == {"prompt": "fix the bug"}
    assert parse_hook_input("not json", "pre-tool-use") == {}
    assert parse_hook_input("", "stop") == {}


# --- gate ---


@pytest.mark.parametrize(
    "tool, mode, allowed",
    [
        ("Edit", "analysis", False),
        ("Bash", "analysis", False),
        ("Read", "analysis", True),
        ("Bash", "planning", True),
        ("Write", "planning", False),
        ("Write", "coding", True),
        ("Edit", "disabled", True),
        ("Edit", "", True),
        ("Edit", "mystery", True),
        ("Task", "analysis", True),
    ],
)
def test_check_tool_blocked(tool, mode, allowed):
    assert check_tool_blocked(tool, mode).allowed is allowed


def test_block_message_names_tool_and_mode():
    result = check_tool_blocked("Edit", "analysis")

    assert result.message.startswith("[BLOCKED] Tool 'Edit' is not allowed in analysis mode.")
    assert 'set_mode(mode="coding")' in result.message


@pytest.mark.asyncio
async def test_gate_fails_closed_when_state_unavailable():
    async def broken():
        raise BrainUnavailableError("down")

    write = await perform_gate_check("Write", broken)
    read = await perform_gate_check("Read", broken)

    assert write.allowed is False and write.mode == "unknown"
    assert read.allowed is True


# --- pre-tool-use hook ---


@pytest.mark.asyncio
async def test_pre_tool_use_without_session_blocks_destructive_tools(runtime):
    outcome = await _hook("pre-tool-use", {"tool_name": "Edit", "tool_input": {}}, runtime)

    assert outcome.exit_code == 2
    assert outcome.envelope["decision"] == "block"
    assert "Session state unavailable" in outcome.envelope["reason"]


@pytest.mark.asyncio
async def test_pre_tool_use_follows_session_mode(runtime):
    await runtime.sessions.set_session(mode="planning")

    bash = await _hook("pre-tool-use", {"tool_name": "Bash", "tool_input": {"command": "ls"}}, runtime)
    write = await _hook("pre-tool-use", {"tool_name": "Write", "tool_input": {}}, runtime)

    assert (bash.exit_code, bash.envelope) == (0, {"decision": "allow"})
    assert write.exit_code == 2


@pytest.mark.asyncio
async def test_secondary_shell_execution_denied_in_analysis(runtime):
    await runtime.sessions.get_or_create_session()

    outcome = await _hook(
        "pre-tool-use",
        {"hook_event_name": "beforeShellExecution", "command": "rm -rf build", "conversation_id": "c"},
        runtime,
    )

    assert outcome.exit_code == 2
    assert outcome.envelope["decision"] == "deny"


@pytest.mark.asyncio
async def test_handler_failure_in_pre_tool_use_is_fail_closed():
    def broken_factory(event):
        raise RuntimeError("config exploded")

    write = await run_hook("pre-tool-use", json.dumps({"tool_name": "Write"}), broken_factory)
    read = await run_hook("pre-tool-use", json.dumps({"tool_name": "Read"}), broken_factory)

    assert write.exit_code == 2
    assert read.exit_code == 0
    assert read.envelope == {"decision": "allow"}


@pytest.mark.asyncio
async def test_handler_failure_elsewhere_exits_one():
    def broken_factory(event):
        raise RuntimeError("config exploded")

    outcome = await run_hook("prompt-submit", json.dumps({"prompt": "hi"}), broken_factory)

    assert outcome.exit_code == 1
    assert outcome.envelope == {}


# --- prompt-submit hook ---


def test_detect_scenario_first_match_wins():
    result = detect_scenario("Please fix this crash and review the code")

    assert result.scenario == "BUG"
    assert result.keywords == ["fix", "crash"]
    assert result.directory == "bugs"
    assert detect_scenario("hello there").detected is False


def test_planning_keywords():
    assert has_planning_keywords("let's plan the next milestone")
    assert not has_planning_keywords("what time is it")


@pytest.mark.asyncio
async def test_prompt_submit_plain_text_gets_scenario_context(runtime):
    outcome = await _hook("prompt-submit", "the login page is broken", runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    assert outcome.exit_code == 0
    assert "### Scenario Detected: BUG" in context
    assert "**Recommended**: Create bug note in bugs/ before proceeding" in context


@pytest.mark.asyncio
async def test_prompt_submit_planning_prompt_includes_workflow_state(runtime):
    await runtime.sessions.set_session(mode="planning", feature="auth")

    outcome = await _hook("prompt-submit", {"prompt": "design the auth feature"}, runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    assert "### Workflow State" in context
    assert "**Mode:** planning" in context
    assert "**Feature:** auth" in context


@pytest.mark.asyncio
async def test_secondary_prompt_submit_never_blocks(runtime):
    outcome = await _hook("prompt-submit", {"hook_event_name": "beforeSubmitPrompt", "prompt": "fix bug"}, runtime)

    assert outcome.exit_code == 0
    assert outcome.envelope["continue"] is True
    assert outcome.envelope["user_message"].startswith("[BUG]")


# --- stop hook ---


def test_validate_session_requires_activity_in_research_modes():
    failing = validate_session({"mode": "analysis"})
    passing = validate_session({"mode": "coding"})

    assert failing.valid is False
    assert failing.remediation == "Capture observations before ending session"
    assert passing.valid is True
    assert validate_session(None).valid is True


def test_stop_readiness_is_always_valid():
    result = validate_stop_readiness(None)

    assert result.valid is True
    assert {c.name: c.passed for c in result.checks}["state_available"] is False


@pytest.mark.asyncio
async def test_stop_without_workflow_allows(runtime):
    outcome = await _hook("stop", {"session_id": "s", "stop_hook_active": False}, runtime)

    assert outcome.exit_code == 0
    assert outcome.envelope == {}


@pytest.mark.asyncio
async def test_stop_with_persisted_state_allows(runtime):
    await runtime.sessions.set_session(mode="analysis", task="read code")

    outcome = await _hook("stop", {"session_id": "s", "stop_hook_active": False}, runtime)

    assert outcome.exit_code == 0


# --- session-start hook ---


@pytest.mark.asyncio
async def test_session_start_without_project_asks_for_one():
    outcome = await run_hook("session-start", json.dumps({"session_id": "s"}), lambda event: None)

    assert outcome.exit_code == 0
    assert outcome.envelope["hookSpecificOutput"]["additionalContext"] == NO_PROJECT_INSTRUCTIONS


@pytest.mark.asyncio
async def test_session_start_renders_the_log_protocol_start_created(runtime):
    outcome = await _hook("session-start", {"session_id": "abc"}, runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    active = await runtime.logs.query_active_session()
    assert "**Branch:** main" in context
    assert "**Status:** clean" in context
    assert "- abc123 Initial commit" in context
    assert "### Active Session" in context
    assert f"**Session**: {active.session_id} - session" in context
    assert "No Active Session" not in context

    state = await runtime.sessions.get_session()
    assert state.protocol_start_complete is True
    assert state.protocol_start_evidence["sessionLogPath"] == active.path
    assert [e.data["sessionId"] for e in runtime.bus.events_named(SESSION_PROTOCOL_START)] == ["abc"]


@pytest.mark.asyncio
async def test_session_start_lists_open_sessions(runtime):
    created = await runtime.logs.create_session("Auth work")
    await runtime.logs.pause_session(created.session_id)

    outcome = await _hook("session-start", {"session_id": "abc"}, runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    assert "### Open Sessions Detected" in context
    assert f"Continue session: {created.session_id} - auth-work" in context
    assert [s.session_id for s in await runtime.logs.list_sessions()] == [created.session_id]
    state = await runtime.sessions.get_session()
    assert state.protocol_start_evidence["sessionLogPath"] == "deferred"


@pytest.mark.asyncio
async def test_session_start_does_not_retry_when_note_store_is_down(runtime, note_store):
    runtime.protocol_start.retry_config = RetryConfig(max_attempts=3, base_delay=5.0)
    note_store.inject_failure("build_context", times=5)

    outcome = await _hook("session-start", {"session_id": "abc"}, runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    assert outcome.exit_code == 0
    assert [name for name, _ in note_store.calls].count("build_context") == 1
    assert "### No Active Session" in context
    assert await runtime.logs.list_sessions() == []


@pytest.mark.asyncio
async def test_session_start_shows_active_session(runtime):
    created = await runtime.logs.create_session("Auth work")

    outcome = await _hook("session-start", {"session_id": "abc"}, runtime)

    context = outcome.envelope["hookSpecificOutput"]["additionalContext"]
    assert "### Active Session" in context
    assert f"**Session**: {created.session_id}" in context
    assert "Open Sessions Detected" not in context


@pytest.mark.asyncio
async def test_secondary_session_start_exports_project(runtime, tmp_path):
    outcome = await _hook(
        "session-start",
        {"hook_event_name": "sessionStart", "conversation_id": "c", "workspace_roots": [str(tmp_path)]},
        runtime,
    )

    assert outcome.envelope["env"] == {"BRAIN_PROJECT": "demo"}
    assert outcome.envelope["continue"] is True
    assert "additional_context" in outcome.envelope
