"""CLI tests using click's CliRunner."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from brain.cli.main import cli
from brain.config.settings import reset_settings_cache
from brain.notes import InMemoryNoteStore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def shared_store(monkeypatch) -> InMemoryNoteStore:
    """One fake note store across every runtime the CLI builds."""
    store = InMemoryNoteStore()
    monkeypatch.setattr("brain.runtime.build_note_store", lambda *args, **kwargs: store)
    return store


def _json(result) -> dict:
    return json.loads(result.output)


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "brain" in result.output


# --- hook ---


def test_hook_without_project_fails_closed(runner, shared_store, tmp_path):
    payload = {"session_id": "s", "cwd": str(tmp_path), "tool_name": "Edit", "tool_input": {}}

    result = runner.invoke(cli, ["hook", "pre-tool-use"], input=json.dumps(payload))

    assert result.exit_code == 2
    assert _json(result)["decision"] == "block"


def test_hook_allows_in_coding_mode(runner, shared_store, monkeypatch, tmp_path):
    monkeypatch.setenv("BRAIN_PROJECT", "demo")
    reset_settings_cache()
    assert runner.invoke(cli, ["session", "set", "--mode", "coding"]).exit_code == 0

    payload = {"session_id": "s", "cwd": str(tmp_path), "tool_name": "Write", "tool_input": {}}
    result = runner.invoke(cli, ["hook", "pre-tool-use"], input=json.dumps(payload))

    assert result.exit_code == 0
    assert _json(result) == {"decision": "allow"}


def test_hook_prompt_submit_plain_text(runner, shared_store, tmp_path):
    result = runner.invoke(cli, ["hook", "prompt-submit"], input="why does the build crash?")

    assert result.exit_code == 0
    assert "Scenario Detected: BUG" in _json(result)["hookSpecificOutput"]["additionalContext"]


def test_hook_rejects_unknown_name(runner):
    result = runner.invoke(cli, ["hook", "post-tool-use"], input="{}")

    assert result.exit_code == 2
    assert "Invalid value" in result.output


# --- session ---


def test_session_get_state_without_session(runner, shared_store):
    result = runner.invoke(cli, ["session", "get-state", "--project", "demo"])

    assert result.exit_code == 1
    assert _json(result)["error"] == "SESSION_NOT_FOUND"


def test_session_set_then_get_state(runner, shared_store):
    set_result = runner.invoke(cli, ["session", "set", "--project", "demo", "--mode", "planning", "--task", "draft"])
    state = runner.invoke(cli, ["session", "get-state", "--project", "demo"])

    assert set_result.exit_code == 0
    assert _json(set_result)["state"]["currentMode"] == "planning"
    summary = _json(state)
    assert (summary["mode"], summary["task"]) == ("planning", "draft")


def test_session_set_invalid_mode(runner, shared_store):
    result = runner.invoke(cli, ["session", "set", "--project", "demo", "--mode", "yolo"])

    assert result.exit_code == 1
    assert _json(result)["error"] == "VALIDATION_ERROR"


def test_session_create_pause_and_list(runner, shared_store):
    created = _json(runner.invoke(cli, ["session", "create", "--project", "demo", "--topic", "Auth work"]))
    paused = runner.invoke(cli, ["session", "pause", "--project", "demo", created["sessionId"]])
    listed = _json(runner.invoke(cli, ["session", "list", "--project", "demo"]))

    assert created["sessionId"].endswith("_01-auth-work")
    assert _json(paused)["newStatus"] == "PAUSED"
    assert [(s["sessionId"], s["status"]) for s in listed] == [(created["sessionId"], "PAUSED")]


def test_session_invalid_transition_exits_one(runner, shared_store):
    created = _json(runner.invoke(cli, ["session", "create", "--project", "demo", "--topic", "x"]))

    result = runner.invoke(cli, ["session", "resume", "--project", "demo", created["sessionId"]])

    assert result.exit_code == 1
    assert _json(result)["success"] is False


def test_session_command_without_project(runner, shared_store, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(cli, ["session", "list"])

    assert result.exit_code == 1
    assert _json(result)["error"] == "NO_PROJECT"


# --- project ---


def test_project_resolve_from_config(runner, isolated_home):
    code = isolated_home / "code" / "app"
    (code / "src").mkdir(parents=True)
    added = runner.invoke(cli, ["config", "add-project", "app", "--code-path", str(code)])
    assert added.exit_code == 0, added.output

    result = runner.invoke(cli, ["project", "resolve", "--cwd", str(code / "src")])

    assert result.exit_code == 0
    assert _json(result)["projectName"] == "app"
    assert _json(result)["isWorktreeResolved"] is False


def test_project_resolve_explicit_and_missing(runner, tmp_path):
    explicit = runner.invoke(cli, ["project", "resolve", "--project", "other", "--cwd", str(tmp_path)])
    missing = runner.invoke(cli, ["project", "resolve", "--cwd", str(tmp_path)])

    assert _json(explicit)["projectName"] == "other"
    assert missing.exit_code == 1
    assert _json(missing)["error"] == "NO_PROJECT"


# --- config ---


def test_config_set_and_get(runner):
    set_result = runner.invoke(cli, ["config", "set", "sync.delay_ms", "750"])
    get_result = runner.invoke(cli, ["config", "get", "sync.delay_ms"])

    assert set_result.exit_code == 0, set_result.output
    assert _json(set_result)["new_value"] == 750
    assert _json(get_result) == {"key": "sync.delay_ms", "value": 750}


def test_config_set_rejects_bad_values(runner):
    negative = runner.invoke(cli, ["config", "set", "sync.delay_ms", "-5"])
    unknown = runner.invoke(cli, ["config", "set", "projects.x", "1"])

    assert negative.exit_code == 1
    assert _json(negative)["hint"] == "Must be a non-negative number"
    assert unknown.exit_code == 1
    assert _json(unknown)["error"] == "Key not settable: projects.x"


def test_config_get_unknown_key(runner):
    result = runner.invoke(cli, ["config", "get", "nope.nothing"])

    assert result.exit_code == 1
    assert _json(result)["error"] == "Key not found: nope.nothing"


def test_config_show_renders_tables(runner, isolated_home):
    added = runner.invoke(cli, ["config", "add-project", "app", "--code-path", str(isolated_home / "app")])
    assert added.exit_code == 0, added.output

    result = runner.invoke(cli, ["config", "show"])

    assert result.exit_code == 0
    assert "Brain Configuration" in result.output
    assert "Projects" in result.output


def test_config_reset_projects_is_refused(runner):
    result = runner.invoke(cli, ["config", "reset", "projects"])

    assert result.exit_code == 2
    assert "Invalid value" in result.output


def test_config_migrate_legacy_nothing_to_do(runner):
    result = runner.invoke(cli, ["config", "migrate-legacy"])

    assert result.exit_code == 0
    assert _json(result)["migrated"] is False


# --- workflow ---


def test_workflow_complete_feature(runner, shared_store):
    result = runner.invoke(cli, ["workflow", "complete-feature", "--project", "demo", "feature-1"])

    assert result.exit_code == 0, result.output
    assert _json(result)["overallVerdict"] == "PASS"
    assert shared_store.get("features/feature-1-completion", project="demo") is not None


def test_workflow_complete_feature_with_open_tasks(runner, shared_store):
    context = json.dumps({"tasks": [{"name": "docs", "status": "IN_PROGRESS", "completed": False}]})

    result = runner.invoke(cli, ["workflow", "complete-feature", "--project", "demo", "f2", "--context", context])

    assert result.exit_code == 1
    assert _json(result)["errorType"] == "VALIDATION_ERROR"


def test_workflow_approval_roundtrip(runner, shared_store):
    requested = runner.invoke(
        cli,
        ["workflow", "request-approval", "--project", "demo", "a1", "--type", "publish", "--description", "Ship"],
    )
    approved = runner.invoke(cli, ["workflow", "approve", "--project", "demo", "a1", "--by", "alice"])

    assert requested.exit_code == 0, requested.output
    assert _json(approved) == {"status": "APPROVED", "approvalId": "a1", "approvedBy": "alice"}


def test_workflow_approve_unknown(runner, shared_store):
    result = runner.invoke(cli, ["workflow", "approve", "--project", "demo", "ghost", "--by", "alice"])

    assert result.exit_code == 1
    assert _json(result)["error"] == "APPROVAL_NOT_FOUND"
