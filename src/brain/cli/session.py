"""Session state and session-log commands."""

from __future__ import annotations

from typing import Any

import click

from brain.cli.ui import echo_json, open_runtime, run_async
from brain.errors import SessionNotFoundError

project_option = click.option("--project", default=None, help="Project name (defaults to resolution from cwd)")


@click.group()
def session() -> None:
    """Inspect and change session state and session logs."""


@session.command("get-state")
@project_option
def get_state(project: str | None) -> None:
    """Print the workflow state summary."""
    runtime = open_runtime(project)

    async def _run() -> dict[str, Any]:
        summary = await runtime.sessions.get_state_summary()
        if summary is None:
            raise SessionNotFoundError("Session not found")
        return summary

    echo_json(run_async(_run))


@session.command("set")
@project_option
@click.option("--mode", default=None, help="analysis|planning|coding|disabled")
@click.option("--task", default=None, help="Active task (empty string clears)")
@click.option("--feature", default=None, help="Active feature (empty string clears; clears task)")
def set_state(project: str | None, mode: str | None, task: str | None, feature: str | None) -> None:
    """Update mode, task or feature."""
    runtime = open_runtime(project)
    updates: dict[str, Any] = {"mode": mode}
    if task is not None:
        updates["task"] = task
    if feature is not None:
        updates["feature"] = feature

    async def _run() -> dict[str, Any]:
        state = await runtime.sessions.set_session(**updates)
        return {"success": True, "state": state.to_json_dict()}

    echo_json(run_async(_run))


@session.command("create")
@project_option
@click.option("--topic", required=True, help="Session topic")
def create(project: str | None, topic: str) -> None:
    """Create a session log, auto-pausing any in-progress session."""
    runtime = open_runtime(project)

    async def _run() -> dict[str, Any]:
        result = await runtime.logs.create_session(topic)
        return result.to_json_dict()

    echo_json(run_async(_run))


def _status_command(name: str, help_text: str) -> click.Command:
    @click.command(name, help=help_text)
    @project_option
    @click.argument("session_id")
    def command(project: str | None, session_id: str) -> None:
        runtime = open_runtime(project)
        transition = getattr(runtime.logs, f"{name}_session")

        async def _run() -> dict[str, Any]:
            result = await transition(session_id)
            return result.to_json_dict()

        echo_json(run_async(_run))

    return command


session.add_command(_status_command("pause", "Pause an in-progress session."))
session.add_command(_status_command("resume", "Resume a paused session, auto-pausing any other."))
session.add_command(_status_command("complete", "Complete an in-progress session."))


@session.command("list")
@project_option
def list_sessions(project: str | None) -> None:
    """List session logs for the project."""
    runtime = open_runtime(project)

    async def _run() -> list[dict[str, Any]]:
        logs = await runtime.logs.list_sessions()
        return [
            {
                "sessionId": log.session_id,
                "status": log.status,
                "date": log.date,
                "topic": log.topic,
                "branch": log.branch,
                "path": log.path,
            }
            for log in logs
        ]

    echo_json(run_async(_run))


def register(cli: click.Group) -> None:
    cli.add_command(session)
