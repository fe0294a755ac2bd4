"""Workflow commands: feature completion, approvals and session protocols."""

from __future__ import annotations

import json
from typing import Any

import click
from rich.table import Table

from brain.cli.ui import console, echo_json, fail_json, format_status, open_runtime, run_async
from brain.workflows.completion import FeatureCompletionError
from brain.workflows.events import (
    APPROVAL_DENIED,
    APPROVAL_GRANTED,
    APPROVAL_REQUESTED,
    FEATURE_COMPLETION_REQUESTED,
    SESSION_PROTOCOL_END,
    SESSION_PROTOCOL_START,
)

project_option = click.option("--project", default=None, help="Project name (defaults to resolution from cwd)")


@click.group()
def workflow() -> None:
    """Run Brain workflows."""


@workflow.command("complete-feature")
@project_option
@click.argument("feature_id")
@click.option("--context", "context_json", default="{}", help="JSON object with feature context (e.g. tasks)")
def complete_feature(project: str | None, feature_id: str, context_json: str) -> None:
    """Run QA, analyst, architect and roadmap validation for a feature."""
    try:
        context = json.loads(context_json)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"Invalid JSON: {exc}", param_hint="--context") from exc
    runtime = open_runtime(project)

    async def _run():
        results = await runtime.bus.emit(
            FEATURE_COMPLETION_REQUESTED, {"featureId": feature_id, "context": context}
        )
        return results[0]

    result = run_async(_run)
    if isinstance(result, FeatureCompletionError):
        fail_json(result.to_json_dict())
    echo_json(result.to_json_dict())


@workflow.command("request-approval")
@project_option
@click.argument("approval_id")
@click.option("--type", "approval_type", required=True, help="What is being approved (e.g. publish)")
@click.option("--description", required=True)
@click.option("--timeout", "timeout_seconds", type=int, default=None, help="Seconds before the request times out")
def request_approval(
    project: str | None,
    approval_id: str,
    approval_type: str,
    description: str,
    timeout_seconds: int | None,
) -> None:
    """Suspend a workflow until a human decides."""
    runtime = open_runtime(project)
    data: dict[str, Any] = {
        "approvalId": approval_id,
        "approvalType": approval_type,
        "description": description,
    }
    if timeout_seconds is not None:
        data["timeoutSeconds"] = timeout_seconds

    async def _run():
        results = await runtime.bus.emit(APPROVAL_REQUESTED, data)
        return results[0]

    echo_json(run_async(_run).to_json_dict())


def _emit_decision(runtime, event_name: str, data: dict[str, Any]) -> None:
    async def _run():
        results = await runtime.bus.emit(event_name, data)
        return results[0]

    result = run_async(_run)
    if result is None:
        fail_json(
            {
                "success": False,
                "error": "APPROVAL_NOT_FOUND",
                "message": f"Unknown approval: {data['approvalId']}",
            }
        )
    echo_json(result.to_json_dict())


@workflow.command("approve")
@project_option
@click.argument("approval_id")
@click.option("--by", "approved_by", required=True)
@click.option("--comment", default=None)
def approve(project: str | None, approval_id: str, approved_by: str, comment: str | None) -> None:
    """Grant a pending approval."""
    data: dict[str, Any] = {"approvalId": approval_id, "approvedBy": approved_by}
    if comment:
        data["comment"] = comment
    _emit_decision(open_runtime(project), APPROVAL_GRANTED, data)


@workflow.command("deny")
@project_option
@click.argument("approval_id")
@click.option("--by", "denied_by", required=True)
@click.option("--reason", required=True)
def deny(project: str | None, approval_id: str, denied_by: str, reason: str) -> None:
    """Deny a pending approval."""
    _emit_decision(
        open_runtime(project),
        APPROVAL_DENIED,
        {"approvalId": approval_id, "deniedBy": denied_by, "reason": reason},
    )


@workflow.command("approvals")
@project_option
@click.option("--expire", is_flag=True, help="Time out overdue approvals first")
def approvals(project: str | None, expire: bool) -> None:
    """List pending approvals."""
    runtime = open_runtime(project)

    async def _run():
        if expire:
            for result in await runtime.hitl.expire_overdue():
                console.print(f"{result.approval_id} {format_status(result.status)}")
        return await runtime.hitl.pending()

    pending = run_async(_run)
    table = Table(title="Pending Approvals", show_lines=False)
    table.add_column("Approval ID", style="white")
    table.add_column("Type", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Deadline", style="magenta")
    for record in pending:
        table.add_row(record.approval_id, record.approval_type, record.description, record.deadline)
    console.print(table)


def _protocol_run(project: str | None, session_id: str | None, event_name: str) -> Any:
    runtime = open_runtime(project)

    async def _run():
        results = await runtime.bus.emit(
            event_name,
            {
                "sessionId": session_id or runtime.sessions.current_session_id(),
                "workingDirectory": runtime.working_directory,
            },
        )
        return results[0]

    return run_async(_run)


@workflow.command("start-session")
@project_option
@click.option("--session-id", default=None)
def start_session(project: str | None, session_id: str | None) -> None:
    """Run the session-start protocol and print the loaded context."""
    result = _protocol_run(project, session_id, SESSION_PROTOCOL_START)
    echo_json(result.to_json_dict())


@workflow.command("end-session")
@project_option
@click.option("--session-id", default=None)
def end_session(project: str | None, session_id: str | None) -> None:
    """Run the session-end protocol; exits 1 when any step fails."""
    result = _protocol_run(project, session_id, SESSION_PROTOCOL_END)
    if result.verdict != "PASS":
        fail_json(result.to_json_dict())
    echo_json(result.to_json_dict())


def register(cli: click.Group) -> None:
    cli.add_command(workflow)
