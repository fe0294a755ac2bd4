"""Shared CLI helpers (Rich formatting, JSON output, runtime access)."""

from __future__ import annotations

import json
import sys
from typing import Any, Awaitable, Callable, Iterable, NoReturn, TypeVar

import anyio
import click
from rich.console import Console
from rich.table import Table

from brain.config.settings import get_settings
from brain.errors import BrainError
from brain.runtime import BrainRuntime, build_runtime, resolve_current_project

T = TypeVar("T")

console = Console()


def echo_json(data: Any) -> None:
    """Write a JSON document to stdout.

    Plain ``click.echo`` so the output stays machine-readable regardless of
    terminal capabilities.
    """
    click.echo(json.dumps(data, indent=2, default=str))


def fail_json(data: dict[str, Any], exit_code: int = 1) -> NoReturn:
    echo_json(data)
    sys.exit(exit_code)


def format_status(status: str) -> str:
    """Return colorized status string for terminal output."""
    colors = {
        "IN_PROGRESS": "cyan",
        "PAUSED": "yellow",
        "COMPLETE": "green",
        "PENDING": "yellow",
        "APPROVED": "green",
        "DENIED": "red",
        "TIMEOUT": "red",
    }
    color = colors.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def render_key_values(title: str, rows: Iterable[tuple[str, Any]]) -> None:
    table = Table(title=title, show_lines=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    for key, value in rows:
        table.add_row(key, "-" if value is None or value == "" else str(value))
    console.print(table)


def open_runtime(project: str | None = None, cwd: str | None = None) -> BrainRuntime:
    """Build a runtime for the resolved project, or exit when none resolves."""
    settings = get_settings()
    resolution = resolve_current_project(settings, explicit=project, cwd=cwd)
    if resolution is None:
        fail_json(
            {
                "success": False,
                "error": "NO_PROJECT",
                "message": "No project resolved. Pass --project or set BRAIN_PROJECT.",
            }
        )
    return build_runtime(settings, project=resolution)


def run_async(func: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine function; Brain errors become a JSON error and exit 1."""
    try:
        return anyio.run(func)
    except BrainError as exc:
        fail_json(exc.to_dict())
