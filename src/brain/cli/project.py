"""Project resolution commands."""

from __future__ import annotations

import click

from brain.cli.ui import echo_json, fail_json
from brain.config.settings import get_settings
from brain.runtime import resolve_current_project


@click.group()
def project() -> None:
    """Inspect project resolution."""


@project.command("resolve")
@click.option("--project", "explicit", default=None, help="Explicit project name")
@click.option("--cwd", default=None, help="Working directory (defaults to the current one)")
def resolve(explicit: str | None, cwd: str | None) -> None:
    """Print which project and working directory Brain would use."""
    resolution = resolve_current_project(get_settings(), explicit=explicit, cwd=cwd)
    if resolution is None:
        fail_json(
            {
                "success": False,
                "error": "NO_PROJECT",
                "message": "No project matched the working directory",
            }
        )
    echo_json(resolution.to_dict())


def register(cli: click.Group) -> None:
    cli.add_command(project)
