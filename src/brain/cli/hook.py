"""Hook commands invoked by the host.

Each command reads the host's JSON payload from stdin, writes the host's
response envelope to stdout and exits 0 (allow), 2 (block) or 1 (unexpected
error).
"""

from __future__ import annotations

import sys

import anyio
import click

from brain.config.settings import get_settings
from brain.hooks.normalize import HookEventName, NormalizedHookEvent
from brain.hooks.runner import run_hook
from brain.runtime import BrainRuntime, build_runtime, resolve_current_project

HOOK_NAMES: tuple[HookEventName, ...] = ("pre-tool-use", "prompt-submit", "session-start", "stop")


def runtime_for_event(event: NormalizedHookEvent) -> BrainRuntime | None:
    """Runtime for the event's workspace, or None when no project resolves."""
    settings = get_settings()
    resolution = resolve_current_project(settings, cwd=event.workspace_root or None)
    if resolution is None:
        return None
    return build_runtime(settings, project=resolution)


@click.command("hook")
@click.argument("name", type=click.Choice(HOOK_NAMES))
def hook(name: HookEventName) -> None:
    """Handle one host hook event (stdin JSON in, envelope JSON out)."""
    stdin_text = click.get_text_stream("stdin").read()

    async def _run():
        return await run_hook(name, stdin_text, runtime_for_event)

    outcome = anyio.run(_run)
    click.echo(outcome.render())
    sys.exit(outcome.exit_code)


def register(cli: click.Group) -> None:
    cli.add_command(hook)
