"""Brain command-line interface.

The CLI is organized into submodules under `brain.cli.*`. Hook commands are
what the host invokes; the rest are operator tools over the same runtime.
"""

from __future__ import annotations

import click

from brain.app_version import get_app_version
from brain.observability import init_observability


@click.group()
@click.version_option(version=get_app_version(), prog_name="brain")
def cli() -> None:
    """Brain - workflow enforcement for AI coding agents."""
    init_observability()


def _register_commands() -> None:
    from brain.cli import config, hook, project, session, workflow

    config.register(cli)
    hook.register(cli)
    project.register(cli)
    session.register(cli)
    workflow.register(cli)


_register_commands()


if __name__ == "__main__":
    cli()
