"""Configuration CLI commands."""

from __future__ import annotations

from typing import Any

import click
from rich.table import Table

from brain.cli.ui import console, echo_json, fail_json
from brain.config.legacy import LegacyConfigMigrator, rollback_legacy_migration
from brain.config.operations import RESETTABLE_KEYS
from brain.config.rollback import ROLLBACK_TARGETS
from brain.config.settings import get_settings
from brain.config.store import ConfigStore
from brain.config.translation import NoteStoreConfigSync
from brain.errors import ConfigurationError
from brain.runtime import build_config_service


def _emit(result: dict[str, Any]) -> None:
    if "error" in result:
        fail_json(result)
    echo_json(result)


def _store() -> ConfigStore:
    xdg = get_settings().xdg_config_home
    return ConfigStore(xdg_config_home=xdg or None)


@click.group()
def config() -> None:
    """Inspect and change the Brain configuration."""


@config.command("show")
def config_show() -> None:
    """Show the configuration and each project's resolved memories path."""
    service = build_config_service(get_settings())
    try:
        current = service.load()
        memories = service.resolved_memories_paths()
    except ConfigurationError as exc:
        fail_json(exc.to_dict())

    table = Table(title="Brain Configuration", show_lines=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Config file", str(service.store.path))
    table.add_row("Memories location", current.defaults.memories_location)
    table.add_row("Memories mode", current.defaults.memories_mode)
    table.add_row("Sync", f"{current.sync.enabled} (delay {current.sync.delay_ms}ms)")
    table.add_row("Watcher", f"{current.watcher.enabled} (debounce {current.watcher.debounce_ms}ms)")
    table.add_row("Log level", current.logging.level)
    console.print(table)

    if current.projects:
        projects = Table(title="Projects", show_lines=False)
        projects.add_column("Project", style="cyan")
        projects.add_column("Code path", style="white")
        projects.add_column("Memories", style="magenta")
        for name, project in sorted(current.projects.items()):
            projects.add_row(name, project.code_path, memories.get(name, "-"))
        console.print(projects)


@config.command("get")
@click.argument("key", required=False)
def config_get(key: str | None) -> None:
    """Print the whole config, or one dotted key."""
    service = build_config_service(get_settings())
    try:
        _emit(service.get(key))
    except ConfigurationError as exc:
        fail_json(exc.to_dict())


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set one settable key (e.g. sync.delay_ms 750)."""
    _emit(build_config_service(get_settings()).set(key, value))


@config.command("add-project")
@click.argument("name")
@click.option("--code-path", required=True)
@click.option("--memories-mode", type=click.Choice(["DEFAULT", "CODE", "CUSTOM"]), default=None)
@click.option("--memories-path", default=None)
def config_add_project(name: str, code_path: str, memories_mode: str | None, memories_path: str | None) -> None:
    """Register a new project."""
    service = build_config_service(get_settings())
    _emit(
        service.add_project(name, code_path, memories_mode=memories_mode, memories_path=memories_path)
    )


@config.command("update-project")
@click.argument("name")
@click.option("--code-path", default=None)
@click.option("--memories-path", default=None, help="DEFAULT, CODE or a custom path")
@click.option("--memories-mode", type=click.Choice(["DEFAULT", "CODE", "CUSTOM"]), default=None)
@click.option("--migrate/--no-migrate", default=True, show_default=True)
@click.option("--disable-worktree-detection/--enable-worktree-detection", default=None)
def config_update_project(
    name: str,
    code_path: str | None,
    memories_path: str | None,
    memories_mode: str | None,
    migrate: bool,
    disable_worktree_detection: bool | None,
) -> None:
    """Update a project, migrating its memories when the path moves."""
    service = build_config_service(get_settings())
    _emit(
        service.update_project(
            name,
            code_path=code_path,
            memories_path=memories_path,
            memories_mode=memories_mode,
            migrate=migrate,
            disable_worktree_detection=disable_worktree_detection,
        )
    )


@config.command("update-global")
@click.option("--memories-location", default=None)
@click.option("--memories-mode", type=click.Choice(["DEFAULT", "CODE", "CUSTOM"]), default=None)
@click.option("--migrate/--no-migrate", default=True, show_default=True)
def config_update_global(memories_location: str | None, memories_mode: str | None, migrate: bool) -> None:
    """Change the default memories location or mode."""
    service = build_config_service(get_settings())
    _emit(
        service.update_global(
            memories_location=memories_location,
            memories_mode=memories_mode,
            migrate_affected=migrate,
        )
    )


@config.command("rollback")
@click.argument("target", type=click.Choice(ROLLBACK_TARGETS))
def config_rollback(target: str) -> None:
    """Restore the last known good or the previous configuration."""
    _emit(build_config_service(get_settings()).rollback(target))


@config.command("reset")
@click.argument("key", required=False, type=click.Choice(RESETTABLE_KEYS))
@click.option("--all", "all_keys", is_flag=True, help="Reset everything except projects")
def config_reset(key: str | None, all_keys: bool) -> None:
    """Reset one section, or everything except projects, to defaults."""
    _emit(build_config_service(get_settings()).reset(key, all_keys=all_keys))


@config.command("migrate-legacy")
@click.option("--force", is_flag=True, help="Migrate even if the new config exists")
@click.option("--remove-old", is_flag=True, help="Delete the legacy file after migrating")
@click.option("--dry-run", is_flag=True)
@click.option("--rollback", "rollback_from", default=None, help="Restore the legacy file from this backup")
def config_migrate_legacy(force: bool, remove_old: bool, dry_run: bool, rollback_from: str | None) -> None:
    """Move the pre-XDG config file into the config store."""
    settings = get_settings()
    store = _store()
    if rollback_from:
        restored = rollback_legacy_migration(rollback_from, settings.legacy_config_path, store)
        _emit({"success": True, "backup": rollback_from} if restored else {"error": "Rollback failed"})
        return

    service = build_config_service(settings, store)
    migrator = LegacyConfigMigrator(
        settings.legacy_config_path,
        store,
        sync=NoteStoreConfigSync(settings.basic_memory_config_path).sync,
        rollback_manager=service.rollback_manager,
    )
    if not migrator.needs_migration(force=force):
        echo_json({"success": True, "migrated": False, "message": "No legacy migration needed"})
        return
    result = migrator.migrate(remove_old_config=remove_old, force=force, dry_run=dry_run)
    data = result.to_dict()
    if not result.success:
        fail_json(data)
    echo_json(data)


def register(cli: click.Group) -> None:
    cli.add_command(config)
