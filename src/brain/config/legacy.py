"""One-shot migration of the pre-XDG config file.

Older installs kept their settings in ``~/.basic-memory/brain-config.json`` in
one of two shapes:

- per-project objects: ``{"notes_path": ..., "projects": {name: {code_path, notes_path, mode}}}``
- a flat mapping: ``{"default_notes_path": ..., "code_paths": {name: path}}``

Both are transformed into a BrainConfig and written to the XDG location.
"""

from __future__ import annotations

import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from brain.config.paths import expand_tilde
from brain.config.rollback import ConfigRollbackManager
from brain.config.schema import (
    LOG_LEVELS,
    BrainConfig,
    DefaultsConfig,
    LoggingConfig,
    ProjectConfig,
    SyncConfig,
)
from brain.config.store import FILE_MODE, ConfigStore
from brain.errors import ConfigurationError
from brain.observability.logging import get_logger

logger = get_logger(__name__)

BACKUP_SUFFIX = ".backup"

_MODE_MAP = {
    "default": "DEFAULT",
    "code": "CODE",
    "custom": "CUSTOM",
}

_LEVEL_ALIASES = {"warning": "warn"}


class MigrationStep(BaseModel):
    name: str
    status: Literal["completed", "failed", "skipped"]
    error: str | None = None


class LegacyMigrationResult(BaseModel):
    success: bool
    error: str | None = None
    backup_path: str | None = None
    migrated_config: dict[str, Any] | None = None
    old_config_removed: bool = False
    steps: list[MigrationStep] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def transform_legacy_config(old: dict[str, Any]) -> BrainConfig:
    """Map either legacy shape onto the current schema.

    Projects without a ``code_path`` are dropped. When a project appears in
    both ``projects`` and ``code_paths``, the ``projects`` entry wins.
    """
    location = old.get("notes_path") or old.get("default_notes_path") or DefaultsConfig().memories_location

    old_sync = old.get("sync") if isinstance(old.get("sync"), dict) else {}
    sync = SyncConfig(
        enabled=old_sync.get("enabled", True),
        delay_ms=old_sync.get("delay", SyncConfig().delay_ms),
    )

    level = str(old.get("log_level") or "info").lower()
    level = _LEVEL_ALIASES.get(level, level)
    if level not in LOG_LEVELS:
        logger.warning("Unknown legacy log level, using info", log_level=level)
        level = "info"

    projects: dict[str, ProjectConfig] = {}
    for name, entry in (old.get("projects") or {}).items():
        if not isinstance(entry, dict) or not entry.get("code_path"):
            logger.debug("Skipping legacy project without code_path", project=name)
            continue
        project = ProjectConfig(code_path=entry["code_path"])
        if entry.get("notes_path"):
            project.memories_path = entry["notes_path"]
            project.memories_mode = "CUSTOM"
        if entry.get("mode"):
            raw_mode = str(entry["mode"])
            project.memories_mode = _MODE_MAP.get(raw_mode.lower(), "DEFAULT")  # type: ignore[assignment]
        projects[name] = project

    for name, code_path in (old.get("code_paths") or {}).items():
        if name in projects or not code_path:
            continue
        projects[name] = ProjectConfig(code_path=code_path, memories_mode="DEFAULT")

    return BrainConfig(
        defaults=DefaultsConfig(memories_location=location),
        projects=projects,
        sync=sync,
        logging=LoggingConfig(level=level),  # type: ignore[arg-type]
    )


class LegacyConfigMigrator:
    """Moves the legacy config file into the XDG config store."""

    def __init__(
        self,
        legacy_path: str | Path,
        store: ConfigStore,
        *,
        sync: Callable[[BrainConfig], Any] | None = None,
        rollback_manager: ConfigRollbackManager | None = None,
    ):
        self.legacy_path = Path(expand_tilde(str(legacy_path)))
        self.store = store
        self.sync = sync
        self.rollback_manager = rollback_manager

    def needs_migration(self, *, force: bool = False) -> bool:
        if not self.legacy_path.is_file():
            return False
        return force or not self.store.exists()

    def _load_legacy(self) -> dict[str, Any] | None:
        try:
            data = json.loads(self.legacy_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.debug("Failed to load legacy config", path=str(self.legacy_path), error=str(exc))
            return None
        return data if isinstance(data, dict) else None

    def _create_backup(self) -> Path:
        backup = self.legacy_path.with_name(self.legacy_path.name + BACKUP_SUFFIX)
        if backup.exists():
            stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
            backup = self.legacy_path.with_name(f"{self.legacy_path.name}.{stamp}{BACKUP_SUFFIX}")
        shutil.copyfile(self.legacy_path, backup)
        os.chmod(backup, FILE_MODE)
        return backup

    def migrate(
        self,
        *,
        remove_old_config: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> LegacyMigrationResult:
        """Run the migration steps, recording each one.

        Idempotent: nothing happens when the legacy file is absent or the new
        config already exists (unless `force`).
        """
        steps: list[MigrationStep] = []

        def fail(step: str, error: str, summary: str) -> LegacyMigrationResult:
            steps.append(MigrationStep(name=step, status="failed", error=error))
            logger.error("Legacy config migration failed", step=step, error=error)
            return LegacyMigrationResult(success=False, error=summary, steps=steps)

        if not self.needs_migration(force=force):
            reason = (
                "Old config does not exist"
                if not self.legacy_path.is_file()
                else "New config already exists (use force to override)"
            )
            steps.append(MigrationStep(name="check_migration_needed", status="skipped", error=reason))
            return LegacyMigrationResult(success=True, error=reason, steps=steps)
        steps.append(MigrationStep(name="check_migration_needed", status="completed"))

        old = self._load_legacy()
        if old is None:
            return fail("load_old_config", "Failed to load old config", "Failed to load old configuration file")
        steps.append(MigrationStep(name="load_old_config", status="completed"))

        backup_path: Path | None = None
        if dry_run:
            steps.append(MigrationStep(name="create_backup", status="skipped", error="Dry run"))
        else:
            try:
                backup_path = self._create_backup()
            except OSError as exc:
                return fail("create_backup", str(exc), f"Failed to create backup: {exc}")
            steps.append(MigrationStep(name="create_backup", status="completed"))

        try:
            new_config = transform_legacy_config(old)
        except (PydanticValidationError, AttributeError, TypeError, ValueError) as exc:
            return fail("transform_schema", str(exc), f"Schema transformation failed: {exc}")
        steps.append(MigrationStep(name="transform_schema", status="completed"))

        if dry_run:
            for name in ("save_new_config", "verify_new_config", "sync_basic_memory", "remove_old_config"):
                steps.append(MigrationStep(name=name, status="skipped", error="Dry run"))
            return LegacyMigrationResult(
                success=True, migrated_config=new_config.to_json_dict(), steps=steps
            )

        if self.rollback_manager is not None and self.store.exists():
            try:
                self.rollback_manager.snapshot(self.store.load(), "Before migration")
            except ConfigurationError as exc:
                logger.debug("Could not snapshot before migration", error=str(exc))

        try:
            self.store.save(new_config)
        except OSError as exc:
            return fail("save_new_config", str(exc), f"Failed to save new config: {exc}")
        steps.append(MigrationStep(name="save_new_config", status="completed"))

        try:
            reloaded = self.store.load()
        except ConfigurationError as exc:
            return fail("verify_new_config", exc.message, f"Config verification failed: {exc.message}")
        if reloaded.to_json_dict() != new_config.to_json_dict():
            return fail(
                "verify_new_config",
                "Saved config does not match transformed config",
                "Config verification failed: saved config does not match transformed config",
            )
        steps.append(MigrationStep(name="verify_new_config", status="completed"))

        if self.sync is None:
            steps.append(MigrationStep(name="sync_basic_memory", status="skipped", error="No sync target"))
        else:
            try:
                self.sync(new_config)
                steps.append(MigrationStep(name="sync_basic_memory", status="completed"))
            except (ConfigurationError, OSError) as exc:
                # The new config is already saved; a stale note store config is recoverable.
                logger.warning("Note store sync failed after migration", error=str(exc))
                steps.append(MigrationStep(name="sync_basic_memory", status="failed", error=str(exc)))

        removed = False
        if remove_old_config:
            try:
                self.legacy_path.unlink(missing_ok=True)
                removed = True
                steps.append(MigrationStep(name="remove_old_config", status="completed"))
            except OSError as exc:
                steps.append(MigrationStep(name="remove_old_config", status="failed", error=str(exc)))
        else:
            steps.append(MigrationStep(name="remove_old_config", status="skipped", error="Removal disabled"))

        if self.rollback_manager is not None:
            try:
                self.rollback_manager.mark_as_good(new_config, "After successful migration")
            except ConfigurationError as exc:
                logger.debug("Could not mark migrated config as good", error=str(exc))

        logger.info(
            "Legacy config migration completed",
            backup_path=str(backup_path) if backup_path else None,
            projects=len(new_config.projects),
            old_removed=removed,
        )
        return LegacyMigrationResult(
            success=True,
            backup_path=str(backup_path) if backup_path else None,
            migrated_config=new_config.to_json_dict(),
            old_config_removed=removed,
            steps=steps,
        )

    def rollback(self, backup_path: str | Path) -> bool:
        """Restore the legacy file from `backup_path` and drop the new config."""
        backup = Path(backup_path)
        if not backup.is_file():
            logger.error("Backup file not found for rollback", backup_path=str(backup))
            return False
        try:
            shutil.copyfile(backup, self.legacy_path)
            self.store.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to roll back legacy migration", backup_path=str(backup), error=str(exc))
            return False
        logger.info("Legacy migration rolled back", backup_path=str(backup))
        return True


def rollback_legacy_migration(
    backup_path: str | Path, legacy_path: str | Path, store: ConfigStore
) -> bool:
    return LegacyConfigMigrator(legacy_path, store).rollback(backup_path)
