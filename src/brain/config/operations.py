"""User-facing config operations.

Every mutation follows the same discipline: snapshot, mutate, save, sync to the
note store, then mark the new document as last known good. Failures roll back
to the last known good document before the error is reported. Results are
plain dicts ready to be printed as JSON; failures carry an ``error`` key.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from brain.config.migration import (
    DEFAULT_WARN_THRESHOLD,
    MigrationResult,
    ProjectMigration,
    migrate_tree,
    rollback_migrations,
)
from brain.config.paths import normalize_path, validate_path
from brain.config.rollback import ROLLBACK_TARGETS, ConfigRollbackManager
from brain.config.schema import (
    LOG_LEVELS,
    MEMORIES_MODES,
    BrainConfig,
    ProjectConfig,
    default_brain_config,
    parse_brain_config,
)
from brain.config.store import ConfigStore
from brain.config.translation import resolve_memories_path
from brain.errors import ConfigurationError
from brain.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettableKey:
    type: type
    choices: tuple[str, ...] | None = None
    non_negative: bool = False
    hint: str = ""


SETTABLE_KEYS: dict[str, SettableKey] = {
    "defaults.memories_location": SettableKey(str, hint="Absolute path or ~/relative path"),
    "defaults.memories_mode": SettableKey(
        str, choices=MEMORIES_MODES, hint="Valid values: DEFAULT, CODE, CUSTOM"
    ),
    "sync.enabled": SettableKey(bool, hint="Valid values: true, false"),
    "sync.delay_ms": SettableKey(int, non_negative=True, hint="Must be a non-negative number"),
    "logging.level": SettableKey(
        str, choices=LOG_LEVELS, hint="Valid values: trace, debug, info, warn, error"
    ),
    "watcher.enabled": SettableKey(bool, hint="Valid values: true, false"),
    "watcher.debounce_ms": SettableKey(int, non_negative=True, hint="Must be a non-negative number"),
}

RESETTABLE_KEYS: tuple[str, ...] = ("defaults", "sync", "logging", "watcher")

MigrateFn = Callable[..., MigrationResult]


def _flatten_keys(data: dict[str, Any], prefix: str = "") -> list[str]:
    keys: list[str] = []
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        keys.append(dotted)
        if isinstance(value, dict):
            keys.extend(_flatten_keys(value, dotted + "."))
    return keys


def _get_nested(data: dict[str, Any], dotted: str) -> tuple[bool, Any]:
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _set_nested(data: dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def coerce_value(key: str, raw: Any) -> Any:
    """Convert a CLI string (or JSON value) into the key's declared type.

    Raises:
        ValueError: With a user-facing message when the value does not fit.
    """
    setting = SETTABLE_KEYS[key]
    value = raw
    if setting.type is bool:
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered not in {"true", "false"}:
                raise ValueError(f"Invalid type for {key}: expected boolean, got {raw!r}")
            value = lowered == "true"
        elif not isinstance(raw, bool):
            raise ValueError(f"Invalid type for {key}: expected boolean, got {type(raw).__name__}")
    elif setting.type is int:
        if isinstance(raw, bool):
            raise ValueError(f"Invalid type for {key}: expected number, got boolean")
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid type for {key}: expected number, got {raw!r}") from exc
        if setting.non_negative and value < 0:
            raise ValueError(f"Invalid value for {key}: {raw}")
    else:
        if not isinstance(raw, str):
            raise ValueError(f"Invalid type for {key}: expected string, got {type(raw).__name__}")
        if setting.choices is not None and raw not in setting.choices:
            raise ValueError(f"Invalid value for {key}: {raw}")
    return value


class ConfigService:
    """Snapshot-protected operations on the BrainConfig document."""

    def __init__(
        self,
        store: ConfigStore,
        rollback_manager: ConfigRollbackManager,
        *,
        sync: Callable[[BrainConfig], Any] | None = None,
        migrate: MigrateFn = migrate_tree,
        migration_warn_threshold: int = DEFAULT_WARN_THRESHOLD,
    ):
        self.store = store
        self.rollback_manager = rollback_manager
        self.sync = sync
        self.migrate = migrate
        self.migration_warn_threshold = migration_warn_threshold

    # --- helpers ---

    def _commit(self, config: BrainConfig, reason: str) -> None:
        self.store.save(config)
        if self.sync is not None:
            self.sync(config)
        self.rollback_manager.mark_as_good(config, reason)

    def _restore(self) -> bool:
        result = self.rollback_manager.rollback("lastKnownGood")
        if not result.success:
            logger.error("Automatic rollback failed", error=result.error)
        return result.success

    def _begin(self, reason: str) -> BrainConfig:
        self.rollback_manager.initialize()
        config = self.store.load()
        self.rollback_manager.snapshot(config, reason)
        return config

    def _run_migration(self, old_path: str, new_path: str) -> MigrationResult:
        return self.migrate(old_path, new_path, warn_threshold=self.migration_warn_threshold)

    # --- read ---

    def load(self) -> BrainConfig:
        return self.store.load()

    def get(self, key: str | None = None) -> dict[str, Any]:
        data = self.store.load().to_json_dict()
        if not key:
            return data
        found, value = _get_nested(data, key)
        if not found:
            return {
                "error": f"Key not found: {key}",
                "available_keys": [k for k in _flatten_keys(data) if not k.startswith("$")],
            }
        return {"key": key, "value": value}

    def resolved_memories_paths(self) -> dict[str, str]:
        config = self.store.load()
        paths = {}
        for name, project in config.projects.items():
            resolved = resolve_memories_path(name, project, config.defaults)
            paths[name] = resolved.path if not resolved.error else f"<invalid: {resolved.error}>"
        return paths

    # --- set ---

    def set(self, key: str, raw_value: Any) -> dict[str, Any]:
        if key not in SETTABLE_KEYS:
            return {
                "error": f"Key not settable: {key}",
                "available_keys": list(SETTABLE_KEYS),
                "hint": "Use update-project for project-specific settings",
            }
        try:
            value = coerce_value(key, raw_value)
        except ValueError as exc:
            return {"error": str(exc), "key": key, "hint": SETTABLE_KEYS[key].hint}

        if key == "defaults.memories_location":
            check = validate_path(value, check_home=True)
            if not check.valid:
                return {"error": f"Invalid value for {key}: {check.error}", "key": key}

        try:
            old_config = self._begin(f"Before config set: {key}")
            data = old_config.to_json_dict()
            _, old_value = _get_nested(data, key)
            new_data = copy.deepcopy(data)
            _set_nested(new_data, key, value)
            new_config = parse_brain_config(new_data)
            self._commit(new_config, f"After config set: {key}")
        except (ConfigurationError, PydanticValidationError, OSError) as exc:
            self._restore()
            return {"error": f"Failed to set config: {exc}", "key": key, "value": value}

        logger.info("Config key set", key=key)
        return {"success": True, "key": key, "old_value": old_value, "new_value": value}

    # --- projects ---

    def add_project(
        self,
        name: str,
        code_path: str,
        *,
        memories_mode: str | None = None,
        memories_path: str | None = None,
    ) -> dict[str, Any]:
        check = validate_path(code_path)
        if not check.valid:
            return {"error": f"Invalid code_path: {check.error}", "project": name}
        try:
            config = self._begin(f"Before add project: {name}")
        except ConfigurationError as exc:
            return {"error": f"Failed to add project: {exc.message}", "project": name}
        if name in config.projects:
            return {
                "error": f"Project already exists: {name}",
                "hint": "Use update-project to change an existing project",
            }
        try:
            project = ProjectConfig(
                code_path=check.normalized_path or code_path,
                memories_mode=memories_mode,  # type: ignore[arg-type]
                memories_path=normalize_path(memories_path) if memories_path else None,
            )
            new_config = config.model_copy(update={"projects": {**config.projects, name: project}})
            self._commit(new_config, f"After add project: {name}")
        except (ConfigurationError, PydanticValidationError, OSError) as exc:
            self._restore()
            return {"error": f"Failed to add project: {exc}", "project": name}
        resolved = resolve_memories_path(name, project, new_config.defaults)
        return {
            "success": True,
            "project": name,
            "code_path": project.code_path,
            "memories_path": resolved.path,
        }

    def update_project(
        self,
        name: str,
        *,
        code_path: str | None = None,
        memories_path: str | None = None,
        memories_mode: str | None = None,
        migrate: bool = True,
        disable_worktree_detection: bool | None = None,
    ) -> dict[str, Any]:
        """Update one project, migrating its memories when the path moves.

        ``memories_path`` may be ``DEFAULT`` or ``CODE`` to switch mode; any
        other value selects CUSTOM mode with that path.
        """
        try:
            old_config = self.store.load()
        except ConfigurationError as exc:
            return {"error": f"Failed to update project: {exc.message}", "project": name}

        if name not in old_config.projects:
            return {
                "error": f"Project not found: {name}",
                "available_projects": list(old_config.projects),
                "hint": "Use add-project to create a new project",
            }

        old_project = old_config.projects[name]
        updates: dict[str, Any] = {}
        if code_path:
            check = validate_path(code_path)
            if not check.valid:
                return {"error": f"Invalid code_path: {check.error}", "project": name}
            updates["code_path"] = check.normalized_path
        if memories_mode:
            if memories_mode not in MEMORIES_MODES:
                return {
                    "error": f"Invalid memories_mode: {memories_mode}",
                    "hint": "Valid values: DEFAULT, CODE, CUSTOM",
                }
            updates["memories_mode"] = memories_mode
        if memories_path:
            if memories_path in ("DEFAULT", "CODE"):
                updates["memories_mode"] = memories_path
                updates["memories_path"] = None
            else:
                check = validate_path(memories_path, check_home=True)
                if not check.valid:
                    return {"error": f"Invalid memories_path: {check.error}", "project": name}
                updates["memories_mode"] = "CUSTOM"
                updates["memories_path"] = check.normalized_path
        if disable_worktree_detection is not None:
            updates["disable_worktree_detection"] = disable_worktree_detection

        new_project = old_project.model_copy(update=updates)
        new_config = old_config.model_copy(
            update={"projects": {**old_config.projects, name: new_project}}
        )

        old_resolved = resolve_memories_path(name, old_project, old_config.defaults)
        new_resolved = resolve_memories_path(name, new_project, new_config.defaults)
        if new_resolved.error:
            return {"error": f"Invalid memories path: {new_resolved.error}", "project": name}
        path_changed = bool(
            old_resolved.path and new_resolved.path and old_resolved.path != new_resolved.path
        )

        self.rollback_manager.initialize()
        self.rollback_manager.snapshot(old_config, f"Before update project: {name}")

        migration: MigrationResult | None = None
        if migrate and path_changed and Path(old_resolved.path).exists():
            migration = self._run_migration(old_resolved.path, new_resolved.path)
            if not migration.migrated:
                self._restore()
                return {
                    "error": f"Migration failed: {migration.error}",
                    "old_path": migration.old_path,
                    "new_path": migration.new_path,
                    "rollback": "Config restored to previous state",
                }

        try:
            self._commit(new_config, f"After update project: {name}")
        except (ConfigurationError, PydanticValidationError, OSError) as exc:
            if migration is not None:
                rollback_migrations([ProjectMigration(name, migration)])
            self._restore()
            return {
                "error": f"Failed to update project: {exc}",
                "project": name,
                "rollback": "Config restored to previous state if possible",
            }

        response: dict[str, Any] = {
            "success": True,
            "project": name,
            "old_config": {
                "code_path": old_project.code_path,
                "memories_mode": old_project.memories_mode or old_config.defaults.memories_mode,
                "memories_path": old_resolved.path,
            },
            "new_config": {
                "code_path": new_project.code_path,
                "memories_mode": new_project.memories_mode or new_config.defaults.memories_mode,
                "memories_path": new_resolved.path,
            },
        }
        if migration is not None:
            response["migration"] = {
                "performed": True,
                "files_moved": migration.files_moved,
                "old_path": migration.old_path,
                "new_path": migration.new_path,
                "warnings": migration.warnings,
            }
        elif path_changed:
            response["migration"] = {
                "performed": False,
                "reason": "Source directory not found" if migrate else "Migration disabled",
                "old_path": old_resolved.path,
                "new_path": new_resolved.path,
            }
        logger.info("Project updated", project=name, migrated=migration is not None)
        return response

    # --- global defaults ---

    def update_global(
        self,
        *,
        memories_location: str | None = None,
        memories_mode: str | None = None,
        migrate_affected: bool = True,
    ) -> dict[str, Any]:
        """Change the defaults and migrate every DEFAULT-mode project that moved."""
        if memories_location is None and memories_mode is None:
            return {"error": "At least one of memories_location or memories_mode must be provided"}
        if memories_mode is not None and memories_mode not in MEMORIES_MODES:
            return {
                "error": f"Invalid memories_mode: {memories_mode}",
                "hint": "Valid values: DEFAULT, CODE, CUSTOM",
            }
        if memories_location is not None:
            check = validate_path(memories_location, check_home=True)
            if not check.valid:
                return {"error": f"Invalid memories_location: {check.error}"}

        try:
            old_config = self._begin("Before update global")
        except ConfigurationError as exc:
            return {"error": f"Failed to update global config: {exc.message}"}

        defaults_update: dict[str, Any] = {}
        if memories_location is not None:
            defaults_update["memories_location"] = memories_location
        if memories_mode is not None:
            defaults_update["memories_mode"] = memories_mode
        new_config = old_config.model_copy(
            update={"defaults": old_config.defaults.model_copy(update=defaults_update)}
        )

        affected: list[tuple[str, str, str]] = []
        for name, project in old_config.projects.items():
            old_resolved = resolve_memories_path(name, project, old_config.defaults)
            new_resolved = resolve_memories_path(name, project, new_config.defaults)
            if new_resolved.mode != "DEFAULT" and old_resolved.mode != "DEFAULT":
                continue
            if old_resolved.path and new_resolved.path and old_resolved.path != new_resolved.path:
                affected.append((name, old_resolved.path, new_resolved.path))

        migrations: list[ProjectMigration] = []
        skipped: list[dict[str, str]] = []
        if migrate_affected:
            for name, old_path, new_path in affected:
                if not Path(old_path).exists():
                    skipped.append({"project": name, "note": "Source directory does not exist"})
                    continue
                result = self._run_migration(old_path, new_path)
                migrations.append(ProjectMigration(name, result))
                if not result.migrated:
                    rollback_errors = rollback_migrations(migrations)
                    self._restore()
                    response: dict[str, Any] = {
                        "error": f"Migration failed for project: {name}",
                        "details": result.error,
                        "rollback": "All changes reverted",
                        "partial_results": [
                            {"project": m.project, **m.result.to_dict()} for m in migrations
                        ],
                    }
                    if rollback_errors:
                        response["rollback_errors"] = rollback_errors
                    return response

        try:
            self._commit(new_config, "After update global")
        except (ConfigurationError, PydanticValidationError, OSError) as exc:
            rollback_migrations(migrations)
            self._restore()
            return {
                "error": f"Failed to update global config: {exc}",
                "rollback": "All changes reverted",
            }

        response = {
            "success": True,
            "defaults": new_config.defaults.model_dump(mode="json"),
            "affected_projects": [name for name, _, _ in affected],
        }
        if migrations or skipped:
            response["migrations"] = {
                "total_affected": len(affected),
                "results": [{"project": m.project, **m.result.to_dict()} for m in migrations]
                + skipped,
            }
        elif affected and not migrate_affected:
            response["migrations"] = {
                "performed": False,
                "reason": "Migration disabled (migrate_affected=false)",
                "affected_projects": [name for name, _, _ in affected],
            }
        logger.info("Global defaults updated", affected=len(affected))
        return response

    # --- rollback and reset ---

    def rollback(self, target: str) -> dict[str, Any]:
        if target not in ROLLBACK_TARGETS:
            return {
                "error": f"Invalid rollback target: {target}",
                "available_targets": list(ROLLBACK_TARGETS),
            }
        self.rollback_manager.initialize()
        result = self.rollback_manager.rollback(target)
        if not result.success:
            return {"error": f"Rollback failed: {result.error}", "target": target}
        snapshot = result.snapshot
        return {
            "success": True,
            "target": target,
            "snapshot_id": snapshot.id if snapshot else None,
            "snapshot_reason": snapshot.reason if snapshot else None,
            "restored_config": result.restored_config,
        }

    def reset(self, key: str | None = None, *, all_keys: bool = False) -> dict[str, Any]:
        """Reset one top-level section, or everything except projects."""
        if not key and not all_keys:
            return {
                "error": "Either a key or all=true must be provided",
                "resettable_keys": list(RESETTABLE_KEYS),
            }
        if key and key not in RESETTABLE_KEYS:
            return {
                "error": f"Key not resettable: {key}",
                "resettable_keys": list(RESETTABLE_KEYS),
                "hint": "Projects cannot be reset; use update-project instead.",
            }

        try:
            old_config = self._begin("Before reset --all" if all_keys else f"Before reset: {key}")
            defaults = default_brain_config()
            if all_keys:
                new_config = defaults.model_copy(update={"projects": old_config.projects})
                description = "Reset all settings to defaults (projects preserved)"
            else:
                new_config = old_config.model_copy(update={key: getattr(defaults, key)})  # type: ignore[arg-type]
                description = f"Reset {key} to defaults"
            self._commit(new_config, description)
        except (ConfigurationError, PydanticValidationError, OSError) as exc:
            self._restore()
            return {"error": f"Failed to reset config: {exc}"}

        return {"success": True, "description": description, "config": new_config.to_json_dict()}
