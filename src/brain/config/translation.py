"""Translate BrainConfig into the note store's own configuration.

The note store keeps a flat `{project: memories_path}` map plus a few sync and
logging knobs. Brain owns the richer document and pushes it down after every
successful mutation.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from brain.config.paths import expand_tilde, normalize_path, validate_path
from brain.config.schema import BrainConfig, DefaultsConfig, ProjectConfig
from brain.errors import ConfigurationError
from brain.observability.logging import get_logger

logger = get_logger(__name__)

FILE_MODE = 0o600


@dataclass(frozen=True)
class ResolvedMemoriesPath:
    path: str
    mode: str
    error: str | None = None


def resolve_memories_path(
    project_name: str,
    project: ProjectConfig,
    defaults: DefaultsConfig,
) -> ResolvedMemoriesPath:
    """Resolve where a project's memories live.

    - CODE: `{code_path}/docs`
    - DEFAULT: `{defaults.memories_location}/{project_name}`
    - CUSTOM: `memories_path` as given (absolute)

    A project without its own mode inherits `defaults.memories_mode`.
    """
    mode = project.memories_mode or defaults.memories_mode

    if mode == "CODE":
        candidate = os.path.join(expand_tilde(project.code_path), "docs")
    elif mode == "DEFAULT":
        candidate = os.path.join(expand_tilde(defaults.memories_location), project_name)
    elif mode == "CUSTOM":
        if not project.memories_path:
            return ResolvedMemoriesPath("", mode, "CUSTOM mode requires memories_path to be set")
        candidate = expand_tilde(project.memories_path)
    else:
        return ResolvedMemoriesPath("", "DEFAULT", f"Unknown memories mode: {mode}")

    normalized = normalize_path(candidate)
    validation = validate_path(normalized)
    if not validation.valid:
        return ResolvedMemoriesPath(normalized, mode, validation.error)
    return ResolvedMemoriesPath(validation.normalized_path or normalized, mode)


def translate_to_note_store(
    config: BrainConfig, existing: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build the note store config, preserving keys Brain does not own."""
    result: dict[str, Any] = dict(existing or {})

    projects: dict[str, str] = {}
    for name, project in config.projects.items():
        resolved = resolve_memories_path(name, project, config.defaults)
        if resolved.error or not resolved.path:
            logger.warning("Skipping project with unresolvable memories path", project=name, error=resolved.error)
            continue
        projects[name] = resolved.path

    result["projects"] = projects
    result["sync_changes"] = config.sync.enabled
    result["sync_delay"] = config.sync.delay_ms
    result["log_level"] = config.logging.level
    return result


class NoteStoreConfigSync:
    """Writes the translated config to the note store's config file."""

    def __init__(self, path: str | Path):
        self.path = Path(expand_tilde(str(path)))

    def _load_existing(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable note store config", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def sync(self, config: BrainConfig) -> dict[str, Any]:
        """Push `config` down to the note store.

        Raises:
            ConfigurationError: If the file cannot be written.
        """
        translated = translate_to_note_store(config, self._load_existing())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(translated, indent=2) + "\n", encoding="utf-8")
            os.chmod(self.path, FILE_MODE)
        except OSError as exc:
            raise ConfigurationError(f"Failed to sync note store config: {exc}") from exc
        logger.info("Note store config synced", projects=len(translated["projects"]))
        return translated

    __call__ = sync
