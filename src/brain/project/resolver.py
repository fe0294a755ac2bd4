"""Project resolution.

Order: explicit argument, then ``BRAIN_PROJECT``, ``BM_PROJECT`` and
``BM_ACTIVE_PROJECT``, then the deepest configured ``code_path`` containing the
working directory, then git-worktree detection. Linked worktrees resolve to
the project of their main worktree, with that main worktree as the effective
working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from brain.config.paths import normalize_path, validate_path
from brain.config.schema import BrainConfig, ProjectConfig
from brain.config.settings import Settings
from brain.observability.logging import get_logger
from brain.project.git import DEFAULT_GIT_TIMEOUT, GitRunner, read_git_dirs, run_git

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProjectResolution:
    project_name: str
    effective_cwd: str
    is_worktree_resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectName": self.project_name,
            "effectiveCwd": self.effective_cwd,
            "isWorktreeResolved": self.is_worktree_resolved,
        }


@dataclass(frozen=True)
class GitEntry:
    path: str
    is_file: bool


def find_git_entry(start: str) -> GitEntry | None:
    """Walk up from `start` to the nearest ``.git`` file or directory."""
    current = os.path.abspath(start)
    while True:
        candidate = os.path.join(current, ".git")
        if os.path.isfile(candidate):
            return GitEntry(candidate, True)
        if os.path.isdir(candidate):
            return GitEntry(candidate, False)
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def validate_effective_cwd(path: str) -> str | None:
    """Normalized path, or None when it is unsafe to use as a working directory."""
    result = validate_path(path, allow_temp=True)
    if not result.valid:
        logger.warning("effective_cwd_rejected", path=path, error=result.error)
        return None
    return result.normalized_path


def match_code_path(cwd: str, projects: dict[str, ProjectConfig]) -> str | None:
    """Project whose ``code_path`` is the deepest prefix of `cwd`."""
    if not cwd or not projects:
        return None
    normalized = normalize_path(cwd)
    best: str | None = None
    best_len = -1
    for name, project in projects.items():
        if not project.code_path:
            continue
        root = normalize_path(project.code_path)
        if normalized == root or normalized.startswith(root.rstrip(os.sep) + os.sep):
            if len(root) > best_len:
                best, best_len = name, len(root)
    return best


class ProjectResolver:
    """Resolve the governing project for a working directory."""

    def __init__(
        self,
        config: BrainConfig,
        settings: Settings,
        *,
        git_runner: GitRunner = run_git,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
    ):
        self.config = config
        self.settings = settings
        self.git_runner = git_runner
        self.git_timeout = git_timeout

    def resolve(self, explicit: str | None = None, cwd: str | None = None) -> ProjectResolution | None:
        working_dir = cwd or os.getcwd()

        for name in [explicit or "", *self.settings.env_projects()]:
            if name:
                return ProjectResolution(name, normalize_path(working_dir))

        direct = match_code_path(working_dir, self.config.projects)
        worktree = self._resolve_worktree(working_dir, direct)
        if worktree is not None:
            return worktree
        if direct is not None:
            return ProjectResolution(direct, normalize_path(working_dir))
        return None

    def _detection_disabled(self, project: str | None = None) -> bool:
        if self.settings.brain_disable_worktree_detection:
            return True
        if project is not None:
            config = self.config.projects.get(project)
            return bool(config and config.disable_worktree_detection)
        return False

    def _resolve_worktree(self, cwd: str, direct: str | None) -> ProjectResolution | None:
        if self._detection_disabled(direct):
            return None
        entry = find_git_entry(cwd)
        # Only a .git file marks a linked worktree
        if entry is None or not entry.is_file:
            return None

        dirs = read_git_dirs(cwd, runner=self.git_runner, timeout=self.git_timeout)
        if dirs is None or dirs.is_bare:
            return None
        if normalize_path(dirs.common_dir) == normalize_path(dirs.git_dir):
            return None

        main_path = validate_effective_cwd(os.path.dirname(normalize_path(dirs.common_dir)))
        if main_path is None:
            return None
        project = match_code_path(main_path, self.config.projects)
        if project is None or self._detection_disabled(project):
            return None
        if direct is not None and project != direct:
            # A code_path inside the worktree itself is more specific
            return None

        logger.info("project_resolved_via_worktree", project=project, cwd=cwd, main_worktree=main_path)
        return ProjectResolution(project, main_path, is_worktree_resolved=True)


def resolve_project(
    explicit: str | None,
    cwd: str | None,
    settings: Settings,
    config: BrainConfig,
    *,
    git_runner: GitRunner = run_git,
) -> ProjectResolution | None:
    return ProjectResolver(
        config, settings, git_runner=git_runner, git_timeout=settings.git_timeout_seconds
    ).resolve(explicit, cwd)
