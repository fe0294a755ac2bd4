"""Bounded git subprocess helpers.

Every call has a hard timeout and never raises: a missing git binary, a
non-zero exit or a timeout all come back as ``None``.
"""

from __future__ import annotations

import os
import shutil
import subprocess  # nosec B404
from dataclasses import dataclass
from typing import Callable

from brain.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_GIT_TIMEOUT = 3.0

GitRunner = Callable[[list[str], str, float], "str | None"]


def run_git(args: list[str], cwd: str, timeout: float = DEFAULT_GIT_TIMEOUT) -> str | None:
    """Run ``git <args>`` in `cwd` and return stdout, or None on any failure."""
    git_bin = shutil.which("git")
    if not git_bin:
        logger.debug("git_not_found")
        return None
    try:
        result = subprocess.run(  # nosec B603
            [git_bin, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            shell=False,
        )
    except subprocess.TimeoutExpired:
        logger.warning("git_timeout", args=args, cwd=cwd, timeout=timeout)
        return None
    except OSError as exc:
        logger.debug("git_failed", args=args, cwd=cwd, error=str(exc))
        return None
    if result.returncode != 0:
        logger.debug("git_nonzero_exit", args=args, cwd=cwd, stderr=result.stderr.strip()[:200])
        return None
    return result.stdout


@dataclass(frozen=True)
class GitDirs:
    common_dir: str
    git_dir: str
    is_bare: bool


def _absolute(path: str, cwd: str) -> str:
    return os.path.normpath(path if os.path.isabs(path) else os.path.join(cwd, path))


def read_git_dirs(cwd: str, *, runner: GitRunner = run_git, timeout: float = DEFAULT_GIT_TIMEOUT) -> GitDirs | None:
    out = runner(["rev-parse", "--git-common-dir", "--git-dir", "--is-bare-repository"], cwd, timeout)
    if out is None:
        return None
    lines = [line.strip() for line in out.splitlines() if line.strip()]
    if len(lines) < 3:
        return None
    return GitDirs(
        common_dir=_absolute(lines[0], cwd),
        git_dir=_absolute(lines[1], cwd),
        is_bare=lines[2] == "true",
    )


def current_branch(cwd: str, *, runner: GitRunner = run_git, timeout: float = DEFAULT_GIT_TIMEOUT) -> str | None:
    out = runner(["branch", "--show-current"], cwd, timeout)
    branch = out.strip() if out else ""
    return branch or None


def status_porcelain(
    cwd: str, *, runner: GitRunner = run_git, timeout: float = DEFAULT_GIT_TIMEOUT
) -> list[str] | None:
    """Paths with uncommitted changes, or None when git fails."""
    out = runner(["status", "--porcelain"], cwd, timeout)
    if out is None:
        return None
    return [line[3:].strip() for line in out.splitlines() if line.strip()]


def recent_commits(
    cwd: str, count: int = 5, *, runner: GitRunner = run_git, timeout: float = DEFAULT_GIT_TIMEOUT
) -> list[str]:
    out = runner(["log", "--oneline", f"-{count}"], cwd, timeout)
    return [line.strip() for line in (out or "").splitlines() if line.strip()]
