"""Path validation for user-supplied locations.

Every path that ends up in the config file or is touched by a migration passes
through `validate_path`. Rejected inputs: null bytes, traversal sequences,
system roots, and sensitive directories under the user's home.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BLOCKED_SYSTEM_PATHS: tuple[str, ...] = (
    "/etc",
    "/usr",
    "/var",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/run",
    "/tmp",
    "/root",
)

# Scratch root; linked worktrees checked out below it may still be resolved.
TEMP_ROOT = "/tmp"

PROTECTED_HOME_SUBPATHS: tuple[str, ...] = (".ssh", ".gnupg", ".config", ".local", "Library", "AppData")


@dataclass(frozen=True)
class PathValidation:
    valid: bool
    normalized_path: str | None = None
    error: str | None = None


def expand_tilde(input_path: str) -> str:
    home = str(Path.home())
    if input_path == "~":
        return home
    if input_path.startswith("~/") or input_path.startswith("~\\"):
        return os.path.join(home, input_path[2:])
    return input_path


def normalize_path(input_path: str) -> str:
    return os.path.normpath(os.path.abspath(expand_tilde(input_path)))


def contains_traversal(input_path: str) -> bool:
    return ".." in input_path or "%2e%2e" in input_path.lower()


def contains_null_byte(input_path: str) -> bool:
    return "\0" in input_path


def _is_under(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _home_dir(home: str | None = None) -> str:
    return os.path.normpath(home or str(Path.home()))


def blocked_system_root(normalized: str, *, allow_temp: bool = False, home: str | None = None) -> str | None:
    """Return the system root that `normalized` falls into, if any.

    Paths inside the user's home are never system paths, even when the home
    itself lives under a blocked root (``/root``). With `allow_temp`, only the
    bare ``/tmp`` is refused and its descendants pass.
    """
    home_dir = _home_dir(home)
    if home_dir != os.sep and _is_under(normalized, home_dir):
        return None
    lowered = normalized.lower()
    for root in BLOCKED_SYSTEM_PATHS:
        if allow_temp and root == TEMP_ROOT:
            if lowered == root:
                return root
            continue
        if _is_under(lowered, root):
            return root
    return None


def protected_home_path(normalized: str, home: str | None = None) -> str | None:
    home_dir = _home_dir(home)
    for sub in PROTECTED_HOME_SUBPATHS:
        candidate = os.path.join(home_dir, sub)
        if _is_under(normalized, candidate):
            return candidate
    return None


def validate_path(input_path: str, *, check_home: bool = False, allow_temp: bool = False) -> PathValidation:
    """Validate and normalize a user-supplied path.

    Args:
        input_path: Raw path, possibly starting with `~`.
        check_home: Also refuse sensitive directories under the user's home.
        allow_temp: Accept descendants of ``/tmp``; only project resolution
            sets this, for worktrees checked out there.
    """
    if not input_path or not input_path.strip():
        return PathValidation(False, error="Path cannot be empty")
    if contains_null_byte(input_path):
        return PathValidation(False, error="Invalid path characters: null byte detected")
    if contains_traversal(input_path):
        return PathValidation(False, error="Path traversal not allowed")

    normalized = normalize_path(input_path)

    root = blocked_system_root(normalized, allow_temp=allow_temp)
    if root is not None:
        return PathValidation(False, normalized_path=normalized, error=f"System path not allowed: {root}")

    if check_home:
        protected = protected_home_path(normalized)
        if protected is not None:
            return PathValidation(
                False, normalized_path=normalized, error=f"Protected path not allowed: {protected}"
            )

    return PathValidation(True, normalized_path=normalized)


def is_path_within(input_path: str, base_path: str) -> bool:
    return _is_under(normalize_path(input_path), normalize_path(base_path))
