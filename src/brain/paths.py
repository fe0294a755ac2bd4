"""Path helpers for locating repo resources and the user config directory.

Brain is run both as an installed console script and from a source checkout
with `PYTHONPATH=src`, so `pyproject.toml` is located by walking upwards.
The user configuration lives in an XDG-compliant directory.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def get_repo_root() -> Path:
    """Return the repository root (directory containing `pyproject.toml`).

    Falls back to the current working directory if a repo root cannot be found.
    """
    start = Path(__file__).resolve()
    for parent in (start, *start.parents):
        if (parent / "pyproject.toml").is_file():
            return parent
    return Path.cwd()


def get_config_home(xdg_config_home: str | None = None) -> Path:
    """Return `$XDG_CONFIG_HOME`, defaulting to `~/.config`."""
    base = xdg_config_home if xdg_config_home is not None else os.environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base)
    return Path.home() / ".config"


def get_brain_config_dir(xdg_config_home: str | None = None) -> Path:
    return get_config_home(xdg_config_home) / "brain"


def get_brain_config_path(xdg_config_home: str | None = None) -> Path:
    return get_brain_config_dir(xdg_config_home) / "config.json"
