"""Application version helper.

Use importlib.metadata when installed, and fall back to reading pyproject.toml
when running from source via PYTHONPATH (no installed dist metadata).
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _dist_version

import tomllib

from brain.paths import get_repo_root


def get_app_version(package_name: str = "brain-workflow") -> str:
    try:
        return _dist_version(package_name)
    except PackageNotFoundError:
        pyproject = get_repo_root() / "pyproject.toml"
        try:
            with pyproject.open("rb") as f:
                data = tomllib.load(f)
            return str(data.get("project", {}).get("version", "0.0.0"))
        except (OSError, tomllib.TOMLDecodeError):
            return "0.0.0"
