"""Unit tests for project resolution and git helpers."""

from __future__ import annotations

import os

import pytest

from brain.config.schema import BrainConfig, ProjectConfig
from brain.config.settings import Settings
from brain.project.git import current_branch, read_git_dirs, recent_commits, status_porcelain
from brain.project.resolver import ProjectResolver, find_git_entry, match_code_path, validate_effective_cwd


def _config(**projects: str) -> BrainConfig:
    return BrainConfig(projects={name: ProjectConfig(code_path=path) for name, path in projects.items()})


@pytest.fixture
def layout(tmp_path):
    main = tmp_path / "main"
    (main / ".git" / "worktrees" / "wt").mkdir(parents=True)
    worktree = tmp_path / "wt"
    worktree.mkdir()
    (worktree / ".git").write_text(f"gitdir: {main}/.git/worktrees/wt\n")
    return main, worktree


def worktree_git(main):
    def run(args, cwd, timeout):
        if args[0] == "rev-parse":
            return f"{main}/.git\n{main}/.git/worktrees/wt\nfalse\n"
        return None

    return run


def test_match_code_path_prefers_deepest(tmp_path):
    projects = _config(outer=str(tmp_path), inner=str(tmp_path / "pkg")).projects

    assert match_code_path(str(tmp_path / "pkg" / "src"), projects) == "inner"
    assert match_code_path(str(tmp_path / "other"), projects) == "outer"
    assert match_code_path(str(tmp_path) + "-sibling", projects) is None


def test_explicit_beats_env_beats_code_path(tmp_path):
    settings = Settings(brain_project="from-env", bm_project="legacy")
    resolver = ProjectResolver(_config(app=str(tmp_path)), settings)

    assert resolver.resolve("cli", str(tmp_path)).project_name == "cli"
    assert resolver.resolve(None, str(tmp_path)).project_name == "from-env"


def test_bm_active_project_is_last_env_fallback(tmp_path):
    resolver = ProjectResolver(BrainConfig(), Settings(bm_active_project="active"))

    assert resolver.resolve(None, str(tmp_path)).project_name == "active"


def test_unconfigured_directory_resolves_to_none(tmp_path):
    assert ProjectResolver(BrainConfig(), Settings()).resolve(None, str(tmp_path)) is None


def test_find_git_entry_distinguishes_file_and_dir(layout):
    main, worktree = layout

    assert find_git_entry(str(worktree)).is_file is True
    assert find_git_entry(str(main / "src")).is_file is False


def test_linked_worktree_resolves_to_main_project(layout):
    main, worktree = layout
    resolver = ProjectResolver(_config(app=str(main)), Settings(), git_runner=worktree_git(main))

    resolution = resolver.resolve(None, str(worktree))

    assert resolution.project_name == "app"
    assert resolution.effective_cwd == os.path.normpath(str(main))
    assert resolution.is_worktree_resolved is True


def test_worktree_detection_can_be_disabled(layout):
    main, worktree = layout
    globally = ProjectResolver(
        _config(app=str(main)), Settings(brain_disable_worktree_detection="1"), git_runner=worktree_git(main)
    )
    config = BrainConfig(projects={"app": ProjectConfig(code_path=str(main), disable_worktree_detection=True)})
    per_project = ProjectResolver(config, Settings(), git_runner=worktree_git(main))

    assert globally.resolve(None, str(worktree)) is None
    assert per_project.resolve(None, str(worktree)) is None


def test_disable_flag_only_accepts_one_or_true():
    assert Settings(brain_disable_worktree_detection="yes").brain_disable_worktree_detection is False
    assert Settings(brain_disable_worktree_detection="TRUE").brain_disable_worktree_detection is True


def test_git_failure_falls_back_to_none(layout):
    main, worktree = layout
    resolver = ProjectResolver(_config(app=str(main)), Settings(), git_runner=lambda args, cwd, timeout: None)

    assert resolver.resolve(None, str(worktree)) is None


def test_git_helpers_parse_output():
    outputs = {
        "branch": "feature/x\n",
        "status": " M a.py\n?? new file.txt\n",
        "log": "abc fix\ndef feat\n",
        "rev-parse": ".git\n.git\ntrue\n",
    }

    def run(args, cwd, timeout):
        return outputs[args[0]]

    assert current_branch("/repo", runner=run) == "feature/x"
    assert status_porcelain("/repo", runner=run) == ["a.py", "new file.txt"]
    assert recent_commits("/repo", runner=run) == ["abc fix", "def feat"]
    dirs = read_git_dirs("/repo", runner=run)
    assert dirs.is_bare is True
    assert dirs.common_dir == "/repo/.git"


def test_effective_cwd_may_live_under_tmp():
    assert validate_effective_cwd("/tmp/checkouts/wt") == "/tmp/checkouts/wt"
    assert validate_effective_cwd("/tmp") is None
    assert validate_effective_cwd("/etc/app") is None
