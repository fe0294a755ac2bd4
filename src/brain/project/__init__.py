"""Project resolution and git helpers."""

from brain.project.resolver import ProjectResolution, ProjectResolver, find_git_entry, resolve_project

__all__ = ["ProjectResolution", "ProjectResolver", "find_git_entry", "resolve_project"]
