"""Session-end checks over the session log and planning artifacts."""

from __future__ import annotations

import re
from pathlib import Path

from brain.sessions.frontmatter import validate_session_frontmatter
from brain.sessions.logs import SessionLog, checklist_items, section_body

PLANNING_DIR = Path(".agents") / "planning"

_SESSION_ID_LINE = re.compile(r"^\s*\**Session ID\**\s*:", re.MULTILINE | re.IGNORECASE)
_BULLET = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+\S")
_HEADING = re.compile(r"^\s*#{1,6}\s+(.*)$")
_REQUIREMENT_HEADING = re.compile(r"requirement|acceptance", re.IGNORECASE)


def session_end_problem(log: SessionLog) -> str | None:
    """Why the Session End checklist is not complete, or None when it is."""
    section = section_body(log.body, "Session End")
    if section is None:
        return "Session log missing 'Session End' section"
    items = checklist_items(section)
    if not items:
        return "No checklist items found in Session End section"
    incomplete = sum(1 for done, _ in items if not done)
    if incomplete:
        return f"{incomplete} incomplete checklist items in Session End section"
    return None


def protocol_problems(log: SessionLog) -> list[str]:
    problems = [f"frontmatter {error.field}: {error.message}" for error in validate_session_frontmatter(log.frontmatter)]

    start = section_body(log.body, "Session Start")
    if start is None:
        problems.append("Session log missing 'Session Start' section")
    else:
        items = checklist_items(start)
        unchecked = sum(1 for done, _ in items if not done)
        if not items:
            problems.append("No checklist items found in Session Start section")
        elif unchecked:
            problems.append(f"{unchecked} incomplete checklist items in Session Start section")

    if section_body(log.body, "Session End") is None:
        problems.append("Session log missing 'Session End' section")
    if not _SESSION_ID_LINE.search(log.body):
        problems.append("Session log missing 'Session ID' line")
    return problems


def has_requirements(text: str) -> bool:
    """True when a requirements or acceptance-criteria heading has at least one bullet."""
    in_section = False
    for line in text.splitlines():
        heading = _HEADING.match(line)
        if heading:
            in_section = bool(_REQUIREMENT_HEADING.search(heading.group(1)))
            continue
        if in_section and _BULLET.match(line):
            return True
    return False


def consistency_problems(working_directory: str) -> list[str]:
    """Every ``prd-{feature}.md`` needs a ``tasks-{feature}.md`` and some requirements."""
    planning = Path(working_directory) / PLANNING_DIR
    if not planning.is_dir():
        return []
    problems: list[str] = []
    for prd in sorted(planning.glob("prd-*.md")):
        feature = prd.stem[len("prd-") :]
        if not (planning / f"tasks-{feature}.md").exists():
            problems.append(f"{prd.name}: missing tasks-{feature}.md")
        try:
            text = prd.read_text(encoding="utf-8")
        except OSError as exc:
            problems.append(f"{prd.name}: unreadable ({exc.strerror})")
            continue
        if not has_requirements(text):
            problems.append(f"{prd.name}: no requirements or acceptance criteria")
    return problems
