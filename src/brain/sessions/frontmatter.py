"""YAML frontmatter for session-log notes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import yaml

from brain.sessions.models import SESSION_STATUSES

SESSION_TITLE_PATTERN = re.compile(r"^SESSION-\d{4}-\d{2}-\d{2}_\d{2}-[\w-]+$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_DELIMITER = "---"


@dataclass(frozen=True)
class FrontmatterError:
    field: str
    constraint: str
    message: str


def _normalize(value: Any) -> Any:
    # PyYAML turns bare YYYY-MM-DD into date objects
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """Split a note into (frontmatter, body). Frontmatter is None when absent or invalid."""
    stripped = text.lstrip("\ufeff")
    if not stripped.startswith(_DELIMITER):
        return None, text
    lines = stripped.splitlines(keepends=True)
    for index in range(1, len(lines)):
        if lines[index].strip() == _DELIMITER:
            raw = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError:
                return None, body
            if not isinstance(data, dict):
                return None, body
            return {str(k): _normalize(v) for k, v in data.items()}, body
    return None, text


def render_frontmatter(frontmatter: dict[str, Any], body: str) -> str:
    dumped = yaml.safe_dump(frontmatter, sort_keys=False, default_flow_style=None, allow_unicode=True)
    return f"{_DELIMITER}\n{dumped}{_DELIMITER}\n{body}"


def parse_session_status(frontmatter: dict[str, Any] | None) -> str:
    """Session status, with a missing status read as COMPLETE."""
    if not frontmatter:
        return "COMPLETE"
    status = frontmatter.get("status")
    if status is None:
        return "COMPLETE"
    return str(status)


def validate_session_frontmatter(frontmatter: Any) -> list[FrontmatterError]:
    if not isinstance(frontmatter, dict):
        return [FrontmatterError("", "frontmatter_required", "Frontmatter is required and must be an object")]

    errors: list[FrontmatterError] = []

    title = frontmatter.get("title")
    if title is None:
        errors.append(FrontmatterError("title", "title_required", "Title field is required"))
    elif not isinstance(title, str) or not SESSION_TITLE_PATTERN.match(title):
        errors.append(
            FrontmatterError("title", "title_invalid", "Title must match pattern SESSION-YYYY-MM-DD_NN-topic")
        )

    note_type = frontmatter.get("type")
    if note_type is None:
        errors.append(FrontmatterError("type", "type_required", "Type field is required"))
    elif note_type != "session":
        errors.append(FrontmatterError("type", "type_invalid", 'Type must be "session"'))

    status = frontmatter.get("status")
    if status is None:
        errors.append(FrontmatterError("status", "status_required", "Status field is required"))
    elif status not in SESSION_STATUSES:
        errors.append(
            FrontmatterError(
                "status", "status_invalid", "Status must be one of: IN_PROGRESS, PAUSED, COMPLETE"
            )
        )

    session_date = frontmatter.get("date")
    if session_date is None:
        errors.append(FrontmatterError("date", "date_required", "Date field is required"))
    elif not isinstance(session_date, str) or not ISO_DATE_PATTERN.match(session_date):
        errors.append(FrontmatterError("date", "date_invalid", "Date must be in YYYY-MM-DD format"))

    return errors
