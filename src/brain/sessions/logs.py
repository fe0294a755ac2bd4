"""Session-log lifecycle.

Session logs are markdown notes at ``sessions/SESSION-YYYY-MM-DD_NN-{topic}``
with a YAML frontmatter ``status``. At most one log per project may be
IN_PROGRESS; ``create_session`` and ``resume_session`` pause the current one
first and undo that pause if the rest of the operation fails.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

from brain.errors import (
    AutoPauseFailedError,
    BrainUnavailableError,
    InvalidStatusTransitionError,
    SessionConsistencyError,
    SessionNotFoundError,
    ValidationError,
)
from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.sessions.frontmatter import (
    SESSION_TITLE_PATTERN,
    parse_session_status,
    render_frontmatter,
    split_frontmatter,
    validate_session_frontmatter,
)
from brain.sessions.models import (
    ActiveSession,
    CreateSessionResult,
    OpenSession,
    SessionCheck,
    SessionStatusChangeResult,
)

logger = get_logger(__name__)

SESSIONS_FOLDER = "sessions"
MAX_TOPIC_LENGTH = 50

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "IN_PROGRESS": frozenset({"PAUSED", "COMPLETE"}),
    "PAUSED": frozenset({"IN_PROGRESS"}),
    "COMPLETE": frozenset(),
}

SESSION_START_ITEMS = (
    "Initialize Brain memory",
    "Read HANDOFF note",
    "Create session log",
    "Verify skill scripts",
    "Record git branch",
    "Read usage-mandatory note",
    "Read project constraints",
    "Load memory index",
)

SESSION_END_ITEMS = (
    "Complete session log",
    "Update Brain memory",
    "Run markdown lint",
    "Commit all changes",
    "Validate protocol compliance",
    "Run consistency validation",
)

CHECKLIST_ITEM = re.compile(r"^\s*[-*]\s+\[( |x|X)\]\s+(.*)$")
_SESSION_ID_IN_TITLE = re.compile(r"^SESSION-(\d{4}-\d{2}-\d{2})_(\d{2})-(.+)$")


def slugify_topic(topic: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", topic.lower()).strip("-")
    return slug[:MAX_TOPIC_LENGTH].rstrip("-") or "session"


def session_note_path(session_id: str) -> str:
    return f"{SESSIONS_FOLDER}/{session_id}"


def is_valid_transition(current: str, target: str) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def section_body(body: str, heading: str) -> str | None:
    """Text under a ``## heading`` up to the next level-2 heading, or None."""
    pattern = re.compile(rf"^##\s+{re.escape(heading)}\s*$", re.MULTILINE)
    match = pattern.search(body)
    if match is None:
        return None
    rest = body[match.end() :]
    nxt = re.search(r"^##\s+", rest, re.MULTILINE)
    return rest[: nxt.start()] if nxt else rest


def checklist_items(section: str) -> list[tuple[bool, str]]:
    items = []
    for line in section.splitlines():
        match = CHECKLIST_ITEM.match(line)
        if match:
            items.append((match.group(1).lower() == "x", match.group(2).strip()))
    return items


def check_section_items(body: str, heading: str) -> str:
    """Return `body` with every checklist item under `heading` checked."""
    section = section_body(body, heading)
    if section is None:
        return body
    checked = re.sub(r"^(\s*[-*]\s+)\[ \]", r"\1[x]", section, flags=re.MULTILINE)
    return body.replace(section, checked, 1)


def render_session_body(session_id: str, topic: str, session_date: str, branch: str | None) -> str:
    start = "\n".join(f"- [ ] {item}" for item in SESSION_START_ITEMS)
    end = "\n".join(f"- [ ] {item}" for item in SESSION_END_ITEMS)
    return (
        f"\n# Session: {topic}\n\n"
        f"**Session ID**: {session_id}\n"
        f"**Date**: {session_date}\n"
        f"**Branch**: {branch or 'unknown'}\n\n"
        f"## Session Start\n\n{start}\n\n"
        "## Work Log\n\n"
        "## Decisions\n\n"
        "## Blockers\n\n"
        "## Next Steps\n\n"
        f"## Session End\n\n{end}\n"
    )


@dataclass
class SessionLog:
    session_id: str
    path: str
    frontmatter: dict[str, Any]
    body: str
    status: str = field(init=False)

    def __post_init__(self) -> None:
        self.status = parse_session_status(self.frontmatter)

    @property
    def date(self) -> str:
        value = self.frontmatter.get("date")
        if value:
            return str(value)
        match = _SESSION_ID_IN_TITLE.match(self.session_id)
        return match.group(1) if match else ""

    @property
    def topic(self) -> str | None:
        match = _SESSION_ID_IN_TITLE.match(self.session_id)
        return match.group(3) if match else None

    @property
    def branch(self) -> str | None:
        value = self.frontmatter.get("branch")
        return str(value) if value else None

    def render(self) -> str:
        return render_frontmatter(self.frontmatter, self.body)

    def with_status(self, status: str) -> "SessionLog":
        return SessionLog(self.session_id, self.path, {**self.frontmatter, "status": status}, self.body)


class SessionLogService:
    """Create, transition and query session-log notes."""

    def __init__(
        self,
        client: NoteStoreClient,
        *,
        git_branch: Callable[[], str | None] | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.git_branch = git_branch
        self.today = today

    # --- reading ---

    async def list_sessions(self) -> list[SessionLog]:
        results = await self.client.search_notes(
            "SESSION-", folders=[SESSIONS_FOLDER], limit=500, full_content=True
        )
        logs: list[SessionLog] = []
        seen: set[str] = set()
        for result in results:
            session_id = (result.permalink or result.title).rsplit("/", 1)[-1].removesuffix(".md")
            if not SESSION_TITLE_PATTERN.match(session_id) or session_id in seen:
                continue
            seen.add(session_id)
            content = result.content
            if content is None:
                content = await self.client.read_note(session_note_path(session_id))
            if content is None:
                continue
            frontmatter, body = split_frontmatter(content)
            logs.append(SessionLog(session_id, session_note_path(session_id), frontmatter or {}, body))
        logs.sort(key=lambda log: log.session_id, reverse=True)
        return logs

    async def get_session_log(self, session_id: str) -> SessionLog | None:
        content = await self.client.read_note(session_note_path(session_id))
        if content is None:
            return None
        frontmatter, body = split_frontmatter(content)
        return SessionLog(session_id, session_note_path(session_id), frontmatter or {}, body)

    async def _require(self, session_id: str) -> SessionLog:
        log = await self.get_session_log(session_id)
        if log is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return log

    async def query_open_sessions(self) -> list[OpenSession]:
        return [
            OpenSession(
                session_id=log.session_id,
                status=log.status,  # type: ignore[arg-type]
                date=log.date,
                branch=log.branch,
                topic=log.topic,
                permalink=log.path,
            )
            for log in await self.list_sessions()
            if log.status in ("IN_PROGRESS", "PAUSED")
        ]

    async def _in_progress(self) -> list[SessionLog]:
        active = [log for log in await self.list_sessions() if log.status == "IN_PROGRESS"]
        if len(active) > 1:
            raise SessionConsistencyError([log.session_id for log in active])
        return active

    async def query_active_session(self, *, mode: str | None = None, task: str | None = None) -> ActiveSession | None:
        """The single IN_PROGRESS session, with validation checks.

        Raises:
            SessionConsistencyError: More than one session is IN_PROGRESS.
        """
        active = await self._in_progress()
        if not active:
            return None
        log = active[0]
        checks = validate_session_log(log)
        return ActiveSession(
            session_id=log.session_id,
            path=log.path,
            mode=mode,
            task=task,
            branch=log.branch,
            date=log.date,
            topic=log.topic,
            is_valid=all(check.passed for check in checks),
            checks=checks,
        )

    # --- writing ---

    async def _write(self, log: SessionLog) -> None:
        await self.client.write_note(log.path, log.render())

    async def _auto_pause(self, exclude: str | None = None) -> SessionLog | None:
        active = [log for log in await self._in_progress() if log.session_id != exclude]
        if not active:
            return None
        current = active[0]
        try:
            await self._write(current.with_status("PAUSED"))
        except BrainUnavailableError as exc:
            raise AutoPauseFailedError(
                f"Failed to auto-pause session {current.session_id}: {exc.message}",
                context={"sessionId": current.session_id},
            ) from exc
        logger.info("Session auto-paused", session_id=current.session_id)
        return current

    async def _undo_pause(self, paused: SessionLog | None) -> None:
        if paused is None:
            return
        try:
            await self._write(paused)
        except BrainUnavailableError as exc:
            logger.error("Failed to restore auto-paused session", session_id=paused.session_id, error=exc.message)

    async def next_session_id(self, topic: str) -> str:
        today = self.today().isoformat()
        prefix = f"SESSION-{today}_"
        highest = 0
        for log in await self.list_sessions():
            if log.session_id.startswith(prefix):
                suffix = log.session_id[len(prefix) : len(prefix) + 2]
                if suffix.isdigit():
                    highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:02d}-{slugify_topic(topic)}"

    async def create_session(self, topic: str) -> CreateSessionResult:
        if not topic or not topic.strip():
            raise ValidationError("Topic is required for create operation.")

        session_id = await self.next_session_id(topic)
        session_date = self.today().isoformat()
        branch = self.git_branch() if self.git_branch else None

        paused = await self._auto_pause()

        frontmatter: dict[str, Any] = {
            "title": session_id,
            "type": "session",
            "status": "IN_PROGRESS",
            "date": session_date,
        }
        if branch:
            frontmatter["branch"] = branch
        frontmatter["tags"] = ["session"]
        log = SessionLog(
            session_id,
            session_note_path(session_id),
            frontmatter,
            render_session_body(session_id, topic.strip(), session_date, branch),
        )
        try:
            await self._write(log)
        except BrainUnavailableError:
            await self._undo_pause(paused)
            raise

        logger.info("Session created", session_id=session_id, auto_paused=paused.session_id if paused else None)
        return CreateSessionResult(
            session_id=session_id,
            path=log.path,
            auto_paused=paused.session_id if paused else None,
        )

    async def _transition(self, session_id: str, target: str) -> SessionStatusChangeResult:
        log = await self._require(session_id)
        if not is_valid_transition(log.status, target):
            raise InvalidStatusTransitionError(session_id, log.status, target)
        await self._write(log.with_status(target))
        logger.info("Session status changed", session_id=session_id, previous=log.status, new=target)
        return SessionStatusChangeResult(
            session_id=session_id,
            previous_status=log.status,  # type: ignore[arg-type]
            new_status=target,  # type: ignore[arg-type]
        )

    async def pause_session(self, session_id: str) -> SessionStatusChangeResult:
        return await self._transition(session_id, "PAUSED")

    async def complete_session(self, session_id: str) -> SessionStatusChangeResult:
        return await self._transition(session_id, "COMPLETE")

    async def resume_session(self, session_id: str) -> SessionStatusChangeResult:
        log = await self._require(session_id)
        if not is_valid_transition(log.status, "IN_PROGRESS"):
            raise InvalidStatusTransitionError(session_id, log.status, "IN_PROGRESS")

        paused = await self._auto_pause(exclude=session_id)
        try:
            await self._write(log.with_status("IN_PROGRESS"))
        except BrainUnavailableError:
            await self._undo_pause(paused)
            raise

        logger.info("Session resumed", session_id=session_id, auto_paused=paused.session_id if paused else None)
        return SessionStatusChangeResult(
            session_id=session_id,
            previous_status=log.status,  # type: ignore[arg-type]
            new_status="IN_PROGRESS",
        )

    async def check_session_start(self, session_id: str) -> None:
        """Tick every Session Start checklist item."""
        log = await self._require(session_id)
        updated = SessionLog(log.session_id, log.path, log.frontmatter, check_section_items(log.body, "Session Start"))
        await self._write(updated)


def validate_session_log(log: SessionLog) -> list[SessionCheck]:
    """Structural checks reported for the active session."""
    start = section_body(log.body, "Session Start")
    start_items = checklist_items(start) if start is not None else []
    return [
        SessionCheck(name="frontmatter", passed=not validate_session_frontmatter(log.frontmatter)),
        SessionCheck(name="session_start_section", passed=start is not None),
        SessionCheck(
            name="session_start_complete",
            passed=bool(start_items) and all(done for done, _ in start_items),
        ),
        SessionCheck(name="session_end_section", passed=section_body(log.body, "Session End") is not None),
    ]
