"""Durable, memoized workflow steps.

A `StepRunner` executes named steps for one workflow run. Completed step
values are stored in a journal keyed by ``(run_id, step_id)``; replaying the
same run after a crash returns the stored values instead of re-executing.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from brain.errors import BrainError, WorkflowErrorType, is_retriable
from brain.observability.logging import get_logger
from brain.workflows.retry import DEFAULT_CONFIG, MaxRetriesExceeded, RetryConfig, backoff_delay
from brain.workflows.state import StepFail, StepOk, StepRetry

logger = get_logger(__name__)

__all__ = [
    "StepJournal",
    "InMemoryStepJournal",
    "JsonFileStepJournal",
    "StepFailed",
    "StepRunner",
    "build_step_journal",
]

_MISSING = object()


class StepJournal(Protocol):
    def get(self, run_id: str, step_id: str) -> Any:
        """Stored value, or the journal's missing sentinel."""
        ...

    def put(self, run_id: str, step_id: str, value: Any) -> None: ...

    def clear(self, run_id: str) -> None: ...


class InMemoryStepJournal:
    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], Any] = {}

    def get(self, run_id: str, step_id: str) -> Any:
        return self._entries.get((run_id, step_id), _MISSING)

    def put(self, run_id: str, step_id: str, value: Any) -> None:
        self._entries[(run_id, step_id)] = value

    def clear(self, run_id: str) -> None:
        for key in [k for k in self._entries if k[0] == run_id]:
            del self._entries[key]

    def steps(self, run_id: str) -> list[str]:
        return [step for run, step in self._entries if run == run_id]


class JsonFileStepJournal:
    """Journal persisted as ``{run_id: {step_id: value}}`` JSON.

    Values must be JSON-serializable.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("step_journal_unreadable", path=str(self.path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, run_id: str, step_id: str) -> Any:
        return self._read().get(run_id, {}).get(step_id, _MISSING)

    def put(self, run_id: str, step_id: str, value: Any) -> None:
        data = self._read()
        data.setdefault(run_id, {})[step_id] = value
        self._write(data)

    def clear(self, run_id: str) -> None:
        data = self._read()
        if data.pop(run_id, None) is not None:
            self._write(data)


def build_step_journal(path: str = "") -> StepJournal:
    return JsonFileStepJournal(path) if path else InMemoryStepJournal()


class StepFailed(BrainError):
    """A step returned `StepFail` or exhausted its retries."""

    error = "step_failed"

    def __init__(self, step_id: str, kind: WorkflowErrorType, message: str, *, retriable: bool = False):
        super().__init__(message, retriable=retriable, context={"step": step_id})
        self.step_id = step_id
        self.error_type = kind


StepFunc = Callable[[], Awaitable[Any]]


class StepRunner:
    """Run named steps of one workflow run with memoization and retries."""

    def __init__(
        self,
        run_id: str,
        journal: StepJournal | None = None,
        *,
        config: RetryConfig | None = None,
    ):
        self.run_id = run_id
        self.journal = journal if journal is not None else InMemoryStepJournal()
        self.config = config or DEFAULT_CONFIG

    async def run(self, step_id: str, func: StepFunc) -> Any:
        """Execute `func` as step `step_id`, or return its journaled value.

        `func` may return a `StepOk`/`StepRetry`/`StepFail` or a plain value.
        Retriable exceptions and `StepRetry` are retried up to
        ``config.max_attempts``; the last exception is re-raised when the
        budget runs out.
        """
        stored = self.journal.get(self.run_id, step_id)
        if stored is not _MISSING:
            logger.debug("step_replayed", run_id=self.run_id, step=step_id)
            return stored

        attempts = self.config.max_attempts
        last_exception: Exception | None = None
        last_reason = ""
        for attempt in range(attempts):
            try:
                outcome = await func()
            except Exception as exc:
                if not is_retriable(exc):
                    logger.warning(
                        "step_failed", run_id=self.run_id, step=step_id, error=str(exc), retriable=False
                    )
                    raise
                last_exception = exc
                last_reason = str(exc)
            else:
                if isinstance(outcome, StepFail):
                    logger.warning("step_failed", run_id=self.run_id, step=step_id, error=outcome.message)
                    raise StepFailed(step_id, outcome.kind, outcome.message)
                if isinstance(outcome, StepRetry):
                    last_exception = None
                    last_reason = outcome.reason
                else:
                    value = outcome.value if isinstance(outcome, StepOk) else outcome
                    self.journal.put(self.run_id, step_id, value)
                    logger.debug("step_completed", run_id=self.run_id, step=step_id, attempt=attempt + 1)
                    return value

            if attempt + 1 < attempts:
                delay = backoff_delay(attempt, self.config)
                logger.warning(
                    "step_retrying",
                    run_id=self.run_id,
                    step=step_id,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    reason=last_reason,
                )
                await asyncio.sleep(delay)

        logger.error("step_exhausted", run_id=self.run_id, step=step_id, attempts=attempts, reason=last_reason)
        if last_exception is not None:
            raise last_exception
        raise MaxRetriesExceeded(step_id, attempts)
