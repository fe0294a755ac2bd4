"""Unit tests for error helpers, retry and durable steps."""

from __future__ import annotations

import pytest

from brain.errors import (
    AgentFailure,
    BrainUnavailableError,
    ValidationError,
    WorkflowErrorType,
    format_workflow_error,
    is_retriable,
    validate_feature_id,
    validate_required_context,
    wrap_agent_execution,
)
from brain.workflows.retry import NO_RETRY, MaxRetriesExceeded, RetryConfig, async_with_retry, backoff_delay
from brain.workflows.state import StepFail, StepOk, StepRetry
from brain.workflows.steps import InMemoryStepJournal, JsonFileStepJournal, StepFailed, StepRunner

FAST = RetryConfig(max_attempts=3, base_delay=0)


def test_format_workflow_error():
    assert format_workflow_error(WorkflowErrorType.AGENT_FAILURE, "boom") == "[AGENT_FAILURE] boom"


@pytest.mark.parametrize(
    "message",
    ["Invalid feature id", "Session not found", "Missing required field", "Configuration error", "validation failed"],
)
def test_is_retriable_rejects_permanent_messages(message):
    assert is_retriable(RuntimeError(message)) is False


def test_is_retriable_honours_flag_first():
    assert is_retriable(BrainUnavailableError("Note not found")) is True
    assert is_retriable(ValidationError("timeout")) is False
    assert is_retriable(RuntimeError("connection reset")) is True


def test_validate_feature_id():
    assert validate_feature_id("f1") == "f1"
    with pytest.raises(ValidationError, match=r"\[VALIDATION_ERROR\] featureId"):
        validate_feature_id("  ")


def test_validate_required_context_lists_missing_fields():
    with pytest.raises(ValidationError) as exc_info:
        validate_required_context({"a": 1, "b": ""}, ["a", "b", "c"])
    assert exc_info.value.context == {"missing": ["b", "c"]}


@pytest.mark.asyncio
async def test_wrap_agent_execution_converts_unexpected_errors():
    async def boom():
        raise KeyError("x")

    with pytest.raises(AgentFailure) as exc_info:
        await wrap_agent_execution("qa", boom)
    assert exc_info.value.agent == "qa"
    assert exc_info.value.retriable is True


@pytest.mark.asyncio
async def test_async_with_retry_eventually_succeeds():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise BrainUnavailableError("down")
        return "ok"

    assert await async_with_retry(flaky, config=FAST) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_async_with_retry_raises_non_retriable_immediately():
    calls = []

    async def bad():
        calls.append(1)
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        await async_with_retry(bad, config=FAST)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_async_with_retry_exhausts():
    async def always():
        raise BrainUnavailableError("down")

    with pytest.raises(MaxRetriesExceeded) as exc_info:
        await async_with_retry(always, config=FAST, operation_name="load_handoff")
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_exception, BrainUnavailableError)


@pytest.mark.asyncio
async def test_no_retry_makes_a_single_attempt():
    calls = []

    async def down():
        calls.append(1)
        raise BrainUnavailableError("down")

    with pytest.raises(MaxRetriesExceeded):
        await async_with_retry(down, config=NO_RETRY)
    assert len(calls) == 1


def test_backoff_delay_is_capped_with_jitter():
    config = RetryConfig(base_delay=1.0, max_delay=5.0)

    assert 1.0 <= backoff_delay(0, config) <= 1.1
    assert 4.0 <= backoff_delay(2, config) <= 4.4
    assert 5.0 <= backoff_delay(10, config) <= 5.5


@pytest.mark.asyncio
async def test_step_runner_memoizes_completed_steps():
    journal = InMemoryStepJournal()
    calls = []

    async def step():
        calls.append(1)
        return StepOk({"n": len(calls)})

    first = await StepRunner("run-1", journal, config=FAST).run("load", step)
    replay = await StepRunner("run-1", journal, config=FAST).run("load", step)

    assert first == replay == {"n": 1}
    assert len(calls) == 1
    assert journal.steps("run-1") == ["load"]


@pytest.mark.asyncio
async def test_step_runner_retries_step_retry_then_succeeds():
    outcomes = [StepRetry("busy"), StepRetry("busy"), "done"]

    async def step():
        return outcomes.pop(0)

    assert await StepRunner("r", config=FAST).run("s", step) == "done"


@pytest.mark.asyncio
async def test_step_runner_step_fail_is_terminal():
    calls = []

    async def step():
        calls.append(1)
        return StepFail(WorkflowErrorType.VALIDATION_ERROR, "bad input")

    with pytest.raises(StepFailed) as exc_info:
        await StepRunner("r", config=FAST).run("s", step)
    assert exc_info.value.error_type is WorkflowErrorType.VALIDATION_ERROR
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_step_runner_reraises_last_exception_after_budget():
    async def step():
        raise BrainUnavailableError("still down")

    with pytest.raises(BrainUnavailableError, match="still down"):
        await StepRunner("r", config=FAST).run("s", step)


@pytest.mark.asyncio
async def test_step_runner_exhausted_step_retry_raises_max_retries():
    async def step():
        return StepRetry("busy")

    with pytest.raises(MaxRetriesExceeded):
        await StepRunner("r", config=FAST).run("s", step)


@pytest.mark.asyncio
async def test_json_file_journal_survives_new_instances(tmp_path):
    path = tmp_path / "journal.json"

    async def step():
        return {"ok": True}

    await StepRunner("run", JsonFileStepJournal(path), config=FAST).run("a", step)

    async def must_not_run():
        raise AssertionError("replayed step executed")

    assert await StepRunner("run", JsonFileStepJournal(path), config=FAST).run("a", must_not_run) == {"ok": True}

    JsonFileStepJournal(path).clear("run")
    assert await StepRunner("run", JsonFileStepJournal(path), config=FAST).run("a", step) == {"ok": True}

