"""Tests for retry, timeout and LLM call helpers."""

import asyncio

import pytest

from game_articles.config import RetryConfig
from game_articles.errors import ArticleGenerationError, ErrorCode, LLMSchemaError
from game_articles.pipeline.agents.utils import backoff_delays, call_llm, check_cancelled, retry_async, with_timeout


def test_backoff_delays_grow_and_cap():
    cfg = RetryConfig(max_retries=4, initial_delay_s=1, max_delay_s=5, backoff_multiplier=3)
    assert list(backoff_delays(cfg)) == [1, 3, 5, 5]


def test_retry_config_rejects_inverted_delays():
    with pytest.raises(ValueError):
        RetryConfig(initial_delay_s=20, max_delay_s=1)

# -----------------------------------------------------------------------------
# retry_async
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retry_async_succeeds_after_failures():
    attempts = []
    sleeps = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    async def fake_sleep(delay):
        sleeps.append(delay)

    cfg = RetryConfig(max_retries=3, initial_delay_s=0.5, max_delay_s=10)
    assert await retry_async(flaky, cfg, sleep=fake_sleep) == "ok"
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_async_raises_last_error():
    async def broken():
        raise ConnectionError("still down")

    with pytest.raises(ConnectionError):
        await retry_async(broken, RetryConfig(max_retries=2, initial_delay_s=0, max_delay_s=0))


@pytest.mark.asyncio
async def test_retry_async_only_retries_listed_errors():
    calls = []

    async def bad_input():
        calls.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await retry_async(bad_input, RetryConfig(max_retries=3, initial_delay_s=0, max_delay_s=0),
                          retry_on=(ConnectionError,))
    assert len(calls) == 1

# -----------------------------------------------------------------------------
# Timeouts and cancellation
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_with_timeout():
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(asyncio.TimeoutError):
        await with_timeout(slow(), 0.01)

    async def quick():
        return 42

    assert await with_timeout(quick(), None) == 42


def test_check_cancelled():
    event = asyncio.Event()
    check_cancelled(event, "scout")
    check_cancelled(None, "scout")
    event.set()
    with pytest.raises(ArticleGenerationError) as exc:
        check_cancelled(event, "scout")
    assert exc.value.code == ErrorCode.CANCELLED
    assert exc.value.stage == "scout"

# -----------------------------------------------------------------------------
# call_llm
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_call_llm_appends_corrective_note_after_schema_error():
    prompts = []

    async def make_call(prompt):
        prompts.append(prompt)
        if len(prompts) == 1:
            raise LLMSchemaError("field 'title' missing")
        return "done"

    result = await call_llm(make_call, "Plan it.", stage="editor", code=ErrorCode.EDITOR_FAILED, timeout_s=None)

    assert result == "done"
    assert prompts[0] == "Plan it."
    assert prompts[1].startswith("Plan it.")
    assert "field 'title' missing" in prompts[1]


@pytest.mark.asyncio
async def test_call_llm_uses_stage_code_after_two_failures():
    async def make_call(prompt):
        raise RuntimeError("rate limited")

    with pytest.raises(ArticleGenerationError) as exc:
        await call_llm(make_call, "x", stage="specialist", code=ErrorCode.SPECIALIST_FAILED, timeout_s=None)

    assert exc.value.code == ErrorCode.SPECIALIST_FAILED
    assert isinstance(exc.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_call_llm_reports_timeouts():
    calls = []

    async def make_call(prompt):
        calls.append(prompt)
        await asyncio.sleep(1)

    with pytest.raises(ArticleGenerationError) as exc:
        await call_llm(make_call, "x", stage="editor", code=ErrorCode.EDITOR_FAILED, timeout_s=0.01)

    assert exc.value.code == ErrorCode.TIMEOUT
    assert calls == ["x", "x"]


@pytest.mark.asyncio
async def test_call_llm_does_not_retry_pipeline_errors():
    calls = []

    async def make_call(prompt):
        calls.append(prompt)
        raise ArticleGenerationError("stop", ErrorCode.CANCELLED, "editor")

    with pytest.raises(ArticleGenerationError):
        await call_llm(make_call, "x", stage="editor", code=ErrorCode.EDITOR_FAILED, timeout_s=None)
    assert len(calls) == 1
