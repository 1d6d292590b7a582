import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from game_articles.config import RetryConfig
from game_articles.errors import ArticleGenerationError, ErrorCode, LLMSchemaError, LLMTimeoutError
from game_articles.event_bus import emit as event_emit
from game_articles.pipeline.templates import CORRECTIVE_PROMPT

logger = logging.getLogger("article_pipeline")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if os.getenv("DEBUG") else logging.INFO)

T = TypeVar("T")


def _emit(*args, **kwargs):
    return event_emit(*args, **kwargs)


def _job(state) -> str:
    """Extract job ID from graph state."""
    return state.get("job_id", "") if state else ""


def check_cancelled(cancel_event: Optional[asyncio.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ArticleGenerationError("Generation cancelled", ErrorCode.CANCELLED, stage)


async def with_timeout(awaitable: Awaitable[T], timeout_s: Optional[float]) -> T:
    if not timeout_s:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout_s)

# ============================================================================
# RETRY
# ============================================================================

def backoff_delays(cfg: RetryConfig):
    delay = cfg.initial_delay_s
    for _ in range(cfg.max_retries):
        yield min(delay, cfg.max_delay_s)
        delay *= cfg.backoff_multiplier


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    cfg: RetryConfig,
    label: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Calls `fn` until it succeeds or `cfg.max_retries` retries are used up."""
    delays = backoff_delays(cfg)
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as e:
            delay = next(delays, None)
            if delay is None:
                raise
            logger.warning(f"{label} failed (attempt {attempt}): {e}. Retrying in {delay:.1f}s")
            attempt += 1
            await sleep(delay)

# ============================================================================
# LLM CALLS WITH ONE CORRECTIVE RETRY
# ============================================================================

async def call_llm(
    make_call: Callable[[str], Awaitable[T]],
    user_prompt: str,
    *,
    stage: str,
    code: ErrorCode,
    timeout_s: Optional[float],
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """
    Runs an LLM call with a timeout. A schema failure is retried once with a
    corrective note appended to the prompt; a timeout is retried once with
    the same prompt. A second failure becomes an ArticleGenerationError.
    """
    prompt = user_prompt
    last_error: Optional[BaseException] = None
    for attempt in (1, 2):
        check_cancelled(cancel_event, stage)
        try:
            return await with_timeout(make_call(prompt), timeout_s)
        except asyncio.TimeoutError as e:
            last_error = LLMTimeoutError(f"{stage} LLM call timed out after {timeout_s}s")
            last_error.__cause__ = e
            logger.warning(f"{stage}: LLM call timed out (attempt {attempt})")
            prompt = user_prompt
        except LLMSchemaError as e:
            last_error = e
            logger.warning(f"{stage}: schema validation failed (attempt {attempt}): {e}")
            prompt = user_prompt + CORRECTIVE_PROMPT.format(error=str(e)[:300])
        except ArticleGenerationError:
            raise
        except Exception as e:
            last_error = e
            logger.warning(f"{stage}: LLM call failed (attempt {attempt}): {e}")
            prompt = user_prompt

    final_code = ErrorCode.TIMEOUT if isinstance(last_error, LLMTimeoutError) else code
    raise ArticleGenerationError(
        f"{stage} failed after retry: {last_error}", final_code, stage, cause=last_error
    )

# ============================================================================
# PROMPT HELPERS
# ============================================================================

def format_game_facts(context) -> str:
    lines = [f"Name: {context.game_name}"]
    if context.release_date:
        lines.append(f"Release date: {context.release_date}")
    if context.genres:
        lines.append(f"Genres: {', '.join(context.genres)}")
    if context.platforms:
        lines.append(f"Platforms: {', '.join(context.platforms)}")
    if context.developer:
        lines.append(f"Developer: {context.developer}")
    if context.publisher:
        lines.append(f"Publisher: {context.publisher}")
    if context.igdb_description:
        lines.append(f"Description: {context.igdb_description[:800]}")
    return "\n".join(lines)


class ProgressReporter:
    """Wraps the caller's progress callback. A failing callback is logged, never raised."""

    def __init__(self, callback=None, job_id: str = ""):
        self._callback = callback
        self.job_id = job_id

    async def __call__(self, phase: str, progress: int, message: str = "") -> None:
        if self._callback is None:
            return
        try:
            result = self._callback(phase, progress, message)
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
        except Exception as e:
            logger.warning(f"Progress callback failed at '{phase}': {e}")
