import asyncio
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from langgraph.graph import END, StateGraph

from game_articles.config import PipelineConfig, TimeoutConfig, load_config
from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.event_bus import clear_job, emit
from game_articles.pipeline.agents import Editor, Reviewer, Scout, Specialist
from game_articles.pipeline.agents.utils import ProgressReporter, logger
from game_articles.pipeline.image_extractor import extract_images_from_source
from game_articles.pipeline.nodes import EDITOR, SPECIALIST, PipelineNodes
from game_articles.pipeline.state import ArticleState
from game_articles.pipeline.structured_data import (
    GameArticleContext,
    GameArticleDraft,
    ImageExtractionResult,
    TokenUsage,
)
from game_articles.providers import LangChainLLM, LLMClient, PageReader, SearchProvider, TavilySearchProvider
from game_articles.tasks import BackgroundTaskQueue
from game_articles.validators import validate_game_article_context

# Hooks submitted after a draft is produced (persisting it, notifying, ...).
CompletionHook = Callable[[GameArticleDraft], Awaitable[Any]]

background_tasks = BackgroundTaskQueue()


@dataclass
class GenerationOptions:
    llm: Optional[LLMClient] = None
    search: Optional[SearchProvider] = None
    page_reader: Any = None
    on_progress: Optional[Callable[[str, int, str], Any]] = None
    cancel_event: Optional[asyncio.Event] = None
    parallel_sections: bool = False
    max_revisions: Optional[int] = None
    timeouts: Optional[TimeoutConfig] = None
    config: Optional[PipelineConfig] = None
    job_id: Optional[str] = None
    task_queue: Optional[BackgroundTaskQueue] = None
    on_complete: List[CompletionHook] = field(default_factory=list)


def _resolve_config(options: GenerationOptions) -> PipelineConfig:
    config = options.config or load_config()
    overrides = {}
    if options.max_revisions is not None:
        overrides["max_revisions"] = options.max_revisions
    if options.timeouts is not None:
        overrides["timeouts"] = options.timeouts
    if not overrides:
        return config
    try:
        return PipelineConfig.model_validate({**config.model_dump(), **overrides})
    except ValueError as e:
        raise ArticleGenerationError(f"Invalid options: {e}", ErrorCode.CONFIG_ERROR, "config", cause=e) from e


def _resolve_llms(options: GenerationOptions, config: PipelineConfig):
    """(fast, quality) clients. A caller-supplied client serves both roles."""
    if options.llm is not None:
        return options.llm, options.llm
    if not os.getenv("OPENAI_API_KEY"):
        raise ArticleGenerationError(
            "OPENAI_API_KEY is not set and no LLM client was provided", ErrorCode.CONFIG_ERROR, "config"
        )
    timeout = config.timeouts.llm_s
    return (
        LangChainLLM(config.fast_model, request_timeout=timeout),
        LangChainLLM(config.quality_model, request_timeout=timeout),
    )


def estimate_run_cost(priced_usage: Sequence[Tuple[TokenUsage, str]]) -> Optional[float]:
    """
    Sums each agent's usage at the price of the model that produced it.
    None when a model that consumed tokens has no known price.
    """
    total = 0.0
    for usage, model in priced_usage:
        if usage.total == 0:
            continue
        cost = usage.estimate_cost(model)
        if cost is None:
            return None
        total += cost
    return round(total, 6)


def build_graph(nodes: PipelineNodes):
    workflow = StateGraph(ArticleState)

    workflow.add_node("scout", nodes.scout_node)
    workflow.add_node("editor", nodes.editor_node)
    workflow.add_node("specialist", nodes.specialist_node)
    workflow.add_node("reviewer", nodes.reviewer_node)
    workflow.add_node("validate", nodes.validate_node)

    workflow.set_entry_point("scout")

    workflow.add_edge("scout", "editor")
    workflow.add_edge("editor", "specialist")
    workflow.add_edge("specialist", "reviewer")
    workflow.add_edge("reviewer", "validate")

    workflow.add_conditional_edges(
        "validate",
        nodes.route_after_validation,
        {
            EDITOR: "editor",
            SPECIALIST: "specialist",
            END: END,
        }
    )

    return workflow.compile()


def build_draft(state: ArticleState, token_usage: TokenUsage, metadata: dict) -> GameArticleDraft:
    plan = state["plan"]
    scout = state["scout"]
    sections = state.get("sections") or []
    review = state.get("review")

    issues = list(state.get("specialist_issues") or [])
    if review is not None:
        issues.extend(review.issues)
    issues.extend(state.get("validation_issues") or [])

    pool_images = extract_images_from_source(scout.pool.query_cache.values())
    images = ImageExtractionResult(
        images=pool_images.images,
        pre_extracted_count=pool_images.pre_extracted_count,
        parsed_count=pool_images.parsed_count,
        discarded_count=sum(s.discarded_images for s in sections),
    )

    return GameArticleDraft(
        title=plan.title,
        excerpt=plan.excerpt,
        category_slug=plan.category_slug,
        tags=plan.tags,
        markdown=state["markdown"],
        sections=sections,
        sources=state.get("sources") or [],
        plan=plan,
        issues=issues,
        confidence=scout.confidence,
        token_usage=token_usage,
        images=images,
        metadata=metadata,
    )


async def generate_game_article_draft(
    context: GameArticleContext,
    options: Optional[GenerationOptions] = None,
) -> GameArticleDraft:
    """
    Researches, plans, writes, reviews and validates one article.

    Returns the draft with every issue attached (a draft with validation
    errors is still returned). Raises ArticleGenerationError when the input
    is invalid, configuration is missing, the run is cancelled, the plan
    cannot be produced, or no section could be written.
    """
    options = options or GenerationOptions()
    validate_game_article_context(context)
    config = _resolve_config(options)
    fast_llm, quality_llm = _resolve_llms(options, config)

    job_id = options.job_id or uuid.uuid4().hex[:12]
    search = options.search or TavilySearchProvider()
    page_reader = options.page_reader
    if page_reader is None and config.scout.deep_read_top_n > 0:
        page_reader = PageReader()
    progress = ProgressReporter(options.on_progress, job_id)
    cancel_event = options.cancel_event

    scout = Scout(fast_llm, search, config, page_reader=page_reader, cancel_event=cancel_event, job_id=job_id)
    editor = Editor(quality_llm, config, cancel_event=cancel_event, job_id=job_id)
    specialist = Specialist(quality_llm, search, config, cancel_event=cancel_event, job_id=job_id, progress=progress)
    reviewer = Reviewer(quality_llm, config, cancel_event=cancel_event, job_id=job_id)
    nodes = PipelineNodes(scout, editor, specialist, reviewer, config, progress,
                          cancel_event=cancel_event, parallel_sections=options.parallel_sections)

    logger.info(f"🚀 STARTING WORKFLOW (Game: {context.game_name}, Job: {job_id})")
    emit(job_id, "pipeline", "started", f"Generating article for {context.game_name}")
    started = time.monotonic()

    initial_state: ArticleState = {
        "job_id": job_id,
        "context": context,
        "scout": None,
        "plan": None,
        "sections": [],
        "specialist_issues": [],
        "markdown": "",
        "sources": [],
        "review": None,
        "validation_issues": [],
        "revision_count": 0,
        "revision_target": None,
        "revision_feedback": [],
    }

    try:
        final_state = await build_graph(nodes).ainvoke(initial_state)
    except ArticleGenerationError as e:
        logger.error(f"❌ Generation failed: {e}")
        emit(job_id, "pipeline", "error", e.message, e.to_dict())
        raise
    except asyncio.CancelledError:
        emit(job_id, "pipeline", "error", "Cancelled")
        raise
    except Exception as e:
        logger.error(f"❌ Generation failed unexpectedly: {e}")
        emit(job_id, "pipeline", "error", str(e))
        raise ArticleGenerationError(f"Unexpected pipeline failure: {e}", ErrorCode.PIPELINE_FAILED,
                                     "pipeline", cause=e) from e

    scout_output = final_state["scout"]
    token_usage = scout_output.token_usage + editor.token_usage + specialist.token_usage + reviewer.token_usage
    review = final_state.get("review")
    metadata = {
        "job_id": job_id,
        "duration_s": round(time.monotonic() - started, 2),
        "revisions": final_state.get("revision_count", 0),
        "query_stats": scout_output.query_stats.model_dump(),
        "scout_warnings": list(scout_output.warnings),
        "review_recommendation": review.recommendation if review is not None else None,
        "review_suggestions": list(review.suggestions) if review is not None else [],
        "estimated_cost_usd": estimate_run_cost([
            (scout_output.token_usage, getattr(fast_llm, "model_name", config.fast_model)),
            (editor.token_usage + specialist.token_usage + reviewer.token_usage,
             getattr(quality_llm, "model_name", config.quality_model)),
        ]),
    }
    draft = build_draft(final_state, token_usage, metadata)

    await progress("complete", 100, f"{len(draft.sections)} sections, {len(draft.errors)} errors")
    logger.info(
        f"🏁 WORKFLOW COMPLETE: '{draft.title}' | {len(draft.sections)} sections | "
        f"{len(draft.errors)} errors, {len(draft.warnings)} warnings | {token_usage.total} tokens"
    )
    emit(job_id, "pipeline", "completed", f"Draft ready: {draft.title}",
         {"errors": len(draft.errors), "warnings": len(draft.warnings), "tokens": token_usage.total})

    if options.on_complete:
        queue = options.task_queue or background_tasks
        remaining = len(options.on_complete)

        def _hook_finished(_record) -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0:
                clear_job(job_id)

        draft.metadata["background_tasks"] = [
            queue.submit(getattr(hook, "__name__", "on_complete"), lambda hook=hook: hook(draft),
                         on_finished=_hook_finished)
            for hook in options.on_complete
        ]
    return draft


def generate_game_article_draft_sync(
    context: GameArticleContext,
    options: Optional[GenerationOptions] = None,
) -> GameArticleDraft:
    """Blocking wrapper. Completion hooks are awaited before returning."""
    options = options or GenerationOptions()

    async def _run() -> GameArticleDraft:
        draft = await generate_game_article_draft(context, options)
        if options.on_complete:
            await (options.task_queue or background_tasks).drain()
        return draft

    return asyncio.run(_run())

# ---------------------------------------------------------------------------
# MAIN RUNNER
# ---------------------------------------------------------------------------

def run_app():
    game_name = input("🎮 Enter game name: ").strip()
    instruction = input("📝 What should the article be about? (optional): ").strip() or None
    genres = [g.strip() for g in input("🏷️ Genres, comma separated (optional): ").split(",") if g.strip()]

    context = GameArticleContext(game_name=game_name, instruction=instruction, genres=genres)

    print(f"🚀 STARTING WORKFLOW (Game: {game_name})...")
    try:
        draft = generate_game_article_draft_sync(context)
    except ArticleGenerationError as e:
        print(f"Error: {e}")
        return

    print("\n" + "=" * 80)
    print("🚀 WORKFLOW COMPLETE")
    print("=" * 80)
    print(draft.markdown)

    print("\n" + "=" * 80)
    print("📋 ISSUES")
    print("=" * 80)
    for issue in draft.issues:
        where = f" [{issue.location}]" if issue.location else ""
        print(f"- {issue.severity.upper()}{where}: {issue.message}")
    if not draft.issues:
        print("✅ No issues found!")

    print("\n" + "=" * 80)
    print(f"Confidence: {draft.confidence} | Tokens: {draft.token_usage.total} | "
          f"Cost: ${draft.metadata.get('estimated_cost_usd') or 0:.4f}")


if __name__ == "__main__":
    run_app()
