import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from game_articles.config import PipelineConfig
from game_articles.errors import ArticleGenerationError
from game_articles.pipeline.intent import ArticleCategory, category_for
from game_articles.pipeline.markdown_utils import truncate
from game_articles.pipeline.research_pool import ResearchPool, quick_relevance_check
from game_articles.pipeline.strategies import (
    CATEGORY_BUCKET,
    OVERVIEW_BUCKET,
    SUPPLEMENTARY_BUCKET,
    CategoryStrategy,
    QuerySlot,
    build_query_slots,
    get_strategy,
)
from game_articles.pipeline.structured_data import (
    Briefing,
    CategorizedSearchResult,
    GameArticleContext,
    QueryStats,
    ScoutOutput,
    SearchResponse,
    SearchResultItem,
    TokenUsage,
)
from game_articles.pipeline.templates import (
    SCOUT_CATEGORY_PROMPT,
    SCOUT_OVERVIEW_PROMPT,
    SCOUT_RECENT_PROMPT,
    SCOUT_SYSTEM,
)
from .utils import _emit, check_cancelled, format_game_facts, logger, retry_async, with_timeout

OK = "ok"
EMPTY = "empty"
FAILED = "failed"


@dataclass
class SlotOutcome:
    slot: QuerySlot
    status: str
    result_count: int = 0


# ============================================================================
# CONTEXT BUILDERS
# ============================================================================

def build_search_context(
    entries: Sequence[CategorizedSearchResult], max_results: int = 5, snippet_length: int = 800
) -> str:
    blocks = []
    for entry in entries:
        lines = [f"Query: {entry.query}", f"Category: {entry.category}"]
        if entry.answer:
            lines.append(f"AI Summary: {entry.answer}")
        lines.append("Results:")
        for i, item in enumerate(entry.results[:max_results], 1):
            lines.append(f"{i}. {item.title or 'Untitled'}")
            lines.append(f"   URL: {item.url}")
            if item.content:
                lines.append(f"   {truncate(item.content.strip(), snippet_length)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def fallback_briefing(entries: Sequence[CategorizedSearchResult], limit: int = 8) -> str:
    """Plain digest of titles and snippets, used when briefing synthesis fails."""
    lines = []
    for entry in entries:
        for item in entry.results:
            if len(lines) >= limit:
                break
            snippet = truncate(" ".join(item.content.split()), 200)
            lines.append(f"- {item.title or item.url}: {snippet}" if snippet else f"- {item.title or item.url}")
    return "\n".join(lines) if lines else "No research results were found for this area."


def build_full_context(
    briefing: Briefing, context: GameArticleContext, pool: ResearchPool, confidence: str
) -> str:
    return "\n\n".join([
        f"=== OVERVIEW ===\n{briefing.overview}",
        f"=== CATEGORY INSIGHTS ===\n{briefing.category_insights}",
        f"=== RECENT DEVELOPMENTS ===\n{briefing.recent_developments}",
        "=== METADATA ===\n"
        f"{format_game_facts(context)}\n"
        f"Total sources: {pool.url_count}\n"
        f"Queries executed: {pool.query_count}\n"
        f"Research confidence: {confidence}",
    ])


def compute_confidence(outcomes: Sequence[SlotOutcome]) -> str:
    """
    low:    more than half the slots came back empty, or the overview or the
            category bucket has no query with results
    high:   both buckets have results and no slot failed outright
    medium: both buckets have results but at least one slot failed
    """
    if not outcomes:
        return "low"
    empty = sum(1 for o in outcomes if o.result_count == 0)
    if empty * 2 > len(outcomes):
        return "low"

    def _bucket_ok(categories: Tuple[str, ...]) -> bool:
        return any(o.result_count > 0 for o in outcomes if o.slot.category in categories)

    if not _bucket_ok(OVERVIEW_BUCKET) or not _bucket_ok(CATEGORY_BUCKET):
        return "low"
    if any(o.status == FAILED for o in outcomes):
        return "medium"
    return "high"


def validate_scout_output(pool: ResearchPool, briefing: Briefing, cfg) -> List[str]:
    warnings = []
    if pool.url_count < cfg.min_sources_warning:
        warnings.append(f"Only {pool.url_count} distinct sources found (expected at least {cfg.min_sources_warning})")
    if pool.query_count < cfg.min_queries_warning:
        warnings.append(f"Only {pool.query_count} queries executed (expected at least {cfg.min_queries_warning})")
    if len(briefing.overview.strip()) < cfg.min_overview_length:
        warnings.append(f"Overview briefing is very short ({len(briefing.overview.strip())} characters)")
    return warnings

# ============================================================================
# AGENT
# ============================================================================

class Scout:
    """Runs the research phase: concurrent searches, then three briefing syntheses."""

    def __init__(self, llm, search, config: PipelineConfig, page_reader=None,
                 cancel_event: Optional[asyncio.Event] = None, job_id: str = ""):
        self.llm = llm
        self.search = search
        self.config = config
        self.page_reader = page_reader
        self.cancel_event = cancel_event
        self.job_id = job_id

    def resolve_category(self, context: GameArticleContext) -> ArticleCategory:
        return category_for(context.instruction, context.category_hint)

    async def run(self, context: GameArticleContext) -> ScoutOutput:
        check_cancelled(self.cancel_event, "scout")
        category = self.resolve_category(context)
        strategy = get_strategy(category)
        slots = build_query_slots(context, category, self.config.scout)

        _emit(self.job_id, "scout", "started", f"Researching {context.game_name} ({len(slots)} queries)...")
        logger.info(f"🔍 SCOUTING --- {context.game_name} [{category.value}] {len(slots)} queries")

        pool = ResearchPool()
        outcomes = await asyncio.gather(*(self._execute_slot(pool, slot, context) for slot in slots))

        stats = QueryStats(
            executed=len(outcomes),
            successful=sum(1 for o in outcomes if o.status == OK),
            empty=sum(1 for o in outcomes if o.status == EMPTY),
            failed=sum(1 for o in outcomes if o.status == FAILED),
        )
        confidence = compute_confidence(outcomes)
        logger.info(
            f"Search done: {stats.successful}/{stats.executed} queries returned results, "
            f"{pool.url_count} distinct sources, confidence={confidence}"
        )
        _emit(self.job_id, "scout", "working", f"Found {pool.url_count} sources, writing briefing...",
              {"sources": pool.url_count, "queries": stats.executed})

        briefing, usage = await self._synthesize(context, strategy, pool)
        briefing.full_context = build_full_context(briefing, context, pool, confidence)

        warnings = validate_scout_output(pool, briefing, self.config.scout)
        for w in warnings:
            logger.warning(f"Scout: {w}")

        _emit(self.job_id, "scout", "completed", f"Research complete ({confidence} confidence)",
              {"sources": pool.url_count, "confidence": confidence})
        return ScoutOutput(
            briefing=briefing,
            pool=pool,
            source_urls=pool.source_urls,
            token_usage=usage,
            confidence=confidence,
            query_stats=stats,
            warnings=warnings,
        )

    # -- searching ---------------------------------------------------------

    async def _search_once(self, slot: QuerySlot, query: str) -> SearchResponse:
        try:
            return await with_timeout(
                self.search.search(
                    query,
                    max_results=slot.max_results,
                    depth=slot.search_depth,
                    domain_filters=list(slot.domain_filters) or None,
                ),
                self.config.timeouts.search_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Search timed out for '{query}'")
            return SearchResponse()

    async def _execute_slot(self, pool: ResearchPool, slot: QuerySlot,
                            context: GameArticleContext) -> SlotOutcome:
        failed = False

        async def _search(query: str) -> SearchResponse:
            nonlocal failed
            check_cancelled(self.cancel_event, "scout")
            try:
                response = await retry_async(
                    lambda: self._search_once(slot, query),
                    self.config.retry,
                    label=f"Search '{query}'",
                )
            except ArticleGenerationError:
                raise
            except Exception as e:
                logger.warning(f"Search failed for '{query}': {e}")
                failed = True
                return SearchResponse()
            kept = []
            for item in response.results:
                reason = quick_relevance_check(item.url, item.title)
                if reason:
                    logger.debug(f"Dropped {item.url}: {reason}")
                    continue
                kept.append(item)
            if slot.category == "overview" and self.page_reader and self.config.scout.deep_read_top_n:
                kept = await self._deep_read(kept)
            return SearchResponse(results=kept, answer=response.answer)

        _emit(self.job_id, "scout", "working", f"Searching: {slot.query}")
        entry = await pool.get_or_search(slot.query, slot.category, _search)
        count = len(entry.results)
        if failed:
            return SlotOutcome(slot, FAILED, 0)
        return SlotOutcome(slot, OK if count else EMPTY, count)

    async def _deep_read(self, items: List[SearchResultItem]) -> List[SearchResultItem]:
        """Replaces thin snippets of the top results with the page text."""
        cfg = self.config.scout
        top = sorted(range(len(items)), key=lambda i: items[i].score, reverse=True)[: cfg.deep_read_top_n]
        out = list(items)
        for i in top:
            if len(items[i].content) >= cfg.max_snippet_length:
                continue
            check_cancelled(self.cancel_event, "scout")
            try:
                text = await with_timeout(
                    self.page_reader.read(items[i].url, cfg.deep_read_max_words),
                    self.config.timeouts.search_s,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Deep read timed out for {items[i].url}")
                continue
            if text:
                out[i] = items[i].model_copy(update={"content": text})
        return out

    # -- briefing ----------------------------------------------------------

    async def _synthesize(self, context: GameArticleContext, strategy: CategoryStrategy,
                          pool: ResearchPool) -> Tuple[Briefing, TokenUsage]:
        cfg = self.config.scout
        overview_entries = pool.findings(OVERVIEW_BUCKET)
        category_entries = pool.findings(CATEGORY_BUCKET)
        recent_entries = pool.findings(SUPPLEMENTARY_BUCKET)
        game_facts = format_game_facts(context)
        instruction = context.instruction or "(none)"

        overview_prompt = SCOUT_OVERVIEW_PROMPT.format(
            game_name=context.game_name,
            game_facts=game_facts,
            search_context=build_search_context(overview_entries, cfg.max_results_per_context, cfg.max_snippet_length),
        )
        category_prompt = SCOUT_CATEGORY_PROMPT.format(
            game_name=context.game_name,
            article_type=strategy.label,
            instruction=instruction,
            focus=strategy.category_briefing_focus,
            category_context=build_search_context(category_entries, cfg.key_findings_limit, cfg.max_snippet_length),
        )
        recent_prompt = SCOUT_RECENT_PROMPT.format(
            game_name=context.game_name,
            article_type=strategy.label,
            focus=strategy.recent_briefing_focus,
            recent_context=build_search_context(recent_entries, cfg.recent_results_limit, cfg.recent_snippet_length),
        )

        results = await asyncio.gather(
            self._brief("overview", overview_prompt, overview_entries),
            self._brief("category insights", category_prompt, category_entries),
            self._brief("recent developments", recent_prompt, recent_entries),
        )
        usage = TokenUsage()
        for _text, u in results:
            usage = usage + u
        return Briefing(
            overview=results[0][0],
            category_insights=results[1][0],
            recent_developments=results[2][0],
        ), usage

    async def _brief(self, name: str, prompt: str,
                     entries: Sequence[CategorizedSearchResult]) -> Tuple[str, TokenUsage]:
        if not any(e.results for e in entries):
            return fallback_briefing(entries), TokenUsage()
        check_cancelled(self.cancel_event, "scout")
        try:
            response = await with_timeout(
                self.llm.generate_text(SCOUT_SYSTEM, prompt, temperature=self.config.scout.temperature),
                self.config.timeouts.llm_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Scout {name} briefing timed out. Using raw results.")
            return fallback_briefing(entries), TokenUsage()
        except ArticleGenerationError:
            raise
        except Exception as e:
            logger.warning(f"Scout {name} briefing failed: {e}. Using raw results.")
            return fallback_briefing(entries), TokenUsage()
        text = (response.value or "").strip()
        return (text or fallback_briefing(entries)), response.usage
