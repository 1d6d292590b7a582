import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from game_articles.config import PipelineConfig
from game_articles.errors import ArticleGenerationError, ErrorCode, LLMSchemaError
from game_articles.pipeline.image_extractor import (
    extract_image_urls,
    filter_markdown_images,
    unlink_unknown_urls,
)
from game_articles.pipeline.markdown_utils import (
    count_words,
    extract_markdown_links,
    strip_leading_heading,
    tail,
    truncate,
)
from game_articles.pipeline.research_pool import SECTION_SPECIFIC, ResearchPool, normalize_url
from game_articles.pipeline.section_context import SectionWriteState
from game_articles.pipeline.strategies import get_strategy
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    ArticleSectionPlan,
    CategorizedSearchResult,
    GameArticleContext,
    ScoutOutput,
    SearchResponse,
    SectionDraft,
    SourceUsageItem,
    TokenUsage,
    ValidationIssue,
)
from game_articles.pipeline.templates import SPECIALIST_SYSTEM_PROMPT, SPECIALIST_USER_PROMPT
from .utils import ProgressReporter, _emit, call_llm, check_cancelled, logger, retry_async, with_timeout

MAX_CONTEXT_ENTRIES = 8
SECTION_SEARCH_RESULTS = 5


@dataclass
class SpecialistResult:
    sections: List[SectionDraft]
    issues: List[ValidationIssue] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    discarded_images: int = 0


def build_research_context(
    entries: Sequence[CategorizedSearchResult],
    section_headline: str,
    top_n: int,
    per_result: int,
) -> Tuple[str, List[SourceUsageItem]]:
    """
    Top `top_n` results of each entry, each cut to `per_result` characters.
    The size is bounded by the entry count, never by the size of the pool.
    """
    blocks: List[str] = []
    usage: List[SourceUsageItem] = []
    seen: Set[str] = set()
    for entry in entries[:MAX_CONTEXT_ENTRIES]:
        lines = [f'--- Research: "{entry.query}" ({entry.category}) ---']
        if entry.answer:
            lines.append(f"Summary: {truncate(entry.answer, per_result)}")
        for item in entry.results[:top_n]:
            key = normalize_url(item.url)
            if key in seen:
                continue
            seen.add(key)
            content = " ".join(item.content.split())
            lines.append(f"[{item.title or 'Source'}]({item.url})")
            if content:
                lines.append(truncate(content, per_result))
            usage.append(SourceUsageItem(
                url=item.url,
                title=item.title,
                content_type="full" if len(content) <= per_result else "content",
                phase="specialist" if entry.category == SECTION_SPECIFIC else "scout",
                section=section_headline,
                query=entry.query,
            ))
        if len(lines) > 1:
            blocks.append("\n".join(lines))
    return "\n\n".join(blocks), usage


def position_note(index: int, total: int) -> str:
    if index == 0:
        return "FIRST section: open the article. Hook the reader with the most useful fact, no preamble."
    if index == total - 1:
        return "FINAL section: close the article with practical takeaways. Do not write 'In conclusion'."
    return "MIDDLE section: continue naturally from the previous section without re-introducing the game."


def assemble_markdown(plan: ArticlePlan, sections: Sequence[SectionDraft], sources: Sequence[str]) -> str:
    """`# title`, then every section in plan order, then the source list."""
    parts = [f"# {plan.title}"]
    parts.extend(s.markdown.strip() for s in sorted(sections, key=lambda s: s.index))
    if sources:
        parts.append("## Sources\n\n" + "\n".join(f"- {url}" for url in sources))
    return "\n\n".join(parts).strip() + "\n"


def collect_sources(sections: Sequence[SectionDraft], scout_urls: Sequence[str], limit: int) -> List[str]:
    """Cited sources first, then the rest of what the sections used, then Scout's list."""
    ordered: List[str] = []
    seen: Set[str] = set()

    def _add(url: str) -> None:
        key = normalize_url(url)
        if key and key not in seen:
            seen.add(key)
            ordered.append(url)

    for s in sections:
        for u in s.source_usage:
            if u.cited:
                _add(u.url)
    for s in sections:
        for u in s.source_usage:
            _add(u.url)
    for url in scout_urls:
        _add(url)
    return ordered[:limit]


def match_section(location: Optional[str], plan: ArticlePlan) -> Optional[int]:
    if not location:
        return None
    loc = location.lower().strip().strip('"')
    for i, section in enumerate(plan.sections):
        headline = section.headline.lower()
        if headline in loc or loc in headline:
            return i
    return None


class Specialist:
    """Writes the article one section at a time."""

    def __init__(self, llm, search, config: PipelineConfig, cancel_event: Optional[asyncio.Event] = None,
                 job_id: str = "", progress: Optional[ProgressReporter] = None):
        self.llm = llm
        self.search = search
        self.config = config
        self.cancel_event = cancel_event
        self.job_id = job_id
        self.progress = progress or ProgressReporter()
        self.token_usage = TokenUsage()

    # -- research ----------------------------------------------------------

    async def research_sections(self, plan: ArticlePlan, pool: ResearchPool) -> int:
        """Runs the plan's research queries the pool has not seen, in small batches."""
        cfg = self.config.specialist
        queries = pool.new_queries(q for s in plan.sections for q in s.research_queries)
        if not queries:
            return 0
        logger.info(f"Section research: {len(queries)} new queries")
        _emit(self.job_id, "specialist", "working", f"Researching {len(queries)} section topics...")

        async def _search_once(query: str) -> SearchResponse:
            try:
                return await with_timeout(
                    self.search.search(query, max_results=SECTION_SEARCH_RESULTS, depth="basic"),
                    self.config.timeouts.search_s,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Section search timed out for '{query}'")
                return SearchResponse()

        async def _search(query: str) -> SearchResponse:
            check_cancelled(self.cancel_event, "specialist")
            try:
                return await retry_async(
                    lambda: _search_once(query), self.config.retry, label=f"Section search '{query}'"
                )
            except ArticleGenerationError:
                raise
            except Exception as e:
                logger.warning(f"Section search failed for '{query}': {e}")
                return SearchResponse()

        for start in range(0, len(queries), cfg.batch_concurrency):
            batch = queries[start:start + cfg.batch_concurrency]
            await asyncio.gather(*(pool.get_or_search(q, SECTION_SPECIFIC, _search) for q in batch))
            if start + cfg.batch_concurrency < len(queries) and cfg.batch_delay_s:
                await asyncio.sleep(cfg.batch_delay_s)
        return len(queries)

    # -- writing -----------------------------------------------------------

    async def write_section(
        self,
        index: int,
        section: ArticleSectionPlan,
        plan: ArticlePlan,
        scout: ScoutOutput,
        context: GameArticleContext,
        write_state: Optional[SectionWriteState] = None,
        previous_markdown: str = "",
        feedback: Sequence[str] = (),
    ) -> SectionDraft:
        cfg = self.config.specialist
        write_state = write_state or SectionWriteState()
        strategy = get_strategy(plan.category_slug)

        entries = scout.pool.extract_for_queries(section.research_queries)
        research_context, usage = build_research_context(
            entries, section.headline, cfg.top_results_per_query, cfg.research_context_per_result
        )
        thin = len(research_context) < cfg.thin_research_threshold
        allowlist = {normalize_url(u.url) for u in usage}
        allowlist.update(normalize_url(img.url) for img in extract_image_urls(research_context))
        allowlist.discard("")

        override = context.hint_for(plan.category_slug)
        system = SPECIALIST_SYSTEM_PROMPT.format(
            label=strategy.label,
            tone_guide=strategy.tone_guide,
            min_paragraphs=cfg.min_paragraphs,
            max_paragraphs=cfg.max_paragraphs,
            category_override=f"\nEDITORIAL OVERRIDE:\n{override}" if override else "",
        )
        revision_note = ""
        if feedback:
            revision_note = "\n=== REVISION REQUIRED ===\n" + "\n".join(f"- {f}" for f in feedback) + "\n"
        user = SPECIALIST_USER_PROMPT.format(
            article_title=plan.title,
            game_name=context.game_name,
            section_number=index + 1,
            total_sections=len(plan.sections),
            headline=section.headline,
            position_note=position_note(index, len(plan.sections)),
            goal=section.goal,
            must_cover="\n".join(f"- {m}" for m in section.must_cover) or "- (no explicit checklist)",
            cross_reference=write_state.build_cross_reference_context(),
            elements_reminder=write_state.build_required_elements_reminder(
                plan.required_elements, section.must_cover
            ),
            previous_tail=tail(previous_markdown, cfg.context_tail_length) or "(this is the first section)",
            scout_overview=truncate(scout.briefing.overview, cfg.max_scout_overview_length),
            research_context=research_context or "(no section-specific research found)",
            thin_note=(
                "\nNOTE: research for this section is thin. Stay general where facts are missing "
                "and never invent specifics.\n" if thin else ""
            ),
            revision_note=revision_note,
        )

        async def _call(prompt: str):
            response = await self.llm.generate_text(
                system, prompt, temperature=cfg.temperature, max_tokens=cfg.max_output_tokens
            )
            if not strip_leading_heading(response.value or ""):
                raise LLMSchemaError("empty section text")
            return response

        response = await call_llm(
            _call,
            user,
            stage="specialist",
            code=ErrorCode.SPECIALIST_FAILED,
            timeout_s=self.config.timeouts.llm_s,
            cancel_event=self.cancel_event,
        )
        self.token_usage = self.token_usage + response.usage

        body = strip_leading_heading(response.value)
        body, image_result = filter_markdown_images(body, allowlist)
        body, unlinked = unlink_unknown_urls(body, allowlist)
        body = body.strip()
        if body and body[-1].isalnum():
            body += "."
        if image_result.discarded_count or unlinked:
            logger.warning(
                f"Section {index + 1}: removed {image_result.discarded_count} image(s) and "
                f"{unlinked} link(s) not found in research"
            )

        cited = {normalize_url(url) for _text, url in extract_markdown_links(body)}
        usage = [u.model_copy(update={"cited": normalize_url(u.url) in cited}) for u in usage]

        words = count_words(body)
        logger.info(f"✅ Section {index + 1}/{len(plan.sections)} '{section.headline}': {words} words")
        return SectionDraft(
            index=index,
            headline=section.headline,
            markdown=f"## {section.headline}\n\n{body}",
            source_usage=usage,
            allowed_urls=sorted(allowlist),
            discarded_images=image_result.discarded_count,
            discarded_links=unlinked,
            thin_research=thin,
        )

    async def _write_or_issue(self, index, section, plan, scout, context, write_state,
                              previous_markdown="", feedback=()):
        try:
            draft = await self.write_section(
                index, section, plan, scout, context, write_state, previous_markdown, feedback
            )
            return draft, None
        except ArticleGenerationError as e:
            if e.code == ErrorCode.CANCELLED:
                raise
            logger.error(f"Section {index + 1} '{section.headline}' failed: {e}")
            _emit(self.job_id, "specialist", "error", f"Failed section {index + 1}: {e.message}")
            return None, ValidationIssue(
                severity="error",
                message=f"Section could not be written: {e.message}",
                location=section.headline,
                source="pipeline",
                code="SECTION_FAILED",
            )

    async def run(self, plan: ArticlePlan, scout: ScoutOutput, context: GameArticleContext,
                  parallel: bool = False) -> SpecialistResult:
        total = len(plan.sections)
        _emit(self.job_id, "specialist", "started", f"Writing {total} sections...")
        logger.info(f"✍️ WRITING --- {total} sections ({'parallel' if parallel else 'sequential'})")

        await self.research_sections(plan, scout.pool)

        write_state = SectionWriteState()
        drafts: Dict[int, SectionDraft] = {}
        issues: List[ValidationIssue] = []

        if not parallel:
            previous = ""
            for i, section in enumerate(plan.sections):
                check_cancelled(self.cancel_event, "specialist")
                await self.progress(f"writing:{i + 1}", 30 + int(50 * i / total), section.headline)
                _emit(self.job_id, "specialist", "working", f"Writing section {i + 1}/{total}: {section.headline}",
                      {"section": i + 1, "total": total})
                draft, issue = await self._write_or_issue(i, section, plan, scout, context, write_state, previous)
                if issue:
                    issues.append(issue)
                    continue
                drafts[i] = draft
                write_state.update(draft.markdown, section.headline, section.must_cover)
                previous = draft.markdown
        else:
            batch_size = self.config.specialist.batch_concurrency
            for start in range(0, total, batch_size):
                check_cancelled(self.cancel_event, "specialist")
                batch = list(enumerate(plan.sections))[start:start + batch_size]
                for i, section in batch:
                    await self.progress(f"writing:{i + 1}", 30 + int(50 * i / total), section.headline)
                # cross-references only see sections finished in earlier batches
                outcomes = await asyncio.gather(*(
                    self._write_or_issue(i, section, plan, scout, context, write_state)
                    for i, section in batch
                ))
                for (i, section), (draft, issue) in zip(batch, outcomes):
                    if issue:
                        issues.append(issue)
                        continue
                    drafts[i] = draft
                    write_state.update(draft.markdown, section.headline, section.must_cover)

        if not drafts:
            raise ArticleGenerationError("No sections could be written", ErrorCode.SPECIALIST_FAILED, "specialist")

        sections = [drafts[i] for i in sorted(drafts)]
        discarded = sum(s.discarded_images for s in sections)
        _emit(self.job_id, "specialist", "completed", f"Wrote {len(sections)}/{total} sections",
              {"sections": len(sections), "discarded_images": discarded})
        return SpecialistResult(sections=sections, issues=issues, token_usage=self.token_usage,
                                discarded_images=discarded)

    async def revise(self, plan: ArticlePlan, sections: Sequence[SectionDraft], scout: ScoutOutput,
                     context: GameArticleContext, issues: Sequence[ValidationIssue]) -> SpecialistResult:
        """Rewrites the sections that issues point at, plus any section that is missing."""
        by_index: Dict[int, SectionDraft] = {s.index: s for s in sections}
        feedback: Dict[int, List[str]] = {}
        for issue in issues:
            i = match_section(issue.location, plan)
            if i is not None:
                feedback.setdefault(i, []).append(issue.message)
        for i in range(len(plan.sections)):
            if i not in by_index:
                feedback.setdefault(i, []).append("This section is missing. Write it in full.")

        new_issues: List[ValidationIssue] = []
        for i in sorted(feedback):
            check_cancelled(self.cancel_event, "specialist")
            section = plan.sections[i]
            await self.progress(f"writing:{i + 1}", 85, f"Revising {section.headline}")
            state = SectionWriteState()
            previous = ""
            for j in sorted(by_index):
                if j == i:
                    continue
                state.update(by_index[j].markdown, plan.sections[j].headline, plan.sections[j].must_cover)
                if j < i:
                    previous = by_index[j].markdown
            draft, issue = await self._write_or_issue(
                i, section, plan, scout, context, state, previous, feedback[i]
            )
            if issue:
                new_issues.append(issue)
            else:
                by_index[i] = draft

        revised = [by_index[i] for i in sorted(by_index)]
        return SpecialistResult(
            sections=revised,
            issues=new_issues,
            token_usage=self.token_usage,
            discarded_images=sum(s.discarded_images for s in revised),
        )
