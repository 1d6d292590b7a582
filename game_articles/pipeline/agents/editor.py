import asyncio
from typing import Optional, Sequence

from pydantic import ValidationError

from game_articles.config import PipelineConfig
from game_articles.errors import ErrorCode, LLMSchemaError
from game_articles.pipeline.intent import (
    build_required_element_hints,
    category_for,
    detect_article_intent,
    suggested_elements,
)
from game_articles.pipeline.markdown_utils import truncate
from game_articles.pipeline.research_pool import ResearchPool
from game_articles.pipeline.strategies import CATEGORY_BUCKET, OVERVIEW_BUCKET, SUPPLEMENTARY_BUCKET, get_strategy
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    GameArticleContext,
    SafetySettings,
    ScoutOutput,
    TokenUsage,
    ValidationIssue,
)
from game_articles.pipeline.templates import EDITOR_SYSTEM_PROMPT, EDITOR_USER_PROMPT
from .utils import _emit, call_llm, format_game_facts, logger


def build_category_hints_section(context: GameArticleContext) -> str:
    if not context.category_hints:
        return ""
    lines = []
    for hint in context.category_hints:
        prompt = (hint.system_prompt or "").strip()
        lines.append(f"- {hint.slug}: {prompt}" if prompt else f"- {hint.slug}")
    return "\nAvailable categories (pick ONE category_slug):\n" + "\n".join(lines)


def build_existing_research_summary(pool: ResearchPool, max_length: int = 3000) -> str:
    def _queries(categories) -> str:
        return ", ".join(f'"{e.query}"' for e in pool.findings(categories)) or "(none)"

    lines = [
        f"Overview searches: {_queries(OVERVIEW_BUCKET)}",
        f"Category searches: {_queries(CATEGORY_BUCKET)}",
        f"Supplementary searches: {_queries(SUPPLEMENTARY_BUCKET)}",
        f"Distinct sources: {pool.url_count}",
        "",
        "Plan research_queries that fill GAPS in this research; do not repeat these searches.",
    ]
    return truncate("\n".join(lines), max_length)


def build_top_sources_summary(pool: ResearchPool, limit: int = 8, snippet_length: int = 300) -> str:
    ranked = pool.top_sources_per_query(limit)
    if not ranked:
        return "(no sources found)"
    blocks = []
    for r in ranked:
        blocks.append(
            f'- "{r.item.title or r.item.url}" ({r.item.url})\n'
            f'  Query: "{r.query}" | Quality: {r.quality:.0f}/100 | Relevance: {r.relevance:.0f}/100\n'
            f"  {truncate(' '.join(r.item.content.split()), snippet_length)}"
        )
    return "\n".join(blocks)


def build_revision_feedback(issues: Sequence[ValidationIssue], previous_plan: Optional[ArticlePlan] = None) -> str:
    if not issues:
        return ""
    lines = ["", "=== REVISION FEEDBACK (fix these in the new plan) ==="]
    for issue in issues[:15]:
        where = f" [{issue.location}]" if issue.location else ""
        lines.append(f"- ({issue.severity}){where} {issue.message}")
    if previous_plan is not None:
        lines.append("")
        lines.append(f"Previous plan ({len(previous_plan.sections)} sections, keep the same shape unless "
                     "the feedback requires otherwise):")
        lines.extend(f"{i}. {s.headline}" for i, s in enumerate(previous_plan.sections, 1))
    return "\n".join(lines) + "\n"


def finalize_plan(plan: ArticlePlan, context: GameArticleContext) -> ArticlePlan:
    """Fills in what the model is allowed to leave out."""
    updates = {}
    if plan.safety is None:
        updates["safety"] = SafetySettings()
    if not plan.tags:
        updates["tags"] = [context.game_name.lower()]
    if not plan.required_elements:
        updates["required_elements"] = suggested_elements(context.instruction, context.genres)
    return plan.model_copy(update=updates) if updates else plan


class Editor:
    def __init__(self, llm, config: PipelineConfig, cancel_event: Optional[asyncio.Event] = None,
                 job_id: str = ""):
        self.llm = llm
        self.config = config
        self.cancel_event = cancel_event
        self.job_id = job_id
        self.token_usage = TokenUsage()

    def build_prompts(self, context: GameArticleContext, scout: ScoutOutput,
                      feedback: Sequence[ValidationIssue] = (), previous_plan: Optional[ArticlePlan] = None):
        cfg = self.config.editor
        intent = detect_article_intent(context.instruction)
        strategy = get_strategy(category_for(context.instruction, context.category_hint))

        system = EDITOR_SYSTEM_PROMPT.format(
            intent_label=intent,
            editor_guidance=strategy.editor_guidance,
            category_hints=build_category_hints_section(context),
        )
        user = EDITOR_USER_PROMPT.format(
            game_name=context.game_name,
            game_facts=format_game_facts(context),
            instruction=context.instruction or "(none: choose the most useful article for this game)",
            required_element_hints=build_required_element_hints(context.instruction, context.genres) or "(none)",
            briefing=truncate(scout.briefing.full_context, cfg.full_context_length),
            existing_research=build_existing_research_summary(scout.pool, cfg.research_summary_length),
            top_sources=build_top_sources_summary(scout.pool, cfg.top_sources_limit),
            confidence=scout.confidence,
            revision_feedback=build_revision_feedback(feedback, previous_plan),
        )
        return system, user

    async def run(self, context: GameArticleContext, scout: ScoutOutput,
                  feedback: Sequence[ValidationIssue] = (),
                  previous_plan: Optional[ArticlePlan] = None) -> ArticlePlan:
        phase = "Revising" if feedback else "Creating"
        _emit(self.job_id, "editor", "started", f"{phase} article plan...")
        logger.info(f"📋 PLANNING --- {context.game_name}" + (" (revision)" if feedback else ""))

        system, user = self.build_prompts(context, scout, feedback, previous_plan)

        async def _call(prompt: str):
            response = await self.llm.generate_structured(
                system, prompt, ArticlePlan, temperature=self.config.editor.temperature
            )
            if not isinstance(response.value, ArticlePlan):
                try:
                    response.value = ArticlePlan.model_validate(response.value)
                except ValidationError as e:
                    raise LLMSchemaError(str(e)) from e
            return response

        response = await call_llm(
            _call,
            user,
            stage="editor",
            code=ErrorCode.EDITOR_FAILED,
            timeout_s=self.config.timeouts.llm_s,
            cancel_event=self.cancel_event,
        )
        self.token_usage = self.token_usage + response.usage
        plan = finalize_plan(response.value, context)

        logger.info(f"Plan: '{plan.title}' [{plan.category_slug}] with {len(plan.sections)} sections")
        _emit(self.job_id, "editor", "completed", f"Planned {len(plan.sections)} sections",
              {"sections": len(plan.sections), "category": plan.category_slug})
        return plan

    async def revise(self, context: GameArticleContext, scout: ScoutOutput, previous_plan: ArticlePlan,
                     feedback: Sequence[ValidationIssue]) -> ArticlePlan:
        """Regenerates the plan with review feedback, keeping the previous plan's shape as a reference."""
        return await self.run(context, scout, feedback, previous_plan)
