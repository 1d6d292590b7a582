import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from game_articles.config import PipelineConfig
from game_articles.errors import ArticleGenerationError, ErrorCode, LLMSchemaError
from game_articles.pipeline.markdown_utils import truncate
from game_articles.pipeline.research_pool import ResearchPool
from game_articles.pipeline.strategies import get_strategy
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    Briefing,
    ReviewIssue,
    ReviewReport,
    TokenUsage,
    ValidationIssue,
)
from game_articles.pipeline.templates import REVIEWER_SYSTEM_PROMPT, REVIEWER_USER_PROMPT
from .utils import _emit, call_llm, logger

VAGUE_LOCATIONS = {"", "article", "the article", "content", "general", "overall", "throughout", "various", "n/a"}

DEFAULT_FIX_INSTRUCTIONS = {
    "direct_edit": "Correct the flagged text so it matches the research.",
    "expand": "Add the missing detail from the research to this section.",
    "regenerate": "Rewrite this section so it covers the plan's checklist accurately.",
}


@dataclass
class ReviewResult:
    approved: bool
    recommendation: str = "accept"
    issues: List[ValidationIssue] = field(default_factory=list)
    raw_issues: List[ReviewIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    skipped: bool = False

    @property
    def needs_revision(self) -> bool:
        return self.recommendation == "revise"


def filter_valid_issues(issues: Sequence[ReviewIssue]) -> List[ReviewIssue]:
    """Drops issues nobody could act on and fills in missing fix instructions."""
    valid = []
    for issue in issues:
        if not issue.message.strip():
            continue
        if issue.location.strip().lower() in VAGUE_LOCATIONS:
            logger.debug(f"Dropping review issue with vague location: {issue.message[:80]}")
            continue
        if not issue.fix_instruction.strip():
            fallback = issue.suggestion.strip() or DEFAULT_FIX_INSTRUCTIONS[issue.fix_strategy]
            issue = issue.model_copy(update={"fix_instruction": fallback})
        valid.append(issue)
    return valid


def count_issues_by_severity(issues: Sequence[ReviewIssue]) -> Dict[str, int]:
    counts = {"critical": 0, "major": 0, "minor": 0}
    for issue in issues:
        counts[issue.severity] += 1
    return counts


def recommend(issues: Sequence[ReviewIssue], major_threshold: int) -> str:
    counts = count_issues_by_severity(issues)
    if counts["critical"] or counts["major"] >= major_threshold:
        return "revise"
    return "accept"


def to_validation_issue(issue: ReviewIssue) -> ValidationIssue:
    message = f"[{issue.category}] {issue.message}"
    if issue.fix_instruction:
        message += f" Fix: {issue.fix_instruction}"
    return ValidationIssue(
        severity="warning",
        message=message,
        location=issue.location,
        source="reviewer",
        code=f"REVIEW_{issue.severity.upper()}",
    )


def build_plan_checklist(plan: ArticlePlan) -> str:
    lines = []
    for i, section in enumerate(plan.sections, 1):
        line = f"{i}. {section.headline}"
        if section.must_cover:
            line += f" (must cover: {'; '.join(section.must_cover)})"
        lines.append(line)
    if plan.required_elements:
        lines.append(f"Required elements: {', '.join(plan.required_elements)}")
    return "\n".join(lines)


def build_research_summary(briefing: Briefing, pool: ResearchPool, max_length: int = 4000) -> str:
    parts = []
    if briefing.overview:
        parts.append(f"Overview: {briefing.overview}")
    if briefing.category_insights:
        parts.append(f"Category insights: {briefing.category_insights}")
    if briefing.recent_developments:
        parts.append(f"Recent: {briefing.recent_developments}")
    for ranked in pool.top_sources_per_query(10):
        snippet = truncate(" ".join(ranked.item.content.split()), 300)
        parts.append(f"- {ranked.item.title or ranked.item.url} ({ranked.item.url}): {snippet}")
    return truncate("\n".join(parts), max_length)


class Reviewer:
    """Audits the assembled draft. Its output is advisory and never blocks the draft."""

    def __init__(self, llm, config: PipelineConfig, cancel_event: Optional[asyncio.Event] = None,
                 job_id: str = ""):
        self.llm = llm
        self.config = config
        self.cancel_event = cancel_event
        self.job_id = job_id
        self.token_usage = TokenUsage()

    async def run(self, plan: ArticlePlan, markdown: str, research_summary: str) -> ReviewResult:
        cfg = self.config.reviewer
        strategy = get_strategy(plan.category_slug)
        _emit(self.job_id, "reviewer", "started", "Reviewing draft against plan and research...")
        logger.info("🕵️ REVIEWING ---")

        system = REVIEWER_SYSTEM_PROMPT.format(label=strategy.label, criteria=strategy.reviewer_criteria)
        user = REVIEWER_USER_PROMPT.format(
            label=strategy.label,
            title=plan.title,
            section_count=len(plan.sections),
            plan_checklist=build_plan_checklist(plan),
            content=truncate(markdown, cfg.max_content_length),
            research_summary=research_summary or "(no research summary)",
            checks=strategy.reviewer_checks,
        )

        async def _call(prompt: str):
            response = await self.llm.generate_structured(
                system, prompt, ReviewReport, temperature=cfg.temperature
            )
            if not isinstance(response.value, ReviewReport):
                try:
                    response.value = ReviewReport.model_validate(response.value)
                except ValidationError as e:
                    raise LLMSchemaError(str(e)) from e
            return response

        try:
            response = await call_llm(
                _call,
                user,
                stage="reviewer",
                code=ErrorCode.REVIEWER_FAILED,
                timeout_s=self.config.timeouts.llm_s,
                cancel_event=self.cancel_event,
            )
        except ArticleGenerationError as e:
            if e.code == ErrorCode.CANCELLED:
                raise
            logger.warning(f"Review skipped: {e}")
            _emit(self.job_id, "reviewer", "error", f"Review skipped: {e.message}")
            return ReviewResult(
                approved=False,
                issues=[ValidationIssue(
                    severity="warning",
                    message=f"Review could not be completed: {e.message}",
                    source="reviewer",
                    code="REVIEW_SKIPPED",
                )],
                skipped=True,
            )

        self.token_usage = self.token_usage + response.usage
        report: ReviewReport = response.value
        issues = filter_valid_issues(report.issues)
        counts = count_issues_by_severity(issues)
        recommendation = recommend(issues, cfg.major_issues_for_revision)

        logger.info(
            f"📊 Review: approved={report.approved} | critical={counts['critical']} "
            f"major={counts['major']} minor={counts['minor']} | {recommendation}"
        )
        _emit(self.job_id, "reviewer", "completed", f"Review: {recommendation} ({len(issues)} issues)",
              {"approved": report.approved, "recommendation": recommendation, **counts})
        return ReviewResult(
            approved=report.approved and recommendation == "accept",
            recommendation=recommendation,
            issues=[to_validation_issue(i) for i in issues],
            raw_issues=issues,
            suggestions=list(report.suggestions),
            token_usage=response.usage,
        )
