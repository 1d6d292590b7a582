"""
Graph nodes for the article pipeline.

Each node reads what it needs from ArticleState and returns a partial
update. The agents themselves live on `PipelineNodes` so a run's LLM,
search provider, cancellation event and progress callback are shared by
every node without travelling through the graph state.
"""

import asyncio
from typing import List, Optional, Tuple

from langgraph.graph import END

from game_articles.config import PipelineConfig
from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.pipeline.agents import Editor, Reviewer, Scout, Specialist
from game_articles.pipeline.agents.reviewer import ReviewResult, build_research_summary, to_validation_issue
from game_articles.pipeline.agents.specialist import assemble_markdown, collect_sources, match_section
from game_articles.pipeline.agents.utils import ProgressReporter, _emit, _job, check_cancelled, logger
from game_articles.pipeline.state import ArticleState
from game_articles.pipeline.structured_data import ArticlePlan, SectionDraft, ValidationIssue
from game_articles.validators import check_placeholders, check_review_scores, validate_draft

EDITOR = "editor"
SPECIALIST = "specialist"

PLAN_LEVEL_CODES = {"SECTION_ORDER", "TITLE_LENGTH"}


def locate_issue(issue: ValidationIssue, plan: ArticlePlan, sections: List[SectionDraft]) -> List[ValidationIssue]:
    """Pins a document-wide content error to the sections that trigger it."""
    if match_section(issue.location, plan) is not None:
        return [issue]
    located = []
    for section in sections:
        if issue.code == "PLACEHOLDER":
            hit = check_placeholders(section.markdown)
        elif issue.code == "REVIEW_SCORE":
            hit = check_review_scores(plan, section.markdown)
        else:
            hit = []
        if hit:
            located.append(issue.model_copy(update={"location": section.headline}))
    return located


def plan_revision(
    plan: ArticlePlan,
    sections: List[SectionDraft],
    validation_issues: List[ValidationIssue],
    review: Optional[ReviewResult],
) -> Tuple[Optional[str], List[ValidationIssue]]:
    """
    Decides whether another pass is worth it and who should make it.

    Validation errors and, when the Reviewer asks for a revision, its
    critical and major findings are the actionable issues. Issues that can
    be pinned to sections go back to the Specialist; anything else (or a
    plan-level problem) goes back to the Editor.
    """
    actionable = [i for i in validation_issues if i.severity == "error"]
    if review is not None and review.needs_revision:
        actionable.extend(to_validation_issue(r) for r in review.raw_issues if r.severity in ("critical", "major"))
    if not actionable:
        return None, []

    if any(i.code in PLAN_LEVEL_CODES for i in actionable):
        return EDITOR, actionable

    located: List[ValidationIssue] = []
    for issue in actionable:
        located.extend(locate_issue(issue, plan, sections))
    if located:
        return SPECIALIST, located
    return EDITOR, actionable


class PipelineNodes:
    def __init__(self, scout: Scout, editor: Editor, specialist: Specialist, reviewer: Reviewer,
                 config: PipelineConfig, progress: ProgressReporter,
                 cancel_event: Optional[asyncio.Event] = None, parallel_sections: bool = False):
        self.scout = scout
        self.editor = editor
        self.specialist = specialist
        self.reviewer = reviewer
        self.config = config
        self.progress = progress
        self.cancel_event = cancel_event
        self.parallel_sections = parallel_sections

    async def scout_node(self, state: ArticleState) -> dict:
        await self.progress("scouting", 5, f"Researching {state['context'].game_name}")
        try:
            output = await self.scout.run(state["context"])
        except ArticleGenerationError:
            raise
        except Exception as e:
            raise ArticleGenerationError(f"Scout failed: {e}", ErrorCode.SCOUT_FAILED, "scout", cause=e) from e
        return {"scout": output}

    async def editor_node(self, state: ArticleState) -> dict:
        check_cancelled(self.cancel_event, "editor")
        feedback = state.get("revision_feedback") or []
        previous = state.get("plan")
        if feedback and previous is not None:
            await self.progress("planning", 25, "Revising the article plan")
            plan = await self.editor.revise(state["context"], state["scout"], previous, feedback)
        else:
            await self.progress("planning", 25, "Planning the article")
            plan = await self.editor.run(state["context"], state["scout"])
        # a new plan invalidates every section written for the old one
        return {"plan": plan, "sections": [], "specialist_issues": []}

    async def specialist_node(self, state: ArticleState) -> dict:
        check_cancelled(self.cancel_event, "specialist")
        plan, scout, context = state["plan"], state["scout"], state["context"]
        existing = state.get("sections") or []

        if existing and state.get("revision_target") == SPECIALIST:
            result = await self.specialist.revise(plan, existing, scout, context, state.get("revision_feedback") or [])
        else:
            result = await self.specialist.run(plan, scout, context, parallel=self.parallel_sections)

        sources = collect_sources(result.sections, scout.source_urls, self.config.specialist.max_sources)
        markdown = assemble_markdown(plan, result.sections, sources)
        return {
            "sections": result.sections,
            "specialist_issues": result.issues,
            "sources": sources,
            "markdown": markdown,
        }

    async def reviewer_node(self, state: ArticleState) -> dict:
        check_cancelled(self.cancel_event, "reviewer")
        await self.progress("reviewing", 85, "Reviewing the draft")
        scout = state["scout"]
        summary = build_research_summary(scout.briefing, scout.pool, self.config.reviewer.research_summary_length)
        review = await self.reviewer.run(state["plan"], state["markdown"], summary)
        return {"review": review}

    async def validate_node(self, state: ArticleState) -> dict:
        check_cancelled(self.cancel_event, "validation")
        await self.progress("validating", 95, "Validating the draft")
        plan = state["plan"]
        issues = validate_draft(plan, state["markdown"], sources=state.get("sources") or [])
        errors = [i for i in issues if i.severity == "error"]
        logger.info(f"✅ VALIDATION --- {len(errors)} errors, {len(issues) - len(errors)} warnings")
        _emit(_job(state), "validator", "completed",
              f"{len(errors)} errors, {len(issues) - len(errors)} warnings",
              {"errors": len(errors), "warnings": len(issues) - len(errors)})

        update = {"validation_issues": issues, "revision_target": None, "revision_feedback": []}
        count = state.get("revision_count", 0)
        if count >= self.config.max_revisions:
            return update

        target, feedback = plan_revision(plan, state.get("sections") or [], issues, state.get("review"))
        if target is not None:
            logger.info(f"🔄 DECISION: revise via {target} ({len(feedback)} issues, pass {count + 1})")
            update.update(revision_target=target, revision_feedback=feedback, revision_count=count + 1)
        return update

    @staticmethod
    def route_after_validation(state: ArticleState) -> str:
        target = state.get("revision_target")
        if target in (EDITOR, SPECIALIST):
            return target
        return END
