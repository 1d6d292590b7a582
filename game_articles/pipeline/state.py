from typing import Any, List, Optional, TypedDict

from game_articles.pipeline.structured_data import (
    ArticlePlan,
    GameArticleContext,
    ScoutOutput,
    SectionDraft,
    ValidationIssue,
)


class ArticleState(TypedDict, total=False):
    # input
    job_id: str
    context: GameArticleContext

    # research & plan
    scout: Optional[ScoutOutput]
    plan: Optional[ArticlePlan]

    # writing
    sections: List[SectionDraft]
    specialist_issues: List[ValidationIssue]
    markdown: str
    sources: List[str]

    # review & validation
    review: Optional[Any]  # ReviewResult
    validation_issues: List[ValidationIssue]

    # revision loop control
    revision_count: int
    revision_target: Optional[str]
    revision_feedback: List[ValidationIssue]
