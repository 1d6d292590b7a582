"""Multi-agent article generation for a video game wiki."""

from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.main import (
    GenerationOptions,
    generate_game_article_draft,
    generate_game_article_draft_sync,
)
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    CategoryHint,
    GameArticleContext,
    GameArticleDraft,
    ValidationIssue,
)

__all__ = [
    "ArticleGenerationError",
    "ArticlePlan",
    "CategoryHint",
    "ErrorCode",
    "GameArticleContext",
    "GameArticleDraft",
    "GenerationOptions",
    "ValidationIssue",
    "generate_game_article_draft",
    "generate_game_article_draft_sync",
]
