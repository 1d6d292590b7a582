import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from game_articles.config import get_model_pricing
from game_articles.pipeline.intent import normalize_category_slug

Confidence = Literal["high", "medium", "low"]
SearchCategory = Literal[
    "overview", "category-specific", "tips", "recent", "meta", "section-specific"
]
Severity = Literal["error", "warning"]

# ============================================================================
# 1. INPUT
# ============================================================================

class CategoryHint(BaseModel):
    """Per-category system prompt override supplied by the caller."""
    model_config = ConfigDict(frozen=True)

    slug: str
    system_prompt: Optional[str] = None


class GameArticleContext(BaseModel):
    """Everything known about the game before research starts. Read-only."""
    model_config = ConfigDict(frozen=True)

    game_name: str
    game_slug: Optional[str] = None
    release_date: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    developer: Optional[str] = None
    publisher: Optional[str] = None
    igdb_description: Optional[str] = None
    instruction: Optional[str] = None
    category_hints: List[CategoryHint] = Field(default_factory=list)
    category_hint: Optional[str] = None

    def hint_for(self, category_slug: str) -> Optional[str]:
        for hint in self.category_hints:
            if normalize_category_slug(hint.slug) == category_slug and hint.system_prompt:
                return hint.system_prompt
        return None

# ============================================================================
# 2. RESEARCH
# ============================================================================

class SearchResultItem(BaseModel):
    """One hit from a search provider."""
    model_config = ConfigDict(frozen=True)

    title: str = ""
    url: str
    content: str = ""
    score: float = 0.0
    quality_score: Optional[float] = Field(default=None, ge=0, le=100)
    relevance_score: Optional[float] = Field(default=None, ge=0, le=100)
    published_at: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """One provider call: its hits and the provider's short answer, if any."""
    results: List[SearchResultItem] = Field(default_factory=list)
    answer: str = ""


class CategorizedSearchResult(BaseModel):
    """The outcome of one executed query."""
    model_config = ConfigDict(frozen=True)

    query: str
    category: SearchCategory
    results: List[SearchResultItem] = Field(default_factory=list)
    answer: str = ""
    timestamp: float = Field(default_factory=time.time)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def estimate_cost(self, model: str) -> Optional[float]:
        """Estimated USD cost, or None when the model has no known price."""
        pricing = get_model_pricing(model)
        if pricing is None:
            return None
        input_price, output_price = pricing
        return round(
            (self.input_tokens * input_price + self.output_tokens * output_price) / 1_000_000, 6
        )


class Briefing(BaseModel):
    overview: str = ""
    category_insights: str = ""
    recent_developments: str = ""
    full_context: str = ""


class QueryStats(BaseModel):
    executed: int = 0
    successful: int = 0
    empty: int = 0
    failed: int = 0


@dataclass
class ScoutOutput:
    """Research handed from the Scout to every later stage."""
    briefing: Briefing
    pool: Any  # ResearchPool, kept untyped to avoid an import cycle
    source_urls: List[str]
    token_usage: TokenUsage
    confidence: Confidence
    query_stats: QueryStats = field(default_factory=QueryStats)
    warnings: List[str] = field(default_factory=list)

# ============================================================================
# 3. PLAN
# ============================================================================

class SafetySettings(BaseModel):
    no_scores_unless_review: bool = True
    no_prices: bool = True


class ArticleSectionPlan(BaseModel):
    headline: str = Field(description="H2 headline for the section, without '#'.")
    goal: str = Field(description="What the reader should get out of this section.")
    research_queries: List[str] = Field(
        default_factory=list,
        description="1-6 search queries that would surface facts for this section.",
    )
    must_cover: List[str] = Field(
        default_factory=list,
        description="Specific facts, names or topics this section is required to address.",
    )

    @field_validator("headline")
    @classmethod
    def _clean_headline(cls, v: str) -> str:
        v = v.strip().lstrip("#").strip()
        if not v:
            raise ValueError("headline must not be empty")
        return v

    @field_validator("research_queries")
    @classmethod
    def _dedupe_queries(cls, v: List[str]) -> List[str]:
        seen = set()
        out = []
        for q in v:
            key = " ".join(q.lower().split())
            if key and key not in seen:
                seen.add(key)
                out.append(q.strip())
        return out[:6]

    @field_validator("must_cover")
    @classmethod
    def _clean_must_cover(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]


class ArticlePlan(BaseModel):
    """The Editor's blueprint for the article."""
    title: str = Field(description="Article title, 10-100 characters.")
    excerpt: str = Field(description="Meta description, 120-160 characters.")
    category_slug: str = Field(description="One of: news, reviews, guides, lists.")
    tags: List[str] = Field(default_factory=list, description="Up to 10 short topic tags.")
    sections: List[ArticleSectionPlan] = Field(min_length=1, description="3-12 ordered sections.")
    required_elements: List[str] = Field(
        default_factory=list,
        description="Article-wide checklist of elements the article must contain.",
    )
    safety: SafetySettings = Field(default_factory=SafetySettings)

    @field_validator("category_slug", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> str:
        return normalize_category_slug(v if isinstance(v, str) else None)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, v: List[str]) -> List[str]:
        seen = set()
        out = []
        for tag in v:
            t = tag.strip()
            if t and t.lower() not in seen:
                seen.add(t.lower())
                out.append(t)
        return out[:10]

    @field_validator("safety", mode="before")
    @classmethod
    def _default_safety(cls, v: Any) -> Any:
        return v if v is not None else SafetySettings()

# ============================================================================
# 4. REVIEW
# ============================================================================

class ReviewIssue(BaseModel):
    severity: Literal["critical", "major", "minor"] = Field(description="critical, major, or minor")
    category: str = Field(default="accuracy", description="accuracy, completeness, structure, style, or safety")
    location: str = Field(default="", description="Section headline or a short quote pinpointing the problem.")
    message: str
    suggestion: str = ""
    fix_strategy: Literal["direct_edit", "expand", "regenerate"] = "direct_edit"
    fix_instruction: str = Field(default="", description="A concrete instruction the writer can follow.")

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class ReviewReport(BaseModel):
    """The Reviewer's audit of the assembled draft."""
    approved: bool
    issues: List[ReviewIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

# ============================================================================
# 5. DRAFT
# ============================================================================

class SourceUsageItem(BaseModel):
    url: str
    title: str = ""
    content_type: Literal["full", "summary", "content"] = "content"
    phase: Literal["scout", "specialist"] = "scout"
    section: Optional[str] = None
    query: str = ""
    cited: bool = False


class SectionDraft(BaseModel):
    index: int
    headline: str
    markdown: str
    source_usage: List[SourceUsageItem] = Field(default_factory=list)
    allowed_urls: List[str] = Field(default_factory=list)
    discarded_images: int = 0
    discarded_links: int = 0
    thin_research: bool = False


class ValidationIssue(BaseModel):
    severity: Severity
    message: str
    location: Optional[str] = None
    source: Literal["validator", "reviewer", "pipeline"] = "validator"
    code: Optional[str] = None


class ExtractedImage(BaseModel):
    url: str
    alt: str = ""
    source_url: Optional[str] = None


class ImageExtractionResult(BaseModel):
    images: List[ExtractedImage] = Field(default_factory=list)
    pre_extracted_count: int = 0
    parsed_count: int = 0
    discarded_count: int = 0


class GameArticleDraft(BaseModel):
    title: str
    excerpt: str
    category_slug: str
    tags: List[str]
    markdown: str
    sections: List[SectionDraft]
    sources: List[str]
    plan: ArticlePlan
    issues: List[ValidationIssue] = Field(default_factory=list)
    confidence: Confidence = "medium"
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    images: ImageExtractionResult = Field(default_factory=ImageExtractionResult)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]
