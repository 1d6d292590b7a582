"""
Draft Validators
Deterministic checks run on every assembled draft.

Nothing here calls a model. Each check returns a list of ValidationIssue;
errors mark a draft as unpublishable, warnings are advisory. Only
`validate_game_article_context` raises, because a bad input means there is
nothing to generate.
"""

import re
from collections import Counter
from typing import Iterable, List, Sequence, Set, Tuple
from urllib.parse import urlparse

from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.pipeline.image_extractor import filter_markdown_images
from game_articles.pipeline.intent import ArticleCategory, normalize_category_slug
from game_articles.pipeline.markdown_utils import (
    get_content_h2_sections,
    parse_h2_sections,
    strip_sources_section,
)
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    GameArticleContext,
    ImageExtractionResult,
    ValidationIssue,
)

# ============================================================================
# CONSTANTS
# ============================================================================

TITLE_MIN_LENGTH = 10
TITLE_MAX_LENGTH = 100
EXCERPT_MIN_LENGTH = 120
EXCERPT_MAX_LENGTH = 160
MIN_SECTIONS = 3
MAX_SECTIONS = 12
MAX_TAGS = 10
MIN_SECTION_CHARS = 100
MAX_OPENER_REPEATS = 6

AI_CLICHES: Tuple[Tuple[str, str], ...] = (
    ("in conclusion", "conclusion cliché"),
    ("in the ever-evolving world of", "stock opener"),
    ("let's dive into", "conversational filler"),
    ("without further ado", "unnecessary preamble"),
    ("it's worth noting", "hedging phrase"),
    ("game-changing", "marketing hyperbole"),
    ("truly revolutionary", "marketing hyperbole"),
    ("seamlessly", "overused modifier"),
    ("unparalleled", "marketing hyperbole"),
    ("delve into", "academic formality"),
    ("utilize", "unnecessarily formal"),
    ("at the end of the day", "filler phrase"),
    ("needless to say", "redundant phrase"),
)

PLACEHOLDER_PATTERNS: Tuple[str, ...] = ("TODO", "TBD", "PLACEHOLDER", "FIXME", "[INSERT", "XXX", "lorem ipsum")

ALLOWED_OPENER_REPEATS = {
    "the", "a", "an", "this", "that", "it", "and", "but", "or",
    "if", "as", "in", "on", "for", "to", "with", "you", "your",
}

_SCORE_PATTERNS = (
    re.compile(r"(?<![\w./])\d{1,3}(?:\.\d)?\s*/\s*(?:5|10|100)(?![\w/]|\.\d)"),
    re.compile(r"\b(?:score|rating|rated)\s*(?:of|:|-)?\s*\d{1,3}(?:\.\d)?\b", re.IGNORECASE),
)
_CURRENCY = re.compile(r"[$€£¥]\s*\d+|\b\d+(?:[.,]\d{2})?\s*(?:USD|EUR|GBP|JPY)\b")
_MARKDOWN_URL = re.compile(r"\]\([^)]*\)")


def _placeholder_regex(placeholder: str) -> "re.Pattern[str]":
    escaped = re.escape(placeholder)
    # word boundaries only make sense next to word characters
    prefix = r"\b" if placeholder[0].isalnum() else ""
    suffix = r"\b" if placeholder[-1].isalnum() else ""
    return re.compile(prefix + escaped + suffix, re.IGNORECASE)


_PLACEHOLDER_REGEXES = [(p, _placeholder_regex(p)) for p in PLACEHOLDER_PATTERNS]


def _issue(severity: str, message: str, location: str = None, code: str = None) -> ValidationIssue:
    return ValidationIssue(severity=severity, message=message, location=location, source="validator", code=code)


def _prose(markdown: str) -> str:
    """Article text without the source list or link targets."""
    return _MARKDOWN_URL.sub("]", strip_sources_section(markdown or ""))

# ============================================================================
# 1. INPUT
# ============================================================================

def validate_game_article_context(context: GameArticleContext) -> None:
    if context is None or not (context.game_name or "").strip():
        raise ArticleGenerationError(
            "GameArticleContext.game_name is required and cannot be empty",
            ErrorCode.CONTEXT_INVALID,
            "validation",
        )
    for hint in context.category_hints:
        if not hint.slug.strip():
            raise ArticleGenerationError(
                "Each category hint must have a slug", ErrorCode.CONTEXT_INVALID, "validation"
            )

# ============================================================================
# 2. STRUCTURE
# ============================================================================

def check_structure(plan: ArticlePlan, markdown: str) -> List[ValidationIssue]:
    """Every planned headline appears exactly once as an H2, in plan order."""
    issues: List[ValidationIssue] = []
    found = [s.headline.strip().lower() for s in get_content_h2_sections(markdown)]
    planned = [s.headline.strip().lower() for s in plan.sections]

    positions = []
    for section, key in zip(plan.sections, planned):
        count = found.count(key)
        if count == 0:
            issues.append(_issue("error", f"Planned section is missing: '{section.headline}'",
                                 section.headline, "MISSING_SECTION"))
        elif count > 1:
            issues.append(_issue("error", f"Section appears {count} times: '{section.headline}'",
                                 section.headline, "DUPLICATE_SECTION"))
        else:
            positions.append(found.index(key))

    if positions != sorted(positions):
        issues.append(_issue("error", "Sections are not in the planned order", code="SECTION_ORDER"))

    for headline in found:
        if headline not in planned:
            issues.append(_issue("warning", f"Unplanned section in draft: '{headline}'", headline, "EXTRA_SECTION"))

    for section in get_content_h2_sections(markdown):
        length = len(section.content.strip())
        if length < MIN_SECTION_CHARS:
            issues.append(_issue("warning", f"Section is very short ({length} characters)",
                                 section.headline, "SHORT_SECTION"))
    return issues


def check_draft_metadata(title: str, excerpt: str, tags: Sequence[str], sources: Sequence[str]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not title or len(title) < TITLE_MIN_LENGTH:
        issues.append(_issue("error", "Title is too short or missing", "title", "TITLE_LENGTH"))
    elif len(title) > TITLE_MAX_LENGTH:
        issues.append(_issue("warning", f"Title is quite long: {len(title)} characters", "title", "TITLE_LENGTH"))

    if len(excerpt) < EXCERPT_MIN_LENGTH:
        issues.append(_issue("warning", f"Excerpt too short: {len(excerpt)} characters (minimum {EXCERPT_MIN_LENGTH})",
                             "excerpt", "EXCERPT_LENGTH"))
    elif len(excerpt) > EXCERPT_MAX_LENGTH:
        issues.append(_issue("warning", f"Excerpt too long: {len(excerpt)} characters (maximum {EXCERPT_MAX_LENGTH})",
                             "excerpt", "EXCERPT_LENGTH"))

    if not tags:
        issues.append(_issue("warning", "No tags were generated", "tags", "NO_TAGS"))
    elif len(tags) > MAX_TAGS:
        issues.append(_issue("error", f"Too many tags: {len(tags)} (maximum {MAX_TAGS})", "tags", "TOO_MANY_TAGS"))

    if not sources:
        issues.append(_issue("warning", "No sources were collected", "sources", "NO_SOURCES"))
    for url in sources:
        if urlparse(url).scheme not in ("http", "https"):
            issues.append(_issue("error", f"Invalid source URL: {url}", "sources", "INVALID_SOURCE"))
    return issues


def check_plan(plan: ArticlePlan) -> List[ValidationIssue]:
    """Plan constraints the schema tolerates but a good plan should meet."""
    issues: List[ValidationIssue] = []
    n = len(plan.sections)
    if n < MIN_SECTIONS or n > MAX_SECTIONS:
        issues.append(_issue("warning", f"Plan has {n} sections (expected {MIN_SECTIONS}-{MAX_SECTIONS})",
                             "plan", "PLAN_SECTION_COUNT"))
    seen: Set[str] = set()
    for section in plan.sections:
        key = section.headline.lower()
        if key in seen:
            issues.append(_issue("warning", f"Plan repeats headline '{section.headline}'",
                                 section.headline, "PLAN_DUPLICATE_HEADLINE"))
        seen.add(key)
        if not section.research_queries:
            issues.append(_issue("warning", "Section has no research queries", section.headline, "PLAN_NO_QUERIES"))
        if not section.must_cover:
            issues.append(_issue("warning", "Section has an empty must-cover list", section.headline, "PLAN_NO_MUST_COVER"))
    return issues

# ============================================================================
# 3. CONTENT
# ============================================================================

def check_placeholders(markdown: str) -> List[ValidationIssue]:
    text = _prose(markdown)
    return [
        _issue("error", f"Article contains placeholder text: {placeholder}", code="PLACEHOLDER")
        for placeholder, regex in _PLACEHOLDER_REGEXES
        if regex.search(text)
    ]


def check_cliches(markdown: str) -> List[ValidationIssue]:
    text = _prose(markdown).lower()
    found = [f'"{phrase}" ({context})' for phrase, context in AI_CLICHES if phrase in text]
    if not found:
        return []
    return [_issue("warning", f"Article contains {len(found)} AI cliché(s): {', '.join(found)}", code="CLICHE")]


def find_review_scores(markdown: str) -> List[str]:
    text = _prose(markdown)
    hits: List[str] = []
    for pattern in _SCORE_PATTERNS:
        hits.extend(m.group(0).strip() for m in pattern.finditer(text))
    return hits


def check_review_scores(plan: ArticlePlan, markdown: str) -> List[ValidationIssue]:
    """Numeric scores are reserved for review articles."""
    if normalize_category_slug(plan.category_slug) == ArticleCategory.REVIEWS.value:
        return []
    if not plan.safety.no_scores_unless_review:
        return []
    hits = find_review_scores(markdown)
    if not hits:
        return []
    return [_issue("error", f"Numeric review score in a {plan.category_slug} article: {', '.join(hits[:5])}",
                   code="REVIEW_SCORE")]


def check_prices(plan: ArticlePlan, markdown: str) -> List[ValidationIssue]:
    if not plan.safety.no_prices:
        return []
    if _CURRENCY.search(_prose(markdown)):
        return [_issue("warning", "Article contains pricing information or currency figures", code="PRICE")]
    return []


def check_repetitive_openers(markdown: str) -> List[ValidationIssue]:
    text = "\n".join(s.content for s in parse_h2_sections(_prose(markdown)))
    openers = []
    for sentence in re.split(r"[.!?]+", text):
        words = sentence.strip().split()
        if words:
            word = words[0].strip("*_\"'").lower()
            if len(word) > 2:
                openers.append(word)
    repeated = [
        f'"{word}" ({count}x)'
        for word, count in Counter(openers).items()
        if count > MAX_OPENER_REPEATS and word not in ALLOWED_OPENER_REPEATS
    ]
    if not repeated:
        return []
    return [_issue("warning", f"Repetitive sentence starts detected: {', '.join(repeated)}", code="REPETITIVE_OPENERS")]


def check_code_fences(markdown: str) -> List[ValidationIssue]:
    if "```" in _prose(markdown):
        return [_issue("warning", "Article contains code fences", code="CODE_FENCE")]
    return []


def strip_unlisted_images(markdown: str, allowlist: Iterable[str]) -> Tuple[str, ImageExtractionResult]:
    """Removes markdown images whose URL is not in `allowlist`."""
    return filter_markdown_images(markdown, set(allowlist))

# ============================================================================
# 4. AGGREGATE
# ============================================================================

def validate_draft(
    plan: ArticlePlan,
    markdown: str,
    title: str = None,
    excerpt: str = None,
    tags: Sequence[str] = None,
    sources: Sequence[str] = (),
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    issues.extend(check_draft_metadata(
        title if title is not None else plan.title,
        excerpt if excerpt is not None else plan.excerpt,
        tags if tags is not None else plan.tags,
        sources,
    ))
    issues.extend(check_plan(plan))
    issues.extend(check_structure(plan, markdown))
    issues.extend(check_placeholders(markdown))
    issues.extend(check_review_scores(plan, markdown))
    issues.extend(check_prices(plan, markdown))
    issues.extend(check_cliches(markdown))
    issues.extend(check_repetitive_openers(markdown))
    issues.extend(check_code_fences(markdown))
    return issues


def get_errors(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.severity == "error"]


def get_warnings(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.severity == "warning"]
