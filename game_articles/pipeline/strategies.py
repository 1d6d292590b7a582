"""
Per-category behaviour for every agent.

Each ArticleCategory maps to exactly one CategoryStrategy. The registry is
built once at import time; agents ask for `get_strategy(category)` instead
of switching on strings.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from game_articles.config import ScoutConfig
from game_articles.pipeline.intent import ArticleCategory, normalize_category_slug
from game_articles.pipeline.structured_data import GameArticleContext

# Bucket names used for briefing synthesis and confidence scoring.
OVERVIEW_BUCKET = ("overview",)
CATEGORY_BUCKET = ("category-specific", "tips")
SUPPLEMENTARY_BUCKET = ("recent", "meta")

MAX_SLOTS = 8


@dataclass(frozen=True)
class QuerySlot:
    """One configured search query."""
    query: str
    category: str
    max_results: int = 5
    search_depth: str = "basic"
    domain_filters: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryStrategy:
    category: ArticleCategory
    label: str
    build_slots: Callable[[GameArticleContext, ScoutConfig, int], List[QuerySlot]]
    category_briefing_focus: str
    recent_briefing_focus: str
    editor_guidance: str
    tone_guide: str
    reviewer_criteria: str
    reviewer_checks: str


def _quoted(context: GameArticleContext) -> str:
    return f'"{context.game_name}"'


def _strip_words(text: str, pattern: str) -> str:
    return " ".join(re.sub(pattern, " ", text, flags=re.IGNORECASE).split())


def _overview(query: str, cfg: ScoutConfig) -> QuerySlot:
    return QuerySlot(query, "overview", cfg.overview_max_results, cfg.overview_depth)


def _category(query: str, cfg: ScoutConfig, domains: Tuple[str, ...] = ()) -> QuerySlot:
    return QuerySlot(query, "category-specific", cfg.category_max_results, cfg.category_depth, domains)


def _supplementary(query: str, category: str, cfg: ScoutConfig) -> QuerySlot:
    return QuerySlot(query, category, cfg.recent_max_results, cfg.recent_depth)

# ============================================================================
# QUERY SLOT BUILDERS
# ============================================================================

def _guide_slots(context: GameArticleContext, cfg: ScoutConfig, year: int) -> List[QuerySlot]:
    game = _quoted(context)
    slots = [
        _overview(f"{game} gameplay mechanics guide walkthrough tutorial", cfg),
        QuerySlot(f"{game} beginner guide tips tricks", "tips", cfg.category_max_results, cfg.category_depth),
        _category(f"{game} full walkthrough strategy", cfg, cfg.preferred_domains),
        _category(f"{game} how to play mechanics explained", cfg),
    ]
    if context.instruction:
        cleaned = _strip_words(context.instruction, r"\b(guide|walkthrough|how to)\b")
        if cleaned:
            slots.append(_category(f"{game} {cleaned} guide steps", cfg))
            slots.append(_category(f"{game} {cleaned} location solution", cfg))
    if any("rpg" in g.lower() for g in context.genres):
        slots.append(_category(f"{game} best build stats leveling", cfg))
    slots.append(_supplementary(f"{game} latest patch notes mechanics changes {year}", "recent", cfg))
    return slots


def _review_slots(context: GameArticleContext, cfg: ScoutConfig, year: int) -> List[QuerySlot]:
    game = _quoted(context)
    slots = [
        _overview(f"{game} review analysis critique pros cons", cfg),
        _category(f"{game} review score verdict", cfg),
        _category(f"{game} performance technical review bugs", cfg),
        _category(f"{game} worth it review opinion", cfg),
        _category(f"{game} player reviews community reception", cfg),
    ]
    if context.instruction:
        slots.append(_category(f"{game} {context.instruction.strip()} review", cfg))
    slots.append(_supplementary(f"{game} current state review {year} after updates", "recent", cfg))
    return slots


def _news_slots(context: GameArticleContext, cfg: ScoutConfig, year: int) -> List[QuerySlot]:
    game = _quoted(context)
    topic = _strip_words(context.instruction or "", r"\b(news|article|write|about)\b")
    category_query = f"{game} {topic} news details" if topic else f"{game} announcement details trailer"
    return [
        _overview(f"{game} latest news announcement official {year}", cfg),
        _category(category_query, cfg),
        _category(f"{game} developer statement interview {year}", cfg),
        _supplementary(f"{game} news last week {year}", "recent", cfg),
    ]


def _list_slots(context: GameArticleContext, cfg: ScoutConfig, year: int) -> List[QuerySlot]:
    game = _quoted(context)
    slots = [
        _overview(f"{game} best top ranked tier list", cfg),
        _category(f"{game} best items ranking", cfg),
        _category(f"{game} comparison guide", cfg),
        _supplementary(f"{game} meta tier list", "meta", cfg),
    ]
    if context.instruction:
        topic = _strip_words(context.instruction, r"\b(list|ranking|best|top)\b")
        if topic:
            slots.append(_category(f"{game} best {topic} ranking", cfg))
            slots.append(_category(f"{game} top {topic} list", cfg))
            slots.append(_category(f"{game} {topic} tier list", cfg))
    slots.append(_supplementary(f"{game} meta changes patch notes {year}", "recent", cfg))
    return slots

# ============================================================================
# REGISTRY
# ============================================================================

_GUIDES = CategoryStrategy(
    category=ArticleCategory.GUIDES,
    label="GUIDE",
    build_slots=_guide_slots,
    category_briefing_focus=(
        "Key mechanics that need detailed explanation, essential items or requirements, "
        "exact locations and unlock conditions, and any gaps where more specific how-to info is needed."
    ),
    recent_briefing_focus=(
        "Patch notes that changed mechanics, new content or DLC, balance changes (nerfs/buffs). "
        "Ignore sales numbers, corporate news and unrelated announcements."
    ),
    editor_guidance=(
        "Structure the guide in the order a player experiences it. Every section must name concrete "
        "items, abilities, NPCs or places, and say where each is found."
    ),
    tone_guide=(
        "Write in second person. Be direct and instructional. Give exact steps in order, name every "
        "location, item and ability explicitly, and state where things are obtained. Never write "
        "vague references like 'the fourth shrine' or 'a certain item'."
    ),
    reviewer_criteria=(
        "1. LOCATION NAMING (CRITICAL): every ability, item or unlock must state WHERE it is obtained.\n"
        "2. SPECIFICITY: flag vague references like 'the fourth shrine' or 'the final ability'.\n"
        "3. CONSISTENCY: section titles must match content (e.g. 'Three Shrines' with 4 listed).\n"
        "4. COVERAGE: all must-cover elements present; instructions clear and sequential."
    ),
    reviewer_checks=(
        "Missing locations for items/abilities (MAJOR), vague references instead of proper names, "
        "unclear instructions, missing required elements."
    ),
)

_REVIEWS = CategoryStrategy(
    category=ArticleCategory.REVIEWS,
    label="REVIEW",
    build_slots=_review_slots,
    category_briefing_focus=(
        "Critical consensus, recurring praise and complaints, technical performance, and final verdict "
        "themes (e.g. 'Good but buggy', 'Masterpiece', 'Wait for sale')."
    ),
    recent_briefing_focus=(
        "Fixes for reported bugs, performance patches, post-launch content that changes the value "
        "proposition. Ignore minor cosmetic DLC and esports news."
    ),
    editor_guidance=(
        "Cover gameplay, presentation, performance and value. Plan one section for strengths and one "
        "for weaknesses, and finish with a verdict section. Scores are allowed only in this category."
    ),
    tone_guide=(
        "Be balanced and evaluative. Back every opinion with a concrete example from the game. Cover "
        "both strengths and weaknesses, and state who the game is for. Avoid marketing language."
    ),
    reviewer_criteria=(
        "1. BALANCE: both pros and cons must be covered with concrete examples.\n"
        "2. EVIDENCE: every judgement is backed by a specific gameplay example.\n"
        "3. ACCURACY: technical claims match the research.\n"
        "4. VERDICT: the conclusion follows from the body of the review."
    ),
    reviewer_checks=(
        "One-sided praise or criticism, opinions without examples, performance claims not in research, "
        "a verdict that contradicts the body."
    ),
)

_NEWS = CategoryStrategy(
    category=ArticleCategory.NEWS,
    label="NEWS",
    build_slots=_news_slots,
    category_briefing_focus=(
        "The who, what, when, where and why of the story, official statements and their sources, "
        "and dates or version numbers."
    ),
    recent_briefing_focus=(
        "Developments from the last few weeks: announcements, patches, delays, release dates and "
        "official statements."
    ),
    editor_guidance=(
        "Lead with the news itself. Use an inverted pyramid: most important facts first, background "
        "and context later. Keep sections short."
    ),
    tone_guide=(
        "Use an inverted pyramid. Put the most important facts in the first paragraph. Attribute every "
        "claim to its source ('according to the developer'). Stay neutral, and give dates explicitly."
    ),
    reviewer_criteria=(
        "1. ATTRIBUTION: every claim is attributed to a source.\n"
        "2. ACCURACY: dates, versions and names match the research exactly.\n"
        "3. NEUTRALITY: no speculation presented as fact.\n"
        "4. COMPLETENESS: what, when, who is affected and the official source are covered."
    ),
    reviewer_checks=(
        "Unattributed claims, wrong dates or version numbers, speculation stated as fact, missing 5 Ws."
    ),
)

_LISTS = CategoryStrategy(
    category=ArticleCategory.LISTS,
    label="LIST",
    build_slots=_list_slots,
    category_briefing_focus=(
        "Consensus on the top picks, the criteria people use to rank them, and common debates in the "
        "community (e.g. 'Weapon A vs Weapon B')."
    ),
    recent_briefing_focus=(
        "Buffs and nerfs, new items added, and new strategies that changed the rankings."
    ),
    editor_guidance=(
        "State the ranking criteria in the first section. Give each ranked entry enough detail to "
        "justify its position."
    ),
    tone_guide=(
        "Apply the same criteria to every entry. Justify each ranking with specifics, and explain the "
        "use case for each pick. Keep entries parallel in structure."
    ),
    reviewer_criteria=(
        "1. CRITERIA: ranking criteria stated up front and applied consistently.\n"
        "2. JUSTIFICATION: every entry explains why it holds its position.\n"
        "3. CONSISTENCY: the number of entries matches headlines and intro.\n"
        "4. CURRENCY: rankings reflect the current meta from research."
    ),
    reviewer_checks=(
        "Missing criteria, unjustified rankings, count mismatches, outdated meta."
    ),
)

STRATEGIES: Mapping[ArticleCategory, CategoryStrategy] = {
    s.category: s for s in (_GUIDES, _REVIEWS, _NEWS, _LISTS)
}


def get_strategy(category) -> CategoryStrategy:
    """Accepts an ArticleCategory or any string the alias table understands."""
    if not isinstance(category, ArticleCategory):
        category = ArticleCategory(normalize_category_slug(category))
    return STRATEGIES[category]


def build_query_slots(
    context: GameArticleContext,
    category: ArticleCategory,
    cfg: ScoutConfig,
    year: Optional[int] = None,
) -> List[QuerySlot]:
    """Slots for one Scout run, deduplicated by query text and capped."""
    strategy = get_strategy(category)
    slots = strategy.build_slots(context, cfg, year or date.today().year)
    seen: Dict[str, QuerySlot] = {}
    for slot in slots:
        key = " ".join(slot.query.lower().split())
        if key not in seen:
            seen[key] = slot
    return list(seen.values())[:MAX_SLOTS]
