"""
Article intent detection and category normalization.

Both functions here are pure: the same input always yields the same
category, and nothing in this module talks to a model.
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


class ArticleCategory(str, Enum):
    NEWS = "news"
    REVIEWS = "reviews"
    GUIDES = "guides"
    LISTS = "lists"


GENERAL_INTENT = "general"
DEFAULT_CATEGORY = ArticleCategory.GUIDES

# Checked in this order; the first group with a hit wins.
INTENT_KEYWORDS: Tuple[Tuple[ArticleCategory, Tuple[str, ...]], ...] = (
    (ArticleCategory.GUIDES, (
        "guide", "how to", "walkthrough", "tutorial", "tips", "beginner", "strategy", "build",
    )),
    (ArticleCategory.REVIEWS, ("review", "opinion", "analysis", "worth", "critique")),
    (ArticleCategory.NEWS, ("news", "announcement", "update", "release", "launch", "patch")),
    (ArticleCategory.LISTS, ("best", "top", "ranking", "list", "compared", "tier")),
)

CATEGORY_ALIASES: Dict[str, ArticleCategory] = {
    "news": ArticleCategory.NEWS,
    "news article": ArticleCategory.NEWS,
    "announcement": ArticleCategory.NEWS,
    "update": ArticleCategory.NEWS,
    "patch notes": ArticleCategory.NEWS,
    "review": ArticleCategory.REVIEWS,
    "reviews": ArticleCategory.REVIEWS,
    "opinion": ArticleCategory.REVIEWS,
    "guide": ArticleCategory.GUIDES,
    "guides": ArticleCategory.GUIDES,
    "walkthrough": ArticleCategory.GUIDES,
    "tutorial": ArticleCategory.GUIDES,
    "how-to": ArticleCategory.GUIDES,
    "list": ArticleCategory.LISTS,
    "lists": ArticleCategory.LISTS,
    "listicle": ArticleCategory.LISTS,
    "ranking": ArticleCategory.LISTS,
    "tier list": ArticleCategory.LISTS,
    "top list": ArticleCategory.LISTS,
}


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(r"\b" + re.escape(keyword) + r"(?:s|es)?\b")


_COMPILED_INTENTS = tuple(
    (category, tuple(_keyword_pattern(k) for k in keywords))
    for category, keywords in INTENT_KEYWORDS
)


def detect_article_intent(instruction: Optional[str]) -> str:
    """Classifies a free-text instruction as guides/reviews/news/lists, or 'general'."""
    if not instruction or not instruction.strip():
        return GENERAL_INTENT
    text = " ".join(instruction.lower().split())
    for category, patterns in _COMPILED_INTENTS:
        if any(p.search(text) for p in patterns):
            return category.value
    return GENERAL_INTENT


def normalize_category_slug(raw: Optional[str]) -> str:
    """
    Maps free-form model output onto the fixed category enum.
    Order: exact alias, alias contained in the value, value contained in a
    category name, then the 'guides' default.
    """
    if not raw:
        return DEFAULT_CATEGORY.value
    value = re.sub(r"[_\s]+", " ", raw.strip().lower()).strip(" .\"'")
    if value in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[value].value
    for alias in sorted(CATEGORY_ALIASES, key=len, reverse=True):
        if alias in value:
            return CATEGORY_ALIASES[alias].value
    for category in ArticleCategory:
        if value and value in category.value:
            return category.value
    return DEFAULT_CATEGORY.value


def resolve_category(intent: str) -> ArticleCategory:
    """The category whose strategy drives scouting for a detected intent."""
    if intent == GENERAL_INTENT:
        return DEFAULT_CATEGORY
    return ArticleCategory(normalize_category_slug(intent))


def category_for(instruction: Optional[str], category_hint: Optional[str] = None) -> ArticleCategory:
    """An explicit hint wins over the category inferred from the instruction."""
    if category_hint and category_hint.strip():
        return ArticleCategory(normalize_category_slug(category_hint))
    return resolve_category(detect_article_intent(instruction))

# ============================================================================
# REQUIRED ELEMENT HINTS (fed to the Editor prompt)
# ============================================================================

INSTRUCTION_ELEMENT_HINTS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...], str], ...] = (
    (("beginner", "first hour", "starting", "new player", "getting started"),
     ("ALL core abilities/mechanics", "starting location", "first objectives",
      "essential controls", "early game tips"),
     "For beginner content, ensure ALL fundamental mechanics are listed. Missing one is a critical gap."),
    (("walkthrough", "guide", "how to"),
     ("key items/equipment", "important NPCs", "critical locations", "step-by-step objectives"),
     "Walkthroughs need complete coverage. Readers will be stuck if you skip a step."),
    (("build", "class", "character"),
     ("recommended stats", "skill priorities", "equipment choices", "playstyle description"),
     "Build guides need specific stat/skill recommendations, not vague suggestions."),
    (("boss", "defeat", "beat", "strategy"),
     ("boss weaknesses", "recommended level/gear", "attack patterns", "phase changes"),
     "Boss guides need tactical details. Readers want to win, not just survive."),
    (("collectible", "location", "find", "where"),
     ("exact locations", "prerequisites", "rewards", "missable warnings"),
     "Location guides need precision. 'Somewhere in the cave' is not helpful."),
    (("review", "worth", "should i"),
     ("gameplay strengths", "gameplay weaknesses", "target audience", "value proposition",
      "comparison to similar games"),
     "Reviews need balanced analysis. Don't just praise or criticize."),
    (("news", "announced", "update", "patch", "release"),
     ("what changed/announced", "when it happens", "who is affected", "official source"),
     "News needs the 5 Ws. Incomplete news is misleading news."),
    (("best", "top", "ranking", "tier"),
     ("ranking criteria", "at least 5-7 items", "pros/cons for each", "use case for each"),
     "Lists need clear criteria. 'Best' is meaningless without context."),
)

GENRE_ELEMENT_HINTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("action rpg", ("combat mechanics", "build options", "boss encounters")),
    ("rpg", ("character progression", "skill/ability system", "equipment/gear")),
    ("open world", ("key locations", "exploration mechanics", "fast travel points")),
    ("puzzle", ("core puzzle mechanics", "hint system", "difficulty progression")),
    ("shooter", ("weapons/loadouts", "map knowledge", "game modes")),
    ("strategy", ("resource management", "unit types", "win conditions")),
    ("survival", ("resource gathering", "crafting basics", "threat management")),
    ("platformer", ("movement mechanics", "collectibles", "level progression")),
    ("simulation", ("core loop", "progression systems", "time management")),
)


def suggested_elements(instruction: Optional[str], genres: Sequence[str] = ()) -> List[str]:
    """Deterministic checklist suggestions from instruction keywords and genre tags."""
    text = (instruction or "").lower()
    out: List[str] = []
    for keywords, elements, _note in INSTRUCTION_ELEMENT_HINTS:
        if any(k in text for k in keywords):
            out.extend(elements)
    for genre in genres:
        g = genre.lower()
        for key, elements in GENRE_ELEMENT_HINTS:
            if key in g:
                out.extend(elements)
    return list(dict.fromkeys(out))


def build_required_element_hints(instruction: Optional[str], genres: Sequence[str] = ()) -> str:
    text = (instruction or "").lower()
    lines: List[str] = []

    matched = [h for h in INSTRUCTION_ELEMENT_HINTS if any(k in text for k in h[0])]
    if matched:
        lines.append("Based on the user instruction, you MUST include:")
        for _keywords, elements, note in matched:
            lines.append(f"- {', '.join(elements)}")
            lines.append(f"  NOTE: {note}")

    genre_elements: List[str] = []
    for genre in genres:
        g = genre.lower()
        for key, elements in GENRE_ELEMENT_HINTS:
            if key in g:
                genre_elements.extend(elements)
    if genre_elements:
        unique = list(dict.fromkeys(genre_elements))[:5]
        lines.append("")
        lines.append(f"Based on the game's genre ({', '.join(list(genres)[:3])}), consider including:")
        lines.append(f"- {', '.join(unique)}")

    return "\n".join(lines)
