"""Shared fixtures and fake providers for the article pipeline tests."""

import re
from typing import Callable, Dict, List, Optional

import pytest
from pydantic import BaseModel

from game_articles.config import PipelineConfig, RetryConfig, SpecialistConfig
from game_articles.errors import LLMSchemaError
from game_articles.pipeline.research_pool import ResearchPool
from game_articles.pipeline.structured_data import (
    ArticlePlan,
    Briefing,
    GameArticleContext,
    QueryStats,
    ScoutOutput,
    SearchResponse,
    SearchResultItem,
    TokenUsage,
)
from game_articles.pipeline.templates import SCOUT_SYSTEM
from game_articles.providers import LLMResponse

SECTION_HEADER = re.compile(r'Section (\d+) of (\d+): "([^"]+)"')


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")

# -----------------------------------------------------------------------------
# Fake search provider
# -----------------------------------------------------------------------------

def make_results(query: str, count: int = 3, host: str = "wiki.example.com") -> List[SearchResultItem]:
    slug = slugify(query)
    return [
        SearchResultItem(
            title=f"{query} ({i})",
            url=f"https://{host}/{slug}/{i}",
            content=(
                f"Result {i} for {query}. Players grow crops, raise animals and explore the mines "
                f"beneath Pelican Town while building friendships with the villagers."
            ),
            score=0.9 - i * 0.1,
        )
        for i in range(1, count + 1)
    ]


class FakeSearch:
    """Counts calls. `results_for` overrides the default per-query results."""

    def __init__(self, results_for: Optional[Callable[[str], List[SearchResultItem]]] = None,
                 fail: bool = False):
        self.results_for = results_for
        self.fail = fail
        self.queries: List[str] = []
        self.calls: List[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.queries)

    async def search(self, query, max_results=5, depth="basic", domain_filters=None):
        self.queries.append(query)
        self.calls.append({"query": query, "max_results": max_results, "depth": depth,
                           "domain_filters": domain_filters})
        if self.fail:
            raise RuntimeError("search backend unavailable")
        results = self.results_for(query) if self.results_for is not None else make_results(query)
        return SearchResponse(results=results, answer=f"{query} summary" if results else "")

# -----------------------------------------------------------------------------
# Fake LLM
# -----------------------------------------------------------------------------

def default_section_text(number: int, headline: str, prompt: str) -> str:
    return (
        f"Section {number} explains {headline.lower()} for new farmers. "
        f"Crops planted early in spring pay off before the season changes. "
        f"Villagers respond well to thoughtful gifts, so check their birthdays on the calendar.\n\n"
        f"Most players find their rhythm after the first week on the farm."
    )


class FakeLLM:
    """
    Answers structured calls from canned payloads keyed by schema name and
    text calls with either a briefing or a generated section body.
    """

    model_name = "gpt-4o-mini"

    def __init__(self, plan=None, review=None, briefing: str = "Stardew Valley is a farming simulation game.",
                 section_writer: Callable[[int, str, str], str] = default_section_text):
        self.payloads: Dict[str, object] = {
            "ArticlePlan": plan if plan is not None else make_plan_dict(),
            "ReviewReport": review if review is not None else {"approved": True, "issues": [], "suggestions": []},
        }
        self.briefing = briefing
        self.section_writer = section_writer
        self.fail_structured: Dict[str, int] = {}
        self.fail_sections: Dict[str, int] = {}
        self.calls: List[dict] = []

    def count(self, kind: str) -> int:
        return sum(1 for c in self.calls if c["kind"] == kind)

    async def generate_structured(self, system, user, schema, temperature=None):
        name = schema.__name__
        self.calls.append({"kind": name, "system": system, "user": user})
        if self.fail_structured.get(name, 0) > 0:
            self.fail_structured[name] -= 1
            raise LLMSchemaError(f"{name}: missing required field")
        payload = self.payloads[name]
        value = payload if isinstance(payload, BaseModel) else schema.model_validate(payload)
        return LLMResponse(value=value, usage=TokenUsage(input_tokens=200, output_tokens=100))

    async def generate_text(self, system, user, temperature=None, max_tokens=None):
        if system == SCOUT_SYSTEM:
            self.calls.append({"kind": "briefing", "system": system, "user": user})
            return LLMResponse(value=self.briefing, usage=TokenUsage(input_tokens=50, output_tokens=20))

        match = SECTION_HEADER.search(user)
        headline = match.group(3) if match else "section"
        self.calls.append({"kind": "section", "system": system, "user": user, "headline": headline})
        if self.fail_sections.get(headline, 0) > 0:
            self.fail_sections[headline] -= 1
            raise RuntimeError(f"model error while writing '{headline}'")
        number = int(match.group(1)) if match else 0
        return LLMResponse(value=self.section_writer(number, headline, user),
                           usage=TokenUsage(input_tokens=300, output_tokens=150))

# -----------------------------------------------------------------------------
# Builders
# -----------------------------------------------------------------------------

def make_plan_dict(category: str = "guides", headlines=None) -> dict:
    headlines = headlines or ["Getting Started", "Planting Your First Crops", "Making Friends in Town"]
    return {
        "title": "Stardew Valley Beginner Guide: Your First Week",
        "excerpt": (
            "Start your Stardew Valley farm the right way with crop choices, daily routines and "
            "friendship tips that carry you through your first week in Pelican Town."
        ),
        "category_slug": category,
        "tags": ["stardew valley", "beginner", "farming"],
        "sections": [
            {
                "headline": h,
                "goal": f"Explain {h.lower()}",
                "research_queries": [f"Stardew Valley {h.lower()}"],
                "must_cover": [h.split()[-1].lower()],
            }
            for h in headlines
        ],
        "required_elements": ["parsnips", "energy"],
    }


def make_plan(**kwargs) -> ArticlePlan:
    return ArticlePlan.model_validate(make_plan_dict(**kwargs))


def make_scout_output(pool: Optional[ResearchPool] = None, confidence: str = "high") -> ScoutOutput:
    pool = pool or ResearchPool()
    return ScoutOutput(
        briefing=Briefing(overview="Stardew Valley is a farming game.", full_context="OVERVIEW: farming game"),
        pool=pool,
        source_urls=pool.source_urls,
        token_usage=TokenUsage(),
        confidence=confidence,
        query_stats=QueryStats(),
    )

# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def fast_config() -> PipelineConfig:
    """No retry sleeps, no batch delays."""
    return PipelineConfig(
        retry=RetryConfig(max_retries=1, initial_delay_s=0, max_delay_s=0),
        specialist=SpecialistConfig(batch_delay_s=0),
    )


@pytest.fixture
def stardew_context() -> GameArticleContext:
    return GameArticleContext(
        game_name="Stardew Valley",
        game_slug="stardew-valley",
        release_date="2016-02-26",
        genres=["Simulation", "RPG"],
        platforms=["PC", "Nintendo Switch"],
        developer="ConcernedApe",
        instruction="Write a beginner guide for the first week",
    )


@pytest.fixture
def fake_search() -> FakeSearch:
    return FakeSearch()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()
