"""
End-to-end tests for generate_game_article_draft.

The whole graph runs (Scout, Editor, Specialist, Reviewer, validation and
the revision loop) against in-memory fakes, so no network or API key is
needed.
"""

import asyncio

import pytest

from game_articles import event_bus
from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.main import (
    GenerationOptions,
    estimate_run_cost,
    generate_game_article_draft,
    generate_game_article_draft_sync,
)
from game_articles.pipeline.markdown_utils import extract_markdown_images
from game_articles.pipeline.research_pool import normalize_url
from game_articles.pipeline.structured_data import GameArticleContext, TokenUsage
from game_articles.tasks import COMPLETED, FAILED, BackgroundTaskQueue

from conftest import FakeLLM, FakeSearch, default_section_text, make_results, slugify

CRITICAL_REVIEW = {
    "approved": False,
    "issues": [{
        "severity": "critical",
        "category": "accuracy",
        "location": "Getting Started",
        "message": "Says parsnips take ten days to grow",
        "fix_instruction": "Parsnips take four days.",
    }],
}


def options(fast_config, **kwargs) -> GenerationOptions:
    kwargs.setdefault("llm", FakeLLM())
    kwargs.setdefault("search", FakeSearch())
    return GenerationOptions(config=fast_config, **kwargs)

# -----------------------------------------------------------------------------
# Happy path
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stardew_valley_guide_end_to_end(stardew_context, fast_config):
    llm, search = FakeLLM(), FakeSearch()

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm, search=search))

    assert draft.title == "Stardew Valley Beginner Guide: Your First Week"
    assert draft.category_slug == "guides"
    assert draft.confidence == "high"
    assert [s.headline for s in draft.sections] == [
        "Getting Started", "Planting Your First Crops", "Making Friends in Town",
    ]
    markdown = draft.markdown
    assert markdown.startswith("# Stardew Valley Beginner Guide: Your First Week")
    assert markdown.index("## Getting Started") < markdown.index("## Planting Your First Crops") \
        < markdown.index("## Making Friends in Town") < markdown.index("## Sources")
    assert draft.sources and all(url.startswith("https://") for url in draft.sources)
    assert draft.errors == []
    assert draft.token_usage.total > 0
    assert draft.metadata["revisions"] == 0
    assert draft.metadata["review_recommendation"] == "accept"
    assert llm.count("ArticlePlan") == 1
    assert llm.count("section") == 3
    assert llm.count("ReviewReport") == 1
    assert all(s.must_cover for s in draft.plan.sections)
    allowed = set().union(*(s.allowed_urls for s in draft.sections))
    assert all(normalize_url(url) in allowed for _alt, url in extract_markdown_images(markdown))


def map_url(query: str) -> str:
    return f"https://wiki.example.com/{slugify(query)}/map.png"


@pytest.mark.asyncio
async def test_draft_keeps_research_images_and_drops_invented_ones(stardew_context, fast_config):
    def results(query):
        first, *rest = make_results(query)
        return [first.model_copy(update={"content": f"{first.content} ![Map]({map_url(query)})"}), *rest]

    def writer(number, headline, prompt):
        section_map = map_url(f"Stardew Valley {headline.lower()}")
        return (f"![Map]({section_map})\n\n![Farm](https://cdn.invented.example/farm.png)\n\n"
                + default_section_text(number, headline, prompt))

    draft = await generate_game_article_draft(
        stardew_context, options(fast_config, llm=FakeLLM(section_writer=writer), search=FakeSearch(results_for=results))
    )

    images = [url for _alt, url in extract_markdown_images(draft.markdown)]
    assert map_url("Stardew Valley getting started") in images
    assert not any("cdn.invented.example" in url for url in images)
    allowed = set().union(*(s.allowed_urls for s in draft.sections))
    assert all(normalize_url(url) in allowed for url in images)


@pytest.mark.asyncio
async def test_parallel_sections_keep_plan_order(stardew_context, fast_config):
    draft = await generate_game_article_draft(stardew_context, options(fast_config, parallel_sections=True))
    assert [s.index for s in draft.sections] == [0, 1, 2]
    assert draft.errors == []


@pytest.mark.asyncio
async def test_progress_is_reported_in_order(stardew_context, fast_config):
    seen = []

    async def on_progress(phase, pct, message):
        seen.append((phase, pct))

    await generate_game_article_draft(stardew_context, options(fast_config, on_progress=on_progress))

    phases = [p for p, _ in seen]
    assert phases == [
        "scouting", "planning", "writing:1", "writing:2", "writing:3", "reviewing", "validating", "complete",
    ]
    percentages = [pct for _, pct in seen]
    assert percentages == sorted(percentages)
    assert percentages[-1] == 100


@pytest.mark.asyncio
async def test_failing_progress_callback_is_ignored(stardew_context, fast_config):
    def on_progress(phase, pct, message):
        raise RuntimeError("UI went away")

    draft = await generate_game_article_draft(stardew_context, options(fast_config, on_progress=on_progress))
    assert len(draft.sections) == 3


@pytest.mark.asyncio
async def test_events_are_published_for_the_job(stardew_context, fast_config):
    event_bus.clear_job("job-e2e")

    await generate_game_article_draft(stardew_context, options(fast_config, job_id="job-e2e"))

    agents = {e["agent_name"] for e in event_bus.get_history("job-e2e")}
    assert {"pipeline", "scout", "editor", "specialist", "reviewer", "validator"} <= agents
    event_bus.clear_job("job-e2e")

# -----------------------------------------------------------------------------
# Degraded runs
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_empty_research_still_produces_a_draft(stardew_context, fast_config):
    search = FakeSearch(results_for=lambda q: [])

    draft = await generate_game_article_draft(stardew_context, options(fast_config, search=search))

    assert draft.confidence == "low"
    assert len(draft.sections) == 3
    assert all(s.thin_research for s in draft.sections)
    assert "NO_SOURCES" in [i.code for i in draft.warnings]


@pytest.mark.asyncio
async def test_failed_section_is_reported_not_raised(stardew_context, fast_config):
    llm = FakeLLM()
    llm.fail_sections["Making Friends in Town"] = 10

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert [s.headline for s in draft.sections] == ["Getting Started", "Planting Your First Crops"]
    codes = [i.code for i in draft.errors]
    assert "SECTION_FAILED" in codes
    assert "MISSING_SECTION" in codes


@pytest.mark.asyncio
async def test_review_failure_does_not_block_the_draft(stardew_context, fast_config):
    llm = FakeLLM()
    llm.fail_structured["ReviewReport"] = 2

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert "REVIEW_SKIPPED" in [i.code for i in draft.warnings]
    assert draft.metadata["revisions"] == 0

# -----------------------------------------------------------------------------
# Revision loop
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_critical_review_rewrites_the_flagged_section(stardew_context, fast_config):
    llm = FakeLLM(review=CRITICAL_REVIEW)

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert draft.metadata["revisions"] == 1
    assert llm.count("ReviewReport") == 2
    assert llm.count("section") == 4
    revised = [c for c in llm.calls if c["kind"] == "section"][-1]
    assert revised["headline"] == "Getting Started"
    assert "Says parsnips take ten days to grow" in revised["user"]
    assert draft.metadata["review_recommendation"] == "revise"


@pytest.mark.asyncio
async def test_unlocated_review_issue_goes_back_to_the_editor(stardew_context, fast_config):
    review = {
        "approved": False,
        "issues": [{"severity": "critical", "location": "Overall structure", "message": "Skips the mines entirely"}],
    }
    llm = FakeLLM(review=review)

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert draft.metadata["revisions"] == 1
    assert llm.count("ArticlePlan") == 2
    assert "Skips the mines entirely" in [c for c in llm.calls if c["kind"] == "ArticlePlan"][-1]["user"]
    assert llm.count("section") == 6
    assert len(draft.sections) == 3


@pytest.mark.asyncio
async def test_placeholder_is_repaired_by_revision(stardew_context, fast_config):
    written = []

    def writer(number, headline, prompt):
        written.append(headline)
        text = default_section_text(number, headline, prompt)
        if headline == "Planting Your First Crops" and written.count(headline) == 1:
            text += "\n\nTODO: add the seed calendar."
        return text

    llm = FakeLLM(section_writer=writer)

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert draft.metadata["revisions"] == 1
    assert written.count("Planting Your First Crops") == 2
    assert "TODO" not in draft.markdown
    assert draft.errors == []


@pytest.mark.asyncio
async def test_revisions_can_be_disabled(stardew_context, fast_config):
    llm = FakeLLM(review=CRITICAL_REVIEW)

    draft = await generate_game_article_draft(stardew_context, options(fast_config, llm=llm, max_revisions=0))

    assert draft.metadata["revisions"] == 0
    assert llm.count("ReviewReport") == 1
    assert "REVIEW_CRITICAL" in [i.code for i in draft.issues]

# -----------------------------------------------------------------------------
# Hard failures
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invalid_context_is_rejected_before_any_call(fast_config):
    search = FakeSearch()

    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(GameArticleContext(game_name=" "), options(fast_config, search=search))

    assert exc.value.code == ErrorCode.CONTEXT_INVALID
    assert search.call_count == 0


@pytest.mark.asyncio
async def test_missing_api_key_is_a_config_error(stardew_context, fast_config, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(stardew_context, GenerationOptions(search=FakeSearch(), config=fast_config))

    assert exc.value.code == ErrorCode.CONFIG_ERROR


@pytest.mark.asyncio
async def test_out_of_range_option_is_a_config_error(stardew_context, fast_config):
    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(stardew_context, options(fast_config, max_revisions=10))

    assert exc.value.code == ErrorCode.CONFIG_ERROR


@pytest.mark.asyncio
async def test_cancelled_run_raises_cancelled(stardew_context, fast_config):
    cancel = asyncio.Event()
    cancel.set()
    search = FakeSearch()

    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(stardew_context, options(fast_config, search=search, cancel_event=cancel))

    assert exc.value.code == ErrorCode.CANCELLED
    assert search.call_count == 0


@pytest.mark.asyncio
async def test_cancelling_mid_run_stops_before_review(stardew_context, fast_config):
    cancel = asyncio.Event()
    llm = FakeLLM()

    def on_progress(phase, pct, message):
        if phase == "writing:2":
            cancel.set()

    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(
            stardew_context, options(fast_config, llm=llm, cancel_event=cancel, on_progress=on_progress)
        )

    assert exc.value.code == ErrorCode.CANCELLED
    assert llm.count("ReviewReport") == 0


@pytest.mark.asyncio
async def test_editor_failure_is_fatal(stardew_context, fast_config):
    llm = FakeLLM()
    llm.fail_structured["ArticlePlan"] = 2

    with pytest.raises(ArticleGenerationError) as exc:
        await generate_game_article_draft(stardew_context, options(fast_config, llm=llm))

    assert exc.value.code == ErrorCode.EDITOR_FAILED
    assert llm.count("section") == 0

# -----------------------------------------------------------------------------
# Completion hooks
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_completion_hooks_run_in_the_background(stardew_context, fast_config):
    queue = BackgroundTaskQueue()
    saved = []

    async def save_draft(draft):
        saved.append(draft.title)

    async def notify(draft):
        raise ConnectionError("webhook down")

    draft = await generate_game_article_draft(
        stardew_context,
        options(fast_config, job_id="job-hooks", task_queue=queue, on_complete=[save_draft, notify]),
    )
    assert event_bus.get_history("job-hooks")
    records = await queue.drain()

    assert len(draft.metadata["background_tasks"]) == 2
    assert saved == [draft.title]
    assert {r.name: r.status for r in records} == {"save_draft": COMPLETED, "notify": FAILED}
    # the job's progress history is released once every hook has finished
    assert event_bus.get_history("job-hooks") == []


def test_sync_wrapper_waits_for_hooks(fast_config):
    queue = BackgroundTaskQueue()
    saved = []

    async def save_draft(draft):
        await asyncio.sleep(0)
        saved.append(draft.title)

    context = GameArticleContext(game_name="Stardew Valley", instruction="Beginner guide")
    draft = generate_game_article_draft_sync(
        context, options(fast_config, task_queue=queue, on_complete=[save_draft])
    )

    assert saved == [draft.title]
    assert queue.pending_count == 0

# -----------------------------------------------------------------------------
# Cost
# -----------------------------------------------------------------------------

def test_each_agent_is_priced_with_its_own_model():
    scout_usage = TokenUsage(input_tokens=1_000_000)
    writing_usage = TokenUsage(input_tokens=1_000_000)

    cost = estimate_run_cost([(scout_usage, "gpt-4o-mini"), (writing_usage, "gpt-4o")])

    assert cost == pytest.approx(0.15 + 2.50)


def test_unknown_model_price_makes_cost_unknown():
    assert estimate_run_cost([(TokenUsage(output_tokens=10), "local-llama")]) is None
    assert estimate_run_cost([(TokenUsage(), "local-llama"), (TokenUsage(input_tokens=1_000_000), "gpt-4o")]) == 2.5
