"""Tests for the deterministic draft validators."""

import pytest

from game_articles.errors import ArticleGenerationError, ErrorCode
from game_articles.pipeline.structured_data import CategoryHint, GameArticleContext, SafetySettings
from game_articles.validators import (
    check_code_fences,
    check_cliches,
    check_draft_metadata,
    check_placeholders,
    check_plan,
    check_prices,
    check_repetitive_openers,
    check_review_scores,
    check_structure,
    find_review_scores,
    get_errors,
    get_warnings,
    strip_unlisted_images,
    validate_draft,
    validate_game_article_context,
)

from conftest import make_plan

BODY = (
    "Parsnips are the cheapest spring crop and grow in four days. "
    "Water them every morning before heading into town. "
    "Energy runs out fast during the first week, so plan each day around it."
)


def markdown_for(headlines, body=BODY, sources=("https://wiki.example.com/crops",)):
    parts = ["# Stardew Valley Beginner Guide: Your First Week"]
    parts.extend(f"## {h}\n\n{body}" for h in headlines)
    if sources:
        parts.append("## Sources\n\n" + "\n".join(f"- {s}" for s in sources))
    return "\n\n".join(parts) + "\n"


def codes(issues):
    return [i.code for i in issues]


PLAN = make_plan()
HEADLINES = [s.headline for s in PLAN.sections]

# -----------------------------------------------------------------------------
# Aggregate
# -----------------------------------------------------------------------------

def test_clean_draft_has_no_issues():
    issues = validate_draft(PLAN, markdown_for(HEADLINES), sources=["https://wiki.example.com/crops"])
    assert issues == []


def test_errors_and_warnings_are_split():
    issues = validate_draft(PLAN, markdown_for(HEADLINES[:2]))
    assert codes(get_errors(issues)) == ["MISSING_SECTION"]
    assert codes(get_warnings(issues)) == ["NO_SOURCES"]

# -----------------------------------------------------------------------------
# Input
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("context", [
    GameArticleContext(game_name=""),
    GameArticleContext(game_name="   "),
    GameArticleContext(game_name="Hades", category_hints=[CategoryHint(slug=" ")]),
])
def test_invalid_context_is_rejected(context):
    with pytest.raises(ArticleGenerationError) as exc:
        validate_game_article_context(context)
    assert exc.value.code == ErrorCode.CONTEXT_INVALID


def test_valid_context_passes():
    validate_game_article_context(GameArticleContext(game_name="Hades"))

# -----------------------------------------------------------------------------
# Structure
# -----------------------------------------------------------------------------

def test_missing_section_names_the_headline():
    issues = check_structure(PLAN, markdown_for([HEADLINES[0], HEADLINES[2]]))
    assert codes(issues) == ["MISSING_SECTION"]
    assert issues[0].location == HEADLINES[1]
    assert issues[0].severity == "error"


def test_duplicate_section_is_an_error():
    issues = check_structure(PLAN, markdown_for(HEADLINES + [HEADLINES[1]]))
    assert "DUPLICATE_SECTION" in codes(issues)


def test_out_of_order_sections_are_an_error():
    issues = check_structure(PLAN, markdown_for([HEADLINES[1], HEADLINES[0], HEADLINES[2]]))
    assert codes(issues) == ["SECTION_ORDER"]


def test_headline_match_ignores_case():
    assert check_structure(PLAN, markdown_for([h.upper() for h in HEADLINES])) == []


def test_unplanned_and_short_sections_are_warnings():
    markdown = markdown_for(HEADLINES) + "\n## Bonus Secrets\n\nToo short.\n"
    issues = check_structure(PLAN, markdown)
    assert all(i.severity == "warning" for i in issues)
    assert codes(issues) == ["EXTRA_SECTION", "SHORT_SECTION"]


def test_sources_heading_is_not_an_extra_section():
    assert "EXTRA_SECTION" not in codes(check_structure(PLAN, markdown_for(HEADLINES)))

# -----------------------------------------------------------------------------
# Metadata and plan
# -----------------------------------------------------------------------------

def test_metadata_checks():
    issues = check_draft_metadata("Short", "Too short.", [f"tag{i}" for i in range(11)], ["ftp://files.example.com"])
    assert codes(get_errors(issues)) == ["TITLE_LENGTH", "TOO_MANY_TAGS", "INVALID_SOURCE"]
    assert codes(get_warnings(issues)) == ["EXCERPT_LENGTH"]


def test_metadata_warns_on_missing_tags_and_sources():
    issues = check_draft_metadata(PLAN.title, PLAN.excerpt, [], [])
    assert codes(issues) == ["NO_TAGS", "NO_SOURCES"]


def test_plan_checks_flag_thin_plans():
    plan = make_plan(headlines=["Farming", "Farming"])
    plan.sections[0].research_queries.clear()

    found = codes(check_plan(plan))

    assert "PLAN_SECTION_COUNT" in found
    assert "PLAN_DUPLICATE_HEADLINE" in found
    assert "PLAN_NO_QUERIES" in found

# -----------------------------------------------------------------------------
# Content
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("text", [
    "TODO: add the crop calendar.",
    "[INSERT screenshot of the farm]",
    "Lorem ipsum dolor sit amet.",
    "Prices are tbd.",
])
def test_placeholders_are_errors(text):
    issues = check_placeholders(markdown_for(HEADLINES, body=text))
    assert codes(issues) == ["PLACEHOLDER"]
    assert issues[0].severity == "error"


@pytest.mark.parametrize("text", [
    "Today you plant parsnips.",
    "Follow the developer on Mastodon for news.",
    "See [the wiki](https://wiki.example.com/TODO) for more.",
])
def test_placeholder_lookalikes_are_ignored(text):
    assert check_placeholders(markdown_for(HEADLINES, body=text)) == []


def test_cliches_are_warnings():
    issues = check_cliches(markdown_for(HEADLINES, body="In conclusion, let's dive into farming."))
    assert codes(issues) == ["CLICHE"]
    assert "2 AI cliché(s)" in issues[0].message


@pytest.mark.parametrize("text, hits", [
    ("We give it 8/10.", ["8/10"]),
    ("Overall rating: 9.5 for the soundtrack", ["rating: 9.5"]),
    ("It scores 4.5 / 5 with critics.", ["4.5 / 5"]),
    ("Collect 1/50 golden walnuts.", []),
    ("The update shipped on 12/10/2024.", []),
])
def test_find_review_scores(text, hits):
    assert find_review_scores(text) == hits


def test_review_scores_only_allowed_in_reviews():
    markdown = markdown_for(HEADLINES, body="We give it 8/10.")
    assert codes(check_review_scores(make_plan(category="guides"), markdown)) == ["REVIEW_SCORE"]
    assert check_review_scores(make_plan(category="reviews"), markdown) == []

    relaxed = make_plan().model_copy(update={"safety": SafetySettings(no_scores_unless_review=False)})
    assert check_review_scores(relaxed, markdown) == []


def test_prices_are_flagged_unless_allowed():
    markdown = markdown_for(HEADLINES, body="The game costs $14.99 on Steam.")
    assert codes(check_prices(PLAN, markdown)) == ["PRICE"]

    relaxed = PLAN.model_copy(update={"safety": SafetySettings(no_prices=False)})
    assert check_prices(relaxed, markdown) == []


def test_prices_in_source_list_are_ignored():
    markdown = markdown_for(HEADLINES, sources=("https://store.example.com/$5-deals",))
    assert check_prices(PLAN, markdown) == []


def test_repetitive_openers():
    body = " ".join(["Farming pays off."] * 7)
    assert codes(check_repetitive_openers(markdown_for(HEADLINES[:1], body=body))) == ["REPETITIVE_OPENERS"]
    # common words may repeat freely
    body = " ".join(["The farm grows."] * 10)
    assert check_repetitive_openers(markdown_for(HEADLINES[:1], body=body)) == []


def test_code_fences_are_warnings():
    assert codes(check_code_fences("## A\n\n```\nplant()\n```\n")) == ["CODE_FENCE"]
    assert check_code_fences(markdown_for(HEADLINES)) == []


def test_strip_unlisted_images():
    markdown = "![ok](https://cdn.example.com/a.png)\n\n![bad](https://cdn.example.com/b.png)"
    cleaned, result = strip_unlisted_images(markdown, ["https://cdn.example.com/a.png"])
    assert "a.png" in cleaned
    assert "b.png" not in cleaned
    assert result.discarded_count == 1
