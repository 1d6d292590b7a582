"""Tests for collecting research images and stripping invented ones."""

from game_articles.pipeline.image_extractor import (
    extract_image_urls,
    extract_images_from_source,
    filter_markdown_images,
    looks_like_image,
    resolve_url,
    unlink_unknown_urls,
)
from game_articles.pipeline.research_pool import ResearchPool
from game_articles.pipeline.structured_data import SearchResultItem


def test_looks_like_image():
    assert looks_like_image("https://example.com/shot.PNG?width=300")
    assert looks_like_image("https://static.wikia.nocookie.net/stardew/revision/latest")
    assert not looks_like_image("https://example.com/page.html")


def test_resolve_url():
    assert resolve_url("//cdn.example.com/a.png") == "https://cdn.example.com/a.png"
    assert resolve_url("/img/a.png", "https://wiki.example.com/page") == "https://wiki.example.com/img/a.png"
    assert resolve_url("https://x.com/a.png", "https://wiki.example.com") == "https://x.com/a.png"


def test_extract_from_markdown_html_and_plain_urls():
    content = (
        "![Farm](https://cdn.example.com/farm.png)\n"
        '<img data-src="/images/pig.jpg" alt="Pig">\n'
        "Screenshot: https://cdn.example.com/mines.webp\n"
        "![Farm again](https://cdn.example.com/farm.png)"
    )
    images = extract_image_urls(content, "https://wiki.example.com/Animals")

    assert [i.url for i in images] == [
        "https://cdn.example.com/farm.png",
        "https://wiki.example.com/images/pig.jpg",
        "https://cdn.example.com/mines.webp",
    ]
    assert images[1].alt == "Pig"
    assert images[0].source_url == "https://wiki.example.com/Animals"


def test_extract_images_from_source_counts_discards():
    pool = ResearchPool()
    entry = pool.record_result("q", "overview", [
        SearchResultItem(
            title="Crops",
            url="https://wiki.example.com/crops",
            content="See ![Parsnip](https://cdn.example.com/parsnip.png)",
            images=["https://cdn.example.com/parsnip.png", "not-a-url"],
        ),
    ])

    result = extract_images_from_source([entry])

    assert [i.url for i in result.images] == ["https://cdn.example.com/parsnip.png"]
    assert result.pre_extracted_count == 2
    assert result.parsed_count == 1
    assert result.discarded_count == 2


def test_filter_markdown_images_keeps_only_allowed():
    markdown = "Intro.\n\n![a](https://cdn.example.com/a.png)\n\n\n![b](https://fake.example.com/b.png)\n\nEnd."
    cleaned, result = filter_markdown_images(markdown, {"https://cdn.example.com/a.png"})

    assert "a.png" in cleaned
    assert "fake.example.com" not in cleaned
    assert "\n\n\n" not in cleaned
    assert [i.url for i in result.images] == ["https://cdn.example.com/a.png"]
    assert result.parsed_count == 2
    assert result.discarded_count == 1


def test_unlink_unknown_urls_keeps_text_and_relative_links():
    markdown = "[known](https://wiki.example.com/a) [unknown](https://spam.example.com) [anchor](#crops)"
    cleaned, removed = unlink_unknown_urls(markdown, {"https://wiki.example.com/a"})

    assert cleaned == "[known](https://wiki.example.com/a) unknown [anchor](#crops)"
    assert removed == 1
