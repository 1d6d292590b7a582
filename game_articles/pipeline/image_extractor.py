"""
Image handling for drafts.

Two jobs: collect the image URLs that research actually returned, and strip
any markdown image the model wrote that does not come from that set. A
dangling invented image URL breaks rendering, so it is removed rather than
just reported.
"""

import re
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from game_articles.pipeline.markdown_utils import IMAGE_PATTERN, LINK_PATTERN, extract_markdown_images
from game_articles.pipeline.research_pool import normalize_url
from game_articles.pipeline.structured_data import (
    CategorizedSearchResult,
    ExtractedImage,
    ImageExtractionResult,
)

IMAGE_EXTENSIONS = re.compile(r"\.(jpe?g|png|gif|webp|svg|bmp|avif)$", re.IGNORECASE)
IMAGE_CDNS = ("images.igdb.com", "static.wikia.nocookie.net", "i.imgur.com", "cdn.cloudflare.steamstatic.com")
_LAZY_ATTRS = ("src", "data-src", "data-lazy-src", "data-original", "data-lazy")
_PLAIN_IMAGE_URL = re.compile(r"(?:https?:)?//[^\s\"'<>()]+\.(?:jpe?g|png|gif|webp)", re.IGNORECASE)


def looks_like_image(url: str) -> bool:
    path = url.split("?")[0].split("#")[0]
    return bool(IMAGE_EXTENSIONS.search(path)) or any(cdn in url.lower() for cdn in IMAGE_CDNS)


def resolve_url(url: str, base_url: Optional[str] = None) -> str:
    url = url.strip()
    if url.startswith("//"):
        return "https:" + url
    if url.startswith(("http://", "https://", "data:")) or not base_url:
        return url
    return urljoin(base_url, url)


def extract_image_urls(raw_content: str, source_url: Optional[str] = None) -> List[ExtractedImage]:
    """Image URLs in markdown, HTML (including lazy-load attributes) and bare links."""
    found: List[ExtractedImage] = []
    seen: Set[str] = set()

    def _add(url: str, alt: str = "") -> None:
        if not url or url.startswith("data:") or len(url) < 10:
            return
        url = resolve_url(url, source_url)
        if not looks_like_image(url):
            return
        key = normalize_url(url)
        if key and key not in seen:
            seen.add(key)
            found.append(ExtractedImage(url=url, alt=alt.strip(), source_url=source_url))

    for alt, url in extract_markdown_images(raw_content):
        _add(url, alt)

    if "<img" in (raw_content or ""):
        soup = BeautifulSoup(raw_content, "html.parser")
        for img in soup.find_all("img"):
            for attr in _LAZY_ATTRS:
                if img.get(attr):
                    _add(img[attr], img.get("alt", ""))
                    break
            srcset = img.get("srcset")
            if srcset:
                _add(srcset.split(",")[0].split()[0], img.get("alt", ""))

    for m in _PLAIN_IMAGE_URL.finditer(raw_content or ""):
        _add(m.group(0))
    return found


def extract_images_from_source(entries: Iterable[CategorizedSearchResult]) -> ImageExtractionResult:
    """
    Collects the images research returned: provider-attached images first,
    then images parsed out of page content.
    """
    images: List[ExtractedImage] = []
    seen: Set[str] = set()
    pre_extracted = parsed = discarded = 0

    for entry in entries:
        for item in entry.results:
            for url in item.images:
                pre_extracted += 1
                key = normalize_url(url)
                if not key or key in seen or not url.startswith(("http://", "https://", "//")):
                    discarded += 1
                    continue
                seen.add(key)
                images.append(ExtractedImage(url=resolve_url(url), source_url=item.url))
            for image in extract_image_urls(item.content, item.url):
                parsed += 1
                key = normalize_url(image.url)
                if key in seen:
                    discarded += 1
                    continue
                seen.add(key)
                images.append(image)

    return ImageExtractionResult(
        images=images,
        pre_extracted_count=pre_extracted,
        parsed_count=parsed,
        discarded_count=discarded,
    )


def filter_markdown_images(markdown: str, allowlist: Set[str]) -> Tuple[str, ImageExtractionResult]:
    """
    Removes every markdown image whose URL is not in `allowlist`
    (normalized URLs). Returns the cleaned markdown and the tally.
    """
    kept: List[ExtractedImage] = []
    parsed = 0
    discarded = 0

    def _replace(m: "re.Match[str]") -> str:
        nonlocal parsed, discarded
        parsed += 1
        alt, url = m.group(1), m.group(2)
        if normalize_url(resolve_url(url)) in allowlist:
            kept.append(ExtractedImage(url=url, alt=alt))
            return m.group(0)
        discarded += 1
        return ""

    cleaned = IMAGE_PATTERN.sub(_replace, markdown or "")
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned, ImageExtractionResult(images=kept, parsed_count=parsed, discarded_count=discarded)


def unlink_unknown_urls(markdown: str, allowlist: Set[str]) -> Tuple[str, int]:
    """Turns links to URLs outside `allowlist` into plain text. Returns (markdown, count)."""
    removed = 0

    def _replace(m: "re.Match[str]") -> str:
        nonlocal removed
        text, url = m.group(1), m.group(2)
        if not url.startswith(("http://", "https://")) or normalize_url(url) in allowlist:
            return m.group(0)
        removed += 1
        return text

    return LINK_PATTERN.sub(_replace, markdown or ""), removed
