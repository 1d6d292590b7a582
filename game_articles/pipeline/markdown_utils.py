import re
from dataclasses import dataclass
from typing import List

SOURCES_HEADINGS = ("sources", "references", "further reading")

_H2 = re.compile(r"^##\s+(.+?)\s*#*\s*$", re.MULTILINE)
IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
LINK_PATTERN = re.compile(r"(?<!!)\[([^\]]+)\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")


@dataclass
class MarkdownSection:
    headline: str
    content: str
    start: int


def parse_h2_sections(markdown: str) -> List[MarkdownSection]:
    """Splits markdown on '## ' headings. Text before the first heading is ignored."""
    matches = list(_H2.finditer(markdown or ""))
    sections = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
        sections.append(MarkdownSection(
            headline=m.group(1).strip(),
            content=markdown[m.end():end].strip(),
            start=m.start(),
        ))
    return sections


def is_sources_heading(headline: str) -> bool:
    return headline.strip().lower().rstrip(":") in SOURCES_HEADINGS


def get_content_h2_sections(markdown: str) -> List[MarkdownSection]:
    return [s for s in parse_h2_sections(markdown) if not is_sources_heading(s.headline)]


def strip_sources_section(markdown: str) -> str:
    for section in parse_h2_sections(markdown):
        if is_sources_heading(section.headline):
            return markdown[:section.start].rstrip() + "\n"
    return markdown


def strip_leading_heading(markdown: str) -> str:
    """Removes a heading the model added on its own first line."""
    lines = (markdown or "").strip().split("\n")
    if lines and re.match(r"^#{1,4}\s+", lines[0]):
        lines = lines[1:]
    return "\n".join(lines).strip()


def count_words(markdown: str) -> int:
    return len(re.findall(r"\b\w+\b", markdown or ""))


def extract_markdown_images(markdown: str) -> List[tuple]:
    """(alt, url) pairs in document order."""
    return [(m.group(1), m.group(2)) for m in IMAGE_PATTERN.finditer(markdown or "")]


def extract_markdown_links(markdown: str) -> List[tuple]:
    """(text, url) pairs for links that are not images."""
    return [(m.group(1), m.group(2)) for m in LINK_PATTERN.finditer(markdown or "")]


def tail(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return "..." + text[-length:].lstrip()


def truncate(text: str, length: int, suffix: str = "...") -> str:
    text = text or ""
    if len(text) <= length:
        return text
    return text[:length].rstrip() + suffix
