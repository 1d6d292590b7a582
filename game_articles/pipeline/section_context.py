"""
Cross-section memory for the Specialist.

After each section is written we pull out the terms it explained so later
sections can refer back instead of explaining the same thing twice.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set

_BOLD = re.compile(r"\*\*([^*]+)\*\*|__([^_]+)__")
_QUOTED = re.compile(r"\"([A-Z][a-zA-Z\s]{2,30})\"")
_PROPER_NOUN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})\b")
_SENTENCE = re.compile(r"(?<=[.!?])\s+")

COMMON_PHRASES = {
    "The Game", "This Guide", "The Player", "The First", "The Last", "The Best", "The Most",
    "The Next", "The Same", "In This", "For Example", "For Instance", "On The", "At The",
    "To The", "From The", "With The", "As The", "By The", "Up The", "Down The", "After The",
    "Before The", "During The",
}

MAX_TOPICS_PER_SECTION = 10
MAX_DEFINED_TERMS = 15


def _norm(term: str) -> str:
    return " ".join(term.lower().split())


def extract_defined_terms(markdown: str) -> Set[str]:
    terms = set()
    for m in _BOLD.finditer(markdown):
        term = (m.group(1) or m.group(2)).strip()
        if 2 <= len(term) <= 50:
            terms.add(term)
    return terms


def extract_covered_topics(markdown: str) -> List[str]:
    """Bold terms, quoted names, and proper nouns mentioned at least twice."""
    topics: Dict[str, str] = {}
    for term in extract_defined_terms(markdown):
        topics.setdefault(_norm(term), term)
    for m in _QUOTED.finditer(markdown):
        topics.setdefault(_norm(m.group(1)), m.group(1).strip())

    counts: Dict[str, int] = {}
    for m in _PROPER_NOUN.finditer(markdown):
        noun = m.group(1).strip()
        if noun not in COMMON_PHRASES:
            counts[noun] = counts.get(noun, 0) + 1
    for noun, count in counts.items():
        if count >= 2:
            topics.setdefault(_norm(noun), noun)
    return list(topics.values())


def _first_sentence(markdown: str) -> str:
    for para in markdown.split("\n\n"):
        para = para.strip()
        if para and not para.startswith(("#", "!", "-", "*", "|")):
            return _SENTENCE.split(para)[0][:200]
    return ""


@dataclass
class CoveredTopic:
    topic: str
    section_headline: str
    section_index: int


@dataclass
class SectionWriteState:
    covered_topics: Dict[str, CoveredTopic] = field(default_factory=dict)
    covered_elements: Set[str] = field(default_factory=set)
    defined_terms: Set[str] = field(default_factory=set)
    headlines: List[str] = field(default_factory=list)
    key_points: List[str] = field(default_factory=list)
    written_text: str = field(default="", repr=False)

    @property
    def sections_written(self) -> int:
        return len(self.headlines)

    def update(self, markdown: str, headline: str, covered_elements: Sequence[str] = ()) -> None:
        index = self.sections_written + 1
        for topic in extract_covered_topics(markdown):
            # first mention wins
            self.covered_topics.setdefault(_norm(topic), CoveredTopic(topic, headline, index))
        for element in covered_elements:
            self.covered_elements.add(_norm(element))
        self.defined_terms.update(_norm(t) for t in extract_defined_terms(markdown))
        self.headlines.append(headline)
        self.key_points.append(_first_sentence(markdown))
        self.written_text += "\n" + _norm(markdown)

    def mentions(self, element: str) -> bool:
        # elements named verbatim anywhere count as covered
        return _norm(element) in self.written_text

    def is_element_covered(self, element: str) -> bool:
        return _norm(element) in self.covered_elements or self.mentions(element)

    def uncovered_elements(self, required: Sequence[str]) -> List[str]:
        return [e for e in required if not self.is_element_covered(e)]

    def build_cross_reference_context(self) -> str:
        if self.sections_written == 0:
            return ""
        lines = ["=== PREVIOUSLY WRITTEN SECTIONS ==="]
        for i, headline in enumerate(self.headlines):
            point = self.key_points[i]
            lines.append(f"- {i + 1}. \"{headline}\"" + (f": {point}" if point else ""))

        by_section: Dict[int, List[CoveredTopic]] = {}
        for topic in self.covered_topics.values():
            by_section.setdefault(topic.section_index, []).append(topic)
        if by_section:
            lines.append("")
            lines.append("=== ALREADY COVERED (DO NOT RE-EXPLAIN) ===")
            lines.append("These were explained in previous sections. Reference briefly, do not re-explain:")
            for index in sorted(by_section):
                topics = by_section[index][:MAX_TOPICS_PER_SECTION]
                lines.append(f"- Section \"{topics[0].section_headline}\": {', '.join(t.topic for t in topics)}")

        if self.defined_terms:
            lines.append("")
            lines.append(
                "Previously bolded terms (do not bold again): "
                + ", ".join(sorted(self.defined_terms)[:MAX_DEFINED_TERMS])
            )
        return "\n".join(lines)

    def build_required_elements_reminder(
        self, required: Sequence[str], section_priorities: Sequence[str] = ()
    ) -> str:
        uncovered = self.uncovered_elements(required)
        priorities = {_norm(p) for p in section_priorities}
        now = [e for e in uncovered if _norm(e) in priorities]
        later = [e for e in uncovered if _norm(e) not in priorities]
        parts = []
        if now:
            parts.append("=== MUST COVER IN THIS SECTION ===\n" + ", ".join(now))
        if later and len(later) <= 5:
            parts.append("=== STILL NEEDS COVERAGE (later sections) ===\n" + ", ".join(later))
        return "\n\n".join(parts)
