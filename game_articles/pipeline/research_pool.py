"""
Research Pool
In-memory, per-run store of search results. Queries and URLs are
normalized on the way in so the same search is never paid for twice and
the same page is never counted as two sources.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urlsplit

from game_articles.config import PREFERRED_DOMAINS
from game_articles.pipeline.structured_data import CategorizedSearchResult, SearchResponse, SearchResultItem

SECTION_SPECIFIC = "section-specific"

# Weighting of the two 0-100 scores when ranking sources for the Editor.
QUALITY_WEIGHT = 0.5
RELEVANCE_WEIGHT = 0.5
DEFAULT_RELEVANCE = 50.0

IRRELEVANT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bporn\b", r"\bxxx\b", r"\bnsfw\b", r"xhamster", r"pornhub", r"xvideos",
        r"\bamazon\.com/(?!.*game)", r"\bebay\.com", r"\baliexpress",
        r"twitter\.com/\w+$", r"facebook\.com/\w+$", r"instagram\.com/\w+$",
        r"fextralife\.com/forums",
        r"docs\.python\.org", r"docs\.oracle\.com", r"\bstackoverflow\.com",
        r"\bhouzz\.com", r"\bzillow\.com", r"\brealtor\.com",
    )
]


def normalize_query(query: str) -> str:
    return re.sub(r"\s+", " ", (query or "").strip().lower())


def normalize_url(url: str) -> str:
    """Drops query string and fragment, lowercases host and path, trims the trailing slash."""
    raw = (url or "").strip()
    if not raw:
        return ""
    parts = urlsplit(raw if "://" in raw else f"https://{raw}")
    if not parts.netloc:
        return ""
    scheme = (parts.scheme or "https").lower()
    path = parts.path.lower().rstrip("/")
    return f"{scheme}://{parts.netloc.lower()}{path}"


def extract_domain(url: str) -> str:
    netloc = urlsplit(normalize_url(url)).netloc
    return netloc[4:] if netloc.startswith("www.") else netloc


def quick_relevance_check(url: str, title: str = "") -> Optional[str]:
    """Returns the reason a result is obviously off-topic, or None if it may be kept."""
    combined = f"{url} {title}".lower()
    for pattern in IRRELEVANT_PATTERNS:
        if pattern.search(combined):
            return f"matched pattern {pattern.pattern}"
    return None


def quality_score(item: SearchResultItem) -> float:
    if item.quality_score is not None:
        return float(item.quality_score)
    score = item.score or 0.0
    # Providers report 0-1 relevance; scale it onto 0-100.
    return max(0.0, min(100.0, score * 100 if score <= 1 else score))


def relevance_score(item: SearchResultItem) -> float:
    if item.relevance_score is not None:
        return float(item.relevance_score)
    return DEFAULT_RELEVANCE


def combined_score(item: SearchResultItem) -> float:
    return QUALITY_WEIGHT * quality_score(item) + RELEVANCE_WEIGHT * relevance_score(item)


_STOPWORDS = {
    "the", "and", "for", "with", "from", "into", "how", "what", "best", "guide", "tips",
    "game", "games", "new", "all", "are", "you", "your", "2023", "2024", "2025",
}
_WORD = re.compile(r"[a-z0-9']+")


def _query_terms(query: str) -> List[str]:
    return [w for w in dict.fromkeys(_WORD.findall(normalize_query(query))) if len(w) > 2 and w not in _STOPWORDS]


def score_result(
    item: SearchResultItem, query: str, preferred_domains: Sequence[str] = PREFERRED_DOMAINS
) -> SearchResultItem:
    """
    Fills in the 0-100 relevance and quality scores a provider left empty.

    relevance: share of the query's content words found in the body (60%) and the title (40%)
    quality:   provider score, +15 for a preferred or wiki domain, +10 for a substantial body,
               -20 for a snippet under 20 words
    """
    updates = {}
    if item.relevance_score is None:
        terms = _query_terms(query)
        if terms:
            title = item.title.lower()
            body = item.content.lower()
            in_body = sum(1 for t in terms if t in body) / len(terms)
            in_title = sum(1 for t in terms if t in title) / len(terms)
            updates["relevance_score"] = round(100 * (0.6 * in_body + 0.4 * in_title), 1)
    if item.quality_score is None:
        quality = quality_score(item)
        domain = extract_domain(item.url)
        if "wiki" in domain or any(domain == d or domain.endswith("." + d) for d in preferred_domains):
            quality += 15
        words = len(item.content.split())
        if words >= 150:
            quality += 10
        elif words < 20:
            quality -= 20
        updates["quality_score"] = round(max(0.0, min(100.0, quality)), 1)
    return item.model_copy(update=updates) if updates else item


@dataclass(frozen=True)
class RankedSource:
    query: str
    item: SearchResultItem
    quality: float
    relevance: float
    combined: float


SearchFn = Callable[[str], Awaitable[SearchResponse]]


class ResearchPool:
    """
    Owned by exactly one generation run. Never shared, never persisted.

    scout_findings: category -> results in the order they were recorded
    all_urls:       normalized URLs seen so far
    query_cache:    normalized query -> its recorded result
    """

    def __init__(self):
        self.scout_findings: Dict[str, List[CategorizedSearchResult]] = {}
        self.all_urls: Set[str] = set()
        self.query_cache: Dict[str, CategorizedSearchResult] = {}
        self._ordered_urls: List[str] = []
        self._inflight: Dict[str, "asyncio.Task[CategorizedSearchResult]"] = {}

    # -- recording ---------------------------------------------------------

    def record_result(
        self,
        query: str,
        category: str,
        results: Iterable[SearchResultItem],
        answer: str = "",
    ) -> CategorizedSearchResult:
        key = normalize_query(query)
        cached = self.query_cache.get(key)
        if cached is not None:
            return cached

        kept: List[SearchResultItem] = []
        seen_in_entry: Set[str] = set()
        for item in results:
            url = normalize_url(item.url)
            if not url or url in seen_in_entry:
                continue
            seen_in_entry.add(url)
            kept.append(item)
            if url not in self.all_urls:
                self.all_urls.add(url)
                self._ordered_urls.append(item.url)

        entry = CategorizedSearchResult(
            query=" ".join(query.split()), category=category, results=kept, answer=answer or ""
        )
        self.query_cache[key] = entry
        if category != SECTION_SPECIFIC:
            self.scout_findings.setdefault(category, []).append(entry)
        return entry

    async def get_or_search(self, query: str, category: str, search: SearchFn) -> CategorizedSearchResult:
        """
        Returns the cached entry, or runs `search` once, scores its results and
        records them with the provider answer.
        Concurrent callers asking for the same normalized query share one call.
        """
        key = normalize_query(query)
        cached = self.query_cache.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        async def _run() -> CategorizedSearchResult:
            response = await search(query)
            scored = [score_result(item, query) for item in response.results]
            return self.record_result(query, category, scored, response.answer)

        task = asyncio.ensure_future(_run())
        self._inflight[key] = task
        try:
            return await task
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    # -- lookup ------------------------------------------------------------

    def has(self, query: str) -> bool:
        return normalize_query(query) in self.query_cache

    def find(self, query: str) -> Optional[CategorizedSearchResult]:
        return self.query_cache.get(normalize_query(query))

    @property
    def url_count(self) -> int:
        return len(self.all_urls)

    @property
    def query_count(self) -> int:
        return len(self.query_cache)

    @property
    def source_urls(self) -> List[str]:
        """Distinct URLs in first-seen order."""
        return list(self._ordered_urls)

    def findings(self, categories: Sequence[str]) -> List[CategorizedSearchResult]:
        out: List[CategorizedSearchResult] = []
        for category in categories:
            out.extend(self.scout_findings.get(category, []))
        return out

    def new_queries(self, queries: Iterable[str]) -> List[str]:
        """Deduplicated queries that are not yet in the cache."""
        return [q for q in deduplicate_queries(queries) if not self.has(q)]

    def extract_for_queries(
        self, queries: Sequence[str], include_overview: bool = True
    ) -> List[CategorizedSearchResult]:
        """
        Findings whose normalized query equals, or starts with, one of `queries`.
        Overview findings are appended last when requested.
        """
        wanted = [normalize_query(q) for q in queries if q and q.strip()]
        picked: List[CategorizedSearchResult] = []
        seen: Set[str] = set()

        for w in wanted:
            for key, entry in self.query_cache.items():
                if key in seen:
                    continue
                if key == w or key.startswith(w):
                    seen.add(key)
                    picked.append(entry)

        if include_overview:
            for entry in self.scout_findings.get("overview", []):
                key = normalize_query(entry.query)
                if key not in seen:
                    seen.add(key)
                    picked.append(entry)
        return picked

    def top_sources_per_query(self, limit: Optional[int] = None) -> List[RankedSource]:
        """Best result of every distinct query, best first."""
        ranked: List[RankedSource] = []
        for entry in self.query_cache.values():
            if not entry.results:
                continue
            best = max(entry.results, key=combined_score)
            ranked.append(RankedSource(
                query=entry.query,
                item=best,
                quality=quality_score(best),
                relevance=relevance_score(best),
                combined=combined_score(best),
            ))
        ranked.sort(key=lambda r: r.combined, reverse=True)
        return ranked[:limit] if limit else ranked


def deduplicate_queries(queries: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for q in queries:
        key = normalize_query(q)
        if key and key not in seen:
            seen.add(key)
            out.append(q.strip())
    return out
