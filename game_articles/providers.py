"""
Adapters for the two external capabilities the pipeline consumes:
web search and LLM generation. Agents only see the protocols, so tests can
hand in fakes and production gets LangChain-backed clients.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Type, TypeVar

import requests
from bs4 import BeautifulSoup
from langchain_community.utilities.tavily_search import TavilySearchAPIWrapper
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel

from game_articles.config import QUALITY_MODEL
from game_articles.credentials import CredentialCache
from game_articles.errors import LLMSchemaError
from game_articles.pipeline.agents.utils import logger
from game_articles.pipeline.structured_data import SearchResponse, SearchResultItem, TokenUsage

SchemaT = TypeVar("SchemaT", bound=BaseModel)

# ============================================================================
# SEARCH
# ============================================================================

class SearchProvider(Protocol):
    async def search(
        self,
        query: str,
        max_results: int = 5,
        depth: str = "basic",
        domain_filters: Optional[Sequence[str]] = None,
    ) -> SearchResponse:
        ...


def _to_result_item(raw: Dict[str, Any]) -> Optional[SearchResultItem]:
    url = raw.get("url") or ""
    if not url:
        return None
    score = raw.get("score")
    return SearchResultItem(
        title=raw.get("title") or "",
        url=url,
        content=raw.get("raw_content") or raw.get("content") or raw.get("snippet") or "",
        score=float(score) if isinstance(score, (int, float)) else 0.0,
        published_at=raw.get("published_date") or raw.get("published_at"),
        images=[i for i in raw.get("images") or [] if isinstance(i, str)],
    )


class TavilySearchProvider:
    """Tavily through LangChain. Missing credentials or provider errors yield an empty response."""

    def __init__(self, api_key: Optional[str] = None, credential_ttl_s: float = 3600.0):
        self._credentials = CredentialCache(
            loader=lambda: api_key or os.getenv("TAVILY_API_KEY"),
            ttl_s=credential_ttl_s,
        )

    async def search(
        self,
        query: str,
        max_results: int = 5,
        depth: str = "basic",
        domain_filters: Optional[Sequence[str]] = None,
    ) -> SearchResponse:
        api_key = self._credentials.get()
        if not api_key:
            logger.warning("TAVILY_API_KEY missing. Skipping search.")
            return SearchResponse()
        try:
            wrapper = TavilySearchAPIWrapper(tavily_api_key=api_key)
            raw = await wrapper.raw_results_async(
                query,
                max_results=max_results,
                search_depth=depth,
                include_domains=list(domain_filters or []),
                include_answer=True,
            )
        except Exception as e:
            logger.warning(f"Search failed for '{query}': {e}")
            if "401" in str(e) or "unauthorized" in str(e).lower():
                self._credentials.invalidate()
            return SearchResponse()
        results = [item for item in (_to_result_item(r) for r in raw.get("results") or []) if item is not None]
        return SearchResponse(results=results, answer=raw.get("answer") or "")

# ============================================================================
# LLM
# ============================================================================

@dataclass
class LLMResponse:
    value: Any
    usage: TokenUsage = field(default_factory=TokenUsage)


class LLMClient(Protocol):
    model_name: str

    async def generate_structured(
        self,
        system: str,
        user: str,
        schema: Type[SchemaT],
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        ...

    async def generate_text(
        self,
        system: str,
        user: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        ...


def _usage_from(message: Any) -> TokenUsage:
    meta = getattr(message, "usage_metadata", None) or {}
    return TokenUsage(
        input_tokens=int(meta.get("input_tokens", 0) or 0),
        output_tokens=int(meta.get("output_tokens", 0) or 0),
    )


class LangChainLLM:
    """ChatOpenAI-backed client. One ChatOpenAI per (temperature, max_tokens) pair."""

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.2,
        api_key: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ):
        self.model_name = model or QUALITY_MODEL
        self._temperature = temperature
        self._api_key = api_key
        self._request_timeout = request_timeout
        self._models: Dict[Tuple[float, Optional[int]], ChatOpenAI] = {}

    def _chat(self, temperature: Optional[float], max_tokens: Optional[int] = None) -> ChatOpenAI:
        key = (self._temperature if temperature is None else temperature, max_tokens)
        if key not in self._models:
            kwargs: Dict[str, Any] = {"model": self.model_name, "temperature": key[0]}
            if max_tokens:
                kwargs["max_tokens"] = max_tokens
            if self._api_key:
                kwargs["api_key"] = self._api_key
            if self._request_timeout:
                kwargs["timeout"] = self._request_timeout
            self._models[key] = ChatOpenAI(**kwargs)
        return self._models[key]

    async def generate_structured(self, system, user, schema, temperature=None) -> LLMResponse:
        structured = self._chat(temperature).with_structured_output(schema, include_raw=True)
        out = await structured.ainvoke([SystemMessage(content=system), HumanMessage(content=user)])
        usage = _usage_from(out.get("raw"))
        if out.get("parsing_error") is not None:
            raise LLMSchemaError(str(out["parsing_error"]))
        if out.get("parsed") is None:
            raise LLMSchemaError("model returned no structured output")
        return LLMResponse(value=out["parsed"], usage=usage)

    async def generate_text(self, system, user, temperature=None, max_tokens=None) -> LLMResponse:
        message = await self._chat(temperature, max_tokens).ainvoke(
            [SystemMessage(content=system), HumanMessage(content=user)]
        )
        return LLMResponse(value=(message.content or "").strip(), usage=_usage_from(message))

# ============================================================================
# PAGE READER
# ============================================================================

class PageReader:
    """Fetches readable page text. Jina Reader first, BeautifulSoup fallback."""

    def __init__(self, timeout_s: float = 15.0, use_jina: bool = True):
        self.timeout_s = timeout_s
        self.use_jina = use_jina

    def _fallback(self, url: str, max_words: int) -> str:
        try:
            headers = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"}
            response = requests.get(url, headers=headers, timeout=self.timeout_s)
            if response.status_code != 200:
                return ""
            soup = BeautifulSoup(response.text, "html.parser")
            for tag in soup(["script", "style", "nav", "footer", "aside"]):
                tag.decompose()
            words = soup.get_text(separator=" ", strip=True).split()
            return " ".join(words[:max_words])
        except requests.RequestException as e:
            logger.warning(f"Fallback read failed for {url}: {e}")
            return ""

    def read_sync(self, url: str, max_words: int = 1500) -> str:
        if not url.startswith("http"):
            return ""
        if not self.use_jina:
            return self._fallback(url, max_words)
        try:
            response = requests.get(
                f"https://r.jina.ai/{url}", headers={"Accept": "text/plain"}, timeout=self.timeout_s
            )
        except requests.RequestException as e:
            logger.warning(f"Jina Reader exception on {url}: {e}. Attempting fallback.")
            return self._fallback(url, max_words)
        if response.status_code != 200:
            logger.warning(f"Jina Reader failed ({response.status_code}) for {url}. Attempting fallback.")
            return self._fallback(url, max_words)
        words = response.text.split()
        if len(words) < 50:
            return self._fallback(url, max_words)
        return " ".join(words[:max_words])

    async def read(self, url: str, max_words: int = 1500) -> str:
        return await asyncio.to_thread(self.read_sync, url, max_words)
