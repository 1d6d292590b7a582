"""
Runtime configuration.

Secrets and model names come from the environment (a local .env file is
loaded first). Timeouts and tuning constants live in pydantic models so a
caller can override any of them per run and still get validation.
"""

import os
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


FAST_MODEL = os.getenv("LLM_FAST_MODEL", "gpt-4o-mini")
QUALITY_MODEL = os.getenv("LLM_QUALITY_MODEL", "gpt-4o-mini")

# Sites that consistently carry usable game coverage.
PREFERRED_DOMAINS: Tuple[str, ...] = (
    "fandom.com",
    "ign.com",
    "polygon.com",
    "gamespot.com",
    "eurogamer.net",
    "kotaku.com",
    "pcgamer.com",
    "rockpapershotgun.com",
)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    initial_delay_s: float = Field(default=1.0, ge=0)
    max_delay_s: float = Field(default=10.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    @model_validator(mode="after")
    def _check_delays(self):
        if self.initial_delay_s > self.max_delay_s:
            raise ValueError("initial_delay_s must not exceed max_delay_s")
        return self


class TimeoutConfig(BaseModel):
    search_s: float = Field(default_factory=lambda: _env_float("SEARCH_TIMEOUT_S", 30.0), gt=0)
    llm_s: float = Field(default_factory=lambda: _env_float("LLM_TIMEOUT_S", 120.0), gt=0)


class ScoutConfig(BaseModel):
    overview_max_results: int = 8
    overview_depth: str = "advanced"
    category_max_results: int = 6
    category_depth: str = "advanced"
    recent_max_results: int = 5
    recent_depth: str = "basic"
    temperature: float = Field(default=0.2, ge=0, le=2)
    max_results_per_context: int = 5
    max_snippet_length: int = 800
    key_findings_limit: int = 3
    recent_results_limit: int = 3
    recent_snippet_length: int = 300
    min_sources_warning: int = 5
    min_queries_warning: int = 3
    min_overview_length: int = 50
    deep_read_top_n: int = Field(default_factory=lambda: _env_int("SCOUT_DEEP_READ", 0), ge=0)
    deep_read_max_words: int = 1500
    preferred_domains: Tuple[str, ...] = PREFERRED_DOMAINS


class EditorConfig(BaseModel):
    temperature: float = Field(default=0.4, ge=0, le=2)
    top_sources_limit: int = 8
    research_summary_length: int = 3000
    full_context_length: int = 6000


class SpecialistConfig(BaseModel):
    top_results_per_query: int = Field(default=3, ge=1)
    research_context_per_result: int = Field(default=600, ge=50)
    context_tail_length: int = 500
    min_paragraphs: int = 2
    max_paragraphs: int = 5
    max_scout_overview_length: int = 2500
    thin_research_threshold: int = 500
    temperature: float = Field(default=0.6, ge=0, le=2)
    max_output_tokens: int = 1500
    batch_concurrency: int = Field(default=3, ge=1)
    batch_delay_s: float = 0.2
    max_sources: int = 25

    @model_validator(mode="after")
    def _check_paragraphs(self):
        if self.min_paragraphs > self.max_paragraphs:
            raise ValueError("min_paragraphs must not exceed max_paragraphs")
        return self


class ReviewerConfig(BaseModel):
    temperature: float = Field(default=0.1, ge=0, le=2)
    max_content_length: int = 20000
    research_summary_length: int = 4000
    major_issues_for_revision: int = 3


class PipelineConfig(BaseModel):
    fast_model: str = FAST_MODEL
    quality_model: str = QUALITY_MODEL
    max_revisions: int = Field(default=1, ge=0, le=3)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    scout: ScoutConfig = Field(default_factory=ScoutConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    specialist: SpecialistConfig = Field(default_factory=SpecialistConfig)
    reviewer: ReviewerConfig = Field(default_factory=ReviewerConfig)


# USD per million tokens (input, output).
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1": (2.00, 8.00),
    "o4-mini": (1.10, 4.40),
}


def get_model_pricing(model: str) -> Optional[Tuple[float, float]]:
    """Looks up pricing by exact name first, then by the longest matching prefix."""
    if not model:
        return None
    name = model.split("/")[-1].lower()
    if name in MODEL_PRICING:
        return MODEL_PRICING[name]
    for key in sorted(MODEL_PRICING, key=len, reverse=True):
        if name.startswith(key):
            return MODEL_PRICING[key]
    return None


def load_config(**overrides) -> PipelineConfig:
    return PipelineConfig(**overrides)
