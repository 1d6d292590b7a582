"""
Error taxonomy for the article pipeline.

Soft failures (a single search, a single parse) are logged and turned into
issues by the stage that hit them. Only hard failures leave a stage, and
they always leave as ArticleGenerationError so the caller sees which stage
broke and why.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    CONTEXT_INVALID = "CONTEXT_INVALID"
    SCOUT_FAILED = "SCOUT_FAILED"
    EDITOR_FAILED = "EDITOR_FAILED"
    SPECIALIST_FAILED = "SPECIALIST_FAILED"
    REVIEWER_FAILED = "REVIEWER_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    PIPELINE_FAILED = "PIPELINE_FAILED"


class ArticleGenerationError(Exception):
    """Hard failure of a generation run, tagged with the stage that raised it."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        stage: str = "pipeline",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.stage = stage
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "stage": self.stage,
            "message": self.message,
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.stage}: {self.message}"


class LLMSchemaError(Exception):
    """The model answered, but the answer did not match the requested schema."""


class LLMTimeoutError(Exception):
    """An LLM call exceeded its time budget."""
