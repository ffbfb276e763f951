"""Services package for worker-facing LLM helpers."""

from . import llm_service

from .llm_service import (
    LLMApiKey,
    call_llm,
    call_structured_llm,
    with_llm_error_handling,
)

__all__ = [
    "llm_service",
    "LLMApiKey",
    "call_llm",
    "call_structured_llm",
    "with_llm_error_handling",
]
