"""LLM completion bridge with tracing into the ingestion pipeline."""

from .llm import CompletionResult, LLMCompletionParams, fetch_llm_completion

__all__ = [
    "CompletionResult",
    "LLMCompletionParams",
    "fetch_llm_completion",
]
