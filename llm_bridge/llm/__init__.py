"""LLM completion layer.

This module provides a single vendor-neutral entry point for chat completions
across OpenAI, Azure OpenAI, Anthropic, Bedrock, Google and PowerRAG, with
optional tracing into the ingestion pipeline.
"""

from .completion import execute_completion, fetch_llm_completion
from .errors import (
    AuthenticationError,
    ContentFilterError,
    InvalidRequestError,
    LLMError,
    LLMValidationError,
    ModelNotFoundError,
    PowerRAGError,
    ProviderError,
    RateLimitError,
    StructuredOutputError,
    TimeoutError,
    ToolCallParseError,
    TraceCreationError,
    UnsupportedAdapterError,
)
from .messages import normalize_messages
from .models import (
    ChatMessage,
    ChatMessageRole,
    ChatMessageType,
    CompletionResult,
    LLMAdapter,
    LLMCompletionParams,
    LLMToolCall,
    LLMToolDefinition,
    ModelParams,
    ToolCallResponse,
    TraceParams,
)
from .tracing import CallbackHandler, LLMRun, TraceRecorder

__all__ = [
    "fetch_llm_completion",
    "execute_completion",
    "normalize_messages",
    "ChatMessage",
    "ChatMessageRole",
    "ChatMessageType",
    "CompletionResult",
    "LLMAdapter",
    "LLMCompletionParams",
    "LLMToolCall",
    "LLMToolDefinition",
    "ModelParams",
    "ToolCallResponse",
    "TraceParams",
    "CallbackHandler",
    "LLMRun",
    "TraceRecorder",
    "LLMError",
    "AuthenticationError",
    "RateLimitError",
    "TimeoutError",
    "InvalidRequestError",
    "ContentFilterError",
    "ProviderError",
    "ModelNotFoundError",
    "PowerRAGError",
    "LLMValidationError",
    "StructuredOutputError",
    "ToolCallParseError",
    "UnsupportedAdapterError",
    "TraceCreationError",
]
