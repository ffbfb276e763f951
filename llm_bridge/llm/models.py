"""LLM data models.

Caller-facing inputs (chat messages, model parameters, trace parameters) and
the vendor-neutral request/response models the providers work with.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..ingestion.types import AuthCheck


class ChatMessageRole(str, Enum):
    """Role of a chat message as authored by the caller."""

    SYSTEM = "system"
    DEVELOPER = "developer"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    MODEL = "model"


class ChatMessageType(str, Enum):
    """Shape of a chat message."""

    DEFAULT = "default"
    TOOL_RESULT = "tool-result"
    ASSISTANT_TOOL_CALL = "assistant-tool-call"


class LLMAdapter(str, Enum):
    """Vendor SDK or protocol handling a completion request."""

    OPENAI = "openai"
    AZURE = "azure"
    ANTHROPIC = "anthropic"
    BEDROCK = "bedrock"
    VERTEX_AI = "google-vertex-ai"
    GOOGLE_AI_STUDIO = "google-ai-studio"
    POWERRAG = "powerrag"


class LLMToolCall(BaseModel):
    """A single tool invocation chosen by the model."""

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """A caller-supplied message in the conversation."""

    model_config = ConfigDict(frozen=True)

    role: ChatMessageRole
    type: ChatMessageType = ChatMessageType.DEFAULT
    content: Any = ""  # text or any JSON value
    tool_call_id: str | None = None
    tool_calls: list[LLMToolCall] | None = None


class ModelParams(BaseModel):
    """Per-call model configuration."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    adapter: LLMAdapter | str
    provider: str
    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    provider_options: dict[str, Any] | None = None

    @field_validator("adapter", mode="before")
    @classmethod
    def _coerce_adapter(cls, value: Any) -> Any:
        # Unknown tags pass through and are rejected by the provider factory
        try:
            return LLMAdapter(value)
        except ValueError:
            return value


class LLMToolDefinition(BaseModel):
    """A function-like capability the model may call."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolCallResponse(BaseModel):
    """Validated result of a tool-call completion."""

    content: str | list[Any]
    tool_calls: list[LLMToolCall]


TokenCountDelegate = Callable[[str, str], int | None]


class TraceParams(BaseModel):
    """Enables tracing of a completion call into the given project."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    project_id: str
    trace_id: str
    trace_name: str | None = None
    environment: str = "default"
    auth_check: AuthCheck
    token_count_delegate: TokenCountDelegate | None = None


ProcessTracedEvents = Callable[[], Awaitable[None]]


class LLMCompletionParams(BaseModel):
    """Everything needed for one completion call.

    The api_key is excluded from repr so it cannot leak through logs.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: list[ChatMessage]
    model_params: ModelParams
    api_key: str = Field(repr=False)
    base_url: str | None = None
    extra_headers: dict[str, str] | None = Field(default=None, repr=False)
    max_retries: int | None = None
    config: dict[str, Any] | None = None
    trace_params: TraceParams | None = None
    throw_on_error: bool = True
    streaming: bool = False
    tools: list[LLMToolDefinition] | None = None
    structured_output_schema: type[BaseModel] | dict[str, Any] | None = None
    callbacks: list[Any] | None = None


@dataclass
class CompletionResult:
    """Normalized completion plus the hook that flushes traced events."""

    completion: str | dict[str, Any] | ToolCallResponse | AsyncIterator[bytes]
    process_traced_events: ProcessTracedEvents


# Vendor-neutral wire models


class PromptMessage(BaseModel):
    """A normalized message ready for conversion to a vendor format."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_call_id: str | None = None
    tool_calls: list[LLMToolCall] | None = None


class ResponseFormat(BaseModel):
    """Structured output format configuration."""

    type: Literal["text", "json_object", "json_schema"]
    json_schema: dict[str, Any] | None = None
    name: str = "response"


class LLMRequest(BaseModel):
    """Vendor-neutral LLM request."""

    model_config = ConfigDict(protected_namespaces=())

    messages: list[PromptMessage]
    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    response_format: ResponseFormat | None = None
    tools: list[dict[str, Any]] | None = None
    provider_options: dict[str, Any] | None = None


class Usage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class LLMResponse(BaseModel):
    """Vendor-neutral LLM response."""

    text: str | None
    tool_calls: list[dict[str, Any]] | None = None
    parsed: dict[str, Any] | None = None
    finish_reason: str = "stop"
    usage: Usage | None = None
    model: str
    provider: str
    latency_ms: int = 0
    request_id: str | None = None
