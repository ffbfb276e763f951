"""Anthropic provider implementation.

Implements the LLMProvider interface for Anthropic's Messages API.
Supports structured outputs via tool_use pattern (since Anthropic doesn't have native json_schema).
"""

import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from anthropic import (
    AsyncAnthropic,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
)

from ..errors import (
    ProviderError,
    TimeoutError,
    error_for_status,
    parse_retry_after,
)
from ..models import LLMRequest, LLMResponse, Usage
from .base import LLMProvider

STRUCTURED_OUTPUT_TOOL = "respond_with_json"
DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider.

    Supports:
    - Structured outputs via tool_use pattern
    - Function/tool calling
    - Streaming

    Note: Anthropic doesn't have native json_schema mode, but we achieve
    similar results using tool_use with a "respond" tool that has the schema.
    """

    # Supported capabilities
    SUPPORTED_FEATURES = (
        "json_schema",  # Via tool_use pattern
        "tools",
        "streaming",
    )

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        extra_headers: dict[str, str] | None = None,
        max_retries: int | None = None,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key.
            base_url: Override for the Messages API endpoint.
            extra_headers: Headers sent with every request.
            max_retries: SDK retry count; SDK default when None.
            timeout: Request timeout in seconds.
            http_client: Shared HTTP client carrying proxy settings.
        """
        self._api_key = api_key
        self._base_url = base_url
        self._extra_headers = extra_headers
        self._max_retries = max_retries
        self._timeout = timeout
        self._http_client = http_client
        self._client: AsyncAnthropic | None = None

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "anthropic"

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy-initialized Anthropic client."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "api_key": self._api_key,
                "timeout": self._timeout,
            }
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._extra_headers:
                kwargs["default_headers"] = self._extra_headers
            if self._max_retries is not None:
                kwargs["max_retries"] = self._max_retries
            if self._http_client is not None:
                kwargs["http_client"] = self._http_client
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    def supports(self, feature: str) -> bool:
        """Check if feature is supported."""
        return feature in self.SUPPORTED_FEATURES

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request to Anthropic.

        Args:
            request: Vendor-neutral LLM request.

        Returns:
            Vendor-neutral LLM response.

        Raises:
            Various LLMError subclasses based on the error type.
        """
        start_time = time.perf_counter()

        # Build Anthropic-specific request
        anthropic_request = self._build_request(request)
        response = await self._create(anthropic_request, request.model)
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_response(response, latency_ms, request)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """Open a streaming message."""
        anthropic_request = self._build_request(request)
        anthropic_request["stream"] = True
        response = await self._create(anthropic_request, request.model)
        return self._iter_deltas(response)

    async def _iter_deltas(self, response: Any) -> AsyncIterator[str]:
        async for event in response:
            if event.type != "content_block_delta":
                continue
            if getattr(event.delta, "type", None) == "text_delta":
                yield event.delta.text

    async def _create(self, anthropic_request: dict[str, Any], model: str) -> Any:
        try:
            return await self.client.messages.create(**anthropic_request)

        except APITimeoutError as e:
            raise TimeoutError(
                f"Anthropic request timed out after {self._timeout}s",
                provider=self.name,
                model=model,
            ) from e

        except APIConnectionError as e:
            raise ProviderError(
                f"Failed to connect to Anthropic: {e}",
                provider=self.name,
                model=model,
            ) from e

        except APIStatusError as e:
            self._handle_api_error(e, model)

    def _build_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to Anthropic API format."""
        # Separate system messages from conversation messages
        system_parts = []
        messages: list[dict[str, Any]] = []

        for msg in request.messages:
            if msg.role == "system":
                # Anthropic takes system as a top-level parameter
                system_parts.append(msg.content)
            elif msg.role == "tool":
                # Convert tool response to Anthropic format
                messages.append({
                    "role": "user",
                    "content": [{
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id,
                        "content": msg.content,
                    }],
                })
            elif msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                content.extend(
                    {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.args}
                    for tc in msg.tool_calls
                )
                messages.append({"role": "assistant", "content": content})
            else:
                # user or assistant messages
                messages.append({"role": msg.role, "content": msg.content})

        anthropic_request: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        }

        if system_parts:
            anthropic_request["system"] = "\n".join(system_parts)

        # Anthropic accepts temperatures in 0-1
        if request.temperature is not None:
            anthropic_request["temperature"] = min(request.temperature, 1.0)
        if request.top_p is not None:
            anthropic_request["top_p"] = request.top_p

        # Handle structured output via tool_use pattern
        if request.response_format and request.response_format.type in ("json_schema", "json_object"):
            schema = request.response_format.json_schema or {"type": "object"}
            # Create a tool that forces structured output
            anthropic_request["tools"] = [{
                "name": STRUCTURED_OUTPUT_TOOL,
                "description": "Respond with structured JSON data matching the required schema.",
                "input_schema": schema,
            }]
            # Force the model to use this tool
            anthropic_request["tool_choice"] = {"type": "tool", "name": STRUCTURED_OUTPUT_TOOL}

        elif request.tools:
            # Convert standard tools to Anthropic format
            anthropic_request["tools"] = [
                {
                    "name": tool["function"]["name"],
                    "description": tool["function"].get("description", ""),
                    "input_schema": tool["function"]["parameters"],
                }
                for tool in request.tools
                if tool.get("type") == "function"
            ]

        if request.provider_options:
            anthropic_request.update(request.provider_options)

        return anthropic_request

    def _parse_response(
        self, response: Any, latency_ms: int, request: LLMRequest
    ) -> LLMResponse:
        """Convert Anthropic response to LLMResponse."""
        # Extract text and tool calls from content blocks
        text_parts = []
        tool_calls = []
        parsed = None

        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                # Check if this is our structured output tool
                if block.name == STRUCTURED_OUTPUT_TOOL and request.response_format:
                    parsed = block.input
                else:
                    tool_calls.append({
                        "id": block.id,
                        "name": block.name,
                        "args": block.input,
                    })

        text = "".join(text_parts) if text_parts else None

        # Map Anthropic stop reasons to our format
        finish_reason_map = {
            "end_turn": "stop",
            "max_tokens": "length",
            "stop_sequence": "stop",
            "tool_use": "tool_calls",
        }
        finish_reason = finish_reason_map.get(response.stop_reason, response.stop_reason)

        return LLMResponse(
            text=text,
            tool_calls=tool_calls if tool_calls else None,
            parsed=parsed,
            finish_reason=finish_reason or "stop",
            usage=Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            model=response.model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.id,
        )

    def _handle_api_error(self, error: APIStatusError, model: str) -> None:
        """Convert Anthropic API errors to LLMError types."""
        message = str(error.message) if hasattr(error, "message") else str(error)
        response = getattr(error, "response", None)
        raise error_for_status(
            error.status_code,
            message,
            provider=self.name,
            model=model,
            request_id=getattr(error, "request_id", None),
            retry_after=parse_retry_after(response.headers if response else None),
        ) from error
