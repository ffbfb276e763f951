"""OpenAI provider implementation.

Implements the LLMProvider interface for OpenAI's Chat Completions API and
for Azure OpenAI deployments, which share the same wire format.
Supports structured outputs via response_format.json_schema.
"""

import json
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAzureOpenAI,
    AsyncOpenAI,
)

from ..errors import (
    LLMValidationError,
    ProviderError,
    TimeoutError,
    ToolCallParseError,
    error_for_status,
    parse_retry_after,
)
from ..models import LLMRequest, LLMResponse, Usage
from .base import LLMProvider

AZURE_API_VERSION = "2025-02-01-preview"


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions API provider.

    Supports:
    - Structured outputs via response_format.json_schema
    - JSON object mode
    - Function/tool calling
    - Streaming
    """

    # Supported capabilities
    SUPPORTED_FEATURES = (
        "json_schema",
        "json_object",
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
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key.
            base_url: Override for OpenAI-compatible endpoints.
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
        self._client: AsyncOpenAI | None = None

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "openai"

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "api_key": self._api_key,
            "timeout": self._timeout,
        }
        if self._extra_headers:
            kwargs["default_headers"] = self._extra_headers
        if self._max_retries is not None:
            kwargs["max_retries"] = self._max_retries
        if self._http_client is not None:
            kwargs["http_client"] = self._http_client
        return kwargs

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy-initialized OpenAI client."""
        if self._client is None:
            kwargs = self._client_kwargs()
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def supports(self, feature: str) -> bool:
        """Check if feature is supported."""
        return feature in self.SUPPORTED_FEATURES

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request to OpenAI.

        Args:
            request: Vendor-neutral LLM request.

        Returns:
            Vendor-neutral LLM response.

        Raises:
            Various LLMError subclasses based on the error type.
        """
        start_time = time.perf_counter()

        # Build OpenAI-specific request
        openai_request = self._build_request(request)
        response = await self._create(openai_request, request.model)
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_response(response, latency_ms, request)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """Open a streaming chat completion."""
        openai_request = self._build_request(request)
        openai_request["stream"] = True
        response = await self._create(openai_request, request.model)
        return self._iter_deltas(response)

    async def _iter_deltas(self, response: Any) -> AsyncIterator[str]:
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta

    async def _create(self, openai_request: dict[str, Any], model: str) -> Any:
        try:
            return await self.client.chat.completions.create(**openai_request)

        except APITimeoutError as e:
            raise TimeoutError(
                f"OpenAI request timed out after {self._timeout}s",
                provider=self.name,
                model=model,
            ) from e

        except APIConnectionError as e:
            raise ProviderError(
                f"Failed to connect to OpenAI: {e}",
                provider=self.name,
                model=model,
            ) from e

        except APIStatusError as e:
            self._handle_api_error(e, model)

    def _build_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to OpenAI API format."""
        # Convert messages
        messages = []
        for msg in request.messages:
            openai_msg: dict[str, Any] = {
                "role": msg.role,
                "content": msg.content,
            }
            if msg.tool_call_id:
                openai_msg["tool_call_id"] = msg.tool_call_id
            if msg.tool_calls:
                openai_msg["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.args),
                        },
                    }
                    for tc in msg.tool_calls
                ]
            messages.append(openai_msg)

        openai_request: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
        }

        # Optional parameters
        if request.temperature is not None:
            openai_request["temperature"] = request.temperature
        if request.max_tokens:
            openai_request["max_tokens"] = request.max_tokens
        if request.top_p is not None:
            openai_request["top_p"] = request.top_p

        if request.response_format:
            if request.response_format.type == "json_schema":
                openai_request["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": request.response_format.name,
                        # Caller schemas rarely satisfy strict-mode restrictions
                        "strict": False,
                        "schema": request.response_format.json_schema,
                    },
                }
            elif request.response_format.type == "json_object":
                openai_request["response_format"] = {"type": "json_object"}
            # "text" is the default, no need to set

        if request.tools:
            openai_request["tools"] = request.tools

        if request.provider_options:
            openai_request.update(request.provider_options)

        return openai_request

    def _parse_response(
        self, response: Any, latency_ms: int, request: LLMRequest
    ) -> LLMResponse:
        """Convert OpenAI response to LLMResponse."""
        choice = response.choices[0]
        message = choice.message

        # Extract tool calls if present
        tool_calls = None
        if message.tool_calls:
            tool_calls = []
            for tc in message.tool_calls:
                try:
                    args = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError as e:
                    raise ToolCallParseError() from e
                tool_calls.append({"id": tc.id, "name": tc.function.name, "args": args})

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return LLMResponse(
            text=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            model=response.model or request.model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.id,
        )

    def _handle_api_error(self, error: APIStatusError, model: str) -> None:
        """Convert OpenAI API errors to LLMError types."""
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


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI provider.

    The base URL is the resource endpoint and the model name is used as the
    deployment name.
    """

    def __init__(self, api_key: str, deployment: str, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        if not self._base_url:
            raise LLMValidationError("Azure OpenAI requires a base URL")
        self._deployment = deployment

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "azure"

    @property
    def client(self) -> AsyncAzureOpenAI:
        """Lazy-initialized Azure OpenAI client."""
        if self._client is None:
            self._client = AsyncAzureOpenAI(
                azure_endpoint=self._base_url,
                azure_deployment=self._deployment,
                api_version=AZURE_API_VERSION,
                **self._client_kwargs(),
            )
        return self._client
