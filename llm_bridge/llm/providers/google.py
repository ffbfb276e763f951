"""Google Gemini providers (Vertex AI and Google AI Studio).

Both speak the generateContent REST protocol over httpx; they differ only in
endpoint and authentication. Vertex AI authenticates with a service-account
bearer token, AI Studio with an API key header.
"""

import asyncio
import json
import logging
import time
from abc import abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from ..errors import (
    ProviderError,
    TimeoutError,
    error_for_status,
    parse_retry_after,
)
from ..models import LLMRequest, LLMResponse, Usage
from ..schemas import GCPServiceAccountKey
from .base import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_VERTEX_LOCATION = "us-central1"
AI_STUDIO_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class GoogleProvider(LLMProvider):
    """Shared generateContent implementation."""

    SUPPORTED_FEATURES = (
        "json_schema",
        "json_object",
        "tools",
        "streaming",
    )

    def __init__(
        self,
        extra_headers: dict[str, str] | None = None,
        max_retries: int | None = None,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._extra_headers = extra_headers or {}
        self._max_retries = max_retries
        self._timeout = timeout
        self._transport = transport
        # An injected transport takes precedence over the shared client
        self._client: httpx.AsyncClient | None = None if transport else http_client

    @abstractmethod
    def _endpoint(self, model: str, method: str) -> str:
        """Full URL for a model method such as 'generateContent'."""
        ...

    @abstractmethod
    async def _auth_headers(self) -> dict[str, str]:
        ...

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-initialized HTTP client."""
        if self._client is None:
            transport = self._transport or httpx.AsyncHTTPTransport(
                retries=self._max_retries or 0,
            )
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)
        return self._client

    def supports(self, feature: str) -> bool:
        """Check if feature is supported."""
        return feature in self.SUPPORTED_FEATURES

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self._extra_headers}
        headers.update(await self._auth_headers())
        return headers

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Call generateContent."""
        start_time = time.perf_counter()
        payload = self._build_request(request)
        url = self._endpoint(request.model, "generateContent")

        try:
            response = await self.client.post(url, json=payload, headers=await self._headers())
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"{self.name} request timed out after {self._timeout}s",
                provider=self.name,
                model=request.model,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"Failed to connect to {self.name}: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        if response.status_code >= 400:
            self._handle_api_error(response, request.model)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_response(response.json(), latency_ms, request)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """Call streamGenerateContent with server-sent events."""
        payload = self._build_request(request)
        url = self._endpoint(request.model, "streamGenerateContent") + "?alt=sse"
        http_request = self.client.build_request(
            "POST", url, json=payload, headers=await self._headers()
        )

        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"{self.name} request timed out after {self._timeout}s",
                provider=self.name,
                model=request.model,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"Failed to connect to {self.name}: {e}",
                provider=self.name,
                model=request.model,
            ) from e

        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            self._handle_api_error(response, request.model)

        return self._iter_deltas(response)

    async def _iter_deltas(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                try:
                    chunk = json.loads(line[6:])
                except json.JSONDecodeError:
                    logger.debug("Skipping unparsable stream chunk", extra={"provider": self.name})
                    continue
                text = self._extract_text(chunk)
                if text:
                    yield text
        finally:
            await response.aclose()

    @staticmethod
    def _candidate_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        return candidates[0].get("content", {}).get("parts", [])

    def _extract_text(self, data: dict[str, Any]) -> str:
        return "".join(
            part.get("text", "")
            for part in self._candidate_parts(data)
            if not part.get("thought")
        )

    def _build_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to generateContent format."""
        system_parts = []
        contents: list[dict[str, Any]] = []
        # functionResponse parts are matched to calls by name, not id
        tool_names: dict[str, str] = {}

        for msg in request.messages:
            if msg.role == "system":
                system_parts.append({"text": msg.content})
            elif msg.role == "tool":
                name = tool_names.get(msg.tool_call_id or "", msg.tool_call_id or "")
                contents.append({
                    "role": "user",
                    "parts": [{
                        "functionResponse": {
                            "name": name,
                            "response": {"content": msg.content},
                        },
                    }],
                })
            else:
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"text": msg.content})
                for tc in msg.tool_calls or []:
                    tool_names[tc.id] = tc.name
                    parts.append({"functionCall": {"name": tc.name, "args": tc.args}})
                contents.append({
                    "role": "user" if msg.role == "user" else "model",
                    "parts": parts,
                })

        payload: dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens:
            generation_config["maxOutputTokens"] = request.max_tokens
        if request.top_p is not None:
            generation_config["topP"] = request.top_p

        if request.response_format and request.response_format.type != "text":
            generation_config["responseMimeType"] = "application/json"
            if request.response_format.type == "json_schema":
                generation_config["responseJsonSchema"] = request.response_format.json_schema

        if request.provider_options:
            generation_config.update(request.provider_options)
        if generation_config:
            payload["generationConfig"] = generation_config

        if request.tools:
            payload["tools"] = [{
                "functionDeclarations": [
                    {
                        "name": tool["function"]["name"],
                        "description": tool["function"].get("description", ""),
                        "parameters": tool["function"]["parameters"],
                    }
                    for tool in request.tools
                    if tool.get("type") == "function"
                ],
            }]

        return payload

    def _parse_response(
        self, data: dict[str, Any], latency_ms: int, request: LLMRequest
    ) -> LLMResponse:
        """Convert a generateContent response to LLMResponse."""
        tool_calls = []
        for index, part in enumerate(self._candidate_parts(data)):
            call = part.get("functionCall")
            if call:
                tool_calls.append({
                    "id": call.get("id") or f"{call['name']}-{index}",
                    "name": call["name"],
                    "args": call.get("args") or {},
                })

        candidates = data.get("candidates") or [{}]
        finish_reason = (candidates[0].get("finishReason") or "STOP").lower()

        usage = None
        metadata = data.get("usageMetadata")
        if metadata:
            prompt_tokens = metadata.get("promptTokenCount", 0)
            completion_tokens = metadata.get("candidatesTokenCount", 0)
            usage = Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=metadata.get("totalTokenCount", prompt_tokens + completion_tokens),
            )

        text = self._extract_text(data)
        return LLMResponse(
            text=text or None,
            tool_calls=tool_calls or None,
            finish_reason=finish_reason,
            usage=usage,
            model=data.get("modelVersion") or request.model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=data.get("responseId"),
        )

    def _handle_api_error(self, response: httpx.Response, model: str) -> None:
        """Convert an error response to LLMError types."""
        try:
            message = response.json().get("error", {}).get("message") or response.text
        except (json.JSONDecodeError, AttributeError):
            message = response.text
        raise error_for_status(
            response.status_code,
            message,
            provider=self.name,
            model=model,
            retry_after=parse_retry_after(response.headers),
        )


class VertexAIProvider(GoogleProvider):
    """Gemini on Vertex AI, authenticated with a service account key."""

    def __init__(
        self,
        service_account_key: GCPServiceAccountKey,
        location: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._project_id = service_account_key.project_id
        self._location = location or DEFAULT_VERTEX_LOCATION
        self._credentials = service_account.Credentials.from_service_account_info(
            service_account_key.model_dump(),
            scopes=[CLOUD_PLATFORM_SCOPE],
        )

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "google-vertex-ai"

    def _endpoint(self, model: str, method: str) -> str:
        return (
            f"https://{self._location}-aiplatform.googleapis.com/v1/projects/{self._project_id}"
            f"/locations/{self._location}/publishers/google/models/{model}:{method}"
        )

    async def _auth_headers(self) -> dict[str, str]:
        if not self._credentials.valid:
            # Token refresh is a blocking HTTP call
            await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return {"Authorization": f"Bearer {self._credentials.token}"}


class GoogleAIStudioProvider(GoogleProvider):
    """Gemini on the Generative Language API, authenticated with an API key."""

    def __init__(self, api_key: str, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._api_key = api_key
        self._base_url = (base_url or AI_STUDIO_BASE_URL).rstrip("/")

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "google-ai-studio"

    def _endpoint(self, model: str, method: str) -> str:
        return f"{self._base_url}/models/{model}:{method}"

    async def _auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}
