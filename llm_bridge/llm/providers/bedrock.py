"""AWS Bedrock provider implementation.

Uses the Bedrock Runtime Converse API through boto3. The boto3 client is
synchronous, so calls run in a worker thread.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Iterator
from typing import Any

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ..errors import (
    AuthenticationError,
    ProviderError,
    TimeoutError,
    error_for_status,
)
from ..models import LLMRequest, LLMResponse, Usage
from ..schemas import BedrockCredential
from .base import LLMProvider

STRUCTURED_OUTPUT_TOOL = "respond_with_json"


class BedrockProvider(LLMProvider):
    """AWS Bedrock Converse API provider.

    Credentials are either explicit (parsed from the stored key) or, when
    None, resolved by boto3's default credential chain.
    """

    SUPPORTED_FEATURES = (
        "json_schema",  # Via forced toolSpec
        "tools",
        "streaming",
    )

    def __init__(
        self,
        region: str,
        credentials: BedrockCredential | None = None,
        max_retries: int | None = None,
        timeout: float = 120.0,
        https_proxy: str | None = None,
    ):
        self._region = region
        self._credentials = credentials
        self._max_retries = max_retries
        self._timeout = timeout
        self._https_proxy = https_proxy
        self._client: Any = None

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "bedrock"

    def _botocore_config(self) -> BotocoreConfig:
        kwargs: dict[str, Any] = {
            "read_timeout": self._timeout,
            "connect_timeout": self._timeout,
        }
        if self._max_retries is not None:
            # botocore counts the initial attempt
            kwargs["retries"] = {"max_attempts": self._max_retries + 1, "mode": "standard"}
        if self._https_proxy:
            kwargs["proxies"] = {"https": self._https_proxy}
        return BotocoreConfig(**kwargs)

    @property
    def client(self) -> Any:
        """Lazy-initialized bedrock-runtime client."""
        if self._client is None:
            client_kwargs: dict[str, Any] = {
                "region_name": self._region,
                "config": self._botocore_config(),
            }
            if self._credentials is not None:
                client_kwargs["aws_access_key_id"] = self._credentials.accessKeyId
                client_kwargs["aws_secret_access_key"] = self._credentials.secretAccessKey
                if self._credentials.sessionToken:
                    client_kwargs["aws_session_token"] = self._credentials.sessionToken
            self._client = boto3.client("bedrock-runtime", **client_kwargs)
        return self._client

    def supports(self, feature: str) -> bool:
        """Check if feature is supported."""
        return feature in self.SUPPORTED_FEATURES

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send a Converse request to Bedrock."""
        start_time = time.perf_counter()

        converse_request = self._build_request(request)
        response = await self._call("converse", converse_request, request.model)
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_response(response, latency_ms, request)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """Open a ConverseStream request."""
        converse_request = self._build_request(request)
        response = await self._call("converse_stream", converse_request, request.model)
        return self._iter_deltas(iter(response["stream"]))

    async def _iter_deltas(self, events: Iterator[dict[str, Any]]) -> AsyncIterator[str]:
        while True:
            event = await asyncio.to_thread(next, events, None)
            if event is None:
                break
            text = event.get("contentBlockDelta", {}).get("delta", {}).get("text")
            if text:
                yield text

    async def _call(self, operation: str, converse_request: dict[str, Any], model: str) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self.client, operation), **converse_request)

        except (ReadTimeoutError, ConnectTimeoutError) as e:
            raise TimeoutError(
                f"Bedrock request timed out after {self._timeout}s",
                provider=self.name,
                model=model,
            ) from e

        except NoCredentialsError as e:
            raise AuthenticationError(
                "No AWS credentials available for Bedrock",
                provider=self.name,
                model=model,
            ) from e

        except ClientError as e:
            self._handle_api_error(e, model)

        except BotoCoreError as e:
            raise ProviderError(
                f"Failed to connect to Bedrock: {e}",
                provider=self.name,
                model=model,
            ) from e

    def _build_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to Converse API format."""
        system_blocks = []
        messages: list[dict[str, Any]] = []

        for msg in request.messages:
            if msg.role == "system":
                system_blocks.append({"text": msg.content})
            elif msg.role == "tool":
                messages.append({
                    "role": "user",
                    "content": [{
                        "toolResult": {
                            "toolUseId": msg.tool_call_id,
                            "content": [{"text": msg.content}],
                        },
                    }],
                })
            else:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"text": msg.content})
                for tc in msg.tool_calls or []:
                    content.append({
                        "toolUse": {"toolUseId": tc.id, "name": tc.name, "input": tc.args},
                    })
                messages.append({"role": msg.role, "content": content})

        converse_request: dict[str, Any] = {
            "modelId": request.model,
            "messages": messages,
        }
        if system_blocks:
            converse_request["system"] = system_blocks

        inference_config: dict[str, Any] = {}
        if request.max_tokens:
            inference_config["maxTokens"] = request.max_tokens
        if request.temperature is not None:
            inference_config["temperature"] = request.temperature
        if request.top_p is not None:
            inference_config["topP"] = request.top_p
        if inference_config:
            converse_request["inferenceConfig"] = inference_config

        if request.response_format and request.response_format.type in ("json_schema", "json_object"):
            schema = request.response_format.json_schema or {"type": "object"}
            converse_request["toolConfig"] = {
                "tools": [{
                    "toolSpec": {
                        "name": STRUCTURED_OUTPUT_TOOL,
                        "description": "Respond with structured JSON data matching the required schema.",
                        "inputSchema": {"json": schema},
                    },
                }],
                "toolChoice": {"tool": {"name": STRUCTURED_OUTPUT_TOOL}},
            }
        elif request.tools:
            converse_request["toolConfig"] = {
                "tools": [
                    {
                        "toolSpec": {
                            "name": tool["function"]["name"],
                            "description": tool["function"].get("description") or tool["function"]["name"],
                            "inputSchema": {"json": tool["function"]["parameters"]},
                        },
                    }
                    for tool in request.tools
                    if tool.get("type") == "function"
                ],
            }

        if request.provider_options:
            converse_request["additionalModelRequestFields"] = request.provider_options

        return converse_request

    def _parse_response(
        self, response: dict[str, Any], latency_ms: int, request: LLMRequest
    ) -> LLMResponse:
        """Convert a Converse response to LLMResponse."""
        content = response.get("output", {}).get("message", {}).get("content", [])
        text_parts = []
        tool_calls = []
        parsed = None

        for block in content:
            if "text" in block:
                text_parts.append(block["text"])
            elif "toolUse" in block:
                tool_use = block["toolUse"]
                if tool_use["name"] == STRUCTURED_OUTPUT_TOOL and request.response_format:
                    parsed = tool_use.get("input")
                else:
                    tool_calls.append({
                        "id": tool_use["toolUseId"],
                        "name": tool_use["name"],
                        "args": tool_use.get("input") or {},
                    })

        finish_reason_map = {
            "end_turn": "stop",
            "stop_sequence": "stop",
            "max_tokens": "length",
            "tool_use": "tool_calls",
            "content_filtered": "content_filter",
            "guardrail_intervened": "content_filter",
        }
        stop_reason = response.get("stopReason")

        usage = None
        if response.get("usage"):
            raw_usage = response["usage"]
            usage = Usage(
                prompt_tokens=raw_usage.get("inputTokens", 0),
                completion_tokens=raw_usage.get("outputTokens", 0),
                total_tokens=raw_usage.get("totalTokens", 0),
            )

        return LLMResponse(
            text="".join(text_parts) if text_parts else None,
            tool_calls=tool_calls or None,
            parsed=parsed,
            finish_reason=finish_reason_map.get(stop_reason, stop_reason or "stop"),
            usage=usage,
            model=request.model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.get("ResponseMetadata", {}).get("RequestId"),
        )

    def _handle_api_error(self, error: ClientError, model: str) -> None:
        """Convert botocore client errors to LLMError types."""
        error_info = error.response.get("Error", {})
        metadata = error.response.get("ResponseMetadata", {})
        status_code = metadata.get("HTTPStatusCode") or 500
        message = error_info.get("Message") or str(error)

        if error_info.get("Code") == "ThrottlingException":
            status_code = 429

        raise error_for_status(
            status_code,
            message,
            provider=self.name,
            model=model,
            request_id=metadata.get("RequestId"),
        ) from error
