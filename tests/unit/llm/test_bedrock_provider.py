"""Unit tests for the Bedrock Converse provider."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError

from llm_bridge.llm.errors import (
    InvalidRequestError,
    RateLimitError,
    TimeoutError,
)
from llm_bridge.llm.models import LLMRequest, LLMToolCall, PromptMessage, ResponseFormat
from llm_bridge.llm.providers.bedrock import STRUCTURED_OUTPUT_TOOL, BedrockProvider
from llm_bridge.llm.schemas import BedrockCredential


def client_error(code: str, status: int, message: str = "failed") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status, "RequestId": "req-1"},
        },
        "Converse",
    )


class TestBedrockClient:
    """Tests for boto3 client construction."""

    def test_explicit_credentials(self):
        """Test explicit credentials are passed to boto3."""
        provider = BedrockProvider(
            "eu-west-1",
            credentials=BedrockCredential(
                accessKeyId="AKIA", secretAccessKey="secret", sessionToken="token"
            ),
            max_retries=1,
            https_proxy="http://proxy:3128",
        )

        with patch("llm_bridge.llm.providers.bedrock.boto3.client") as mock_client:
            provider.client

        args, kwargs = mock_client.call_args
        assert args == ("bedrock-runtime",)
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["aws_access_key_id"] == "AKIA"
        assert kwargs["aws_session_token"] == "token"
        config = kwargs["config"]
        assert config.retries == {"max_attempts": 2, "mode": "standard"}
        assert config.proxies == {"https": "http://proxy:3128"}

    def test_default_credential_chain(self):
        """Test no credentials leaves resolution to boto3."""
        provider = BedrockProvider("us-east-1")

        with patch("llm_bridge.llm.providers.bedrock.boto3.client") as mock_client:
            provider.client

        assert "aws_access_key_id" not in mock_client.call_args.kwargs


class TestBedrockRequestBuilding:
    """Tests for Converse request building."""

    def test_basic_request(self):
        """Test messages, system and inference config."""
        provider = BedrockProvider("us-east-1")
        request = LLMRequest(
            messages=[
                PromptMessage(role="system", content="Be brief."),
                PromptMessage(role="user", content="Hi"),
            ],
            model="anthropic.claude-3-haiku",
            temperature=0.2,
            max_tokens=256,
            top_p=0.9,
        )

        converse = provider._build_request(request)

        assert converse["modelId"] == "anthropic.claude-3-haiku"
        assert converse["system"] == [{"text": "Be brief."}]
        assert converse["messages"] == [{"role": "user", "content": [{"text": "Hi"}]}]
        assert converse["inferenceConfig"] == {"maxTokens": 256, "temperature": 0.2, "topP": 0.9}

    def test_tool_history(self):
        """Test toolUse and toolResult blocks."""
        provider = BedrockProvider("us-east-1")
        request = LLMRequest(
            messages=[
                PromptMessage(
                    role="assistant",
                    content="",
                    tool_calls=[LLMToolCall(id="t1", name="lookup", args={"q": "x"})],
                ),
                PromptMessage(role="tool", content="found", tool_call_id="t1"),
            ],
            model="m",
        )

        assistant, tool = provider._build_request(request)["messages"]

        assert assistant["content"] == [{"toolUse": {"toolUseId": "t1", "name": "lookup", "input": {"q": "x"}}}]
        assert tool["role"] == "user"
        assert tool["content"][0]["toolResult"]["toolUseId"] == "t1"

    def test_structured_output_tool(self):
        """Test structured output forces the respond tool."""
        provider = BedrockProvider("us-east-1")
        schema = {"type": "object"}
        request = LLMRequest(
            messages=[PromptMessage(role="user", content="Score")],
            model="m",
            response_format=ResponseFormat(type="json_schema", json_schema=schema),
        )

        tool_config = provider._build_request(request)["toolConfig"]

        assert tool_config["tools"][0]["toolSpec"]["inputSchema"] == {"json": schema}
        assert tool_config["toolChoice"] == {"tool": {"name": STRUCTURED_OUTPUT_TOOL}}


class TestBedrockResponseParsing:
    """Tests for Converse response parsing."""

    def test_parse_text_and_usage(self):
        """Test text, usage and request id."""
        provider = BedrockProvider("us-east-1")
        request = LLMRequest(messages=[], model="m")
        response = {
            "output": {"message": {"role": "assistant", "content": [{"text": "Hello"}]}},
            "stopReason": "end_turn",
            "usage": {"inputTokens": 3, "outputTokens": 2, "totalTokens": 5},
            "ResponseMetadata": {"RequestId": "req-9"},
        }

        parsed = provider._parse_response(response, 10, request)

        assert parsed.text == "Hello"
        assert parsed.finish_reason == "stop"
        assert parsed.usage.total_tokens == 5
        assert parsed.request_id == "req-9"

    def test_parse_tool_use(self):
        """Test toolUse blocks become tool calls."""
        provider = BedrockProvider("us-east-1")
        request = LLMRequest(messages=[], model="m")
        response = {
            "output": {"message": {"content": [
                {"toolUse": {"toolUseId": "t1", "name": "lookup", "input": {"q": "x"}}},
            ]}},
            "stopReason": "tool_use",
        }

        parsed = provider._parse_response(response, 10, request)

        assert parsed.tool_calls == [{"id": "t1", "name": "lookup", "args": {"q": "x"}}]
        assert parsed.usage is None


class TestBedrockErrors:
    """Tests for botocore error mapping."""

    def test_throttling_maps_to_rate_limit(self):
        """Test ThrottlingException maps to RateLimitError."""
        provider = BedrockProvider("us-east-1")
        error = client_error("ThrottlingException", 400, "Too many requests")

        with pytest.raises(RateLimitError) as exc_info:
            provider._handle_api_error(error, "m")

        assert exc_info.value.request_id == "req-1"
        assert exc_info.value.__cause__ is error

    def test_validation_maps_to_invalid_request(self):
        """Test ValidationException maps to InvalidRequestError."""
        provider = BedrockProvider("us-east-1")

        with pytest.raises(InvalidRequestError):
            provider._handle_api_error(client_error("ValidationException", 400), "m")

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        """Test read timeouts map to TimeoutError."""
        provider = BedrockProvider("us-east-1")
        mock_client = MagicMock()
        mock_client.converse.side_effect = ReadTimeoutError(endpoint_url="https://bedrock")

        with patch.object(provider, "_client", mock_client):
            with pytest.raises(TimeoutError):
                await provider.generate(
                    LLMRequest(messages=[PromptMessage(role="user", content="Hi")], model="m")
                )


class TestBedrockGenerate:
    """Tests for generate and stream."""

    @pytest.mark.asyncio
    async def test_generate(self):
        """Test converse is called with the built request."""
        provider = BedrockProvider("us-east-1")
        mock_client = MagicMock()
        mock_client.converse.return_value = {
            "output": {"message": {"content": [{"text": "Hi!"}]}},
            "stopReason": "end_turn",
        }

        with patch.object(provider, "_client", mock_client):
            response = await provider.generate(
                LLMRequest(messages=[PromptMessage(role="user", content="Hi")], model="m")
            )

        assert response.text == "Hi!"
        assert mock_client.converse.call_args.kwargs["modelId"] == "m"

    @pytest.mark.asyncio
    async def test_stream(self):
        """Test converse_stream deltas are yielded."""
        provider = BedrockProvider("us-east-1")
        mock_client = MagicMock()
        mock_client.converse_stream.return_value = {
            "stream": [
                {"messageStart": {"role": "assistant"}},
                {"contentBlockDelta": {"delta": {"text": "Hel"}}},
                {"contentBlockDelta": {"delta": {"text": "lo"}}},
                {"messageStop": {"stopReason": "end_turn"}},
            ]
        }

        with patch.object(provider, "_client", mock_client):
            deltas = await provider.stream(
                LLMRequest(messages=[PromptMessage(role="user", content="Hi")], model="m")
            )
            collected = [delta async for delta in deltas]

        assert collected == ["Hel", "lo"]
