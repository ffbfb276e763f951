"""Unit tests for Anthropic provider.

Tests cover:
- Request building (system hoisting, tool history, structured output tool)
- Response parsing for text, tool calls and structured output
- Error mapping
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from llm_bridge.llm.errors import AuthenticationError, RateLimitError
from llm_bridge.llm.models import LLMRequest, LLMToolCall, PromptMessage, ResponseFormat
from llm_bridge.llm.providers.anthropic import (
    DEFAULT_MAX_TOKENS,
    STRUCTURED_OUTPUT_TOOL,
    AnthropicProvider,
)


class FakeAPIStatusError(Exception):
    """Fake API error for testing exception chaining."""

    def __init__(self, status_code: int, message: str, response=None, request_id=None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.response = response
        self.request_id = request_id


def make_block(block_type, **fields):
    block = MagicMock()
    block.type = block_type
    for key, value in fields.items():
        setattr(block, key, value)
    return block


def make_response(blocks, stop_reason="end_turn"):
    response = MagicMock()
    response.id = "msg_123"
    response.model = "claude-sonnet-4-5"
    response.content = blocks
    response.stop_reason = stop_reason
    response.usage.input_tokens = 20
    response.usage.output_tokens = 8
    return response


class TestAnthropicRequestBuilding:
    """Tests for Anthropic request building."""

    def test_system_messages_hoisted(self):
        """Test system messages become the top-level system prompt."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(
            messages=[
                PromptMessage(role="system", content="Be brief."),
                PromptMessage(role="system", content="Answer in English."),
                PromptMessage(role="user", content="Hi"),
            ],
            model="claude-sonnet-4-5",
        )

        anthropic_request = provider._build_request(request)

        assert anthropic_request["system"] == "Be brief.\nAnswer in English."
        assert anthropic_request["messages"] == [{"role": "user", "content": "Hi"}]
        assert anthropic_request["max_tokens"] == DEFAULT_MAX_TOKENS

    def test_temperature_clamped(self):
        """Test temperatures above 1 are clamped."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(
            messages=[PromptMessage(role="user", content="Hi")],
            model="claude-sonnet-4-5",
            temperature=1.5,
        )

        assert provider._build_request(request)["temperature"] == 1.0

    def test_tool_history_converted(self):
        """Test tool calls and results use tool_use/tool_result blocks."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(
            messages=[
                PromptMessage(role="user", content="Weather?"),
                PromptMessage(
                    role="assistant",
                    content="Checking.",
                    tool_calls=[LLMToolCall(id="toolu_1", name="weather", args={"city": "NYC"})],
                ),
                PromptMessage(role="tool", content="72F", tool_call_id="toolu_1"),
            ],
            model="claude-sonnet-4-5",
        )

        messages = provider._build_request(request)["messages"]

        assert messages[1]["content"] == [
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "toolu_1", "name": "weather", "input": {"city": "NYC"}},
        ]
        assert messages[2] == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "72F"}],
        }

    def test_structured_output_forces_tool(self):
        """Test structured output uses the respond tool."""
        provider = AnthropicProvider(api_key="test-key")
        schema = {"type": "object", "properties": {"score": {"type": "number"}}}
        request = LLMRequest(
            messages=[PromptMessage(role="user", content="Score")],
            model="claude-sonnet-4-5",
            response_format=ResponseFormat(type="json_schema", json_schema=schema),
        )

        anthropic_request = provider._build_request(request)

        assert anthropic_request["tools"][0]["name"] == STRUCTURED_OUTPUT_TOOL
        assert anthropic_request["tools"][0]["input_schema"] == schema
        assert anthropic_request["tool_choice"] == {"type": "tool", "name": STRUCTURED_OUTPUT_TOOL}

    def test_tools_converted(self):
        """Test function tools convert to Anthropic tool format."""
        provider = AnthropicProvider(api_key="test-key")
        parameters = {"type": "object", "properties": {}}
        request = LLMRequest(
            messages=[PromptMessage(role="user", content="Hi")],
            model="claude-sonnet-4-5",
            tools=[{
                "type": "function",
                "function": {"name": "lookup", "description": "Find", "parameters": parameters},
            }],
        )

        tools = provider._build_request(request)["tools"]

        assert tools == [{"name": "lookup", "description": "Find", "input_schema": parameters}]


class TestAnthropicResponseParsing:
    """Tests for Anthropic response parsing."""

    def test_parse_text(self):
        """Test text blocks are concatenated."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(messages=[], model="claude-sonnet-4-5")

        response = provider._parse_response(
            make_response([make_block("text", text="Hello "), make_block("text", text="there")]),
            50,
            request,
        )

        assert response.text == "Hello there"
        assert response.finish_reason == "stop"
        assert response.usage.total_tokens == 28

    def test_parse_structured_output(self):
        """Test the respond tool input becomes parsed output."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(
            messages=[],
            model="claude-sonnet-4-5",
            response_format=ResponseFormat(type="json_schema", json_schema={}),
        )
        block = make_block("tool_use", id="toolu_1", input={"score": 4})
        block.name = STRUCTURED_OUTPUT_TOOL

        response = provider._parse_response(make_response([block], "tool_use"), 50, request)

        assert response.parsed == {"score": 4}
        assert response.tool_calls is None

    def test_parse_tool_calls(self):
        """Test tool_use blocks become tool calls."""
        provider = AnthropicProvider(api_key="test-key")
        request = LLMRequest(messages=[], model="claude-sonnet-4-5")
        block = make_block("tool_use", id="toolu_1", input={"city": "NYC"})
        block.name = "weather"

        response = provider._parse_response(make_response([block], "tool_use"), 50, request)

        assert response.tool_calls == [{"id": "toolu_1", "name": "weather", "args": {"city": "NYC"}}]
        assert response.finish_reason == "tool_calls"


class TestAnthropicErrorHandling:
    """Tests for Anthropic error mapping."""

    def test_handle_401_error(self):
        """Test 401 maps to AuthenticationError."""
        provider = AnthropicProvider(api_key="test-key")
        error = FakeAPIStatusError(status_code=401, message="invalid x-api-key")

        with pytest.raises(AuthenticationError) as exc_info:
            provider._handle_api_error(error, "claude-sonnet-4-5")

        assert exc_info.value.provider == "anthropic"
        assert exc_info.value.__cause__ is error

    def test_handle_429_error(self):
        """Test 429 maps to RateLimitError."""
        provider = AnthropicProvider(api_key="test-key")
        mock_response = MagicMock()
        mock_response.headers = {"retry-after": "5"}
        error = FakeAPIStatusError(status_code=429, message="rate limited", response=mock_response)

        with pytest.raises(RateLimitError) as exc_info:
            provider._handle_api_error(error, "claude-sonnet-4-5")

        assert exc_info.value.retry_after == 5.0


class TestAnthropicProviderGenerate:
    """Tests for generate and stream."""

    @pytest.mark.asyncio
    async def test_generate_success(self):
        """Test successful generation."""
        provider = AnthropicProvider(api_key="test-key")
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(
            return_value=make_response([make_block("text", text="Hi!")])
        )

        with patch.object(provider, "_client", mock_client):
            response = await provider.generate(
                LLMRequest(messages=[PromptMessage(role="user", content="Hi")], model="claude-sonnet-4-5")
            )

        assert response.text == "Hi!"
        assert response.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_stream_yields_text_deltas(self):
        """Test only text deltas are yielded."""
        provider = AnthropicProvider(api_key="test-key")

        def event(event_type, delta_type=None, text=None):
            item = MagicMock()
            item.type = event_type
            item.delta.type = delta_type
            item.delta.text = text
            return item

        async def events():
            yield event("message_start")
            yield event("content_block_delta", "text_delta", "Hel")
            yield event("content_block_delta", "input_json_delta")
            yield event("content_block_delta", "text_delta", "lo")
            yield event("message_stop")

        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=events())

        with patch.object(provider, "_client", mock_client):
            deltas = await provider.stream(
                LLMRequest(messages=[PromptMessage(role="user", content="Hi")], model="claude-sonnet-4-5")
            )
            collected = [delta async for delta in deltas]

        assert collected == ["Hel", "lo"]
