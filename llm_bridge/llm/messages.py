"""Chat message normalization.

Converts caller-authored chat messages into vendor-neutral prompt messages
that each provider then maps onto its own wire format.
"""

import json
from typing import Any

from .models import (
    ChatMessage,
    ChatMessageRole,
    ChatMessageType,
    LLMAdapter,
    PromptMessage,
)

UNSERIALIZABLE_PLACEHOLDER = "[Unserializable content]"

# Adapters that reject a conversation without a user turn
USER_MESSAGE_REQUIRED = (LLMAdapter.VERTEX_AI,)


def stringify_content(content: Any) -> str:
    """Return message content as text, serializing structured values."""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content)
    except (TypeError, ValueError):
        return UNSERIALIZABLE_PLACEHOLDER


def normalize_messages(
    messages: list[ChatMessage],
    adapter: LLMAdapter | str,
) -> list[PromptMessage]:
    """Map chat messages onto prompt messages for the given adapter.

    Messages with empty content and no tool calls are dropped.
    """
    if adapter in USER_MESSAGE_REQUIRED and len(messages) == 1:
        normalized = [
            PromptMessage(role="user", content=stringify_content(messages[0].content))
        ]
    else:
        normalized = [_normalize_message(message) for message in messages]

    return [m for m in normalized if m.content or m.tool_calls]


def _normalize_message(message: ChatMessage) -> PromptMessage:
    content = stringify_content(message.content)

    if message.role == ChatMessageRole.USER:
        return PromptMessage(role="user", content=content)

    if message.role in (ChatMessageRole.SYSTEM, ChatMessageRole.DEVELOPER):
        return PromptMessage(role="system", content=content)

    if message.type == ChatMessageType.TOOL_RESULT:
        return PromptMessage(
            role="tool",
            content=content,
            tool_call_id=message.tool_call_id,
        )

    return PromptMessage(
        role="assistant",
        content=content,
        tool_calls=(
            message.tool_calls
            if message.type == ChatMessageType.ASSISTANT_TOOL_CALL
            else None
        ),
    )
