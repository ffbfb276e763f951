"""LLM provider implementations.

This package contains provider-specific implementations of the LLMProvider
interface and the factory that picks one per adapter.
"""

import logging
from typing import Any

from ...config import LLMSettings, get_http_client, get_settings
from ..errors import LLMValidationError, UnsupportedAdapterError
from ..models import LLMAdapter
from ..schemas import (
    BEDROCK_USE_DEFAULT_CREDENTIALS,
    BedrockConfig,
    BedrockCredential,
    GCPServiceAccountKey,
    VertexAIConfig,
    parse_credential_blob,
)
from .anthropic import AnthropicProvider
from .base import LLMProvider
from .bedrock import BedrockProvider
from .google import GoogleAIStudioProvider, GoogleProvider, VertexAIProvider
from .openai import AzureOpenAIProvider, OpenAIProvider

logger = logging.getLogger(__name__)


def build_provider(
    adapter: LLMAdapter | str,
    *,
    model: str,
    api_key: str,
    base_url: str | None = None,
    extra_headers: dict[str, str] | None = None,
    max_retries: int | None = None,
    config: dict[str, Any] | None = None,
    settings: LLMSettings | None = None,
) -> LLMProvider:
    """Construct the provider for an adapter.

    PowerRAG is not handled here; it has no vendor client.

    Raises:
        UnsupportedAdapterError: Adapter outside the supported set.
        LLMValidationError: Credentials or adapter config are malformed.
    """
    settings = settings or get_settings()
    common: dict[str, Any] = {
        "max_retries": max_retries,
        "timeout": settings.timeout,
    }

    logger.debug(
        "Building provider",
        extra={
            "adapter": getattr(adapter, "value", adapter),
            "model": model,
            "has_base_url": base_url is not None,
            "header_names": sorted(extra_headers or {}),
            "has_proxy": settings.https_proxy is not None,
        },
    )

    if adapter == LLMAdapter.OPENAI:
        return OpenAIProvider(
            api_key,
            base_url=base_url,
            extra_headers=extra_headers,
            http_client=get_http_client(settings),
            **common,
        )

    if adapter == LLMAdapter.AZURE:
        return AzureOpenAIProvider(
            api_key,
            deployment=model,
            base_url=base_url,
            extra_headers=extra_headers,
            http_client=get_http_client(settings),
            **common,
        )

    if adapter == LLMAdapter.ANTHROPIC:
        return AnthropicProvider(
            api_key,
            base_url=base_url,
            extra_headers=extra_headers,
            http_client=get_http_client(settings),
            **common,
        )

    if adapter == LLMAdapter.BEDROCK:
        try:
            region = BedrockConfig.model_validate(config or {}).region
        except ValueError:
            raise LLMValidationError("Bedrock config requires a region") from None

        credentials = None
        if api_key == BEDROCK_USE_DEFAULT_CREDENTIALS and not settings.is_cloud:
            logger.info("Using default AWS credential chain for Bedrock")
        else:
            credentials = parse_credential_blob(api_key, BedrockCredential)
        return BedrockProvider(
            region, credentials=credentials, https_proxy=settings.https_proxy, **common
        )

    if adapter == LLMAdapter.VERTEX_AI:
        key = parse_credential_blob(api_key, GCPServiceAccountKey)
        try:
            location = VertexAIConfig.model_validate(config or {}).location
        except ValueError:
            raise LLMValidationError("Invalid Vertex AI config") from None
        return VertexAIProvider(
            key,
            location=location,
            extra_headers=extra_headers,
            http_client=get_http_client(settings),
            **common,
        )

    if adapter == LLMAdapter.GOOGLE_AI_STUDIO:
        return GoogleAIStudioProvider(
            api_key,
            base_url=base_url,
            extra_headers=extra_headers,
            http_client=get_http_client(settings),
            **common,
        )

    raise UnsupportedAdapterError(adapter)


__all__ = [
    "AnthropicProvider",
    "AzureOpenAIProvider",
    "BedrockProvider",
    "GoogleAIStudioProvider",
    "GoogleProvider",
    "LLMProvider",
    "OpenAIProvider",
    "VertexAIProvider",
    "build_provider",
]
