"""Abstract base class for LLM providers.

Defines the interface that all LLM providers must implement.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from ..models import LLMRequest, LLMResponse


class LLMProvider(ABC):
    """Base interface for LLM providers.

    One subclass per adapter. Providers receive vendor-neutral requests and
    map vendor SDK failures onto the LLMError hierarchy.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier: 'openai', 'anthropic', etc."""
        ...

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request and return the response.

        Args:
            request: Vendor-neutral LLM request.

        Returns:
            Vendor-neutral LLM response. Tool calls are reported as
            ``{"id", "name", "args"}`` dicts; structured output is parsed
            into ``parsed`` when the vendor returns JSON.

        Raises:
            AuthenticationError: Invalid or missing API key.
            RateLimitError: Rate limit exceeded (retryable).
            TimeoutError: Request timed out (retryable).
            InvalidRequestError: Malformed request (non-retryable).
            ContentFilterError: Response blocked by safety filters.
            ProviderError: Provider-side failure (retryable).
        """
        ...

    @abstractmethod
    def supports(self, feature: str) -> bool:
        """Check if provider supports a capability.

        Args:
            feature: Feature name. Supported values:
                - 'json_schema': Structured outputs with JSON Schema
                - 'json_object': Basic JSON mode
                - 'tools': Function/tool calling
                - 'streaming': Streaming responses

        Returns:
            True if the feature is supported.
        """
        ...

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """Open a streaming completion.

        The connection is established before this coroutine returns, so
        request errors surface here rather than on first iteration.

        Returns:
            Iterator over text deltas.

        Raises:
            NotImplementedError: If streaming is not supported.
        """
        raise NotImplementedError(f"Streaming not supported by {self.name}")
