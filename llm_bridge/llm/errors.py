"""LLM error hierarchy.

Custom exceptions for LLM operations with provider context.
Vendor SDK failures are mapped onto these at the provider boundary; validation
errors are kept separate because they are never suppressed.
"""


class LLMError(Exception):
    """Base exception for LLM operations."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.request_id = request_id

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        return " ".join(parts)


class AuthenticationError(LLMError):
    """401/403 - Invalid or missing API key."""

    status_code = 401


class RateLimitError(LLMError):
    """429 - Rate limit or quota exceeded.

    Respect retry_after if provided.
    """

    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        provider: str | None = None,
        model: str | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message, provider, model, request_id)
        self.retry_after = retry_after


class TimeoutError(LLMError):
    """Request exceeded timeout threshold."""

    status_code = 504


class InvalidRequestError(LLMError):
    """400 - Malformed request.

    Examples: bad schema, too many tokens, invalid model parameters.
    """

    status_code = 400


class ContentFilterError(LLMError):
    """Response blocked by the provider's safety filters."""

    status_code = 400


class ProviderError(LLMError):
    """500/502/503 - Provider-side failure."""

    status_code = 502


class ModelNotFoundError(LLMError):
    """Model identifier not recognized."""

    status_code = 404


class PowerRAGError(LLMError):
    """Non-2xx response from the PowerRAG endpoint."""

    def __init__(self, status_code: int, reason: str, body: str):
        super().__init__(
            f"PowerRAG API error: {status_code} {reason} - {body}",
            provider="PowerRAG",
        )
        self.status_code = status_code
        self.body = body


class LLMValidationError(Exception):
    """Input or output failed validation.

    Raised regardless of the caller's throw_on_error flag.
    """


class StructuredOutputError(LLMValidationError):
    """Structured completion does not match the requested schema."""


class ToolCallParseError(LLMValidationError):
    """Tool call completion does not have the expected shape."""

    def __init__(self, message: str = "Failed to parse LLM tool call result"):
        super().__init__(message)


class UnsupportedAdapterError(LLMValidationError):
    """Adapter tag outside the supported set."""

    def __init__(self, adapter: object):
        self.adapter = adapter
        super().__init__(f"This model provider is not supported: {adapter}")


class TraceCreationError(Exception):
    """The ingestion pipeline rejected a manually created trace."""


class ApiError(Exception):
    """Error surfaced to API and worker callers with an HTTP status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def error_for_status(
    status_code: int,
    message: str,
    provider: str,
    model: str | None = None,
    request_id: str | None = None,
    retry_after: float | None = None,
) -> LLMError:
    """Map an HTTP status from a vendor API to an LLMError instance."""
    if status_code == 401:
        return AuthenticationError(
            f"Invalid {provider} API key",
            provider=provider,
            model=model,
            request_id=request_id,
        )

    if status_code == 403:
        return AuthenticationError(
            f"{provider} access denied: {message}",
            provider=provider,
            model=model,
            request_id=request_id,
        )

    if status_code == 404:
        return ModelNotFoundError(
            f"Model not found: {message}",
            provider=provider,
            model=model,
            request_id=request_id,
        )

    if status_code == 429:
        return RateLimitError(
            f"{provider} rate limit exceeded: {message}",
            retry_after=retry_after,
            provider=provider,
            model=model,
            request_id=request_id,
        )

    if status_code == 400:
        lowered = message.lower()
        if "content_filter" in lowered or "safety" in lowered:
            return ContentFilterError(
                f"Content blocked by {provider} safety filters: {message}",
                provider=provider,
                model=model,
                request_id=request_id,
            )
        return InvalidRequestError(
            f"Invalid request to {provider}: {message}",
            provider=provider,
            model=model,
            request_id=request_id,
        )

    if status_code >= 500:
        return ProviderError(
            f"{provider} server error ({status_code}): {message}",
            provider=provider,
            model=model,
            request_id=request_id,
        )

    return LLMError(
        f"{provider} error ({status_code}): {message}",
        provider=provider,
        model=model,
        request_id=request_id,
    )


def parse_retry_after(headers) -> float | None:
    """Read a numeric retry-after header, if present."""
    if not headers:
        return None
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
