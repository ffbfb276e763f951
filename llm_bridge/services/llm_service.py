"""LLM helpers for background workers.

Workers hold provider keys as stored records with encrypted secrets. These
helpers decrypt them, run the completion and convert failures into ApiError
with an HTTP status the job runner can report.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from ..encryption import decrypt, decrypt_and_parse_extra_headers
from ..llm.completion import fetch_llm_completion
from ..llm.errors import ApiError, RateLimitError
from ..llm.models import (
    ChatMessage,
    LLMAdapter,
    LLMCompletionParams,
    ModelParams,
    TraceParams,
)
from ..llm.tokens import default_token_count

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Vendor error names that mean the account is out of quota or throttled
QUOTA_ERROR_NAMES = ("InsufficientQuotaError", "ThrottlingException")


class LLMApiKey(BaseModel):
    """Stored provider key record. secret_key and extra_headers are encrypted."""

    model_config = ConfigDict(frozen=True)

    adapter: LLMAdapter | str
    provider: str
    secret_key: str
    extra_headers: str | None = None
    base_url: str | None = None
    config: dict[str, Any] | None = None


def _error_status(error: Exception) -> int | None:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status


async def with_llm_error_handling(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "LLM operation",
) -> T:
    """Await an LLM operation, converting failures to ApiError.

    Raises:
        ApiError: 429 for quota and throttling errors, otherwise the error's
            own status code when it has one.
    """
    try:
        return await operation()
    except Exception as e:
        name = type(e).__name__
        if isinstance(e, RateLimitError) or name in QUOTA_ERROR_NAMES:
            raise ApiError(name, 429) from e

        raise ApiError(f"Failed to {operation_name}: {e}", _error_status(e)) from e


def _build_params(
    llm_api_key: LLMApiKey,
    messages: list[ChatMessage],
    model_config: dict[str, Any] | None,
    provider: str,
    model: str,
    **kwargs: Any,
) -> LLMCompletionParams:
    return LLMCompletionParams(
        messages=messages,
        model_params=ModelParams(
            **{
                "adapter": llm_api_key.adapter,
                "provider": provider,
                "model": model,
                **(model_config or {}),
            }
        ),
        api_key=decrypt(llm_api_key.secret_key),
        extra_headers=decrypt_and_parse_extra_headers(llm_api_key.extra_headers),
        base_url=llm_api_key.base_url or None,
        config=llm_api_key.config,
        max_retries=1,
        streaming=False,
        **kwargs,
    )


async def call_structured_llm(
    job_id: str,
    llm_api_key: LLMApiKey,
    messages: list[ChatMessage],
    model_config: dict[str, Any] | None,
    provider: str,
    model: str,
    schema: type[BaseModel] | dict[str, Any],
) -> dict[str, Any]:
    """Run a structured completion for a job.

    Returns:
        The completion validated against the schema, as a dict.

    Raises:
        ApiError: The call or validation failed.
    """
    logger.info(
        "Starting structured LLM call",
        extra={
            "job_id": job_id,
            "provider": provider,
            "model": model,
            "adapter": getattr(llm_api_key.adapter, "value", llm_api_key.adapter),
            "messages_count": len(messages),
            "has_extra_headers": llm_api_key.extra_headers is not None,
        },
    )
    start_time = time.perf_counter()

    async def operation() -> dict[str, Any]:
        params = _build_params(
            llm_api_key,
            messages,
            model_config,
            provider,
            model,
            structured_output_schema=schema,
        )
        result = await fetch_llm_completion(params)
        return result.completion

    try:
        completion = await with_llm_error_handling(operation, "call LLM")
    except ApiError as e:
        logger.error(
            "Structured LLM call failed: %s",
            e.message,
            extra={
                "job_id": job_id,
                "model": model,
                "status_code": e.status_code,
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        raise

    logger.info(
        "Structured LLM call completed",
        extra={
            "job_id": job_id,
            "model": model,
            "duration_ms": int((time.perf_counter() - start_time) * 1000),
        },
    )
    return completion


async def call_llm(
    llm_api_key: LLMApiKey,
    messages: list[ChatMessage],
    model_config: dict[str, Any] | None,
    provider: str,
    model: str,
    trace_params: TraceParams | None = None,
) -> str:
    """Run a plain text completion, tracing it when trace params are given.

    Vendor failures yield an empty string rather than an error.
    """

    async def operation() -> str:
        traced = (
            trace_params.model_copy(update={"token_count_delegate": default_token_count})
            if trace_params
            else None
        )
        params = _build_params(
            llm_api_key,
            messages,
            model_config,
            provider,
            model,
            trace_params=traced,
            throw_on_error=False,
        )
        result = await fetch_llm_completion(params)
        if trace_params:
            await result.process_traced_events()
        return result.completion

    return await with_llm_error_handling(operation, "call LLM")
