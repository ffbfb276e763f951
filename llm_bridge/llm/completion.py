"""Completion executor.

fetch_llm_completion is the single entry point for chat completions. It
normalizes messages, picks the provider for the adapter, runs the call in
one of four modes and hands back the completion together with the hook that
flushes traced events.
"""

import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from pydantic import ValidationError

from ..config import LLMSettings, get_settings
from .errors import LLMValidationError, ToolCallParseError
from .messages import normalize_messages
from .models import (
    CompletionResult,
    LLMAdapter,
    LLMCompletionParams,
    LLMRequest,
    ModelParams,
    PromptMessage,
    ResponseFormat,
    ToolCallResponse,
)
from .providers import LLMProvider, build_provider
from .providers.powerrag import handle_powerrag_completion
from .schemas import (
    parse_json_output,
    schema_name,
    to_json_schema,
    validate_structured_output,
)
from .tracing import (
    LLMRun,
    RunConfig,
    TraceRecorder,
    make_process_traced_events,
    notify_end,
    notify_error,
    notify_start,
)

logger = logging.getLogger(__name__)

QWEN_JSON_INSTRUCTION = (
    'Please respond with a JSON object containing exactly two fields: '
    '"reasoning" (string) and "score" (number). '
)

# Field names Qwen models substitute for the requested ones
QWEN_FIELD_ALIASES = {
    "reason": "reasoning",
    "rating": "score",
    "explanation": "reasoning",
    "value": "score",
}

MODE_STRUCTURED = "structured"
MODE_TOOLS = "tools"
MODE_STREAMING = "streaming"
MODE_TEXT = "text"


def is_qwen_model(model_params: ModelParams) -> bool:
    """True for Qwen models served by a Qwen/Qianwen provider."""
    provider = model_params.provider.lower()
    return "qwen" in model_params.model.lower() and ("qianwen" in provider or "qwen" in provider)


def apply_qwen_instruction(messages: list[PromptMessage]) -> list[PromptMessage]:
    """Prefix user turns that do not mention JSON with the JSON instruction.

    JSON-object mode on these models rejects prompts without the word "json".
    """
    return [
        message.model_copy(update={"content": QWEN_JSON_INSTRUCTION + message.content})
        if message.role == "user" and "json" not in message.content.lower()
        else message
        for message in messages
    ]


def remap_qwen_fields(result: Any) -> Any:
    """Rename known alias fields unless the canonical field is present."""
    if not isinstance(result, dict):
        return result
    remapped = dict(result)
    for alias, canonical in QWEN_FIELD_ALIASES.items():
        if alias in remapped and canonical not in remapped:
            remapped[canonical] = remapped.pop(alias)
    return remapped


def select_mode(params: LLMCompletionParams) -> str:
    """Invocation mode, in priority order structured > tools > streaming > text."""
    if params.structured_output_schema is not None:
        return MODE_STRUCTURED
    if params.tools:
        return MODE_TOOLS
    if params.streaming:
        return MODE_STREAMING
    return MODE_TEXT


def _build_llm_request(
    messages: list[PromptMessage],
    params: LLMCompletionParams,
    mode: str,
    qwen: bool,
) -> LLMRequest:
    model_params = params.model_params
    response_format = None
    tools = None

    if mode == MODE_STRUCTURED:
        schema = params.structured_output_schema
        response_format = ResponseFormat(
            type="json_object" if qwen else "json_schema",
            json_schema=to_json_schema(schema),
            name=schema_name(schema),
        )
    elif mode == MODE_TOOLS:
        tools = [
            {"type": "function", "function": tool.model_dump()}
            for tool in params.tools
        ]

    return LLMRequest(
        messages=messages,
        model=model_params.model,
        temperature=model_params.temperature,
        max_tokens=model_params.max_tokens,
        top_p=model_params.top_p,
        response_format=response_format,
        tools=tools,
        provider_options=model_params.provider_options,
    )


async def _traced_stream(
    deltas: AsyncIterator[str],
    run: RunConfig,
) -> AsyncIterator[bytes]:
    chunks = []
    try:
        async for delta in deltas:
            chunks.append(delta)
            yield delta.encode("utf-8")
    except Exception as e:
        await notify_error(run.callbacks, run.run_id, e)
        raise
    await notify_end(run.callbacks, run.run_id, "".join(chunks))


async def execute_completion(
    provider: LLMProvider,
    messages: list[PromptMessage],
    params: LLMCompletionParams,
    run: RunConfig,
) -> str | dict[str, Any] | ToolCallResponse | AsyncIterator[bytes]:
    """Invoke the provider in the mode the params call for.

    Raises:
        StructuredOutputError: Structured completion failed schema validation.
        ToolCallParseError: Tool call completion had an unexpected shape.
        LLMError: Vendor failure.
    """
    model_params = params.model_params
    mode = select_mode(params)
    qwen = mode == MODE_STRUCTURED and is_qwen_model(model_params)

    if qwen:
        logger.info(
            "Qwen model detected, adding JSON instruction",
            extra={"model": model_params.model, "provider": model_params.provider},
        )
        messages = apply_qwen_instruction(messages)

    request = _build_llm_request(messages, params, mode, qwen)
    await notify_start(
        run.callbacks,
        LLMRun(
            run_id=run.run_id,
            name=run.run_name,
            model=model_params.model,
            provider=provider.name,
            input=[m.model_dump(exclude_none=True) for m in messages],
            model_parameters={
                k: v
                for k, v in (
                    ("temperature", request.temperature),
                    ("max_tokens", request.max_tokens),
                    ("top_p", request.top_p),
                )
                if v is not None
            },
        ),
    )

    try:
        if mode == MODE_STREAMING:
            deltas = await provider.stream(request)
            return _traced_stream(deltas, run)

        response = await provider.generate(request)

        if mode == MODE_STRUCTURED:
            result = response.parsed if response.parsed is not None else parse_json_output(response.text)
            if qwen:
                result = remap_qwen_fields(result)
            output: Any = validate_structured_output(result, params.structured_output_schema)

        elif mode == MODE_TOOLS:
            try:
                output = ToolCallResponse.model_validate({
                    "content": response.text or "",
                    "tool_calls": response.tool_calls or [],
                })
            except ValidationError as e:
                raise ToolCallParseError() from e

        else:
            output = response.text or ""

    except Exception as e:
        await notify_error(run.callbacks, run.run_id, e)
        raise

    traced_output = output.model_dump() if isinstance(output, ToolCallResponse) else output
    await notify_end(run.callbacks, run.run_id, traced_output, response.usage)
    return output


async def fetch_llm_completion(
    params: LLMCompletionParams,
    settings: LLMSettings | None = None,
) -> CompletionResult:
    """Run one chat completion.

    Returns:
        The completion (text, byte stream, validated dict or tool call
        response) and the coroutine function that forwards traced events.

    Raises:
        LLMValidationError: Invalid input or output; raised even when
            throw_on_error is False.
        LLMError: Vendor failure, when throw_on_error is True.
    """
    settings = settings or get_settings()
    model_params = params.model_params

    if params.structured_output_schema is not None and params.tools:
        raise LLMValidationError("Structured output and tools cannot be combined in one call")

    messages = normalize_messages(params.messages, model_params.adapter)
    trace_params = params.trace_params

    callbacks = list(params.callbacks or [])
    recorder = None
    if trace_params is not None:
        recorder = TraceRecorder(
            project_id=trace_params.project_id,
            environment=trace_params.environment,
            token_count_delegate=trace_params.token_count_delegate,
        )
        callbacks.append(recorder)

    process_traced_events = make_process_traced_events(recorder, trace_params)

    if model_params.adapter == LLMAdapter.POWERRAG:
        try:
            completion = await handle_powerrag_completion(
                messages,
                model_params,
                params.api_key,
                base_url=params.base_url,
                extra_headers=params.extra_headers,
                trace_params=trace_params,
                streaming=params.streaming,
                callbacks=params.callbacks,
                settings=settings,
            )
        except LLMValidationError:
            raise
        except Exception as e:
            logger.error(
                "PowerRAG call failed: %s",
                e,
                extra={
                    "model": model_params.model,
                    "adapter": getattr(model_params.adapter, "value", model_params.adapter),
                    "trace_id": trace_params.trace_id if trace_params else None,
                    "error_type": type(e).__name__,
                },
            )
            if params.throw_on_error:
                raise
            return CompletionResult(completion="", process_traced_events=process_traced_events)
        return CompletionResult(completion=completion, process_traced_events=process_traced_events)

    provider = build_provider(
        model_params.adapter,
        model=model_params.model,
        api_key=params.api_key,
        base_url=params.base_url,
        extra_headers=params.extra_headers,
        max_retries=params.max_retries,
        config=params.config,
        settings=settings,
    )

    run = RunConfig(
        callbacks=callbacks,
        run_id=trace_params.trace_id if trace_params else str(uuid.uuid4()),
        run_name=trace_params.trace_name if trace_params else None,
    )
    mode = select_mode(params)
    log_context = {
        "model": model_params.model,
        "provider": model_params.provider,
        "adapter": getattr(model_params.adapter, "value", model_params.adapter),
        "mode": mode,
        "messages_count": len(messages),
        "trace_id": trace_params.trace_id if trace_params else None,
    }

    logger.info("Starting LLM call", extra=log_context)
    start_time = time.perf_counter()

    try:
        completion = await execute_completion(provider, messages, params, run)
    except LLMValidationError:
        raise
    except Exception as e:
        logger.error(
            "LLM call failed: %s",
            e,
            extra={**log_context, "error_type": type(e).__name__},
        )
        if params.throw_on_error:
            raise
        return CompletionResult(completion="", process_traced_events=process_traced_events)

    logger.info(
        "LLM call succeeded",
        extra={**log_context, "latency_ms": int((time.perf_counter() - start_time) * 1000)},
    )
    return CompletionResult(completion=completion, process_traced_events=process_traced_events)
