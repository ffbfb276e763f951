"""PowerRAG completion handler.

PowerRAG is a retrieval-augmented chat service with its own REST protocol, so
it bypasses the vendor providers entirely. Because it is not driven through
the callback-instrumented providers, traces for it are written directly to
the ingestion pipeline as a single trace-create event.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from ...config import LLMSettings, get_settings
from ...ingestion.processor import process_event_batch
from ...ingestion.types import (
    AuthCheck,
    AuthScope,
    IngestionEvent_TraceCreate,
    TraceBody,
    event_to_dict,
)
from ..errors import LLMValidationError, PowerRAGError, TraceCreationError
from ..models import ModelParams, PromptMessage, TraceParams
from ..tracing import CallbackHandler, LLMRun

logger = logging.getLogger(__name__)

PROVIDER_NAME = "PowerRAG"
POWERRAG_USER = "abc-123"
UNKNOWN_RUN_ID = "powerrag-unknown"
DEFAULT_TRACE_NAME = "PowerRAG Query"
DEFAULT_PROJECT_ID = "powerrag-default-project"
FALLBACK_ENVIRONMENT = "prompt-experiment"
MAX_ENVIRONMENT_LENGTH = 40
TRACE_TAGS = ["powerrag", "manual-tracing"]

# Agent progress markers interleaved with the answer in streamed message events
STREAM_MARKERS = (
    "<Thinking Begin>",
    "<Thinking End>",
    "<Action Begin>",
    "<Final Answer Begin>",
)

UTC_PLUS_8 = timezone(timedelta(hours=8))


def extract_query(messages: list[PromptMessage]) -> str:
    """Build the PowerRAG query text from the conversation.

    Uses user turns; falls back to system and assistant turns, then to the
    first message.

    Raises:
        LLMValidationError: No message yields any text.
    """
    query = "\n".join(m.content for m in messages if m.role == "user")

    if not query:
        query = "\n".join(
            m.content for m in messages if m.role in ("system", "assistant")
        )

    if not query and messages:
        query = messages[0].content

    if not query:
        raise LLMValidationError("No user message found for PowerRAG query")
    return query


def build_payload(query: str, streaming: bool) -> dict[str, Any]:
    """Request body for the chat-messages endpoint."""
    return {
        "inputs": {},
        "query": query,
        # Inverted on purpose: existing PowerRAG deployments depend on it
        "response_mode": "blocking" if streaming else "streaming",
        "conversation_id": "",
        "user": POWERRAG_USER,
        "files": [],
    }


def build_headers(api_key: str | None, extra_headers: dict[str, str] | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json", **(extra_headers or {})}
    if api_key and api_key.strip():
        headers["Authorization"] = f"Bearer {api_key}"
    else:
        logger.warning("PowerRAG API key is empty or not provided", extra={"has_api_key": False})
    return headers


def _answer_from_json(parsed: Any) -> str:
    if isinstance(parsed, dict):
        if parsed.get("answer"):
            return parsed["answer"]
        if parsed.get("content"):
            return parsed["content"]
    return json.dumps(parsed)


def parse_sse_answer(text: str) -> str:
    """Assemble the answer from a server-sent-events body.

    Message events accumulate their answers, minus blank chunks and agent
    markers. Parsing stops at message_end, whose answer is used only when no
    message event was seen.
    """
    content = ""
    has_message_events = False
    message_end_answer = ""

    for line in text.split("\n"):
        if not line.startswith("data: "):
            continue
        data = line[6:]
        if not data.strip():
            continue

        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("PowerRAG SSE line parse failed", extra={"line": line[:100]})
            continue
        if not isinstance(event, dict):
            continue

        if event.get("event") == "message":
            has_message_events = True
            answer = event.get("answer")
            if (
                answer
                and answer.strip()
                and not any(marker in answer for marker in STREAM_MARKERS)
            ):
                content += answer
        elif event.get("event") == "message_end":
            if event.get("answer"):
                message_end_answer = event["answer"]
            break
        elif event.get("content"):
            content += event["content"]

    return content if has_message_events else message_end_answer


def parse_response_text(text: str, streaming: bool) -> str:
    """Extract the completion from a PowerRAG response body."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        if streaming:
            logger.info("PowerRAG parsing as Server-Sent Events")
            return parse_sse_answer(text)
        return text
    return _answer_from_json(parsed)


def format_utc8_timestamp(moment: datetime) -> str:
    """Format as YYYY-MM-DDTHH:MM:SS.mmm+08:00 on the UTC+8 wall clock."""
    local = moment.astimezone(UTC_PLUS_8)
    return f"{local:%Y-%m-%dT%H:%M:%S}.{local.microsecond // 1000:03d}+08:00"


def _iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sanitize_environment(environment: str | None) -> str | None:
    """Replace environment names the public ingestion schema rejects."""
    if environment and (
        environment.startswith("langfuse") or len(environment) > MAX_ENVIRONMENT_LENGTH
    ):
        logger.warning(
            "PowerRAG: environment name rejected, using default",
            extra={"original_environment": environment, "safe_environment": FALLBACK_ENVIRONMENT},
        )
        return FALLBACK_ENVIRONMENT
    return environment


async def create_manual_trace(
    *,
    trace_id: str,
    project_id: str | None,
    environment: str | None,
    name: str,
    input: str,
    output: str | None,
    metadata: dict[str, Any],
    start_time: datetime,
    end_time: datetime,
    error: str | None = None,
    settings: LLMSettings | None = None,
) -> None:
    """Write a single trace-create event straight to the ingestion pipeline.

    Raises:
        TraceCreationError: The pipeline reported an error for the event.
    """
    settings = settings or get_settings()
    timestamp = format_utc8_timestamp(start_time)
    event_id = str(uuid.uuid4())

    trace_metadata = {
        **metadata,
        "manualTracing": True,
        "provider": PROVIDER_NAME,
        "createdAt": timestamp,
        "duration": int((end_time - start_time).total_seconds() * 1000),
        "startTime": _iso_utc(start_time),
        "endTime": _iso_utc(end_time),
    }
    if error is not None:
        trace_metadata["errorMessage"] = error

    body = TraceBody(
        id=trace_id,
        timestamp=start_time.astimezone(UTC_PLUS_8),
        name=name,
        input=input,
        output=output,
        environment=environment,
        metadata=trace_metadata,
        public=False,
        tags=list(TRACE_TAGS),
    )
    event = event_to_dict(
        IngestionEvent_TraceCreate(
            type="trace-create",
            id=event_id,
            timestamp=timestamp,
            metadata={
                "manualTracing": True,
                "provider": PROVIDER_NAME,
                "createdAt": timestamp,
            },
            body=body,
        )
    )

    auth_check = AuthCheck(
        scope=AuthScope(
            project_id=project_id or settings.project_id or DEFAULT_PROJECT_ID,
            access_level="project",
        )
    )

    logger.info(
        "Creating manual trace",
        extra={
            "trace_id": trace_id,
            "project_id": auth_check.scope.project_id,
            "environment": environment,
            "has_error": error is not None,
        },
    )

    try:
        result = await process_event_batch([event], auth_check, is_langfuse_internal=False)
    except Exception as e:
        logger.error(
            "process_event_batch failed for manual trace: %s",
            e,
            extra={"trace_id": trace_id, "event_id": event_id},
        )
        raise

    if result.errors:
        first = result.errors[0]
        logger.error(
            "Manual trace rejected by ingestion",
            extra={"trace_id": trace_id, "event_id": event_id, "status": first.status},
        )
        raise TraceCreationError(
            f"Failed to create trace: {first.error or first.message} (Status: {first.status})"
        )

    logger.info(
        "Manual trace created",
        extra={"trace_id": trace_id, "event_id": event_id, "successes": len(result.successes)},
    )


def _find_callback_handler(callbacks: list[Any] | None) -> CallbackHandler | None:
    for callback in callbacks or []:
        if isinstance(callback, CallbackHandler):
            return callback
    return None


async def handle_powerrag_completion(
    messages: list[PromptMessage],
    model_params: ModelParams,
    api_key: str | None,
    *,
    base_url: str | None = None,
    extra_headers: dict[str, str] | None = None,
    trace_params: TraceParams | None = None,
    streaming: bool = False,
    callbacks: list[Any] | None = None,
    settings: LLMSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Run a PowerRAG query and trace it.

    With trace params the call is recorded through a manual trace; without
    them a caller-supplied callback handler, if any, is notified instead.

    Raises:
        LLMValidationError: No query text could be built.
        PowerRAGError: The endpoint answered with a non-2xx status.
        httpx.HTTPError: Transport failure.
    """
    settings = settings or get_settings()
    trace_id = trace_params.trace_id if trace_params else None
    manual_tracing = bool(trace_params and trace_id)
    handler = None if manual_tracing else _find_callback_handler(callbacks)
    run_id = trace_id or UNKNOWN_RUN_ID

    if not trace_id:
        logger.warning(
            "PowerRAG: no trace id provided, manual trace disabled",
            extra={"has_trace_params": trace_params is not None, "has_callbacks": bool(callbacks)},
        )

    query = extract_query(messages)
    payload = build_payload(query, streaming)
    headers = build_headers(api_key, extra_headers)
    url = base_url or settings.powerrag_url

    logger.info(
        "PowerRAG API request",
        extra={
            "url": url,
            "model": model_params.model,
            "streaming": streaming,
            "trace_id": trace_id,
            "header_names": sorted(headers),
            "payload_size": len(json.dumps(payload)),
        },
    )

    if handler is not None:
        try:
            await handler.on_llm_start(
                LLMRun(
                    run_id=run_id,
                    name=model_params.model,
                    model=model_params.model,
                    provider=PROVIDER_NAME,
                    input=query,
                )
            )
        except Exception as e:
            logger.warning("PowerRAG: callback start failed: %s", e, extra={"trace_id": trace_id})

    start_time = datetime.now(timezone.utc)
    started = time.perf_counter()
    run_metadata = {
        "provider": PROVIDER_NAME,
        "model": model_params.model,
        "adapter": str(getattr(model_params.adapter, "value", model_params.adapter)),
        "streaming": streaming,
        "manualTracing": True,
    }

    try:
        async with httpx.AsyncClient(timeout=settings.timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers)

        if not response.is_success:
            logger.error(
                "PowerRAG API error response",
                extra={"status": response.status_code, "trace_id": trace_id},
            )
            raise PowerRAGError(response.status_code, response.reason_phrase, response.text)

        completion = parse_response_text(response.text, streaming)
        end_time = datetime.now(timezone.utc)

        logger.info(
            "PowerRAG API response",
            extra={
                "status": response.status_code,
                "trace_id": trace_id,
                "completion_length": len(completion),
                "latency_ms": int((time.perf_counter() - started) * 1000),
            },
        )

        if handler is not None:
            try:
                await handler.on_llm_end(run_id, completion)
            except Exception as e:
                logger.warning("PowerRAG: callback end failed: %s", e, extra={"trace_id": trace_id})

        if manual_tracing:
            try:
                await create_manual_trace(
                    trace_id=trace_id,
                    project_id=trace_params.project_id,
                    environment=sanitize_environment(trace_params.environment),
                    name=trace_params.trace_name or DEFAULT_TRACE_NAME,
                    input=query,
                    output=completion,
                    metadata=run_metadata,
                    start_time=start_time,
                    end_time=end_time,
                    settings=settings,
                )
            except Exception as e:
                logger.error(
                    "PowerRAG: manual trace creation failed: %s",
                    e,
                    extra={"trace_id": trace_id, "project_id": trace_params.project_id},
                )

        return completion

    except Exception as error:
        end_time = datetime.now(timezone.utc)

        if handler is not None:
            try:
                await handler.on_llm_error(run_id, error)
            except Exception as e:
                logger.warning("PowerRAG: callback error hook failed: %s", e, extra={"trace_id": trace_id})

        if manual_tracing:
            try:
                await create_manual_trace(
                    trace_id=trace_id,
                    project_id=trace_params.project_id,
                    environment=sanitize_environment(trace_params.environment),
                    name=trace_params.trace_name or f"{DEFAULT_TRACE_NAME} (Error)",
                    input=query,
                    output=None,
                    error=str(error),
                    metadata={**run_metadata, "error": True},
                    start_time=start_time,
                    end_time=end_time,
                    settings=settings,
                )
            except Exception as trace_error:
                logger.error(
                    "PowerRAG: error trace creation failed: %s",
                    trace_error,
                    extra={"trace_id": trace_id, "original_error": str(error)},
                )

        logger.error(
            "PowerRAG API call failed: %s",
            error,
            extra={"trace_id": trace_id, "url": url, "query_preview": query[:100]},
        )
        raise
