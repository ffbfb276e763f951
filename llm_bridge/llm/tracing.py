"""Callback-based tracing for completion calls.

The executor notifies every registered CallbackHandler around each vendor
invocation. TraceRecorder is the built-in handler: it buffers ingestion events
locally for one call, and the caller forwards them to the ingestion pipeline
through ``process_traced_events`` once the completion is available.
"""

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..ingestion.processor import process_event_batch
from ..ingestion.types import (
    CreateGenerationBody,
    IngestionEvent_GenerationCreate,
    IngestionEvent_GenerationUpdate,
    IngestionEvent_TraceCreate,
    IngestionEventModel,
    TraceBody,
    UpdateGenerationBody,
    event_to_dict,
    utc_now,
    utc_now_iso,
)
from .models import TokenCountDelegate, TraceParams, Usage

logger = logging.getLogger(__name__)


@dataclass
class LLMRun:
    """Describes one vendor invocation to callback handlers."""

    run_id: str
    name: str | None
    model: str
    provider: str
    input: Any
    model_parameters: dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=utc_now)


@dataclass
class RunConfig:
    """Callbacks and run identity for one completion call."""

    callbacks: list["CallbackHandler"] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    run_name: str | None = None


class CallbackHandler:
    """Receives lifecycle notifications for LLM runs.

    All hooks are no-ops; subclasses override what they need.
    """

    async def on_llm_start(self, run: LLMRun) -> None:
        pass

    async def on_llm_end(self, run_id: str, output: Any, usage: Usage | None = None) -> None:
        pass

    async def on_llm_error(self, run_id: str, error: BaseException) -> None:
        pass


async def notify_start(callbacks: list[CallbackHandler], run: LLMRun) -> None:
    """Send on_llm_start to every handler; handler failures are logged."""
    for handler in callbacks:
        try:
            await handler.on_llm_start(run)
        except Exception as e:
            logger.warning(
                "Callback on_llm_start failed: %s",
                e,
                extra={"run_id": run.run_id, "handler": type(handler).__name__},
            )


async def notify_end(
    callbacks: list[CallbackHandler],
    run_id: str,
    output: Any,
    usage: Usage | None = None,
) -> None:
    """Send on_llm_end to every handler; handler failures are logged."""
    for handler in callbacks:
        try:
            await handler.on_llm_end(run_id, output, usage)
        except Exception as e:
            logger.warning(
                "Callback on_llm_end failed: %s",
                e,
                extra={"run_id": run_id, "handler": type(handler).__name__},
            )


async def notify_error(
    callbacks: list[CallbackHandler],
    run_id: str,
    error: BaseException,
) -> None:
    """Send on_llm_error to every handler; handler failures are logged."""
    for handler in callbacks:
        try:
            await handler.on_llm_error(run_id, error)
        except Exception as e:
            logger.warning(
                "Callback on_llm_error failed: %s",
                e,
                extra={"run_id": run_id, "handler": type(handler).__name__},
            )


@dataclass
class _OpenGeneration:
    generation_id: str
    model: str
    input_text: str


class TraceRecorder(CallbackHandler):
    """Buffers trace and generation events for one completion call.

    Events stay in memory until export_local_events() is called; nothing is
    sent over the network by the recorder itself.
    """

    def __init__(
        self,
        project_id: str,
        environment: str | None = None,
        token_count_delegate: TokenCountDelegate | None = None,
    ):
        self.project_id = project_id
        self.environment = environment
        self._token_count_delegate = token_count_delegate
        self._events: list[IngestionEventModel] = []
        self._open: dict[str, _OpenGeneration] = {}

    def _envelope(self) -> dict[str, str]:
        return {"id": str(uuid.uuid4()), "timestamp": utc_now_iso()}

    async def on_llm_start(self, run: LLMRun) -> None:
        generation_id = str(uuid.uuid4())
        self._open[run.run_id] = _OpenGeneration(
            generation_id=generation_id,
            model=run.model,
            input_text=json.dumps(run.input, default=str),
        )

        trace = TraceBody(
            id=run.run_id,
            timestamp=run.start_time,
            name=run.name,
            input=run.input,
            environment=self.environment,
        )
        generation = CreateGenerationBody(
            id=generation_id,
            traceId=run.run_id,
            name=run.name or run.provider,
            startTime=run.start_time,
            model=run.model,
            modelParameters=_map_values(run.model_parameters),
            input=run.input,
            environment=self.environment,
        )
        self._events.append(
            IngestionEvent_TraceCreate(type="trace-create", body=trace, **self._envelope())
        )
        self._events.append(
            IngestionEvent_GenerationCreate(
                type="generation-create", body=generation, **self._envelope()
            )
        )

    async def on_llm_end(self, run_id: str, output: Any, usage: Usage | None = None) -> None:
        generation = self._open.pop(run_id, None)
        if generation is None:
            logger.debug("on_llm_end for unknown run", extra={"run_id": run_id})
            return

        if usage is None:
            usage = self._count_usage(generation, output)

        fields: dict[str, Any] = {}
        if usage is not None:
            fields["usageDetails"] = {
                "input": usage.prompt_tokens,
                "output": usage.completion_tokens,
                "total": usage.total_tokens,
            }
        update = UpdateGenerationBody(
            id=generation.generation_id,
            traceId=run_id,
            endTime=utc_now(),
            output=output,
            **fields,
        )
        self._events.append(
            IngestionEvent_GenerationUpdate(
                type="generation-update", body=update, **self._envelope()
            )
        )
        self._events.append(
            IngestionEvent_TraceCreate(
                type="trace-create",
                body=TraceBody(id=run_id, output=output),
                **self._envelope(),
            )
        )

    async def on_llm_error(self, run_id: str, error: BaseException) -> None:
        generation = self._open.pop(run_id, None)
        if generation is None:
            return

        update = UpdateGenerationBody(
            id=generation.generation_id,
            traceId=run_id,
            endTime=utc_now(),
            level="ERROR",
            statusMessage=str(error),
        )
        self._events.append(
            IngestionEvent_GenerationUpdate(
                type="generation-update", body=update, **self._envelope()
            )
        )

    def _count_usage(self, generation: _OpenGeneration, output: Any) -> Usage | None:
        if self._token_count_delegate is None:
            return None
        output_text = output if isinstance(output, str) else json.dumps(output, default=str)
        prompt_tokens = self._token_count_delegate(generation.input_text, generation.model)
        completion_tokens = self._token_count_delegate(output_text, generation.model)
        if prompt_tokens is None or completion_tokens is None:
            return None
        return Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def export_local_events(self) -> list[dict[str, Any]]:
        """Return buffered events as wire-format dicts and clear the buffer."""
        events = [event_to_dict(event) for event in self._events]
        self._events = []
        return events


def _map_values(model_parameters: dict[str, Any]) -> dict[str, Any]:
    # The ingestion API accepts str, int, bool or list[str] parameter values
    return {
        key: value if isinstance(value, (str, bool, int, list)) or value is None else str(value)
        for key, value in model_parameters.items()
    }


async def _noop() -> None:
    return None


def make_process_traced_events(
    recorder: TraceRecorder | None,
    trace_params: TraceParams | None,
) -> Callable[[], Awaitable[None]]:
    """Build the hook the caller awaits after obtaining the completion."""
    if recorder is None or trace_params is None:
        return _noop

    async def process_traced_events() -> None:
        try:
            # Round-trip through JSON to match a batch received over the network
            events = json.loads(json.dumps(recorder.export_local_events(), default=str))
            if not events:
                return
            await process_event_batch(
                events,
                trace_params.auth_check,
                is_langfuse_internal=True,
            )
        except Exception as e:
            logger.error(
                "Failed to process traced events: %s",
                e,
                extra={
                    "project_id": trace_params.project_id,
                    "trace_id": trace_params.trace_id,
                },
            )

    return process_traced_events
