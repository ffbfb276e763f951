"""Access point for the event ingestion pipeline.

The pipeline itself lives outside this package. The hosting application
registers its batch processor once at startup; this module only forwards
batches to it.
"""

import logging
from typing import Any, Protocol

from .types import AuthCheck, IngestionResponse

logger = logging.getLogger(__name__)


class IngestionNotConfiguredError(RuntimeError):
    """No event batch processor has been registered."""


class EventBatchProcessor(Protocol):
    """Callable that ingests a batch of events for one project."""

    async def __call__(
        self,
        events: list[dict[str, Any]],
        auth_check: AuthCheck,
        *,
        is_langfuse_internal: bool = False,
    ) -> IngestionResponse: ...


# Global processor instance
_processor: EventBatchProcessor | None = None


def get_event_batch_processor() -> EventBatchProcessor | None:
    """Get the registered processor (for testing)."""
    return _processor


def set_event_batch_processor(processor: EventBatchProcessor | None) -> None:
    """Register the processor events are forwarded to."""
    global _processor
    _processor = processor


async def process_event_batch(
    events: list[dict[str, Any]],
    auth_check: AuthCheck,
    *,
    is_langfuse_internal: bool = False,
) -> IngestionResponse:
    """Forward a batch of events to the registered processor.

    Raises:
        IngestionNotConfiguredError: No processor registered.
    """
    if _processor is None:
        raise IngestionNotConfiguredError("No event batch processor registered")

    logger.debug(
        "Forwarding %d events to ingestion",
        len(events),
        extra={
            "project_id": auth_check.scope.project_id,
            "is_langfuse_internal": is_langfuse_internal,
        },
    )
    return await _processor(
        events,
        auth_check,
        is_langfuse_internal=is_langfuse_internal,
    )
