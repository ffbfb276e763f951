"""Event ingestion interface consumed by the tracing code."""

from .processor import (
    EventBatchProcessor,
    IngestionNotConfiguredError,
    get_event_batch_processor,
    process_event_batch,
    set_event_batch_processor,
)
from .types import (
    AuthCheck,
    AuthScope,
    IngestionError,
    IngestionResponse,
    TraceBody,
    event_to_dict,
    utc_now_iso,
)

__all__ = [
    "AuthCheck",
    "AuthScope",
    "EventBatchProcessor",
    "IngestionError",
    "IngestionNotConfiguredError",
    "IngestionResponse",
    "TraceBody",
    "event_to_dict",
    "get_event_batch_processor",
    "process_event_batch",
    "set_event_batch_processor",
    "utc_now_iso",
]
