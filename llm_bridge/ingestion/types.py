"""Ingestion event models.

Event envelopes and bodies are the langfuse SDK's public ingestion API types,
so events serialize straight to the wire format (camelCase keys, unset fields
omitted). Only the auth context is local; the SDK has no counterpart.
"""

import json
from datetime import datetime, timezone
from typing import Any, Literal

from langfuse.api.resources.ingestion.types import (
    CreateGenerationBody,
    IngestionError,
    IngestionEvent_GenerationCreate,
    IngestionEvent_GenerationUpdate,
    IngestionEvent_TraceCreate,
    IngestionResponse,
    TraceBody,
    UpdateGenerationBody,
)
from pydantic import BaseModel

IngestionEventModel = (
    IngestionEvent_TraceCreate | IngestionEvent_GenerationCreate | IngestionEvent_GenerationUpdate
)


class AuthScope(BaseModel):
    """Project scope of an ingestion auth context."""

    project_id: str
    access_level: Literal["project", "organization"] = "project"


class AuthCheck(BaseModel):
    """Auth context handed to the ingestion pipeline."""

    valid_key: Literal[True] = True
    scope: AuthScope


def event_to_dict(event: IngestionEventModel) -> dict[str, Any]:
    """Serialize an SDK event the way it goes over the wire."""
    return json.loads(event.json())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return utc_now().isoformat()


__all__ = [
    "AuthCheck",
    "AuthScope",
    "CreateGenerationBody",
    "IngestionError",
    "IngestionEventModel",
    "IngestionEvent_GenerationCreate",
    "IngestionEvent_GenerationUpdate",
    "IngestionEvent_TraceCreate",
    "IngestionResponse",
    "TraceBody",
    "UpdateGenerationBody",
    "event_to_dict",
    "utc_now",
    "utc_now_iso",
]
