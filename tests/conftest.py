"""Pytest fixtures for testing."""

from collections.abc import AsyncIterator, Generator
from typing import Any

import pytest

from llm_bridge import config
from llm_bridge.config import LLMSettings, set_settings
from llm_bridge.ingestion import (
    AuthCheck,
    AuthScope,
    IngestionResponse,
    set_event_batch_processor,
)
from llm_bridge.llm.models import LLMRequest, LLMResponse, TraceParams, Usage
from llm_bridge.llm.providers.base import LLMProvider

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


class RecordingProcessor:
    """Event batch processor that records every batch it receives."""

    def __init__(self, result: IngestionResponse | None = None, error: Exception | None = None):
        self.calls: list[dict[str, Any]] = []
        self.result = result or IngestionResponse(successes=[], errors=[])
        self.error = error

    async def __call__(self, events, auth_check, *, is_langfuse_internal=False):
        self.calls.append({
            "events": events,
            "auth_check": auth_check,
            "is_langfuse_internal": is_langfuse_internal,
        })
        if self.error is not None:
            raise self.error
        return self.result


class FakeProvider(LLMProvider):
    """Provider returning a canned response and recording requests."""

    def __init__(
        self,
        response: LLMResponse | None = None,
        deltas: list[str] | None = None,
        error: Exception | None = None,
    ):
        self.response = response or LLMResponse(text="Hello!", model="fake-model", provider="fake")
        self.deltas = deltas or []
        self.error = error
        self.requests: list[LLMRequest] = []

    @property
    def name(self) -> str:
        return "fake"

    def supports(self, feature: str) -> bool:
        return True

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self._iter()

    async def _iter(self) -> AsyncIterator[str]:
        for delta in self.deltas:
            yield delta


@pytest.fixture(autouse=True)
def settings() -> Generator[LLMSettings, None, None]:
    """Provide deterministic settings for every test."""
    test_settings = LLMSettings(
        powerrag_host="powerrag.test",
        powerrag_port="8080",
        encryption_key=TEST_ENCRYPTION_KEY,
    )
    set_settings(test_settings)
    yield test_settings
    set_settings(None)
    config._http_clients.clear()


@pytest.fixture
def ingestion() -> Generator[RecordingProcessor, None, None]:
    """Register a recording event batch processor."""
    processor = RecordingProcessor()
    set_event_batch_processor(processor)
    yield processor
    set_event_batch_processor(None)


@pytest.fixture
def auth_check() -> AuthCheck:
    """Auth context for the test project."""
    return AuthCheck(scope=AuthScope(project_id="project-1"))


@pytest.fixture
def trace_params(auth_check: AuthCheck) -> TraceParams:
    """Trace parameters for the test project."""
    return TraceParams(
        project_id="project-1",
        trace_id="trace-1",
        trace_name="eval-run",
        environment="default",
        auth_check=auth_check,
    )


@pytest.fixture
def usage() -> Usage:
    """Sample vendor-reported usage."""
    return Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
