"""Process-wide configuration for the LLM completion layer.

Settings are resolved from the environment once and handed explicitly to the
provider factory, so tests can swap them without touching ``os.environ``.
"""

import logging
import os
from dataclasses import dataclass

import httpx
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass(frozen=True)
class LLMSettings:
    """Immutable settings shared by every completion call."""

    DEFAULT_TIMEOUT = 120.0  # 2 minutes for vendor SDK paths
    DEFAULT_POWERRAG_PROTOCOL = "http"
    DEFAULT_POWERRAG_HOST = "localhost"
    DEFAULT_POWERRAG_PORT = "80"

    https_proxy: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    powerrag_protocol: str = DEFAULT_POWERRAG_PROTOCOL
    powerrag_host: str = DEFAULT_POWERRAG_HOST
    powerrag_port: str = DEFAULT_POWERRAG_PORT
    cloud_region: str | None = None
    project_id: str | None = None
    encryption_key: str | None = None

    @classmethod
    def from_env(cls) -> "LLMSettings":
        """Build settings from environment variables."""
        return cls(
            https_proxy=os.environ.get("HTTPS_PROXY") or None,
            timeout=float(os.environ.get("LLM_TIMEOUT_SECONDS", cls.DEFAULT_TIMEOUT)),
            powerrag_protocol=os.environ.get(
                "LANGFUSE_POWERRAG_PROTOCOL", cls.DEFAULT_POWERRAG_PROTOCOL
            ),
            powerrag_host=os.environ.get("LANGFUSE_POWERRAG_HOST", cls.DEFAULT_POWERRAG_HOST),
            powerrag_port=os.environ.get("LANGFUSE_POWERRAG_PORT", cls.DEFAULT_POWERRAG_PORT),
            cloud_region=os.environ.get("NEXT_PUBLIC_LANGFUSE_CLOUD_REGION") or None,
            project_id=os.environ.get("LANGFUSE_PROJECT_ID") or None,
            encryption_key=os.environ.get("ENCRYPTION_KEY") or None,
        )

    @property
    def is_cloud(self) -> bool:
        """True when running as the hosted cloud deployment."""
        return bool(self.cloud_region)

    @property
    def powerrag_url(self) -> str:
        """Default PowerRAG chat endpoint."""
        return (
            f"{self.powerrag_protocol}://{self.powerrag_host}:{self.powerrag_port}"
            "/v1/chat-messages"
        )


_settings: LLMSettings | None = None


def get_settings() -> LLMSettings:
    """Get the settings singleton, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = LLMSettings.from_env()
    return _settings


def set_settings(settings: LLMSettings | None) -> None:
    """Replace the settings instance (for testing)."""
    global _settings
    _settings = settings


# Shared vendor HTTP clients, keyed by (https_proxy, timeout)
_http_clients: dict[tuple[str | None, float], httpx.AsyncClient] = {}


def get_http_client(settings: LLMSettings | None = None) -> httpx.AsyncClient:
    """Get the HTTP client shared by vendor SDKs for these settings.

    One client per proxy and timeout pair is built on first use and reused by
    every later call, so connection pools are not created per completion.
    """
    settings = settings or get_settings()
    key = (settings.https_proxy, settings.timeout)
    client = _http_clients.get(key)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(
            timeout=settings.timeout,
            transport=httpx.AsyncHTTPTransport(proxy=settings.https_proxy),
        )
        _http_clients[key] = client
    return client


async def close_http_clients() -> None:
    """Close every shared HTTP client (on shutdown)."""
    clients = list(_http_clients.values())
    _http_clients.clear()
    for client in clients:
        await client.aclose()


def configure_logging(level: int | str = logging.INFO) -> None:
    """Basic logging setup for scripts and workers embedding this package."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
