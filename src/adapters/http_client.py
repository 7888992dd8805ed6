"""httpx wrapper.

- Standardizes base URL, timeouts and headers for daemon requests.
- Tests swap the network for an `httpx.MockTransport` through `transport`.
"""

from __future__ import annotations

import httpx

from core.config import AppSettings

USER_AGENT = "ollama-keeper/0.1"


def build_async_client(
    settings: AppSettings | None = None,
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` pointed at the daemon with safe defaults."""

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json, application/x-ndjson",
    }
    return httpx.AsyncClient(
        base_url=base_url or settings.host,
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def stream_timeout(settings: AppSettings) -> httpx.Timeout:
    """Timeout for long-lived streams: connect stays short, reads may block."""

    return httpx.Timeout(settings.http_timeout_seconds, read=settings.pull_timeout_seconds)
