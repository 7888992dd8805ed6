"""Ollama daemon client (implements `core.interfaces.daemon.ModelDaemon`).

Endpoints used:
- GET    /api/version   daemon version
- GET    /api/tags      installed models
- POST   /api/pull      NDJSON progress stream
- DELETE /api/delete    remove a model
- POST   /api/generate  empty prompt, loads the model (liveness check)

Every httpx failure leaves this module as a `core.errors` type.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from adapters.http_client import build_async_client, stream_timeout
from core.config import AppSettings, normalize_host
from core.errors import (
    DaemonConnectionError,
    DownloadError,
    KeeperError,
    ModelNotFoundError,
    ProtocolError,
)
from core.interfaces.daemon import ModelDaemon

logger = logging.getLogger(__name__)

_MISSING_MARKERS = ("not found", "file does not exist", "manifest unknown", "no such model")


def _looks_missing(detail: str) -> bool:
    text = detail.lower()
    return any(marker in text for marker in _MISSING_MARKERS)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return response.text.strip() or response.reason_phrase


class OllamaClient(ModelDaemon):
    """Async client for a local Ollama daemon.

    Use as an async context manager; the underlying `httpx.AsyncClient` is
    closed on exit unless it was injected by the caller.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        host: str | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._owns_client = client is None
        self._client = client or build_async_client(
            self._settings,
            base_url=normalize_host(host) if host else None,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        timeout: float | httpx.Timeout | None = None,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {}
        if payload is not None:
            kwargs["json"] = payload
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise DaemonConnectionError(
                f"cannot reach Ollama at {self.base_url}: {str(exc) or type(exc).__name__}"
            ) from exc

    def _raise_for_status(self, response: httpx.Response, *, model: str | None = None) -> None:
        if response.status_code < 400:
            return
        detail = _error_detail(response)
        if model is not None and (response.status_code == 404 or _looks_missing(detail)):
            raise ModelNotFoundError(model, detail)
        if response.status_code >= 500:
            raise DaemonConnectionError(f"Ollama returned HTTP {response.status_code}: {detail}")
        raise ProtocolError(f"Ollama returned HTTP {response.status_code}: {detail}")

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"invalid JSON from {response.request.url.path}") from exc

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def version(self) -> str | None:
        response = await self._request("GET", "/api/version")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ProtocolError("unexpected /api/version payload")
        version = payload.get("version")
        return version if isinstance(version, str) and version else None

    async def list_models(self) -> list[dict[str, Any]]:
        response = await self._request("GET", "/api/tags")
        self._raise_for_status(response)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ProtocolError("unexpected /api/tags payload")
        models = payload.get("models") or []
        if not isinstance(models, list):
            raise ProtocolError("'models' in /api/tags is not a list")
        for entry in models:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                raise ProtocolError("model entry without a name in /api/tags")
        return models

    async def ping(self, model: str) -> None:
        response = await self._request(
            "POST",
            "/api/generate",
            payload={"model": model, "prompt": "", "stream": False},
            timeout=self._settings.health_timeout_seconds,
        )
        self._raise_for_status(response, model=model)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ProtocolError("unexpected /api/generate payload")
        if payload.get("error"):
            raise ProtocolError(str(payload["error"]))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def delete(self, model: str) -> None:
        response = await self._request("DELETE", "/api/delete", payload={"model": model})
        self._raise_for_status(response, model=model)

    async def stream_pull(self, model: str) -> AsyncIterator[dict[str, Any]]:
        completed = False
        try:
            async with self._client.stream(
                "POST",
                "/api/pull",
                json={"model": model, "stream": True},
                timeout=stream_timeout(self._settings),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    detail = _error_detail(response)
                    if response.status_code == 404 or _looks_missing(detail):
                        raise ModelNotFoundError(model, detail)
                    raise DownloadError(
                        f"pull of '{model}' rejected with HTTP {response.status_code}: {detail}",
                        model=model,
                    )

                try:
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            event = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise ProtocolError(f"undecodable pull progress line: {line[:120]!r}") from exc
                        if not isinstance(event, dict):
                            raise ProtocolError("pull progress line is not an object")
                        if event.get("error"):
                            detail = str(event["error"])
                            if _looks_missing(detail):
                                raise ModelNotFoundError(model, detail)
                            raise DownloadError(f"pull of '{model}' failed: {detail}", model=model)
                        if event.get("status") == "success":
                            completed = True
                        yield event
                except httpx.TransportError as exc:
                    raise DownloadError(
                        f"connection lost while pulling '{model}': {str(exc) or type(exc).__name__}",
                        model=model,
                    ) from exc
        except KeeperError:
            raise
        except httpx.TransportError as exc:
            raise DaemonConnectionError(
                f"cannot reach Ollama at {self.base_url}: {str(exc) or type(exc).__name__}"
            ) from exc

        if not completed:
            raise DownloadError(f"pull stream for '{model}' ended before success", model=model)
        logger.debug("pull stream for %s completed", model)
