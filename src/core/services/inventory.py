"""Inventory reporting: daemon liveness, installed models, per-model health.

Every function accepts an optional `daemon` (anything implementing
`ModelDaemon`); without one, a short-lived `OllamaClient` is opened from
`AppSettings`. Nothing is cached: each call re-queries the daemon.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

from pydantic import ValidationError

from adapters.ollama_client import OllamaClient
from core.config import AppSettings
from core.domain.models import DaemonInfo, HealthMap, ModelDescriptor
from core.errors import KeeperError, ProtocolError
from core.interfaces.daemon import ModelDaemon
from core.services.sizing import format_size

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_daemon(
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
    *,
    host: str | None = None,
) -> AsyncIterator[ModelDaemon]:
    """Yield `daemon` as-is, or a fresh `OllamaClient` closed on exit."""

    if daemon is not None:
        yield daemon
        return
    async with OllamaClient(settings, host=host) as client:
        yield client


def canonical_model_name(name: str) -> str:
    """`llama3.2` and `llama3.2:latest` name the same model."""

    name = name.strip()
    last = name.rsplit("/", 1)[-1]
    if ":" in last:
        return name
    return f"{name}:latest"


def unique_model_names(names: Iterable[str]) -> list[str]:
    """Drop blanks and aliases of earlier names, keeping the first spelling."""

    seen: dict[str, str] = {}
    for name in names:
        name = name.strip()
        if name:
            seen.setdefault(canonical_model_name(name), name)
    return list(seen.values())


def descriptor_from_entry(entry: dict[str, Any]) -> ModelDescriptor:
    """Normalize one `/api/tags` entry into a `ModelDescriptor`."""

    raw_size = entry.get("size")
    size_bytes: int | None = None
    if isinstance(raw_size, bool):
        raise ProtocolError(f"invalid size for model {entry.get('name')!r}")
    if isinstance(raw_size, (int, float)):
        size_bytes = int(raw_size)
        size = format_size(size_bytes)
    elif isinstance(raw_size, str):
        size = raw_size
    else:
        size = "?"

    try:
        return ModelDescriptor(
            name=entry.get("name"),
            size=size,
            modified=str(entry.get("modified_at") or entry.get("modified") or ""),
            size_bytes=size_bytes,
            digest=entry.get("digest"),
        )
    except ValidationError as exc:
        raise ProtocolError(f"malformed model entry: {exc.errors()[0]['msg']}") from exc


async def check_health(
    host: str | None = None,
    *,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> DaemonInfo:
    """Contact the daemon and report its version and installed model names.

    Raises `DaemonConnectionError` when unreachable and `ProtocolError` when
    the answers are malformed.
    """

    async with open_daemon(daemon, settings, host=host) as d:
        version = await d.version()
        entries = await d.list_models()
    return DaemonInfo(models=[str(entry["name"]) for entry in entries], version=version)


async def list_installed_models(
    *,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> list[ModelDescriptor]:
    """Enumerate the models currently present on the daemon."""

    async with open_daemon(daemon, settings) as d:
        entries = await d.list_models()
    return [descriptor_from_entry(entry) for entry in entries]


async def get_model_health(
    models: Iterable[str] | None = None,
    *,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> HealthMap:
    """Ping each model and map it to True (answers) or False (absent/erroring).

    Without `models`, the configured required models plus every installed
    model are pinged. A failing ping never fails the call.
    """

    settings = settings or AppSettings()
    async with open_daemon(daemon, settings) as d:
        if models is None:
            names = list(settings.required_models)
            try:
                names.extend(entry["name"] for entry in await d.list_models())
            except KeeperError as exc:
                logger.warning("cannot list installed models: %s", exc)
        else:
            names = list(models)
        names = unique_model_names(names)

        sem = asyncio.Semaphore(max(1, settings.health_max_concurrency))

        async def ping_one(name: str) -> tuple[str, bool]:
            async with sem:
                try:
                    await d.ping(name)
                except Exception as exc:
                    logger.warning("model %s failed its health check: %s", name, exc)
                    return name, False
            return name, True

        results = await asyncio.gather(*(ping_one(name) for name in names))
    return dict(results)
