"""Model provisioning: pull (with retry), remove, reconcile the required set.

Progress is reported either through a synchronous callback (`pull_model`)
or lazily through `iter_pull_progress`. Both preserve the daemon's event
order and never drop events.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from contextlib import aclosing
from dataclasses import replace
from typing import AsyncIterator, Callable, Iterable

from core.config import AppSettings
from core.domain.models import ProgressCallback, ProgressEvent, ProvisionResult, RetryPolicy
from core.errors import (
    TRANSIENT_ERRORS,
    DownloadError,
    FilesystemError,
    InsufficientDiskSpaceError,
    ModelNotFoundError,
    ProvisioningError,
)
from core.interfaces.daemon import ModelDaemon
from core.services.inventory import (
    canonical_model_name,
    list_installed_models,
    open_daemon,
    unique_model_names,
)
from core.services.sizing import estimate_model_size, format_size, get_available_disk_space

logger = logging.getLogger(__name__)

ModelProgressCallback = Callable[[str, ProgressEvent], None]


def retry_policy_from_settings(settings: AppSettings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.pull_max_retries,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
    )


def _check_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("model name must not be empty")
    return name


async def iter_pull_progress(
    name: str,
    *,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> AsyncIterator[ProgressEvent]:
    """Pull `name` and yield each progress event as the daemon reports it."""

    name = _check_name(name)
    async with open_daemon(daemon, settings) as d:
        async with aclosing(d.stream_pull(name)) as events:
            async for event in events:
                yield event


async def pull_model(
    name: str,
    on_progress: ProgressCallback | None = None,
    *,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> None:
    """Download `name`, invoking `on_progress` once per event, in order.

    Raises `ModelNotFoundError` if the daemon cannot resolve the name and
    `DownloadError` if the stream breaks or ends before success.
    """

    logger.info("pulling %s", name)
    async with aclosing(iter_pull_progress(name, daemon=daemon, settings=settings)) as events:
        async for event in events:
            if on_progress is not None:
                on_progress(event)
    logger.info("pulled %s", name)


async def pull_model_with_retry(
    name: str,
    on_progress: ProgressCallback | None = None,
    max_retries: int | None = None,
    *,
    policy: RetryPolicy | None = None,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> None:
    """`pull_model` plus up to `max_retries` extra attempts on transient failure.

    Each attempt restarts the download from zero, so `on_progress` sees the
    stream again from the beginning. Permanent failures (`ModelNotFoundError`,
    `ProtocolError`) propagate from the first attempt. Exhausting the retries
    raises `DownloadError` with `attempts` set.
    """

    settings = settings or AppSettings()
    policy = policy or retry_policy_from_settings(settings)
    if max_retries is not None:
        policy = replace(policy, max_retries=max_retries)
    if policy.max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    total = policy.max_retries + 1
    last_error: Exception | None = None
    for attempt in range(total):
        try:
            await pull_model(name, on_progress, daemon=daemon, settings=settings)
            return
        except TRANSIENT_ERRORS as exc:
            last_error = exc
            if attempt + 1 >= total:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "pull of %s failed (attempt %d/%d): %s; retrying in %.1fs",
                name,
                attempt + 1,
                total,
                exc,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    logger.warning("giving up on %s after %d attempt(s)", name, total)
    raise DownloadError(
        f"pull of '{name}' failed after {total} attempt(s): {last_error}",
        model=name,
        attempts=total,
    ) from last_error


async def remove_model(
    name: str,
    *,
    missing_ok: bool = False,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> None:
    """Delete an installed model.

    Not idempotent by default: removing an absent model raises
    `ModelNotFoundError` unless `missing_ok` is set.
    """

    name = _check_name(name)
    async with open_daemon(daemon, settings) as d:
        try:
            await d.delete(name)
        except ModelNotFoundError:
            if not missing_ok:
                raise
            logger.debug("%s already absent", name)
            return
    logger.info("removed %s", name)


async def ensure_required_models(
    required: Iterable[str] | None = None,
    on_progress: ModelProgressCallback | None = None,
    *,
    policy: RetryPolicy | None = None,
    check_disk_space: bool | None = None,
    daemon: ModelDaemon | None = None,
    settings: AppSettings | None = None,
) -> ProvisionResult:
    """Pull every required model that is not installed yet.

    One retrying pull per missing model, none for installed ones. A failed
    model never blocks the others; if any failed, `ProvisioningError` is
    raised after all attempts, carrying the per-model errors and the result.
    """

    settings = settings or AppSettings()
    policy = policy or retry_policy_from_settings(settings)
    if check_disk_space is None:
        check_disk_space = settings.check_disk_space
    source = required if required is not None else settings.required_models
    names = unique_model_names(source)

    result = ProvisionResult(required=names)
    async with open_daemon(daemon, settings) as d:
        installed = {canonical_model_name(m.name) for m in await list_installed_models(daemon=d)}

        missing: list[str] = []
        for name in names:
            if canonical_model_name(name) in installed:
                result.already_installed.append(name)
            else:
                missing.append(name)

        if not missing:
            return result

        to_pull = missing
        if check_disk_space:
            to_pull = _admit_by_disk_space(missing, result, settings)

        sem = asyncio.Semaphore(max(1, settings.pull_max_concurrency))
        pulled: set[str] = set()

        async def provision_one(name: str) -> None:
            callback: ProgressCallback | None = None
            if on_progress is not None:
                callback = functools.partial(on_progress, name)

            async with sem:
                try:
                    await pull_model_with_retry(name, callback, policy=policy, daemon=d, settings=settings)
                except Exception as exc:
                    logger.warning("could not provision %s: %s", name, exc)
                    result.failed[name] = exc
                    return
            pulled.add(name)

        await asyncio.gather(*(provision_one(name) for name in to_pull))

    result.pulled = [name for name in missing if name in pulled]
    if result.failed:
        raise ProvisioningError(result.failed, result)
    return result


def _admit_by_disk_space(missing: list[str], result: ProvisionResult, settings: AppSettings) -> list[str]:
    """Fail models whose estimated size no longer fits on the models volume."""

    try:
        budget = get_available_disk_space(settings=settings)
    except FilesystemError as exc:
        logger.warning("skipping disk space check: %s", exc)
        return missing

    admitted: list[str] = []
    for name in missing:
        needed = estimate_model_size(name)
        if needed > budget:
            logger.warning("%s needs ~%s, only %s free", name, format_size(needed), format_size(budget))
            result.failed[name] = InsufficientDiskSpaceError(name, needed, budget)
            continue
        budget -= needed
        admitted.append(name)
    return admitted
