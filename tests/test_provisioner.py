from __future__ import annotations

import pytest

from core.domain.models import RetryPolicy
from core.errors import (
    DaemonConnectionError,
    DownloadError,
    InsufficientDiskSpaceError,
    ModelNotFoundError,
    ProtocolError,
    ProvisioningError,
)
from core.services import provisioner
from core.services.provisioner import (
    ensure_required_models,
    iter_pull_progress,
    pull_model,
    pull_model_with_retry,
    remove_model,
)
from tests.fakes import SUCCESS_EVENTS, FakeDaemon

PARTIAL = [{"status": "pulling manifest"}, {"status": "pulling abc", "digest": "sha256:abc", "total": 100, "completed": 10}]


@pytest.mark.asyncio
async def test_pull_model_reports_every_event_in_order(settings, daemon):
    seen: list[dict] = []

    await pull_model("mistral:7b", seen.append, daemon=daemon, settings=settings)

    assert seen == SUCCESS_EVENTS
    assert "mistral:7b" in daemon.installed


@pytest.mark.asyncio
async def test_iter_pull_progress_yields_stream(settings, daemon):
    events = [event async for event in iter_pull_progress("mistral:7b", daemon=daemon, settings=settings)]

    assert [e["status"] for e in events][-1] == "success"
    assert len(events) == len(SUCCESS_EVENTS)


@pytest.mark.asyncio
async def test_pull_model_rejects_empty_name(settings, daemon):
    with pytest.raises(ValueError):
        await pull_model("  ", daemon=daemon, settings=settings)
    assert daemon.pull_calls == []


@pytest.mark.asyncio
async def test_retry_succeeds_on_third_attempt(settings, daemon):
    daemon.pull_plans["mistral:7b"] = [
        (PARTIAL, DownloadError("connection reset")),
        (PARTIAL, DaemonConnectionError("refused")),
        (SUCCESS_EVENTS, None),
    ]
    seen: list[dict] = []

    await pull_model_with_retry("mistral:7b", seen.append, 3, daemon=daemon, settings=settings)

    assert daemon.pull_calls == ["mistral:7b"] * 3
    assert seen == PARTIAL + PARTIAL + SUCCESS_EVENTS


@pytest.mark.asyncio
async def test_not_found_is_not_retried(settings, daemon):
    daemon.pull_plans["nope:1b"] = [([], ModelNotFoundError("nope:1b"))] * 4

    with pytest.raises(ModelNotFoundError):
        await pull_model_with_retry("nope:1b", None, 3, daemon=daemon, settings=settings)

    assert daemon.pull_calls == ["nope:1b"]


@pytest.mark.asyncio
async def test_protocol_error_is_not_retried(settings, daemon):
    daemon.pull_plans["odd:1b"] = [(PARTIAL, ProtocolError("garbage"))] * 4

    with pytest.raises(ProtocolError):
        await pull_model_with_retry("odd:1b", None, 3, daemon=daemon, settings=settings)

    assert len(daemon.pull_calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_download_error_with_attempts(settings, daemon):
    daemon.pull_plans["flaky:7b"] = [(PARTIAL, DownloadError("reset"))] * 3

    with pytest.raises(DownloadError) as info:
        await pull_model_with_retry("flaky:7b", None, 2, daemon=daemon, settings=settings)

    assert info.value.attempts == 3
    assert isinstance(info.value.__cause__, DownloadError)
    assert daemon.pull_calls == ["flaky:7b"] * 3


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(settings, daemon):
    daemon.pull_plans["flaky:7b"] = [(PARTIAL, DaemonConnectionError("refused"))]

    with pytest.raises(DownloadError) as info:
        await pull_model_with_retry("flaky:7b", None, 0, daemon=daemon, settings=settings)

    assert info.value.attempts == 1


@pytest.mark.asyncio
async def test_retry_waits_with_policy_delays(settings, daemon, monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(provisioner.asyncio, "sleep", fake_sleep)
    daemon.pull_plans["flaky:7b"] = [(PARTIAL, DownloadError("reset"))] * 5
    policy = RetryPolicy(max_retries=4, base_delay_seconds=1.0, max_delay_seconds=5.0)

    with pytest.raises(DownloadError):
        await pull_model_with_retry("flaky:7b", policy=policy, daemon=daemon, settings=settings)

    assert delays == [1.0, 2.0, 4.0, 5.0]


def test_retry_policy_delays_are_bounded_and_non_decreasing():
    policy = RetryPolicy(max_retries=10, base_delay_seconds=0.5, max_delay_seconds=8.0)
    delays = [policy.delay_for(n) for n in range(10)]

    assert delays == sorted(delays)
    assert max(delays) == 8.0


@pytest.mark.asyncio
async def test_remove_model(settings, daemon):
    await remove_model("llama3.2:latest", daemon=daemon, settings=settings)

    assert daemon.installed == []


@pytest.mark.asyncio
async def test_remove_missing_model_fails_unless_missing_ok(settings, daemon):
    await remove_model("llama3.2:latest", daemon=daemon, settings=settings)

    with pytest.raises(ModelNotFoundError):
        await remove_model("llama3.2:latest", daemon=daemon, settings=settings)

    await remove_model("llama3.2:latest", missing_ok=True, daemon=daemon, settings=settings)


@pytest.mark.asyncio
async def test_ensure_pulls_only_missing_models(settings):
    daemon = FakeDaemon(installed=["llama3.2:latest", "nomic-embed-text:latest"])
    required = ["llama3.2", "nomic-embed-text:latest", "mistral:7b", "gemma2:2b"]

    result = await ensure_required_models(required, daemon=daemon, settings=settings)

    assert sorted(daemon.pull_calls) == ["gemma2:2b", "mistral:7b"]
    assert result.already_installed == ["llama3.2", "nomic-embed-text:latest"]
    assert result.pulled == ["mistral:7b", "gemma2:2b"]
    assert result.ok


@pytest.mark.asyncio
async def test_ensure_pulls_aliased_names_once(settings):
    daemon = FakeDaemon()

    result = await ensure_required_models(["llama3.2", "llama3.2:latest"], daemon=daemon, settings=settings)

    assert daemon.pull_calls == ["llama3.2"]
    assert result.required == ["llama3.2"]
    assert result.pulled == ["llama3.2"]


@pytest.mark.asyncio
async def test_ensure_with_everything_installed_pulls_nothing(settings, daemon):
    result = await ensure_required_models(["llama3.2:latest"], daemon=daemon, settings=settings)

    assert daemon.pull_calls == []
    assert result.missing == []


@pytest.mark.asyncio
async def test_ensure_uses_configured_required_models(settings, daemon):
    settings.required_models = ["mistral:7b"]

    result = await ensure_required_models(daemon=daemon, settings=settings)

    assert daemon.pull_calls == ["mistral:7b"]
    assert result.pulled == ["mistral:7b"]


@pytest.mark.asyncio
async def test_ensure_aggregates_failures_and_keeps_going(settings):
    daemon = FakeDaemon()
    daemon.pull_plans["ghost:1b"] = [([], ModelNotFoundError("ghost:1b"))]
    daemon.pull_plans["flaky:7b"] = [(PARTIAL, DownloadError("reset"))] * 2
    progress: list[tuple[str, str]] = []

    with pytest.raises(ProvisioningError) as info:
        await ensure_required_models(
            ["ghost:1b", "flaky:7b", "mistral:7b"],
            lambda name, event: progress.append((name, event["status"])),
            policy=RetryPolicy(max_retries=1, base_delay_seconds=0),
            daemon=daemon,
            settings=settings,
        )

    error = info.value
    assert set(error.failures) == {"ghost:1b", "flaky:7b"}
    assert isinstance(error.failures["ghost:1b"], ModelNotFoundError)
    assert error.failures["flaky:7b"].attempts == 2
    assert error.result is not None
    assert error.result.pulled == ["mistral:7b"]
    assert daemon.pull_calls.count("ghost:1b") == 1
    assert daemon.pull_calls.count("flaky:7b") == 2
    assert ("mistral:7b", "success") in progress
    assert "ghost:1b" in str(error) and "flaky:7b" in str(error)


@pytest.mark.asyncio
async def test_ensure_skips_models_that_do_not_fit(settings, daemon, monkeypatch):
    monkeypatch.setattr(provisioner, "get_available_disk_space", lambda settings=None: 3_000_000_000)

    with pytest.raises(ProvisioningError) as info:
        await ensure_required_models(
            ["gemma2:2b", "llama3.1:70b"],
            check_disk_space=True,
            daemon=daemon,
            settings=settings,
        )

    assert daemon.pull_calls == ["gemma2:2b"]
    assert isinstance(info.value.failures["llama3.1:70b"], InsufficientDiskSpaceError)
