"""Shared test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import AppSettings
from tests.fakes import FakeDaemon

TEST_HOST = "http://ollama.test:11434"


@pytest.fixture(autouse=True)
def isolated_env_files(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's project and per-user `.env` files out of tests."""

    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setitem(AppSettings.model_config, "env_file", None)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> AppSettings:
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("OLLAMA_MODELS", raising=False)
    monkeypatch.setenv("OLLAMA_KEEPER_HOST", TEST_HOST)
    monkeypatch.setenv("OLLAMA_KEEPER_MODELS_DIR", str(tmp_path / "models"))
    return AppSettings(
        _env_file=None,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        check_disk_space=False,
    )


@pytest.fixture
def daemon() -> FakeDaemon:
    return FakeDaemon(installed=["llama3.2:latest"])
