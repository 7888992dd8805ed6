from __future__ import annotations

import io

from rich.console import Console
from typer.testing import CliRunner

from cli import doctor
from cli.ui_components import PullProgressRenderer, build_provision_table
from core.domain.models import DaemonInfo, ProvisionResult
from tests.fakes import SUCCESS_EVENTS


def test_renderer_tracks_layers_per_model():
    console = Console(file=io.StringIO(), width=120)
    progress = PullProgressRenderer.create_progress(console)
    renderer = PullProgressRenderer(progress)

    for event in SUCCESS_EVENTS:
        renderer.update("llama3.2", event)
    renderer.update("mistral", {"status": "pulling manifest"})

    tasks = {task.description: task for task in progress.tasks}
    layer = tasks["llama3.2 abc"]
    assert layer.total == 100
    assert layer.completed == 100
    assert tasks["llama3.2: success"].completed == 1
    assert "mistral: pulling manifest" in tasks


def test_provision_table_lists_every_required_model():
    result = ProvisionResult(required=["a", "b", "c"], already_installed=["a"], pulled=["b"])
    result.failed["c"] = RuntimeError("boom")

    console = Console(file=io.StringIO(), width=120)
    console.print(build_provision_table(result))
    output = console.file.getvalue()

    assert "installed" in output
    assert "pulled" in output
    assert "boom" in output


def test_doctor_reports_missing_required_models(settings, monkeypatch):
    settings_env = {"OLLAMA_KEEPER_REQUIRED_MODELS": "llama3.2,mistral:7b"}
    for key, value in settings_env.items():
        monkeypatch.setenv(key, value)

    async def fake_check_health(host=None, *, daemon=None, settings=None):
        return DaemonInfo(models=["llama3.2:latest"], version="0.5.7")

    monkeypatch.setattr(doctor, "check_health", fake_check_health)

    result = CliRunner().invoke(doctor.app, ["run"])

    assert result.exit_code == 0
    assert "MISSING" in result.output
    assert "mistral:7b" in result.output
