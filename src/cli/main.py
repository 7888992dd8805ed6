"""ollama-keeper CLI (Typer + Rich).

Commands delegate to `core.services`; this module only parses arguments,
renders results and turns `KeeperError` (and rejected names) into exit
code 1.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from cli import doctor
from cli.ui_components import (
    PullProgressRenderer,
    build_daemon_panel,
    build_estimate_table,
    build_health_table,
    build_models_table,
    build_provision_table,
)
from core.config import AppSettings, normalize_host
from core.errors import FilesystemError, KeeperError, ProvisioningError
from core.services.inventory import check_health, get_model_health, list_installed_models
from core.services.provisioner import ensure_required_models, pull_model_with_retry, remove_model
from core.services.sizing import estimate_model_size, format_size, get_available_disk_space

T = TypeVar("T")

app = typer.Typer(no_args_is_help=True, help="Manage the models of a local Ollama daemon.")
app.add_typer(doctor.app, name="doctor")

_console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False, show_path=False)],
        force=True,
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except (KeeperError, ValueError) as exc:
        _console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Health checks, inventory and provisioning for Ollama models."""

    settings = AppSettings()
    configure_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def health(
    host: Optional[str] = typer.Option(None, "--host", help="Daemon URL (defaults to configuration)."),
) -> None:
    """Check that the daemon answers and report its version and models."""

    settings = AppSettings()
    info = _run(check_health(host, settings=settings))
    _console.print(build_daemon_panel(info, normalize_host(host) if host else settings.host))


@app.command(name="list")
def list_models() -> None:
    """List installed models."""

    models = _run(list_installed_models())
    if not models:
        _console.print("[yellow]No local models found.[/yellow]")
        return
    _console.print(build_models_table(models))


@app.command()
def status(
    models: Optional[List[str]] = typer.Argument(None, help="Models to check (default: required + installed)."),
) -> None:
    """Ping each model with an empty prompt and report which ones answer."""

    settings = AppSettings()
    health_map = _run(get_model_health(models or None, settings=settings))
    if not health_map:
        _console.print("[yellow]No models to check.[/yellow]")
        return
    _console.print(build_health_table(health_map, settings.required_models))
    if not all(health_map.values()):
        raise typer.Exit(code=1)


@app.command()
def pull(
    model: str = typer.Argument(..., help="Model to pull (e.g. llama3.2)."),
    retries: Optional[int] = typer.Option(None, "--retries", min=0, help="Extra attempts on transient failure."),
) -> None:
    """Download a model, retrying transient failures."""

    settings = AppSettings()
    with PullProgressRenderer.create_progress(_console) as progress:
        renderer = PullProgressRenderer(progress)
        _run(pull_model_with_retry(model, renderer.for_model(model), retries, settings=settings))
    _console.print(f"[green]Pulled {model}[/green]")


@app.command()
def rm(
    model: str = typer.Argument(..., help="Model to remove."),
    missing_ok: bool = typer.Option(False, "--missing-ok", help="Do not fail if the model is absent."),
) -> None:
    """Remove an installed model."""

    _run(remove_model(model, missing_ok=missing_ok))
    _console.print(f"[green]Removed {model}[/green]")


@app.command()
def ensure(
    models: Optional[List[str]] = typer.Argument(None, help="Required models (default: configuration)."),
    no_space_check: bool = typer.Option(False, "--no-space-check", help="Pull even if the disk looks too small."),
) -> None:
    """Pull every required model that is not installed yet."""

    settings = AppSettings()
    required = models or settings.required_models
    if not required:
        _console.print("[yellow]No required models configured (OLLAMA_KEEPER_REQUIRED_MODELS).[/yellow]")
        return

    with PullProgressRenderer.create_progress(_console) as progress:
        renderer = PullProgressRenderer(progress)
        try:
            result = asyncio.run(
                ensure_required_models(
                    required,
                    renderer.update,
                    check_disk_space=False if no_space_check else None,
                    settings=settings,
                )
            )
        except ProvisioningError as exc:
            result = exc.result
            if result is None:
                raise
        except KeeperError as exc:
            _console.print(f"[red]Error:[/red] {escape(str(exc))}")
            raise typer.Exit(code=1) from exc

    _console.print(build_provision_table(result))
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def space(
    path: Optional[Path] = typer.Argument(None, help="Path on the volume to check (default: models dir)."),
) -> None:
    """Show the free disk space available for models."""

    try:
        free = get_available_disk_space(path)
    except FilesystemError as exc:
        _console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc
    _console.print(f"Free space: [bold]{format_size(free)}[/bold] ({free} bytes)")


@app.command()
def estimate(
    models: List[str] = typer.Argument(..., help="Model names to estimate."),
) -> None:
    """Estimate download sizes and whether they fit on the models volume."""

    estimates = {name: estimate_model_size(name) for name in models}
    try:
        available: int | None = get_available_disk_space()
    except FilesystemError:
        available = None
    _console.print(build_estimate_table(estimates, available))
    total = sum(estimates.values())
    _console.print(f"Total: [bold]{format_size(total)}[/bold]")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
