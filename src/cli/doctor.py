"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from cli.ui_components import print_banner
from core.config import AppSettings, write_user_env_vars
from core.domain.models import DaemonInfo
from core.errors import FilesystemError, KeeperError
from core.services.inventory import canonical_model_name, check_health
from core.services.sizing import estimate_model_size, format_size, get_available_disk_space

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_daemon(settings: AppSettings) -> tuple[DaemonInfo | None, str]:
    try:
        info = await check_health(settings=settings)
    except KeeperError as exc:
        return None, str(exc)
    return info, f"{len(info.models)} model(s) installed"


def _check_disk(settings: AppSettings) -> tuple[int | None, str]:
    try:
        free = get_available_disk_space(settings=settings)
    except FilesystemError as exc:
        return None, str(exc)
    return free, f"{format_size(free)} free near {settings.models_dir}"


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()
    print_banner(_console)

    table = Table(title="ollama-keeper Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row("Host", "OK", settings.host)

    info, detail_daemon = asyncio.run(_check_daemon(settings))
    table.add_row("Daemon", "OK" if info else "FAIL", detail_daemon)
    if info:
        table.add_row("Version", "OK" if info.version else "UNKNOWN", info.version or "not exposed")

    free, detail_disk = _check_disk(settings)
    table.add_row("Disk space", "OK" if free is not None else "FAIL", detail_disk)

    missing: list[str] = []
    if not settings.required_models:
        table.add_row("Required models", "OPTIONAL", "None configured (OLLAMA_KEEPER_REQUIRED_MODELS)")
    elif info:
        installed = {canonical_model_name(name) for name in info.models}
        missing = [m for m in settings.required_models if canonical_model_name(m) not in installed]
        if missing:
            table.add_row("Required models", "MISSING", ", ".join(missing))
        else:
            table.add_row("Required models", "OK", ", ".join(settings.required_models))

    if missing and free is not None:
        needed = sum(estimate_model_size(m) for m in missing)
        status = "OK" if needed <= free else "FAIL"
        table.add_row("Space for missing", status, f"~{format_size(needed)} needed")

    _console.print(table)

    if not info:
        _console.print("\n[yellow]Note:[/yellow] Start the daemon with `ollama serve` or set OLLAMA_HOST.")
    elif missing:
        _console.print("\n[yellow]Note:[/yellow] Run `ollama-keeper ensure` to pull the missing models.")


@app.command(name="setup")
def setup() -> None:
    """Interactive setup (stores config in the user config .env)."""

    settings = AppSettings()

    host = typer.prompt("Ollama host", default=settings.host, show_default=True).strip()
    models = typer.prompt(
        "Required models (comma-separated)",
        default=",".join(settings.required_models),
        show_default=True,
    ).strip()
    retries = typer.prompt("Pull retries", default=settings.pull_max_retries, type=int, show_default=True)

    if not host:
        raise typer.BadParameter("host is required")
    if retries < 0:
        raise typer.BadParameter("retries must be >= 0")

    env_path = write_user_env_vars(
        {
            "OLLAMA_KEEPER_HOST": host,
            "OLLAMA_KEEPER_REQUIRED_MODELS": models,
            "OLLAMA_KEEPER_PULL_MAX_RETRIES": str(retries),
        }
    )

    _console.print(f"[green]Saved config to:[/green] {env_path}")
