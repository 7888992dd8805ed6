"""CLI UI components (Rich).

- Keeps command logic apart from visual details.
- Tables and progress renderers are shared by several commands.
"""

from __future__ import annotations

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

from core.domain.models import DaemonInfo, HealthMap, ModelDescriptor, ProgressEvent, ProvisionResult
from core.services.sizing import format_size


def print_banner(console: Console) -> None:
    title = Text("ollama-keeper", style="bold cyan")
    subtitle = Text("Health • Inventory • Provisioning", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_daemon_panel(info: DaemonInfo, host: str) -> Panel:
    body = Text()
    body.append("Host: ", style="bold")
    body.append(f"{host}\n")
    body.append("Version: ", style="bold")
    body.append(info.version or "unknown", style="white" if info.version else "dim")
    body.append("\nModels: ", style="bold")
    body.append(str(len(info.models)))
    for name in info.models:
        body.append(f"\n  - {name}", style="cyan")
    return Panel(body, title=Text("Ollama", style="bold green"), border_style="green")


def build_models_table(models: list[ModelDescriptor]) -> Table:
    table = Table(title="Installed Models")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Size", style="white", justify="right")
    table.add_column("Modified", style="dim")
    for model in models:
        table.add_row(model.name, model.size, model.modified[:19])
    return table


def build_health_table(health: HealthMap, required: list[str] | None = None) -> Table:
    required_set = set(required or [])
    table = Table(title="Model Health")
    table.add_column("Model", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Required", style="dim")
    for name in sorted(health):
        status = "[green]OK[/green]" if health[name] else "[red]FAIL[/red]"
        table.add_row(name, status, "yes" if name in required_set else "")
    return table


def build_estimate_table(estimates: dict[str, int], available: int | None = None) -> Table:
    table = Table(title="Size Estimates")
    table.add_column("Model", style="cyan", no_wrap=True)
    table.add_column("Estimated", style="white", justify="right")
    table.add_column("Fits", style="white")
    for name, size in estimates.items():
        if available is None:
            fits = "?"
        else:
            fits = "[green]yes[/green]" if size <= available else "[red]no[/red]"
        table.add_row(name, format_size(size), fits)
    return table


def build_provision_table(result: ProvisionResult) -> Table:
    table = Table(title="Required Models")
    table.add_column("Model", style="cyan", no_wrap=True)
    table.add_column("Result", style="white")
    table.add_column("Details", style="dim")
    for name in result.required:
        if name in result.already_installed:
            table.add_row(name, "[green]installed[/green]", "")
        elif name in result.pulled:
            table.add_row(name, "[green]pulled[/green]", "")
        elif name in result.failed:
            table.add_row(name, "[red]failed[/red]", str(result.failed[name]))
        else:
            table.add_row(name, "[yellow]skipped[/yellow]", "")
    return table


class PullProgressRenderer:
    """Feeds daemon pull events into a Rich progress display.

    One bar per (model, layer digest); status-only events update a spinner
    line per model. A restarted attempt resets the bars it touches.
    """

    def __init__(self, progress: Progress) -> None:
        self._progress = progress
        self._tasks: dict[tuple[str, str], TaskID] = {}

    @staticmethod
    def create_progress(console: Console) -> Progress:
        return Progress(
            TextColumn("[bold cyan]{task.description}", justify="left"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

    def _task(self, model: str, key: str, description: str, total: float | None) -> TaskID:
        task_id = self._tasks.get((model, key))
        if task_id is None:
            task_id = self._progress.add_task(description, total=total)
            self._tasks[(model, key)] = task_id
        return task_id

    def update(self, model: str, event: ProgressEvent) -> None:
        status = str(event.get("status", ""))
        digest = event.get("digest")
        total = event.get("total")
        completed = event.get("completed")

        if isinstance(digest, str) and isinstance(total, (int, float)):
            short = digest.split(":")[-1][:12]
            task_id = self._task(model, digest, f"{model} {short}", total)
            self._progress.update(task_id, total=total, completed=completed or 0)
            return

        task_id = self._task(model, "status", f"{model}", None)
        self._progress.update(task_id, description=f"{model}: {status}")
        if status == "success":
            self._progress.update(task_id, total=1, completed=1)

    def for_model(self, model: str):
        """Adapter for single-model callbacks (`pull_model` style)."""

        def callback(event: ProgressEvent) -> None:
            self.update(model, event)

        return callback
