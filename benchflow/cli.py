"""Command line interface for the pipeline framework."""

from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .collect.stats import summarize as summarize_telemetry
from .config import load_config
from .debug import configure_logging
from .errors import BenchflowError, PhaseExecutionFailure
from .remote.credentials import EnvironmentCredentialProvider
from .report.render import format_duration
from .run.orchestrator import PipelineOrchestrator
from .state.models import RunState
from .state.store import RunStateStore

# Load .env file if it exists - credentials may be provided there
load_dotenv()

app = typer.Typer(
    name="benchflow",
    help="Checkpointed, resumable benchmark pipelines for remote clusters",
    no_args_is_help=True,
)

console = Console()

STATUS_COLORS = {
    "pending": "dim",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "skipped": "yellow",
    "created": "dim",
    "in_progress": "blue",
    "cancelled": "yellow",
}


def _store_for(config_path: str) -> RunStateStore:
    cfg = load_config(config_path)
    return RunStateStore(cfg.state_path, lock_timeout=cfg.state.lock_timeout_s)


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _print_run(state: RunState) -> None:
    console.print(
        f"[bold]Run {state.run_id}[/bold] ({state.solution}) - {_colored(state.status.value)}"
    )
    table = Table(show_header=True, header_style="bold")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for name, phase in state.phases.items():
        table.add_row(
            name,
            _colored(phase.status.value),
            format_duration(phase.duration),
            phase.error or "",
        )
    console.print(table)


@app.command()
def run(
    config: str = typer.Option(..., "--config", "-c", help="Path to config YAML file"),
    resume: bool = typer.Option(
        False, "--resume", help="Resume the current run instead of starting a new one"
    ),
    skip: str | None = typer.Option(
        None, "--skip", help="Comma-separated list of optional phases to bypass"
    ),
    run_id: str | None = typer.Option(None, "--run-id", help="Explicit run id"),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug output for detailed command tracing"
    ),
) -> None:
    """Run (or resume) the benchmark pipeline."""
    configure_logging(debug)

    cfg = load_config(config)
    orchestrator = PipelineOrchestrator.from_config(
        cfg, credentials=EnvironmentCredentialProvider()
    )
    skipped = [s.strip() for s in skip.split(",") if s.strip()] if skip else []

    try:
        state = orchestrator.run(resume=resume, skip=skipped, run_id=run_id)
    except PhaseExecutionFailure as e:
        console.print(f"[red]Pipeline halted: {e}[/red]")
        console.print(
            "[yellow]Fix the problem and run again with --resume to continue "
            f"from '{e.phase}'.[/yellow]"
        )
        raise typer.Exit(1) from e
    except BenchflowError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    _print_run(state)


@app.command()
def status(
    config: str = typer.Option(..., "--config", "-c", help="Path to config YAML file"),
) -> None:
    """Show the current run and its phases."""
    store = _store_for(config)
    if not store.exists():
        console.print("[yellow]No current run[/yellow]")
        raise typer.Exit(0)
    try:
        _print_run(store.read())
    except BenchflowError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


@app.command()
def history(
    config: str = typer.Option(..., "--config", "-c", help="Path to config YAML file"),
) -> None:
    """List archived runs."""
    runs = _store_for(config).list_history()
    if not runs:
        console.print("[yellow]No archived runs[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Run")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Completed")
    table.add_column("Phases")
    for state in runs:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(state.phase_counts().items()))
        table.add_row(
            state.run_id,
            _colored(state.status.value),
            state.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            state.completed_at.strftime("%Y-%m-%d %H:%M:%S") if state.completed_at else "-",
            counts,
        )
    console.print(table)


@app.command()
def cancel(
    config: str = typer.Option(..., "--config", "-c", help="Path to config YAML file"),
) -> None:
    """Cancel the current run and archive it."""
    configure_logging()
    cfg = load_config(config)
    orchestrator = PipelineOrchestrator.from_config(cfg)
    try:
        state = orchestrator.cancel()
    except BenchflowError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[yellow]Run {state.run_id} is now {state.status.value}[/yellow]")


@app.command()
def summarize(
    path: Path = typer.Argument(..., help="Telemetry file or collection directory"),
    category: str | None = typer.Option(None, "--category", help="Only this category"),
) -> None:
    """Print per-counter statistics for collected telemetry."""
    try:
        stats = summarize_telemetry(path, category)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    if not stats:
        console.print("[yellow]No samples found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    for column in ("Counter", "Samples", "Avg", "Min", "Max", "p50", "p95", "p99"):
        table.add_column(column, justify="left" if column == "Counter" else "right")
    for counter, s in stats.items():
        table.add_row(
            counter,
            str(s.count),
            *(f"{v:.2f}" for v in (s.avg, s.min, s.max, s.p50, s.p95, s.p99)),
        )
    console.print(table)


if __name__ == "__main__":
    app()
