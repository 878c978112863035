"""Command-line interface for the cricket warehouse."""

import logging
from functools import partial
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .database import DatabaseConfig, get_engine, get_read_only_session, init_db, session_scope
from .errors import (
    ActivationOrderError,
    ConfigurationError,
    DependencyNotReadyError,
    UnknownStageError,
)
from .ingestion.config import PipelineConfig, load_pipeline_config
from .pipeline import PipelineScheduler, build_default_stages
from .query import list_teams, team_match_report

app = typer.Typer(
    name="cricket-etl",
    help="Cricket match warehouse - incremental ETL CLI",
    add_completion=False,
)
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to pipeline configuration YAML")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _load_config(config_path: Optional[Path]) -> PipelineConfig:
    try:
        return load_pipeline_config(config_path) if config_path else PipelineConfig()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)


def _db_config(config: PipelineConfig) -> DatabaseConfig:
    if config.database_url:
        return DatabaseConfig(url=config.database_url)
    return DatabaseConfig.from_env()


def _engine(config: PipelineConfig):
    return get_engine(_db_config(config))


def _scheduler(config: PipelineConfig) -> PipelineScheduler:
    engine = _engine(config)
    init_db(engine)
    return PipelineScheduler(partial(session_scope, engine), build_default_stages(config), config)


@app.command("init-db")
def init_db_command(config_path: Optional[Path] = ConfigOption):
    """Create every warehouse table (raw, clean, dimension, fact, meta)."""
    config = _load_config(config_path)
    init_db(_engine(config))
    console.print("[green]✓ Warehouse tables created[/green]")


@app.command()
def ingest(config_path: Optional[Path] = ConfigOption, verbose: bool = VerboseOption):
    """Load newly staged files into the raw layer now."""
    _setup_logging(verbose)
    config = _load_config(config_path)
    scheduler = _scheduler(config)

    try:
        run = scheduler.run_stage("raw_ingest")
    except DependencyNotReadyError:
        console.print(f"[yellow]No new files in {config.staging_dir}[/yellow]")
        return

    if run.error:
        console.print(f"[red]Ingestion aborted: {run.error}[/red]")
        raise typer.Exit(1)

    metrics = run.result.metrics
    console.print(
        f"[green]✓ Loaded {metrics.inserted_rows} record(s) from {run.result.rows_read} file(s)[/green]"
    )
    for error in run.result.errors:
        console.print(f"  [red]✗[/red] {error}")


@app.command()
def tick(config_path: Optional[Path] = ConfigOption, verbose: bool = VerboseOption):
    """Run one scheduler tick over the active stages."""
    _setup_logging(verbose)
    scheduler = _scheduler(_load_config(config_path))
    result = scheduler.tick()

    table = Table(title="Tick")
    table.add_column("Stage", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Inserted", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Note", style="yellow")

    for name in scheduler.order:
        run = result.runs[name]
        inserted = str(run.result.metrics.inserted_rows) if run.result else ""
        errors = str(len(result.errors.get(name, [])))
        table.add_row(name, run.status.value, inserted, errors, run.skip_reason or run.error or "")

    console.print(table)
    if result.failed:
        raise typer.Exit(1)


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Seconds between ticks"),
    max_ticks: Optional[int] = typer.Option(None, "--max-ticks", help="Stop after N ticks"),
    verbose: bool = VerboseOption,
):
    """Tick the scheduler until interrupted."""
    _setup_logging(verbose)
    scheduler = _scheduler(_load_config(config_path))
    ticks = scheduler.run_forever(interval=interval, max_ticks=max_ticks)
    console.print(f"[green]✓ Scheduler stopped after {ticks} tick(s)[/green]")


@app.command()
def activate(
    stage: Optional[str] = typer.Argument(None, help="Stage name"),
    all_stages: bool = typer.Option(False, "--all", help="Activate every stage, leaves first"),
    config_path: Optional[Path] = ConfigOption,
):
    """Activate a stage (dependents must already be active)."""
    scheduler = _scheduler(_load_config(config_path))
    try:
        if all_stages:
            scheduler.activate_all()
            console.print("[green]✓ All stages active[/green]")
        elif stage:
            scheduler.activate(stage)
            console.print(f"[green]✓ Activated {stage}[/green]")
        else:
            console.print("[red]Error: give a stage name or --all[/red]")
            raise typer.Exit(1)
    except (ActivationOrderError, UnknownStageError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def deactivate(
    stage: Optional[str] = typer.Argument(None, help="Stage name"),
    all_stages: bool = typer.Option(False, "--all", help="Deactivate every stage, root first"),
    config_path: Optional[Path] = ConfigOption,
):
    """Suspend a stage."""
    scheduler = _scheduler(_load_config(config_path))
    try:
        if all_stages:
            scheduler.deactivate_all()
            console.print("[green]✓ All stages suspended[/green]")
        elif stage:
            scheduler.deactivate(stage)
            console.print(f"[green]✓ Deactivated {stage}[/green]")
        else:
            console.print("[red]Error: give a stage name or --all[/red]")
            raise typer.Exit(1)
    except UnknownStageError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def status(config_path: Optional[Path] = ConfigOption):
    """Show activation, status and last errors of every stage."""
    scheduler = _scheduler(_load_config(config_path))

    table = Table(title="Pipeline Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("Upstream", style="magenta")
    table.add_column("Active", justify="center")
    table.add_column("Status", style="green")
    table.add_column("Last Run")
    table.add_column("Errors", style="red")

    for state in scheduler.describe():
        node = scheduler.nodes[state.stage_name]
        table.add_row(
            state.stage_name,
            ", ".join(node.upstream) or "-",
            "✓" if state.active else "",
            state.status,
            state.last_run_at.strftime("%Y-%m-%d %H:%M:%S") if state.last_run_at else "-",
            "; ".join(state.errors or [])[:80],
        )

    console.print(table)


@app.command("team-report")
def team_report(
    team: Optional[str] = typer.Argument(None, help="Team name (omit to list teams)"),
    config_path: Optional[Path] = ConfigOption,
):
    """Matches played by a team, with opponent and winner."""
    config = _load_config(config_path)

    with get_read_only_session(_db_config(config)) as session:
        if team is None:
            for name in list_teams(session):
                console.print(name)
            return

        report = team_match_report(session, team)

    if not report.rows:
        console.print(f"[yellow]No matches found for {team}[/yellow]")
        return

    table = Table(title=f"{team}: {report.matches_won} won of {report.total_matches}")
    table.add_column("Match", style="cyan")
    table.add_column("Date", style="yellow")
    table.add_column("Opponent", style="magenta")
    table.add_column("Winner", style="green")

    for row in report.rows:
        table.add_row(
            row.match_id,
            row.match_date.isoformat() if row.match_date else "-",
            row.opponent_team_name,
            row.winner_team_name,
        )

    console.print(table)


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"[bold]Cricket Warehouse[/bold] version: [green]{__version__}[/green]")


if __name__ == "__main__":
    app()
