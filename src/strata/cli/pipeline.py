"""Pipeline commands: seed, plan, run, test."""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Optional

import typer
from rich.table import Table

from strata.cli import (
    EXIT_BUILD_FAILURE,
    EXIT_PLANNING_ERROR,
    _exit_code,
    _load_config,
    _load_units,
    _resolve_project,
    app,
    console,
)

if TYPE_CHECKING:
    from strata.engine.transform.models import RunSummary


@contextmanager
def _cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """First Ctrl-C stops dispatching new units; a second one aborts."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        console.print("\n[yellow]Cancelling: waiting for running units to finish (Ctrl-C again to abort)[/yellow]")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_summary(summary: RunSummary) -> None:
    if summary.results:
        table = Table(title="Run summary", show_lines=False)
        table.add_column("Unit", style="bold")
        table.add_column("Status")
        table.add_column("Action", style="dim")
        table.add_column("Rows", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Detail", style="dim")
        colors = {"succeeded": "green", "failed": "red", "skipped": "yellow"}
        for name, result in summary.results.items():
            color = colors.get(result.status, "white")
            table.add_row(
                name,
                f"[{color}]{result.status}[/{color}]",
                result.action or "",
                f"{result.row_count:,}" if result.row_count is not None else "",
                f"{result.duration_ms}ms" if result.started_at != result.finished_at else "",
                result.error or "",
            )
        console.print()
        console.print(table)

    parts = [
        f"{len(summary.succeeded)} succeeded",
        f"{len(summary.failed)} failed",
        f"{len(summary.skipped)} skipped",
    ]
    if summary.assertions:
        passed = sum(1 for a in summary.assertions if a.passed)
        parts.append(
            f"assertions: {passed} passed, {len(summary.failed_assertions)} failed, "
            f"{len(summary.skipped_assertions)} skipped"
        )
    console.print(f"  {', '.join(parts)}")
    if summary.cancelled:
        console.print("  [yellow]Run was cancelled before every unit was dispatched.[/yellow]")


@app.command()
def seed(
    force: Annotated[bool, typer.Option("--force", "-f", help="Reload every seed, changed or not")] = False,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Load CSV files from seeds/ into the raw schema.

    Seeds are change-detected: only modified CSVs are reloaded.
    """
    from strata.engine.database import connect
    from strata.engine.seeds import ERROR, LOADED, UNCHANGED, run_seeds

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    seeds_dir = config.seeds_path
    if not seeds_dir.exists():
        console.print(f"[yellow]No {config.seeds_dir}/ directory found.[/yellow]")
        return

    env_label = f" [dim](env={config.active_environment})[/dim]" if config.active_environment else ""
    console.print(f"[bold]Loading seeds{env_label}:[/bold]")

    conn = connect(config.database_path)
    try:
        results = run_seeds(conn, seeds_dir, force=force)
    finally:
        conn.close()

    if results:
        loaded = sum(1 for r in results if r.status == LOADED)
        unchanged = sum(1 for r in results if r.status == UNCHANGED)
        errors = sum(1 for r in results if r.status == ERROR)
        console.print(f"\n  {loaded} loaded, {unchanged} unchanged, {errors} errors")
        if errors:
            raise typer.Exit(EXIT_BUILD_FAILURE)


@app.command()
def plan(
    select: Annotated[Optional[list[str]], typer.Option("--select", "-s", help="Units to plan: name, name+, +name, layer:<layer>")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Show the execution order without touching the warehouse."""
    from strata.engine.errors import PlanningError
    from strata.engine.transform import build_graph, plan_tiers
    from strata.engine.transform import plan as make_plan

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    units = _load_units(config)
    if not units:
        console.print(f"[yellow]No SQL units found in {config.transform_dir}/[/yellow]")
        return

    try:
        graph = build_graph(units)
        execution_plan = make_plan(graph, select)
    except PlanningError as e:
        console.print(f"[red]Planning error:[/red] {e}")
        raise typer.Exit(EXIT_PLANNING_ERROR)

    tiers = plan_tiers(graph, execution_plan)
    tier_of = {name: i for i, tier in enumerate(tiers) for name in tier}

    table = Table(title=f"Execution plan ({len(execution_plan)} of {len(graph)} units)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Unit", style="bold")
    table.add_column("Relation")
    table.add_column("Layer")
    table.add_column("Materialized")
    table.add_column("Tier", justify="right")
    table.add_column("Depends on", style="dim")
    for i, name in enumerate(execution_plan, 1):
        unit = graph.units[name]
        table.add_row(
            str(i),
            name,
            unit.relation,
            unit.layer,
            unit.materialized,
            str(tier_of[name]),
            ", ".join(unit.refs),
        )
    console.print(table)


@app.command()
def run(
    select: Annotated[Optional[list[str]], typer.Option("--select", "-s", help="Units to build: name, name+, +name, layer:<layer>")] = None,
    full_refresh: Annotated[bool, typer.Option("--full-refresh", help="Rebuild incremental units from scratch")] = False,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", min=1, help="Max units built concurrently")] = None,
    timeout: Annotated[Optional[float], typer.Option("--timeout", help="Stop dispatching new units after this many seconds")] = None,
    skip_tests: Annotated[bool, typer.Option("--skip-tests", help="Do not evaluate assertions after the build")] = False,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Build units in dependency order, then run their assertions.

    A failed unit does not stop the run: its downstream units are skipped and
    everything unrelated still builds.
    """
    from strata.engine.transform import run_pipeline
    from strata.engine.warehouse import DuckDBWarehouse

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    units = _load_units(config)
    if not units:
        console.print(f"[yellow]No SQL units found in {config.transform_dir}/[/yellow]")
        return

    workers = workers or config.execution.workers
    timeout = timeout if timeout is not None else config.execution.timeout_seconds
    mode = f"parallel, {workers} workers" if workers > 1 else "sequential"
    env_label = f", env={config.active_environment}" if config.active_environment else ""
    console.print(f"[bold]Run[/bold] [dim]({mode}{env_label})[/dim]:")

    cancel_event = threading.Event()
    with DuckDBWarehouse.open(config.database_path) as warehouse, _cancel_on_interrupt(cancel_event):
        summary = run_pipeline(
            warehouse,
            units,
            select,
            workers=workers,
            full_refresh=full_refresh,
            run_tests=not skip_tests,
            cancel_event=cancel_event,
            timeout=timeout,
        )

    if summary.planning_error is not None:
        console.print(f"[red]Planning error:[/red] {summary.planning_error}")
    else:
        _print_summary(summary)
    code = _exit_code(summary, config.execution.fail_on_skipped)
    if code:
        raise typer.Exit(code)


@app.command()
def test(
    select: Annotated[Optional[list[str]], typer.Option("--select", "-s", help="Units to test: name, name+, +name, layer:<layer>")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Run assertions against the relations currently in the warehouse."""
    from strata.engine.transform import run_tests_only
    from strata.engine.warehouse import DuckDBWarehouse

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    units = _load_units(config)
    if not units:
        console.print(f"[yellow]No SQL units found in {config.transform_dir}/[/yellow]")
        return

    console.print("[bold]Test:[/bold]")
    with DuckDBWarehouse.open(config.database_path) as warehouse:
        summary = run_tests_only(warehouse, units, select)

    if summary.planning_error is not None:
        console.print(f"[red]Planning error:[/red] {summary.planning_error}")
    else:
        _print_summary(summary)
    code = _exit_code(summary)
    if code:
        raise typer.Exit(code)
