"""CLI interface for strata.

Split into modules by command group. The Typer app and shared helpers live
here; each module registers its commands.

Exit codes:
    0  success
    1  build failure: a unit failed, or was skipped
    3  assertion failure (every unit built)
    4  planning error: duplicate unit, unknown reference, cycle, invalid config
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Optional

import typer
from rich.console import Console

from strata import setup_logging

if TYPE_CHECKING:
    from strata.config import ProjectConfig
    from strata.engine.transform.models import RunSummary, TransformationUnit

EXIT_OK = 0
EXIT_BUILD_FAILURE = 1
EXIT_ASSERTION_FAILURE = 3
EXIT_PLANNING_ERROR = 4

app = typer.Typer(
    name="strata",
    help="Layered SQL transformation pipelines on DuckDB: plan, build, test, document.",
    no_args_is_help=True,
)
console = Console()

# Set by the global options, read by the commands.
_active_project: Path | None = None
_active_env: str | None = None


@app.callback()
def main(
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use (e.g. dev, prod)")] = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level for the strata loggers")] = "WARNING",
) -> None:
    global _active_project, _active_env
    _active_project = project_dir
    _active_env = env
    setup_logging(log_level)


def _resolve_project(project_dir: Path | None = None) -> Path:
    project_dir = project_dir or _active_project or Path.cwd()
    if not (project_dir / "project.yml").exists():
        console.print(f"[red]No project.yml found in {project_dir}[/red]")
        console.print("Run [bold]strata init[/bold] to create a new project.")
        raise typer.Exit(EXIT_PLANNING_ERROR)
    return project_dir


def _load_config(project_dir: Path, env: str | None = None) -> ProjectConfig:
    """Load project config with optional environment override."""
    from strata.config import load_project
    from strata.engine.errors import ProjectConfigError

    try:
        return load_project(project_dir, env=env or _active_env)
    except ProjectConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_PLANNING_ERROR)


def _load_units(config: ProjectConfig) -> list[TransformationUnit]:
    """Discover the project's units; a malformed unit file is a planning error."""
    from strata.engine.errors import PlanningError
    from strata.engine.transform import discover_units

    try:
        return discover_units(
            config.transform_path,
            layer_defaults=config.layer_defaults(),
            known_sources=config.source_relations(),
        )
    except PlanningError as e:
        console.print(f"[red]Planning error:[/red] {e}")
        raise typer.Exit(EXIT_PLANNING_ERROR)


def _exit_code(summary: RunSummary, fail_on_skipped: bool = True) -> int:
    if summary.planning_error is not None:
        return EXIT_PLANNING_ERROR
    if summary.failed or (fail_on_skipped and summary.skipped):
        return EXIT_BUILD_FAILURE
    if summary.failed_assertions:
        return EXIT_ASSERTION_FAILURE
    return EXIT_OK


# Import submodules so they register their commands on `app`.
from strata.cli import docs  # noqa: E402, F401
from strata.cli import pipeline  # noqa: E402, F401
from strata.cli import project  # noqa: E402, F401
