"""Project commands: init."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from strata.cli import app, console


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")] = "my-project",
    directory: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Target directory")] = None,
) -> None:
    """Scaffold a sample movies project."""
    from strata.templates import (
        GITIGNORE_TEMPLATE,
        PROJECT_YML_TEMPLATE,
        SAMPLE_ACTIVITY_CSV,
        SAMPLE_DIM_MOVIES_SQL,
        SAMPLE_FCT_ACTIVITY_SQL,
        SAMPLE_MOVIES_CSV,
        SAMPLE_SRC_MOVIES_SQL,
        SOURCES_YML_TEMPLATE,
    )

    target = directory or Path.cwd() / name
    if (target / "project.yml").exists():
        console.print(f"[red]{target} already contains a project.yml[/red]")
        raise typer.Exit(1)

    dirs = ["seeds", "transform/staging", "transform/dimension", "transform/fact"]
    for d in dirs:
        (target / d).mkdir(parents=True, exist_ok=True)

    (target / "project.yml").write_text(PROJECT_YML_TEMPLATE.format(name=name))
    (target / "sources.yml").write_text(SOURCES_YML_TEMPLATE)
    (target / "seeds" / "movies.csv").write_text(SAMPLE_MOVIES_CSV)
    (target / "seeds" / "activity.csv").write_text(SAMPLE_ACTIVITY_CSV)
    (target / "transform" / "staging" / "src_movies.sql").write_text(SAMPLE_SRC_MOVIES_SQL)
    (target / "transform" / "dimension" / "dim_movies.sql").write_text(SAMPLE_DIM_MOVIES_SQL)
    (target / "transform" / "fact" / "fct_activity.sql").write_text(SAMPLE_FCT_ACTIVITY_SQL)
    (target / ".gitignore").write_text(GITIGNORE_TEMPLATE)

    console.print(f"[green]Project '{name}' created at {target}[/green]")
    console.print()
    console.print("Structure:")
    for d in dirs:
        console.print(f"  {d}/")
    console.print()
    console.print("Quick start:")
    console.print(f"  cd {target}")
    console.print("  strata seed     # load seeds/*.csv into the raw schema")
    console.print("  strata plan     # show the execution order")
    console.print("  strata run      # build every unit, then run assertions")
