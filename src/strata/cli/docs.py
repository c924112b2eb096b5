"""Documentation commands: docs."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer

from strata.cli import EXIT_PLANNING_ERROR, _load_config, _resolve_project, app, console


class DocsFormat(str, Enum):
    json = "json"
    mermaid = "mermaid"
    markdown = "markdown"


@app.command()
def docs(
    fmt: Annotated[DocsFormat, typer.Option("--format", "-f", help="Output format")] = DocsFormat.markdown,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write to this file instead of stdout")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Export lineage and documentation for the model graph.

    Markdown docs include column types when the warehouse file exists.
    """
    from strata.engine.docs import export_lineage, generate_docs, render_mermaid
    from strata.engine.errors import PlanningError
    from strata.engine.transform import load_graph, plan
    from strata.engine.warehouse import DuckDBWarehouse

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    try:
        graph = load_graph(
            config.transform_path,
            layer_defaults=config.layer_defaults(),
            known_sources=config.source_relations(),
        )
        plan(graph)
    except PlanningError as e:
        console.print(f"[red]Planning error:[/red] {e}")
        raise typer.Exit(EXIT_PLANNING_ERROR)

    if fmt == DocsFormat.json:
        text = json.dumps(export_lineage(graph), indent=2) + "\n"
    elif fmt == DocsFormat.mermaid:
        text = render_mermaid(export_lineage(graph))
    else:
        title = f"{config.name}: data warehouse documentation"
        if config.database_path.exists():
            with DuckDBWarehouse.open(config.database_path, read_only=True) as warehouse:
                text = generate_docs(graph, warehouse, sources=config.sources, title=title)
        else:
            text = generate_docs(graph, sources=config.sources, title=title)

    if output is None:
        typer.echo(text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text)
    console.print(f"[green]Wrote {fmt.value} docs to {output}[/green]")
