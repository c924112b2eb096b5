"""Documentation and lineage export.

Everything here reads the model graph (and optionally the warehouse catalog);
nothing is written anywhere.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from strata.engine.transform.graph import ModelGraph
from strata.engine.transform.models import LAYERS

if TYPE_CHECKING:
    from strata.config import SourceConfig
    from strata.engine.warehouse import Warehouse

logger = logging.getLogger("strata.docs")


def export_lineage(graph: ModelGraph) -> dict[str, Any]:
    """Return the graph as a JSON-serializable lineage document.

    ``edges`` connect units (``source`` is read by ``target``); edges from
    external relations are listed separately under ``sources``.
    """
    nodes = []
    edges = []
    source_edges = []
    for name, unit in graph.units.items():
        nodes.append({
            "id": name,
            "relation": unit.relation,
            "layer": unit.layer,
            "materialized": unit.materialized,
            "description": unit.description,
            "depends_on": list(unit.refs),
            "sources": list(unit.sources),
            "columns": dict(unit.column_docs),
            "assertions": [a.expression for a in unit.assertions],
        })
        for dep in unit.refs:
            edges.append({"source": dep, "target": name})
        for src in unit.sources:
            source_edges.append({"source": src, "target": name})

    return {
        "nodes": nodes,
        "edges": edges,
        "sources": {
            "relations": sorted({e["source"] for e in source_edges}),
            "edges": source_edges,
        },
    }


def _mermaid_id(value: str) -> str:
    return re.sub(r"\W", "_", value)


def render_mermaid(lineage: dict[str, Any]) -> str:
    """Render a lineage document as a Mermaid flowchart, one subgraph per layer."""
    lines = ["graph LR"]
    sources = lineage.get("sources", {})
    relations = sources.get("relations", [])
    if relations:
        lines.append("    subgraph sources")
        for rel in relations:
            lines.append(f"        {_mermaid_id(rel)}[({rel})]")
        lines.append("    end")

    by_layer: dict[str, list[dict]] = {}
    for node in lineage["nodes"]:
        by_layer.setdefault(node["layer"], []).append(node)
    for layer in [*LAYERS, *sorted(set(by_layer) - set(LAYERS))]:
        if layer not in by_layer:
            continue
        lines.append(f"    subgraph {layer}")
        for node in by_layer[layer]:
            lines.append(f"        {_mermaid_id(node['id'])}[{node['relation']}]")
        lines.append("    end")

    for edge in sources.get("edges", []):
        lines.append(f"    {_mermaid_id(edge['source'])} --> {_mermaid_id(edge['target'])}")
    for edge in lineage["edges"]:
        lines.append(f"    {_mermaid_id(edge['source'])} --> {_mermaid_id(edge['target'])}")
    return "\n".join(lines) + "\n"


def generate_docs(
    graph: ModelGraph,
    warehouse: Warehouse | None = None,
    sources: list[SourceConfig] | None = None,
    title: str = "Data Warehouse Documentation",
) -> str:
    """Generate markdown documentation for the model graph.

    Combines:
    - unit header comments (description, column docs, assertions)
    - the resolved dependencies and materialization of each unit
    - column types from the warehouse catalog, when a handle is given
    - sources.yml declarations
    """
    lines: list[str] = [f"# {title}\n"]

    if not graph.units:
        lines.append("*No transformation units found.*\n")
        return "\n".join(lines)

    lines.append("## Overview\n")
    for layer in LAYERS:
        names = graph.units_in_layer(layer)
        if not names:
            continue
        lines.append(f"### {layer}\n")
        for name in names:
            unit = graph.units[name]
            lines.append(f"- [`{unit.relation}`](#{name}) ({unit.materialized})")
        lines.append("")

    lines.append("---\n")
    lines.append("## Units\n")
    for name, unit in graph.units.items():
        lines.append(f"### <a id=\"{name}\"></a>`{unit.relation}` ({unit.materialized})\n")
        if unit.description:
            lines.append(f"{unit.description}\n")
        if unit.refs:
            deps = ", ".join(f"`{graph.units[d].relation}`" for d in unit.refs)
            lines.append(f"**Depends on:** {deps}\n")
        if unit.sources:
            lines.append(f"**Reads:** {', '.join(f'`{s}`' for s in unit.sources)}\n")
        if unit.unique_key:
            lines.append(f"**Unique key:** {', '.join(f'`{k}`' for k in unit.unique_key)}\n")
        if unit.watermark_column:
            lines.append(f"**Watermark:** `{unit.watermark_column}`\n")

        _column_table(lines, unit.relation, unit.column_docs, warehouse)

        if unit.assertions:
            lines.append("**Assertions:**\n")
            for assertion in unit.assertions:
                lines.append(f"- `{assertion.expression}`")
            lines.append("")

        lines.append("<details><summary>SQL</summary>\n")
        lines.append("```sql")
        lines.append(graph.compiled[name].strip())
        lines.append("```")
        lines.append("</details>\n")

    if sources:
        lines.append("---\n")
        lines.append("## Sources\n")
        for src in sources:
            lines.append(f"### {src.name}\n")
            if src.description:
                lines.append(f"{src.description}\n")
            for tbl in src.tables:
                lines.append(f"#### `{src.schema_name}.{tbl.name}`\n")
                if tbl.description:
                    lines.append(f"{tbl.description}\n")
                if tbl.columns:
                    lines.append("| Column | Description |")
                    lines.append("|--------|-------------|")
                    for col in tbl.columns:
                        lines.append(f"| `{col.name}` | {col.description} |")
                    lines.append("")

    lines.append("---\n")
    lines.append("## Lineage\n")
    lines.append("```mermaid")
    lines.append(render_mermaid(export_lineage(graph)).rstrip())
    lines.append("```\n")

    return "\n".join(lines)


def _column_table(
    lines: list[str],
    relation: str,
    column_docs: dict[str, str],
    warehouse: Warehouse | None,
) -> None:
    columns: list[tuple[str, str]] = []
    if warehouse is not None:
        columns = warehouse.columns(relation)
        if not columns:
            logger.debug("%s not found in the warehouse catalog", relation)

    if columns:
        lines.append("| Column | Type | Description |")
        lines.append("|--------|------|-------------|")
        for col_name, data_type in columns:
            lines.append(f"| `{col_name}` | {data_type} | {column_docs.get(col_name, '')} |")
        lines.append("")
    elif column_docs:
        lines.append("| Column | Description |")
        lines.append("|--------|-------------|")
        for col_name, desc in column_docs.items():
            lines.append(f"| `{col_name}` | {desc} |")
        lines.append("")
