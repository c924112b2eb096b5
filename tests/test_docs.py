"""Tests for markdown documentation generation."""

from __future__ import annotations

import pytest

from strata.config import SourceColumn, SourceConfig, SourceTable
from strata.engine.docs import generate_docs
from strata.engine.transform import build_graph, parse_assertion, run_pipeline
from strata.engine.warehouse import DuckDBWarehouse


@pytest.fixture
def graph(make_unit):
    return build_graph([
        make_unit(
            "src_movies",
            sql_template="SELECT 1 AS movie_id, 'Orbit' AS title",
            description="Cleaned movie catalogue",
            column_docs={"movie_id": "Catalogue id"},
        ),
        make_unit(
            "dim_movies",
            refs=["src_movies"],
            layer="dimension",
            materialized="table",
            sql_template="SELECT * FROM {{ ref('src_movies') }}",
            assertions=(parse_assertion("dim_movies", "unique(movie_id)"),),
        ),
    ])


def test_docs_without_warehouse(graph):
    md = generate_docs(graph)
    assert md.startswith("# Data Warehouse Documentation")
    assert "### staging" in md
    assert "- [`dimension.dim_movies`](#dim_movies) (table)" in md
    assert "Cleaned movie catalogue" in md
    assert "**Depends on:** `staging.src_movies`" in md
    assert "| `movie_id` | Catalogue id |" in md
    assert "- `unique(movie_id)`" in md
    # compiled SQL, not the template
    assert "SELECT * FROM staging.src_movies" in md
    assert "```mermaid" in md


def test_docs_with_warehouse_column_types(graph, tmp_path):
    with DuckDBWarehouse.open(tmp_path / "docs.duckdb") as wh:
        run_pipeline(wh, graph, quiet=True)
        md = generate_docs(graph, wh)
    assert "| Column | Type | Description |" in md
    assert "| `movie_id` | INTEGER | Catalogue id |" in md
    assert "| `title` | VARCHAR |  |" in md


def test_docs_sources_section(graph):
    sources = [
        SourceConfig(
            name="raw",
            schema="raw",
            description="CSV seeds",
            tables=[SourceTable(name="movies", columns=[SourceColumn(name="movie_id", description="Id")])],
        )
    ]
    md = generate_docs(graph, sources=sources)
    assert "## Sources" in md
    assert "#### `raw.movies`" in md
    assert "| `movie_id` | Id |" in md


def test_docs_empty_graph():
    md = generate_docs(build_graph([]), title="Empty")
    assert md.startswith("# Empty")
    assert "No transformation units found" in md
