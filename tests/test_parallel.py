"""Tests for parallel unit execution on DuckDB sessions."""

from __future__ import annotations

import pytest

from strata.engine.transform import build_graph, plan, plan_tiers, run_pipeline
from strata.engine.transform.models import FAILED, SKIPPED, SUCCEEDED
from strata.engine.warehouse import DuckDBWarehouse


@pytest.fixture
def fan_out(make_unit):
    """Two staging views feeding one dimension, which feeds three facts."""
    units = [
        make_unit("src_a", sql_template="SELECT * FROM range(10) AS t(id)"),
        make_unit("src_b", sql_template="SELECT id, id * 2 AS score FROM range(10) AS t(id)"),
        make_unit(
            "dim_x",
            refs=["src_a", "src_b"],
            layer="dimension",
            materialized="table",
            sql_template="SELECT a.id, b.score FROM {{ ref('src_a') }} AS a JOIN {{ ref('src_b') }} AS b USING (id)",
        ),
    ]
    for i in range(3):
        units.append(
            make_unit(
                f"fct_{i}",
                refs=["dim_x"],
                layer="fact",
                materialized="table",
                sql_template=f"SELECT id, score + {i} AS score FROM {{{{ ref('dim_x') }}}} WHERE id % 3 = {i}",
            )
        )
    return units


def _fact_rows(wh):
    return {
        name: wh.query(f"SELECT id, score FROM fact.{name} ORDER BY id")
        for name in ("fct_0", "fct_1", "fct_2")
    }


def test_tiers_of_fan_out(fan_out):
    graph = build_graph(fan_out)
    assert plan_tiers(graph, plan(graph)) == [
        ["src_a", "src_b"],
        ["dim_x"],
        ["fct_0", "fct_1", "fct_2"],
    ]


def test_parallel_matches_sequential(fan_out, tmp_path):
    with DuckDBWarehouse.open(tmp_path / "seq.duckdb") as wh:
        sequential = run_pipeline(wh, fan_out, quiet=True)
        expected = _fact_rows(wh)
    with DuckDBWarehouse.open(tmp_path / "par.duckdb") as wh:
        parallel = run_pipeline(wh, fan_out, workers=4, quiet=True)
        actual = _fact_rows(wh)

    assert sequential.ok and parallel.ok
    assert list(parallel.results) == list(sequential.results)
    assert actual == expected
    assert actual["fct_1"] == [(1, 3), (4, 9), (7, 15)]


def test_parallel_failure_isolated_to_branch(fan_out, make_unit, tmp_path):
    units = fan_out + [
        make_unit(
            "fct_broken",
            refs=["src_a"],
            layer="fact",
            materialized="table",
            sql_template="SELECT * FROM {{ ref('src_a') }} JOIN raw.nowhere USING (id)",
        ),
        make_unit(
            "fct_after_broken",
            refs=["fct_broken"],
            layer="fact",
            materialized="table",
            sql_template="SELECT * FROM {{ ref('fct_broken') }}",
        ),
    ]
    with DuckDBWarehouse.open(tmp_path / "par.duckdb") as wh:
        summary = run_pipeline(wh, units, workers=4, quiet=True)

    statuses = {name: r.status for name, r in summary.results.items()}
    assert statuses["fct_broken"] == FAILED
    assert statuses["fct_after_broken"] == SKIPPED
    assert all(statuses[f"fct_{i}"] == SUCCEEDED for i in range(3))
    assert list(summary.results) == list(summary.plan)
