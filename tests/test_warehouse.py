"""Tests for the DuckDB warehouse adapter."""

from __future__ import annotations

from datetime import date

import pytest

from strata.engine.errors import MaterializationError
from strata.engine.transform.models import (
    CREATE_OR_REPLACE_TABLE,
    CREATE_VIEW,
    MaterializationAction,
)
from strata.engine.warehouse import DuckDBWarehouse


@pytest.fixture
def wh(tmp_path):
    warehouse = DuckDBWarehouse.open(tmp_path / "test.duckdb")
    warehouse.conn.execute("CREATE SCHEMA raw")
    warehouse.conn.execute(
        "CREATE TABLE raw.movies AS SELECT * FROM (VALUES "
        "(1, 'The Long Night', DATE '2024-01-01'), (2, 'Orbit', DATE '2024-01-05')"
        ") AS t(movie_id, title, added_on)"
    )
    yield warehouse
    warehouse.close()


def _action(kind, relation="staging.src_movies", query="SELECT * FROM raw.movies", **kwargs):
    return MaterializationAction(kind=kind, unit=relation.split(".")[1], relation=relation, query=query, **kwargs)


def test_inspect_missing(wh):
    state = wh.inspect("staging.src_movies")
    assert not state.exists
    assert state.kind is None


def test_create_view(wh):
    assert wh.execute(_action(CREATE_VIEW)) is None
    state = wh.inspect("staging.src_movies")
    assert state.exists
    assert state.kind == "view"
    assert wh.query("SELECT count(*) FROM staging.src_movies") == [(2,)]


def test_create_table_reports_rows_and_watermark(wh):
    assert wh.execute(_action(CREATE_OR_REPLACE_TABLE, "dimension.dim_movies")) == 2
    state = wh.inspect("dimension.dim_movies", watermark_column="added_on")
    assert state.kind == "table"
    assert state.watermark == date(2024, 1, 5)


def test_switch_view_to_table(wh):
    wh.execute(_action(CREATE_VIEW))
    wh.execute(_action(CREATE_OR_REPLACE_TABLE, drop_existing="view"))
    assert wh.inspect("staging.src_movies").kind == "table"


def test_switch_table_to_view(wh):
    wh.execute(_action(CREATE_OR_REPLACE_TABLE))
    wh.execute(_action(CREATE_VIEW, drop_existing="table"))
    assert wh.inspect("staging.src_movies").kind == "view"


def test_bad_sql_raises_materialization_error(wh):
    with pytest.raises(MaterializationError) as exc_info:
        wh.execute(_action(CREATE_OR_REPLACE_TABLE, query="SELECT * FROM raw.nope"))
    assert exc_info.value.unit == "src_movies"
    assert "nope" in exc_info.value.message


def test_unknown_watermark_column(wh):
    wh.execute(_action(CREATE_OR_REPLACE_TABLE, "fact.fct_movies"))
    with pytest.raises(MaterializationError, match="watermark"):
        wh.inspect("fact.fct_movies", watermark_column="missing_col")


def test_run_log(wh):
    wh.execute(_action(CREATE_OR_REPLACE_TABLE))
    with pytest.raises(MaterializationError):
        wh.execute(_action(CREATE_VIEW, "staging.broken", query="SELEC 1"))
    sql = "SELECT status, action, rows_affected, error FROM _strata_internal.run_log WHERE target = ?"
    assert wh.query(sql, ["staging.src_movies"]) == [("success", "CREATE_OR_REPLACE_TABLE", 2, None)]
    ((status, action, _, error),) = wh.query(sql, ["staging.broken"])
    assert (status, action) == ("error", "CREATE_VIEW")
    assert error


def test_columns(wh):
    wh.execute(_action(CREATE_VIEW))
    assert [c for c, _ in wh.columns("staging.src_movies")] == ["movie_id", "title", "added_on"]
    assert wh.columns("staging.nope") == []


def test_session_shares_schema_cache(wh):
    wh.ensure_schemas(["staging"])
    with wh.session() as session:
        assert "staging" in session._schemas
        session.execute(_action(CREATE_VIEW))
    assert wh.inspect("staging.src_movies").exists
