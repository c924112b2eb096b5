"""Tests for the materialization strategy selector."""

from datetime import datetime

import pytest

from strata.engine.transform import select_materialization
from strata.engine.transform.models import (
    CREATE_OR_REPLACE_TABLE,
    CREATE_VIEW,
    MERGE_INCREMENTAL,
    TargetState,
)

QUERY = "SELECT * FROM dimension.dim_movies"
MISSING = TargetState(exists=False)


@pytest.fixture
def incremental(make_unit):
    return make_unit(
        "fct_activity",
        layer="fact",
        materialized="incremental",
        watermark_column="event_ts",
        unique_key=("activity_id",),
    )


def test_view(make_unit):
    action = select_materialization(make_unit("src_movies"), QUERY, MISSING)
    assert action.kind == CREATE_VIEW
    assert action.relation == "staging.src_movies"
    assert action.query == QUERY
    assert action.drop_existing is None


def test_view_replacing_table(make_unit):
    action = select_materialization(make_unit("src_movies"), QUERY, TargetState(True, "table"))
    assert action.kind == CREATE_VIEW
    assert action.drop_existing == "table"


def test_table(make_unit):
    unit = make_unit("dim_movies", layer="dimension", materialized="table")
    assert select_materialization(unit, QUERY, MISSING).kind == CREATE_OR_REPLACE_TABLE
    action = select_materialization(unit, QUERY, TargetState(True, "view"))
    assert action.drop_existing == "view"


def test_incremental_without_prior_state_is_full_build(incremental):
    action = select_materialization(incremental, QUERY, MISSING)
    assert action.kind == CREATE_OR_REPLACE_TABLE
    assert action.predicate is None


def test_incremental_with_watermark_merges(incremental):
    mark = datetime(2024, 3, 4, 21, 45)
    action = select_materialization(incremental, QUERY, TargetState(True, "table", mark))
    assert action.kind == MERGE_INCREMENTAL
    assert action.predicate == '"event_ts" > ?'
    assert action.params == (mark,)
    assert action.unique_key == ("activity_id",)
    assert action.watermark_column == "event_ts"


def test_incremental_empty_target_rebuilds(incremental):
    action = select_materialization(incremental, QUERY, TargetState(True, "table", None))
    assert action.kind == CREATE_OR_REPLACE_TABLE


def test_incremental_full_refresh(incremental):
    state = TargetState(True, "table", datetime(2024, 1, 1))
    assert select_materialization(incremental, QUERY, state, full_refresh=True).kind == CREATE_OR_REPLACE_TABLE


def test_incremental_over_view_rebuilds(incremental):
    action = select_materialization(incremental, QUERY, TargetState(True, "view"))
    assert action.kind == CREATE_OR_REPLACE_TABLE
    assert action.drop_existing == "view"


def test_unknown_materialization(make_unit):
    with pytest.raises(ValueError):
        select_materialization(make_unit("x", materialized="snapshot"), QUERY, MISSING)
