"""Tests for discovering transformation units on disk."""

import textwrap

import pytest

from strata.engine.errors import InvalidConfigError
from strata.engine.transform import discover_units, load_graph


def _write(root, rel, sql):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(sql))
    return path


@pytest.fixture
def transform_dir(tmp_path):
    root = tmp_path / "transform"
    _write(root, "fct/fct_activity.sql", """\
        -- config: materialized=incremental, unique_key=activity_id, watermark_column=event_ts
        -- description: One row per viewing event
        -- assert: unique(activity_id)
        -- assert: relationships(movie_id, dim_movies.movie_id)
        SELECT a.* FROM {{ source('raw', 'activity') }} a JOIN {{ ref('dim_movies') }} m USING (movie_id)
    """)
    _write(root, "dimension/dim_movies.sql", """\
        -- config: materialized=table
        -- col: movie_id: Catalogue id
        SELECT * FROM {{ ref('src_movies') }}
    """)
    _write(root, "staging/src_movies.sql", """\
        SELECT * FROM {{ source('raw', 'movies') }}
    """)
    return root


def test_discover_declaration_order(transform_dir):
    units = discover_units(transform_dir)
    assert [u.name for u in units] == ["src_movies", "dim_movies", "fct_activity"]


def test_discover_layers_and_schemas(transform_dir):
    units = {u.name: u for u in discover_units(transform_dir)}
    assert units["src_movies"].layer == "staging"
    assert units["dim_movies"].layer == "dimension"
    assert units["fct_activity"].layer == "fact"
    assert units["fct_activity"].relation == "fact.fct_activity"
    assert units["src_movies"].materialized == "view"


def test_discover_refs_sources_and_metadata(transform_dir):
    units = {u.name: u for u in discover_units(transform_dir)}
    fct = units["fct_activity"]
    assert fct.refs == ("dim_movies",)
    assert fct.sources == ("raw.activity",)
    assert fct.unique_key == ("activity_id",)
    assert fct.watermark_column == "event_ts"
    assert fct.description == "One row per viewing event"
    assert [a.kind for a in fct.assertions] == ["unique", "relationships"]
    assert units["dim_movies"].column_docs == {"movie_id": "Catalogue id"}
    assert "-- config" not in units["dim_movies"].sql_template


def test_depends_on_adds_refs(tmp_path):
    root = tmp_path / "transform"
    _write(root, "staging/a.sql", "SELECT 1 AS x\n")
    _write(root, "staging/b.sql", "-- depends_on: a\nSELECT 2 AS x\n")
    units = {u.name: u for u in discover_units(root)}
    assert units["b"].refs == ("a",)


def test_layer_defaults_and_schema_override(tmp_path):
    root = tmp_path / "transform"
    _write(root, "dimension/dim_users.sql", "SELECT 1 AS id\n")
    _write(root, "dimension/dim_plans.sql", "-- config: schema=billing\nSELECT 1 AS id\n")
    units = {
        u.name: u
        for u in discover_units(root, layer_defaults={"dimension": {"materialized": "table", "schema": "dims"}})
    }
    assert units["dim_users"].materialized == "table"
    assert units["dim_users"].relation == "dims.dim_users"
    assert units["dim_plans"].relation == "billing.dim_plans"


def test_layer_config_overrides_folder(tmp_path):
    root = tmp_path / "transform"
    _write(root, "misc/rollup.sql", "-- config: layer=fact, materialized=table\nSELECT 1 AS x\n")
    (unit,) = discover_units(root)
    assert unit.layer == "fact"
    assert unit.schema == "fact"


def test_unknown_folder_without_layer_fails(tmp_path):
    root = tmp_path / "transform"
    _write(root, "misc/rollup.sql", "SELECT 1 AS x\n")
    with pytest.raises(InvalidConfigError, match="cannot infer layer"):
        discover_units(root)


def test_unsupported_template_fails(tmp_path):
    root = tmp_path / "transform"
    _write(root, "staging/a.sql", "SELECT {{ var('x') }} AS x\n")
    with pytest.raises(InvalidConfigError, match="unsupported template"):
        discover_units(root)


def test_bad_assertion_fails(tmp_path):
    root = tmp_path / "transform"
    _write(root, "staging/a.sql", "-- assert: always_true()\nSELECT 1 AS x\n")
    with pytest.raises(InvalidConfigError, match="unrecognized assertion"):
        discover_units(root)


def test_missing_dir_returns_empty(tmp_path):
    assert discover_units(tmp_path / "nope") == []


def test_load_graph_from_disk(transform_dir):
    graph = load_graph(transform_dir, layer_defaults={"staging": {"schema": "stg"}})
    assert list(graph.units) == ["src_movies", "dim_movies", "fct_activity"]
    assert graph.dependencies["fct_activity"] == frozenset({"dim_movies"})
    assert graph.compiled["dim_movies"].strip() == "SELECT * FROM stg.src_movies"
