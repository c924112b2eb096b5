"""Tests for header parsing, ref/source templating and relation extraction."""

from strata.engine.sql_analysis import (
    directives,
    extract_refs,
    extract_relations,
    extract_sources,
    find_unrecognized_templates,
    parse_assertions,
    parse_column_docs,
    parse_config,
    parse_depends,
    parse_description,
    render_template,
    strip_config_comments,
)

HEADER = (
    "-- config: materialized=incremental, unique_key=(user_id, movie_id), watermark_column=event_ts\n"
    "-- description: Viewing events\n"
    "-- depends_on: dim_users\n"
    "-- col: user_id: Viewer\n"
    "-- col: movie_id: Title watched\n"
    "-- assert: not_null(user_id)\n"
    "-- assert: unique(user_id, movie_id)\n"
    "\n"
    "SELECT * FROM {{ ref('dim_movies') }} JOIN {{ source('raw', 'activity') }} USING (movie_id)\n"
)


def test_parse_config():
    sql = "-- config: materialized=table, schema=marts\nSELECT 1"
    assert parse_config(sql) == {"materialized": "table", "schema": "marts"}


def test_parse_config_keeps_parenthesized_key_together():
    config = parse_config(HEADER)
    assert config["unique_key"] == "(user_id, movie_id)"
    assert config["watermark_column"] == "event_ts"


def test_parse_config_merges_repeated_lines():
    sql = "-- config: materialized=view\n-- config: materialized=table, layer=fact\nSELECT 1"
    assert parse_config(sql) == {"materialized": "table", "layer": "fact"}


def test_parse_config_empty():
    assert parse_config("SELECT 1") == {}


def test_parse_header_fields():
    assert parse_depends(HEADER) == ["dim_users"]
    assert parse_description(HEADER) == "Viewing events"
    assert parse_column_docs(HEADER) == {"user_id": "Viewer", "movie_id": "Title watched"}
    assert parse_assertions(HEADER) == ["not_null(user_id)", "unique(user_id, movie_id)"]


def test_strip_config_comments():
    query = strip_config_comments(HEADER)
    assert query.startswith("SELECT *")
    assert "-- config" not in query


def test_strip_keeps_ordinary_comments():
    sql = "-- config: materialized=view\n-- a normal comment\nSELECT 1"
    assert strip_config_comments(sql) == "-- a normal comment\nSELECT 1"


def test_extract_refs_and_sources():
    sql = "SELECT * FROM {{ ref('a') }} JOIN {{ref(\"b\")}} JOIN {{ ref('a') }} JOIN {{ source('raw', 'x') }}"
    assert extract_refs(sql) == ["a", "b"]
    assert extract_sources(sql) == ["raw.x"]


def test_find_unrecognized_templates():
    assert find_unrecognized_templates("SELECT {{ ref('a') }}") == []
    assert find_unrecognized_templates("SELECT {{ var('x') }}") == ["{{ var('x') }}"]


def test_render_template():
    sql = "SELECT * FROM {{ ref('dim_movies') }} JOIN {{ source('raw', 'activity') }} USING (id)"
    rendered = render_template(sql, lambda name: f"dimension.{name}")
    assert rendered == "SELECT * FROM dimension.dim_movies JOIN raw.activity USING (id)"


def test_extract_relations_skips_ctes_and_self():
    sql = """
        WITH recent AS (SELECT * FROM staging.src_movies)
        SELECT * FROM recent JOIN fact.fct_activity USING (movie_id)
        JOIN dimension.dim_movies USING (movie_id)
    """
    relations = extract_relations(sql, exclude="fact.fct_activity")
    assert relations == ["dimension.dim_movies", "staging.src_movies"]


def test_extract_relations_skips_internal_schemas():
    sql = "SELECT * FROM information_schema.tables JOIN _strata_internal.run_log ON true"
    assert extract_relations(sql) == []


def test_extract_relations_unparseable_sql():
    assert extract_relations("SELECT FROM WHERE (((") == []


def test_directives_in_file_order():
    kinds = [kind for kind, _ in directives(HEADER)]
    assert kinds == ["config", "description", "depends_on", "col", "col", "assert", "assert"]
    assert list(directives(HEADER, "depends_on")) == [("depends_on", "dim_users")]


def test_extract_relations_untokenizable_sql():
    assert extract_relations("SELECT 'unterminated AS x FROM raw.movies") == []
