"""Tests for per-unit configuration validation."""

import pytest

from strata.engine.errors import InvalidConfigError
from strata.engine.transform.unit_config import (
    IncrementalConfig,
    TableConfig,
    ViewConfig,
    parse_unit_config,
)


def test_default_is_view():
    config = parse_unit_config("u", {})
    assert isinstance(config, ViewConfig)
    assert config.schema_name is None


def test_table_with_schema_and_layer():
    config = parse_unit_config("u", {"materialized": "table", "schema": "marts", "layer": "fact"})
    assert isinstance(config, TableConfig)
    assert config.schema_name == "marts"
    assert config.layer == "fact"


def test_incremental_requires_watermark():
    with pytest.raises(InvalidConfigError, match="watermark_column"):
        parse_unit_config("fct", {"materialized": "incremental", "unique_key": "id"})


def test_incremental_unique_key_forms():
    single = parse_unit_config("f", {"materialized": "incremental", "watermark_column": "ts", "unique_key": "id"})
    composite = parse_unit_config(
        "f", {"materialized": "incremental", "watermark_column": "ts", "unique_key": "(a, b)"}
    )
    assert isinstance(single, IncrementalConfig)
    assert single.unique_key == ("id",)
    assert composite.unique_key == ("a", "b")


def test_unknown_key_rejected():
    with pytest.raises(InvalidConfigError) as exc_info:
        parse_unit_config("u", {"materialized": "table", "partition_by": "day"})
    assert exc_info.value.unit == "u"
    assert "partition_by" in exc_info.value.message


def test_incremental_keys_rejected_on_table():
    with pytest.raises(InvalidConfigError, match="unique_key"):
        parse_unit_config("u", {"materialized": "table", "unique_key": "id"})


def test_unknown_materialization():
    with pytest.raises(InvalidConfigError, match="ephemeral"):
        parse_unit_config("u", {"materialized": "ephemeral"})


def test_unknown_layer():
    with pytest.raises(InvalidConfigError, match="gold"):
        parse_unit_config("u", {"layer": "gold"})


def test_bad_identifier_rejected():
    with pytest.raises(InvalidConfigError):
        parse_unit_config("u", {"materialized": "incremental", "watermark_column": "ts; DROP TABLE x"})


def test_layer_defaults_apply_and_unit_wins():
    defaults = {"materialized": "table", "schema": "dims"}
    assert isinstance(parse_unit_config("u", {}, defaults), TableConfig)
    config = parse_unit_config("u", {"materialized": "view"}, defaults)
    assert isinstance(config, ViewConfig)
    assert config.schema_name == "dims"
