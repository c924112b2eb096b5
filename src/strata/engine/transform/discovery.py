"""Unit discovery: SQL files under transform/ become TransformationUnits."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from strata.engine.errors import InvalidConfigError
from strata.engine.sql_analysis import (
    extract_refs,
    extract_sources,
    find_unrecognized_templates,
    parse_assertions,
    parse_column_docs,
    parse_config,
    parse_depends,
    parse_description,
    strip_config_comments,
)
from strata.engine.utils import validate_identifier

from .models import LAYERS, TransformationUnit
from .quality import parse_assertion
from .unit_config import IncrementalConfig, parse_unit_config

logger = logging.getLogger("strata.transform")

# Folder names accepted for each layer
LAYER_ALIASES = {
    "staging": "staging",
    "stg": "staging",
    "dimension": "dimension",
    "dimensions": "dimension",
    "dim": "dimension",
    "fact": "fact",
    "facts": "fact",
    "fct": "fact",
}


def _folder_layer(transform_dir: Path, sql_file: Path) -> str | None:
    rel = sql_file.relative_to(transform_dir)
    if len(rel.parts) < 2:
        return None
    return LAYER_ALIASES.get(rel.parts[0].lower())


def _merge_refs(*groups: Iterable[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for group in groups:
        for name in group:
            if name not in seen:
                seen.append(name)
    return tuple(seen)


def load_unit(
    sql_file: Path,
    sql: str,
    folder_layer: str | None = None,
    layer_defaults: Mapping[str, Mapping[str, Any]] | None = None,
    known_sources: set[str] | None = None,
) -> TransformationUnit:
    """Build one unit from a SQL file's text and header comments."""
    name = sql_file.stem
    try:
        validate_identifier(name, f"unit name for {sql_file.name}")
    except ValueError as e:
        raise InvalidConfigError(name, str(e)) from e

    raw_config = parse_config(sql)
    layer = raw_config.get("layer") or folder_layer
    if layer is None:
        raise InvalidConfigError(
            name,
            f"cannot infer layer from {sql_file}; put it under one of "
            f"{', '.join(LAYERS)} or set layer= in its config",
        )
    defaults = dict((layer_defaults or {}).get(layer, {}))
    config = parse_unit_config(name, raw_config, defaults)

    query = strip_config_comments(sql)
    unknown_templates = find_unrecognized_templates(query)
    if unknown_templates:
        raise InvalidConfigError(name, f"unsupported template expression {unknown_templates[0]}")

    sources = extract_sources(query)
    for fqn in sources:
        schema, table = fqn.split(".", 1)
        try:
            validate_identifier(schema, "source schema")
            validate_identifier(table, "source table")
        except ValueError as e:
            raise InvalidConfigError(name, str(e)) from e
        if known_sources and fqn not in known_sources:
            logger.warning("Unit %s reads undeclared source %s", name, fqn)

    assertions = tuple(parse_assertion(name, expr) for expr in parse_assertions(sql))

    is_incremental = isinstance(config, IncrementalConfig)
    return TransformationUnit(
        name=name,
        sql_template=query,
        materialized=config.materialized,
        layer=config.layer or layer,
        schema=config.schema_name or config.layer or layer,
        refs=_merge_refs(extract_refs(query), parse_depends(sql)),
        sources=tuple(sources),
        description=parse_description(sql),
        column_docs=parse_column_docs(sql),
        unique_key=config.unique_key if is_incremental else (),
        watermark_column=config.watermark_column if is_incremental else None,
        assertions=assertions,
        path=sql_file,
    )


def discover_units(
    transform_dir: Path,
    layer_defaults: Mapping[str, Mapping[str, Any]] | None = None,
    known_sources: set[str] | None = None,
) -> list[TransformationUnit]:
    """Discover all SQL units in the transform directory.

    Convention: the top-level folder names the layer.
    transform/staging/src_movies.sql -> layer=staging, name=src_movies

    Units are returned in declaration order: staging, then dimension, then
    fact, and by path within a layer.
    """
    if not transform_dir.exists():
        return []

    units = []
    for sql_file in sorted(transform_dir.rglob("*.sql")):
        unit = load_unit(
            sql_file,
            sql_file.read_text(),
            folder_layer=_folder_layer(transform_dir, sql_file),
            layer_defaults=layer_defaults,
            known_sources=known_sources,
        )
        units.append(unit)

    units.sort(key=lambda u: (LAYERS.index(u.layer), str(u.path.relative_to(transform_dir))))
    logger.debug("Discovered %d unit(s) in %s", len(units), transform_dir)
    return units
