"""Validated per-unit configuration.

Each materialization kind has its own model with a closed set of keys, so a
misspelled option fails at load time instead of being silently ignored.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from strata.engine.errors import InvalidConfigError
from strata.engine.utils import validate_identifier

from .models import INCREMENTAL, LAYERS, MATERIALIZATIONS, TABLE, VIEW


class _UnitConfigBase(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    layer: Literal["staging", "dimension", "fact"] | None = None
    schema_name: str | None = Field(default=None, alias="schema")

    @field_validator("schema_name")
    @classmethod
    def _check_schema(cls, value: str | None) -> str | None:
        if value is not None:
            validate_identifier(value, "schema")
        return value


class ViewConfig(_UnitConfigBase):
    materialized: Literal["view"] = VIEW


class TableConfig(_UnitConfigBase):
    materialized: Literal["table"] = TABLE


class IncrementalConfig(_UnitConfigBase):
    materialized: Literal["incremental"] = INCREMENTAL
    watermark_column: str
    unique_key: tuple[str, ...] = ()

    @field_validator("unique_key", mode="before")
    @classmethod
    def _split_key(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [k.strip() for k in value.strip().strip("()").split(",") if k.strip()]
        return value

    @field_validator("unique_key")
    @classmethod
    def _check_key(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for key in value:
            validate_identifier(key, "unique_key column")
        return value

    @field_validator("watermark_column")
    @classmethod
    def _check_watermark(cls, value: str) -> str:
        return validate_identifier(value, "watermark_column")


UnitConfig = Union[ViewConfig, TableConfig, IncrementalConfig]

_CONFIG_MODELS: dict[str, type[_UnitConfigBase]] = {
    VIEW: ViewConfig,
    TABLE: TableConfig,
    INCREMENTAL: IncrementalConfig,
}


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_unit_config(
    unit: str,
    raw: dict[str, Any],
    defaults: dict[str, Any] | None = None,
) -> UnitConfig:
    """Validate a unit's ``-- config:`` values on top of project defaults.

    Raises:
        InvalidConfigError: unknown materialization, unknown key, or bad value.
    """
    merged = {k: v for k, v in (defaults or {}).items() if v is not None}
    merged.update(raw)
    materialized = merged.get("materialized", VIEW)
    if materialized not in MATERIALIZATIONS:
        raise InvalidConfigError(
            unit,
            f"unknown materialization {materialized!r} (expected one of {', '.join(MATERIALIZATIONS)})",
        )
    merged["materialized"] = materialized
    layer = merged.get("layer")
    if layer is not None and layer not in LAYERS:
        raise InvalidConfigError(
            unit, f"unknown layer {layer!r} (expected one of {', '.join(LAYERS)})"
        )
    model_cls = _CONFIG_MODELS[materialized]
    try:
        return model_cls.model_validate(merged)
    except ValidationError as e:
        raise InvalidConfigError(unit, _describe(e)) from e
    except ValueError as e:
        raise InvalidConfigError(unit, str(e)) from e
