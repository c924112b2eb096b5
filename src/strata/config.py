"""Project configuration: project.yml / sources.yml parsing and defaults."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from strata.engine.errors import ProjectConfigError
from strata.engine.utils import validate_identifier

logger = logging.getLogger("strata.config")


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    path: str = "warehouse.duckdb"


class ExecutionConfig(BaseModel):
    """How ``strata run`` executes a plan."""
    model_config = ConfigDict(extra="ignore")

    workers: int = Field(default=1, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0)
    fail_on_skipped: bool = True  # skipped units make the run exit non-zero


class LayerDefaults(BaseModel):
    """Defaults applied to every unit of a layer unless its own config overrides them."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    materialized: Literal["view", "table", "incremental"] | None = None
    schema_name: str | None = Field(default=None, alias="schema")

    @field_validator("schema_name")
    @classmethod
    def _check_schema(cls, value: str | None) -> str | None:
        if value is not None:
            validate_identifier(value, "schema")
        return value


class EnvironmentConfig(BaseModel):
    """A single environment override (e.g. dev, prod)."""
    model_config = ConfigDict(extra="ignore")

    database: dict[str, Any] = Field(default_factory=dict)  # {"path": "dev.duckdb"}


class SourceColumn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""


class SourceTable(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    columns: list[SourceColumn] = Field(default_factory=list)


class SourceConfig(BaseModel):
    """An external data source declaration."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    schema_name: str = Field(default="raw", alias="schema")
    description: str = ""
    tables: list[SourceTable] = Field(default_factory=list)

    @property
    def relations(self) -> list[str]:
        return [f"{self.schema_name}.{t.name}" for t in self.tables]


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "default"
    description: str = ""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transform_dir: str = "transform"
    seeds_dir: str = "seeds"
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    models: dict[Literal["staging", "dimension", "fact"], LayerDefaults] = Field(default_factory=dict)
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)
    active_environment: str | None = None
    sources: list[SourceConfig] = Field(default_factory=list)
    project_dir: Path = Field(default_factory=Path.cwd)

    @property
    def database_path(self) -> Path:
        path = Path(self.database.path)
        return path if path.is_absolute() else self.project_dir / path

    @property
    def transform_path(self) -> Path:
        return self.project_dir / self.transform_dir

    @property
    def seeds_path(self) -> Path:
        return self.project_dir / self.seeds_dir

    def layer_defaults(self) -> dict[str, dict[str, Any]]:
        """Per-layer unit config defaults in ``-- config:`` key form."""
        return {
            layer: defaults.model_dump(by_alias=True, exclude_none=True)
            for layer, defaults in self.models.items()
        }

    def source_relations(self) -> set[str]:
        return {rel for src in self.sources for rel in src.relations}


def _expand_env_vars(value: Any) -> Any:
    """Expand ${ENV_VAR} references in string values."""
    if isinstance(value, str):
        return re.sub(
            r"\$\{(\w+)\}",
            lambda m: os.environ.get(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    return value


def _load_dotenv(project_dir: Path) -> None:
    """Export KEY=value lines from the project's .env file (existing vars win)."""
    env_path = project_dir / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        os.environ.setdefault(key.strip(), value)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ProjectConfigError(f"{path.name} is not valid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ProjectConfigError(f"{path.name} must contain a mapping at the top level")
    return _expand_env_vars(raw)


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}" for err in exc.errors()
    )


def _parse_sources(project_dir: Path) -> list[SourceConfig]:
    """Parse sources.yml if it exists."""
    sources_path = project_dir / "sources.yml"
    if not sources_path.exists():
        return []
    raw = _read_yaml(sources_path)
    try:
        return [SourceConfig.model_validate(src) for src in raw.get("sources") or []]
    except ValidationError as e:
        raise ProjectConfigError(f"sources.yml: {_describe(e)}") from e


def load_project(project_dir: Path | None = None, env: str | None = None) -> ProjectConfig:
    """Load project.yml from the given directory (or cwd).

    Args:
        project_dir: Path to the project directory.
        env: Environment name to activate (e.g. "dev", "prod").
             If environments are defined and env is None, defaults to "dev".

    Raises:
        ProjectConfigError: malformed YAML, invalid values, or an unknown
            environment name.
    """
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    config_path = project_dir / "project.yml"
    _load_dotenv(project_dir)

    if not config_path.exists():
        return ProjectConfig(project_dir=project_dir, sources=_parse_sources(project_dir))

    raw = _read_yaml(config_path)
    raw.setdefault("name", project_dir.name)
    raw.pop("active_environment", None)
    raw.pop("project_dir", None)
    for key in ("models", "environments", "database", "execution"):
        if raw.get(key) is None:
            raw.pop(key, None)

    try:
        config = ProjectConfig.model_validate({**raw, "project_dir": project_dir})
    except ValidationError as e:
        raise ProjectConfigError(f"project.yml: {_describe(e)}") from e

    active_env = env
    if config.environments and active_env is None:
        active_env = "dev" if "dev" in config.environments else None
    if active_env is not None:
        if active_env not in config.environments:
            raise ProjectConfigError(f"Unknown environment '{active_env}' in project.yml")
        env_cfg = config.environments[active_env]
        if "path" in env_cfg.database:
            config.database = DatabaseConfig(path=env_cfg.database["path"])
        config.active_environment = active_env
        logger.debug("Using environment %s (database %s)", active_env, config.database.path)

    config.sources = _parse_sources(project_dir)
    return config
