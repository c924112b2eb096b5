"""Data classes for the transformation engine."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

# Materialization kinds
VIEW = "view"
TABLE = "table"
INCREMENTAL = "incremental"
MATERIALIZATIONS = (VIEW, TABLE, INCREMENTAL)

# Schema layers, in build order
STAGING = "staging"
DIMENSION = "dimension"
FACT = "fact"
LAYERS = (STAGING, DIMENSION, FACT)

# Materialization actions
CREATE_VIEW = "CREATE_VIEW"
CREATE_OR_REPLACE_TABLE = "CREATE_OR_REPLACE_TABLE"
MERGE_INCREMENTAL = "MERGE_INCREMENTAL"

# Unit outcomes
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"

# Assertion outcomes
PASSED = "passed"


@dataclass(frozen=True)
class Assertion:
    """A declared data quality check on one unit."""

    unit: str
    kind: str  # "not_null", "unique", "relationships", "accepted_values", "row_count"
    expression: str  # text as written in the unit file
    columns: tuple[str, ...] = ()
    to_unit: str | None = None  # relationships: parent unit
    to_column: str | None = None  # relationships: parent column
    values: tuple[str, ...] = ()  # accepted_values
    operator: str | None = None  # row_count
    threshold: int | None = None  # row_count

    @property
    def label(self) -> str:
        return f"{self.unit}: {self.expression}"

    @property
    def referenced_units(self) -> tuple[str, ...]:
        if self.to_unit and self.to_unit != self.unit:
            return (self.unit, self.to_unit)
        return (self.unit,)


@dataclass(frozen=True)
class TransformationUnit:
    """A single SQL transformation unit, immutable once registered."""

    name: str  # e.g. "dim_movies"
    sql_template: str  # query with {{ ref() }} / {{ source() }} calls
    materialized: str = VIEW
    layer: str = STAGING
    schema: str = STAGING
    refs: tuple[str, ...] = ()  # upstream unit names
    sources: tuple[str, ...] = ()  # external "schema.table" relations
    description: str = ""
    column_docs: dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    unique_key: tuple[str, ...] = ()  # incremental only
    watermark_column: str | None = None  # incremental only
    assertions: tuple[Assertion, ...] = ()
    path: Path | None = None

    @property
    def relation(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class ExecutionPlan:
    """Topologically ordered unit names for one run."""

    order: tuple[str, ...]
    targets: tuple[str, ...] = ()  # empty when the whole graph is planned

    def __iter__(self) -> Iterator[str]:
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, name: object) -> bool:
        return name in self.order


@dataclass(frozen=True)
class TargetState:
    """What the warehouse currently holds for a unit's relation."""

    exists: bool = False
    kind: str | None = None  # "view" or "table"
    watermark: Any = None  # MAX(watermark_column), incremental only


@dataclass(frozen=True)
class MaterializationAction:
    """A concrete instruction for the warehouse, bound to one unit."""

    kind: str  # CREATE_VIEW, CREATE_OR_REPLACE_TABLE, MERGE_INCREMENTAL
    unit: str
    relation: str
    query: str
    predicate: str | None = None  # MERGE_INCREMENTAL: filter applied to new rows
    params: tuple[Any, ...] = ()
    unique_key: tuple[str, ...] = ()
    watermark_column: str | None = None  # MERGE_INCREMENTAL: latest row per key wins
    drop_existing: str | None = None  # "view" or "table" to drop before creating

    @property
    def schema(self) -> str:
        return self.relation.split(".", 1)[0]


@dataclass
class UnitResult:
    """Outcome of one unit in one run."""

    name: str
    status: str  # "succeeded", "failed", "skipped"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int = 0
    row_count: int | None = None
    action: str | None = None
    error: str | None = None


@dataclass
class AssertionResult:
    """Result of a data quality assertion."""

    assertion: Assertion
    status: str  # "passed", "failed", "skipped"
    detail: str = ""
    failing_rows: int = 0

    @property
    def passed(self) -> bool:
        return self.status == PASSED


@dataclass
class RunSummary:
    """Everything a pipeline run produced, for reporting and exit codes."""

    plan: ExecutionPlan | None = None
    results: dict[str, UnitResult] = field(default_factory=dict)
    assertions: list[AssertionResult] = field(default_factory=list)
    planning_error: Exception | None = None
    cancelled: bool = False

    def _names(self, status: str) -> list[str]:
        return [name for name, r in self.results.items() if r.status == status]

    @property
    def succeeded(self) -> list[str]:
        return self._names(SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._names(FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._names(SKIPPED)

    @property
    def failed_assertions(self) -> list[AssertionResult]:
        return [a for a in self.assertions if a.status == FAILED]

    @property
    def skipped_assertions(self) -> list[AssertionResult]:
        return [a for a in self.assertions if a.status == SKIPPED]

    @property
    def ok(self) -> bool:
        return (
            self.planning_error is None
            and not self.failed
            and not self.skipped
            and not self.failed_assertions
        )
