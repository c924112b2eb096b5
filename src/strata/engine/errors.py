"""Error taxonomy for the transformation engine.

Planning errors are fatal to a run and are raised before the warehouse is
touched. Materialization errors are scoped to one unit. Assertion failures are
reported after the build and never undo a materialization.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class StrataError(Exception):
    """Base class for every error raised by strata."""


class ProjectConfigError(StrataError):
    """project.yml or sources.yml could not be parsed."""


# --- Planning ---


class PlanningError(StrataError):
    """Raised while building the model graph or the execution plan."""


class DuplicateUnitError(PlanningError):
    def __init__(self, name: str, paths: Iterable[Any] = ()) -> None:
        self.name = name
        self.paths = [str(p) for p in paths if p]
        where = f" ({', '.join(self.paths)})" if self.paths else ""
        super().__init__(f"Transformation unit '{name}' is defined more than once{where}")


class UnknownReferenceError(PlanningError):
    def __init__(self, unit: str | None, reference: str) -> None:
        self.unit = unit
        self.reference = reference
        if unit:
            message = f"Unit '{unit}' references unknown unit '{reference}'"
        else:
            message = f"Unknown unit '{reference}'"
        super().__init__(message)


class CyclicDependencyError(PlanningError):
    """The dependency relation is not acyclic.

    ``cycle`` holds the members of one concrete cycle in dependency order.
    ``members`` holds every unit that could not be scheduled.
    """

    def __init__(self, cycle: list[str], members: Iterable[str] = ()) -> None:
        self.cycle = list(cycle)
        self.members = sorted(set(members) | set(cycle))
        path = " -> ".join([*self.cycle, self.cycle[0]]) if self.cycle else ""
        super().__init__(f"Cyclic dependency detected: {path}")


class InvalidConfigError(PlanningError):
    def __init__(self, unit: str, message: str) -> None:
        self.unit = unit
        self.message = message
        super().__init__(f"Invalid configuration for unit '{unit}': {message}")


# --- Execution ---


class MaterializationError(StrataError):
    """A single unit could not be materialized in the warehouse."""

    def __init__(self, unit: str, message: str, row_count: int | None = None) -> None:
        self.unit = unit
        self.message = message
        self.row_count = row_count
        super().__init__(f"{unit}: {message}")


# --- Testing ---


class AssertionFailure(StrataError):
    """A data quality assertion did not hold."""

    def __init__(self, assertion: Any, detail: str, failing_rows: int = 0) -> None:
        self.assertion = assertion
        self.detail = detail
        self.failing_rows = failing_rows
        label = getattr(assertion, "label", str(assertion))
        super().__init__(f"{label}: {detail}")
