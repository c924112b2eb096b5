"""Data quality assertions: parsing and evaluation."""

from __future__ import annotations

import logging
import operator
import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from strata.engine.errors import AssertionFailure, InvalidConfigError
from strata.engine.utils import quote_identifier, validate_identifier

from .models import FAILED, PASSED, SKIPPED, SUCCEEDED, Assertion, AssertionResult, UnitResult

if TYPE_CHECKING:
    from strata.engine.warehouse import Warehouse

    from .graph import ModelGraph

logger = logging.getLogger("strata.transform")

_NOT_NULL_RE = re.compile(r"^(?:not_null|no_nulls)\(\s*([\w\s,]+)\)$")
_UNIQUE_RE = re.compile(r"^unique\(\s*([\w\s,]+)\)$")
_RELATIONSHIPS_RE = re.compile(r"^relationships\(\s*(\w+)\s*,\s*(\w+)\.(\w+)\s*\)$")
_ACCEPTED_RE = re.compile(r"^accepted_values\(\s*(\w+)\s*,\s*\[(.*)\]\s*\)$")
_ROW_COUNT_RE = re.compile(r"^row_count\s*(>=|<=|==|!=|>|<|=)\s*(\d+)$")

_OPERATORS = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
}


def _columns(raw: str, unit: str) -> tuple[str, ...]:
    cols = tuple(c.strip() for c in raw.split(",") if c.strip())
    if not cols:
        raise InvalidConfigError(unit, "assertion needs at least one column")
    for col in cols:
        try:
            validate_identifier(col, "assertion column")
        except ValueError as e:
            raise InvalidConfigError(unit, str(e)) from e
    return cols


def parse_assertion(unit: str, expression: str) -> Assertion:
    """Parse one ``-- assert:`` expression.

    Supported forms:
        -- assert: not_null(column[, column...])
        -- assert: unique(column[, column...])
        -- assert: relationships(column, other_unit.column)
        -- assert: accepted_values(column, ['a', 'b', 'c'])
        -- assert: row_count > 0
    """
    expr = expression.strip()

    m = _NOT_NULL_RE.match(expr)
    if m:
        return Assertion(unit=unit, kind="not_null", expression=expr, columns=_columns(m.group(1), unit))

    m = _UNIQUE_RE.match(expr)
    if m:
        return Assertion(unit=unit, kind="unique", expression=expr, columns=_columns(m.group(1), unit))

    m = _RELATIONSHIPS_RE.match(expr)
    if m:
        return Assertion(
            unit=unit,
            kind="relationships",
            expression=expr,
            columns=(m.group(1),),
            to_unit=m.group(2),
            to_column=m.group(3),
        )

    m = _ACCEPTED_RE.match(expr)
    if m:
        values = tuple(v.strip().strip("'\"") for v in m.group(2).split(",") if v.strip())
        if not values:
            raise InvalidConfigError(unit, f"accepted_values needs at least one value: {expr}")
        return Assertion(
            unit=unit,
            kind="accepted_values",
            expression=expr,
            columns=(m.group(1),),
            values=values,
        )

    m = _ROW_COUNT_RE.match(expr)
    if m:
        return Assertion(
            unit=unit,
            kind="row_count",
            expression=expr,
            operator=m.group(1),
            threshold=int(m.group(2)),
        )

    raise InvalidConfigError(unit, f"unrecognized assertion: {expr!r}")


def _scalar(warehouse: Warehouse, sql: str, params: Iterable = ()) -> int:
    rows = warehouse.query(sql, list(params))
    return int(rows[0][0]) if rows and rows[0][0] is not None else 0


def _evaluate_assertion(
    warehouse: Warehouse,
    graph: ModelGraph,
    assertion: Assertion,
) -> AssertionResult:
    """Evaluate one assertion. Raises AssertionFailure when it does not hold."""
    table = graph.units[assertion.unit].relation

    if assertion.kind == "row_count":
        count = _scalar(warehouse, f"SELECT COUNT(*) FROM {table}")
        check = _OPERATORS[assertion.operator or ">"]
        if not check(count, assertion.threshold):
            raise AssertionFailure(assertion, f"row_count={count}")
        return AssertionResult(assertion, PASSED, detail=f"row_count={count}")

    if assertion.kind == "not_null":
        cond = " OR ".join(f"{quote_identifier(c)} IS NULL" for c in assertion.columns)
        bad = _scalar(warehouse, f"SELECT COUNT(*) FROM {table} WHERE {cond}")
        label = "null_count"

    elif assertion.kind == "unique":
        keys = ", ".join(quote_identifier(c) for c in assertion.columns)
        not_null = " AND ".join(f"{quote_identifier(c)} IS NOT NULL" for c in assertion.columns)
        bad = _scalar(
            warehouse,
            f"SELECT COUNT(*) FROM (SELECT {keys} FROM {table} WHERE {not_null} "
            f"GROUP BY {keys} HAVING COUNT(*) > 1) AS dupes",
        )
        label = "duplicate_count"

    elif assertion.kind == "relationships":
        parent = graph.units[assertion.to_unit].relation
        col = quote_identifier(assertion.columns[0])
        parent_col = quote_identifier(assertion.to_column or assertion.columns[0])
        bad = _scalar(
            warehouse,
            f"SELECT COUNT(*) FROM {table} AS child WHERE child.{col} IS NOT NULL "
            f"AND NOT EXISTS (SELECT 1 FROM {parent} AS parent WHERE parent.{parent_col} = child.{col})",
        )
        label = "orphan_count"

    elif assertion.kind == "accepted_values":
        col = quote_identifier(assertion.columns[0])
        placeholders = ", ".join("?" for _ in assertion.values)
        bad = _scalar(
            warehouse,
            f"SELECT COUNT(*) FROM {table} WHERE {col} IS NOT NULL "
            f"AND CAST({col} AS VARCHAR) NOT IN ({placeholders})",
            assertion.values,
        )
        label = "invalid_count"

    else:
        raise ValueError(f"Unknown assertion kind: {assertion.kind}")

    if bad:
        raise AssertionFailure(assertion, f"{label}={bad}", failing_rows=bad)
    return AssertionResult(assertion, PASSED, detail=f"{label}=0")


def _skip_reason(assertion: Assertion, results: Mapping[str, UnitResult] | None) -> str | None:
    if not results:
        return None
    for name in assertion.referenced_units:
        result = results.get(name)
        if result is not None and result.status != SUCCEEDED:
            return f"unit {name} {result.status}"
    return None


def run_assertions(
    warehouse: Warehouse,
    graph: ModelGraph,
    assertions: Iterable[Assertion] | None = None,
    results: Mapping[str, UnitResult] | None = None,
) -> list[AssertionResult]:
    """Evaluate assertions against materialized relations.

    Args:
        warehouse: Handle used for the verification queries.
        graph: Model graph, used to resolve unit names to relations.
        assertions: Assertions to check (default: every assertion in the graph).
        results: Unit outcomes of the run that just finished. Assertions on a
            unit that did not succeed are reported as skipped.

    Never raises for a failing check; failures are reported in the results.
    """
    if assertions is None:
        assertions = [a for unit in graph.units.values() for a in unit.assertions]

    out: list[AssertionResult] = []
    for assertion in assertions:
        reason = _skip_reason(assertion, results)
        if reason:
            out.append(AssertionResult(assertion, SKIPPED, detail=reason))
            continue
        try:
            out.append(_evaluate_assertion(warehouse, graph, assertion))
        except AssertionFailure as e:
            logger.info("Assertion failed: %s", e)
            out.append(AssertionResult(assertion, FAILED, detail=e.detail, failing_rows=e.failing_rows))
        except Exception as e:
            logger.warning("Assertion errored: %s (%s)", assertion.label, e)
            out.append(AssertionResult(assertion, FAILED, detail=f"Assertion error: {e}"))
    return out
