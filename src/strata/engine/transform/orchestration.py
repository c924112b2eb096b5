"""Pipeline orchestration: graph -> plan -> build -> test."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

from strata.engine.errors import PlanningError

from .discovery import discover_units
from .execution import execute_plan
from .graph import ModelGraph, build_graph
from .models import FAILED, PASSED, AssertionResult, RunSummary, TransformationUnit
from .planning import plan
from .quality import run_assertions

if TYPE_CHECKING:
    from strata.engine.warehouse import Warehouse

console = Console()
logger = logging.getLogger("strata.transform")


def load_graph(
    transform_dir: Path,
    layer_defaults: Mapping[str, Mapping[str, Any]] | None = None,
    known_sources: set[str] | None = None,
) -> ModelGraph:
    """Discover units on disk and build the model graph."""
    return build_graph(discover_units(transform_dir, layer_defaults, known_sources))


def _report_assertions(results: list[AssertionResult], quiet: bool) -> None:
    if quiet:
        return
    for ar in results:
        expr = ar.assertion.label
        if ar.status == PASSED:
            console.print(f"  [green]pass[/green]  assert {expr}")
        elif ar.status == FAILED:
            console.print(f"  [red]FAIL[/red]  assert {expr} ({ar.detail})")
        else:
            console.print(f"  [dim]skip[/dim]  assert {expr} [dim]({ar.detail})[/dim]")


def run_pipeline(
    warehouse: Warehouse,
    units: Iterable[TransformationUnit] | ModelGraph,
    targets: list[str] | None = None,
    *,
    workers: int = 1,
    full_refresh: bool = False,
    run_tests: bool = True,
    cancel_event: threading.Event | None = None,
    timeout: float | None = None,
    quiet: bool = False,
) -> RunSummary:
    """Run the full pipeline: build the graph, plan, materialize, then test.

    Args:
        warehouse: Warehouse handle; passed explicitly to every stage.
        units: Unit definitions in declaration order, or an already built graph.
        targets: Selectors for a selective build (None = everything).
        workers: Max concurrent units per tier (1 = sequential).
        full_refresh: Rebuild incremental units from scratch.
        run_tests: Evaluate the planned units' assertions after the build.
        cancel_event: Stops dispatching new units once set.
        timeout: Seconds after which the run cancels itself.
        quiet: Suppress console progress.

    Returns:
        RunSummary. Planning errors are reported in ``planning_error`` and no
        warehouse call is made in that case.
    """
    try:
        graph = units if isinstance(units, ModelGraph) else build_graph(units)
        execution_plan = plan(graph, targets)
    except PlanningError as e:
        logger.error("Planning failed: %s", e)
        return RunSummary(planning_error=e)

    summary = RunSummary(plan=execution_plan)
    if not execution_plan:
        return summary

    logger.info("Executing %d unit(s) with %d worker(s)", len(execution_plan), max(workers, 1))
    cancel_event = cancel_event or threading.Event()
    summary.results = execute_plan(
        warehouse,
        graph,
        execution_plan,
        workers=workers,
        full_refresh=full_refresh,
        cancel_event=cancel_event,
        timeout=timeout,
        quiet=quiet,
    )
    summary.cancelled = cancel_event.is_set()

    if run_tests:
        planned = [a for name in execution_plan for a in graph.units[name].assertions]
        if planned:
            summary.assertions = run_assertions(warehouse, graph, planned, summary.results)
            _report_assertions(summary.assertions, quiet)

    return summary


def run_tests_only(
    warehouse: Warehouse,
    units: Iterable[TransformationUnit] | ModelGraph,
    targets: list[str] | None = None,
    *,
    quiet: bool = False,
) -> RunSummary:
    """Evaluate assertions against whatever is currently in the warehouse.

    Only the selected units' own assertions are evaluated; their upstream units
    are not tested unless selected too.
    """
    try:
        graph = units if isinstance(units, ModelGraph) else build_graph(units)
        execution_plan = plan(graph, targets)
    except PlanningError as e:
        logger.error("Planning failed: %s", e)
        return RunSummary(planning_error=e)

    if targets and "all" not in targets:
        direct = _directly_selected(graph, targets)
        chosen = [n for n in execution_plan if n in direct]
    else:
        chosen = list(execution_plan)

    summary = RunSummary(plan=execution_plan)
    selected = [a for name in chosen for a in graph.units[name].assertions]
    summary.assertions = run_assertions(warehouse, graph, selected)
    _report_assertions(summary.assertions, quiet)
    return summary


def _directly_selected(graph: ModelGraph, targets: list[str]) -> set[str]:
    # Selected units without the upstream closure the build plan adds
    names: set[str] = set()
    for target in targets:
        if target.startswith("layer:"):
            names.update(graph.units_in_layer(target.split(":", 1)[1]))
        elif target.endswith("+"):
            base = target.strip("+")
            names.add(base)
            names.update(graph.downstream([base]))
        else:
            names.add(target.strip("+"))
    return names
