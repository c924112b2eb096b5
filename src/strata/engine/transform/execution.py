"""Plan execution: sequential and tiered parallel runners."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from rich.console import Console

from strata.engine.errors import MaterializationError

from .graph import ModelGraph
from .models import FAILED, INCREMENTAL, SKIPPED, SUCCEEDED, ExecutionPlan, UnitResult
from .planning import plan_tiers
from .strategy import select_materialization

if TYPE_CHECKING:
    from strata.engine.warehouse import Warehouse

console = Console()
logger = logging.getLogger("strata.transform")

CANCELLED_REASON = "run cancelled"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResultSink:
    """Single place where unit outcomes are recorded.

    Workers report through ``record`` so concurrent updates are serialized.
    """

    def __init__(self, graph: ModelGraph, quiet: bool = False) -> None:
        self._graph = graph
        self._quiet = quiet
        self._lock = threading.Lock()
        self._results: dict[str, UnitResult] = {}

    def record(self, result: UnitResult) -> None:
        with self._lock:
            self._results[result.name] = result
            self._report(result)

    def status(self, name: str) -> str | None:
        with self._lock:
            result = self._results.get(name)
            return result.status if result else None

    def ordered(self, order: tuple[str, ...]) -> dict[str, UnitResult]:
        with self._lock:
            return {name: self._results[name] for name in order if name in self._results}

    def _report(self, result: UnitResult) -> None:
        unit = self._graph.units[result.name]
        label = f"[bold]{result.name}[/bold] ({unit.materialized})"
        if result.status == SUCCEEDED:
            logger.info("Built %s via %s in %dms", unit.relation, result.action, result.duration_ms)
            if result.row_count is not None:
                suffix = f" ({result.row_count:,} rows, {result.duration_ms}ms)"
            else:
                suffix = f" ({result.duration_ms}ms)"
            line = f"  [green]done[/green]  {label}{suffix}"
        elif result.status == FAILED:
            logger.error("Failed to build %s: %s", unit.relation, result.error)
            line = f"  [red]fail[/red]  {label}: {result.error}"
        else:
            logger.info("Skipped %s: %s", unit.relation, result.error)
            line = f"  [dim]skip[/dim]  {label} [dim]({result.error})[/dim]"
        if not self._quiet:
            console.print(line)


class _Cancellation:
    def __init__(self, event: threading.Event | None, timeout: float | None) -> None:
        self.event = event or threading.Event()
        self.deadline = time.monotonic() + timeout if timeout else None

    def is_set(self) -> bool:
        if not self.event.is_set() and self.deadline is not None and time.monotonic() >= self.deadline:
            logger.warning("Run timed out; no further units will be dispatched")
            self.event.set()
        return self.event.is_set()


def execute_unit(
    warehouse: Warehouse,
    graph: ModelGraph,
    name: str,
    full_refresh: bool = False,
) -> UnitResult:
    """Materialize one unit and report the outcome. Never raises."""
    unit = graph.units[name]
    started = _now()
    start = time.perf_counter()
    action_kind = None
    try:
        watermark_column = unit.watermark_column if unit.materialized == INCREMENTAL else None
        state = warehouse.inspect(unit.relation, watermark_column)
        action = select_materialization(unit, graph.compiled[name], state, full_refresh=full_refresh)
        action_kind = action.kind
        logger.debug("Materializing %s with %s", unit.relation, action.kind)
        row_count = warehouse.execute(action)
    except MaterializationError as e:
        status, error, row_count = FAILED, e.message, e.row_count
    except Exception as e:
        logger.exception("Unexpected error while building %s", name)
        status, error, row_count = FAILED, str(e), None
    else:
        status, error = SUCCEEDED, None

    return UnitResult(
        name=name,
        status=status,
        started_at=started,
        finished_at=_now(),
        duration_ms=int((time.perf_counter() - start) * 1000),
        row_count=row_count,
        action=action_kind,
        error=error,
    )


def _skipped(name: str, reason: str) -> UnitResult:
    now = _now()
    return UnitResult(name=name, status=SKIPPED, started_at=now, finished_at=now, error=reason)


def _blocked_reason(graph: ModelGraph, sink: ResultSink, name: str) -> str | None:
    for dep in sorted(graph.dependencies[name], key=graph.declaration_index):
        status = sink.status(dep)
        if status is not None and status != SUCCEEDED:
            return f"upstream {status}: {dep}"
    return None


def execute_plan(
    warehouse: Warehouse,
    graph: ModelGraph,
    execution_plan: ExecutionPlan,
    *,
    workers: int = 1,
    full_refresh: bool = False,
    cancel_event: threading.Event | None = None,
    timeout: float | None = None,
    quiet: bool = False,
) -> dict[str, UnitResult]:
    """Run every unit of the plan and return their results in plan order.

    A failed unit does not stop the run: its transitive dependents are
    recorded as skipped and unrelated branches keep going. Nothing is retried.

    Args:
        warehouse: Handle the actions are submitted to.
        graph: The model graph the plan was computed from.
        execution_plan: Units to run, in dependency order.
        workers: Above 1, units of the same depth tier run concurrently, each
            on its own warehouse session.
        full_refresh: Rebuild incremental units from scratch.
        cancel_event: Set it to stop dispatching new units. Units already
            running finish on their own; the rest are recorded as skipped.
        timeout: Seconds after which the run cancels itself.
        quiet: Do not echo per-unit progress to the console.
    """
    sink = ResultSink(graph, quiet=quiet)
    cancel = _Cancellation(cancel_event, timeout)

    schemas = sorted({graph.units[name].schema for name in execution_plan})
    warehouse.ensure_schemas(schemas)

    if workers > 1:
        _run_parallel(warehouse, graph, execution_plan, sink, cancel, workers, full_refresh)
    else:
        _run_sequential(warehouse, graph, execution_plan, sink, cancel, full_refresh)

    return sink.ordered(execution_plan.order)


def _run_sequential(
    warehouse: Warehouse,
    graph: ModelGraph,
    execution_plan: ExecutionPlan,
    sink: ResultSink,
    cancel: _Cancellation,
    full_refresh: bool,
) -> None:
    for name in execution_plan:
        if cancel.is_set():
            sink.record(_skipped(name, CANCELLED_REASON))
            continue
        reason = _blocked_reason(graph, sink, name)
        if reason:
            sink.record(_skipped(name, reason))
            continue
        sink.record(execute_unit(warehouse, graph, name, full_refresh))


def _run_parallel(
    warehouse: Warehouse,
    graph: ModelGraph,
    execution_plan: ExecutionPlan,
    sink: ResultSink,
    cancel: _Cancellation,
    workers: int,
    full_refresh: bool,
) -> None:
    """Run tier by tier; units inside a tier share a bounded worker pool."""
    tiers = plan_tiers(graph, execution_plan)

    def _worker(name: str) -> UnitResult:
        # Queued work that has not started yet is dropped on cancellation
        if cancel.is_set():
            return _skipped(name, CANCELLED_REASON)
        with warehouse.session() as session:
            return execute_unit(session, graph, name, full_refresh)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        for tier_idx, tier in enumerate(tiers, 1):
            ready: list[str] = []
            for name in tier:
                if cancel.is_set():
                    sink.record(_skipped(name, CANCELLED_REASON))
                    continue
                reason = _blocked_reason(graph, sink, name)
                if reason:
                    sink.record(_skipped(name, reason))
                else:
                    ready.append(name)

            if not ready:
                continue
            logger.debug("Tier %d/%d: dispatching %d unit(s)", tier_idx, len(tiers), len(ready))
            futures = {executor.submit(_worker, name): name for name in ready}
            for future in as_completed(futures):
                sink.record(future.result())
