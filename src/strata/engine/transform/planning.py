"""Execution planning: topological order, selective builds, and parallel tiers."""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from strata.engine.errors import CyclicDependencyError, UnknownReferenceError

from .graph import ModelGraph
from .models import LAYERS, ExecutionPlan


def plan(graph: ModelGraph, targets: Iterable[str] | None = None) -> ExecutionPlan:
    """Compute the execution order for the graph, or for a selection of it.

    Kahn's algorithm: repeatedly take the ready unit (no unresolved
    dependencies) that was declared earliest. The whole graph is always
    validated, so a cycle anywhere fails planning even for a selective build.

    Args:
        graph: The model graph.
        targets: Optional selectors (see ``select_units``). The plan then holds
            exactly the selected units and their transitive dependencies.

    Raises:
        CyclicDependencyError: some units can never become ready.
        UnknownReferenceError: a selector names an unknown unit or layer.
    """
    order = _toposort(graph)
    targets = tuple(targets or ())
    if not targets or targets == ("all",):
        return ExecutionPlan(order=tuple(order))

    wanted = select_units(graph, targets)
    return ExecutionPlan(
        order=tuple(name for name in order if name in wanted),
        targets=targets,
    )


def _toposort(graph: ModelGraph) -> list[str]:
    remaining = {name: len(deps) for name, deps in graph.dependencies.items()}
    ready = [
        (graph.declaration_index(name), name)
        for name, count in remaining.items()
        if count == 0
    ]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for child in graph.dependents[name]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, (graph.declaration_index(child), child))

    if len(order) != len(graph.units):
        scheduled = set(order)
        stuck = [name for name in graph.units if name not in scheduled]
        raise CyclicDependencyError(find_cycle(graph, stuck), stuck)
    return order


def find_cycle(graph: ModelGraph, candidates: Iterable[str]) -> list[str]:
    """Return the members of one dependency cycle among ``candidates``.

    Every unit left over by Kahn's algorithm still has an unscheduled
    dependency, so following those dependencies must eventually revisit a unit.
    """
    pool = set(candidates)
    if not pool:
        return []
    start = min(pool, key=graph.declaration_index)
    path: list[str] = []
    position: dict[str, int] = {}
    current = start
    while current not in position:
        position[current] = len(path)
        path.append(current)
        pending = [d for d in graph.dependencies[current] if d in pool]
        current = min(pending, key=graph.declaration_index)
    return path[position[current]:]


def select_units(graph: ModelGraph, selectors: Iterable[str]) -> set[str]:
    """Resolve selectors to the set of units a selective build must run.

    Selector forms:
        name          the unit itself
        name+         the unit and everything downstream of it
        +name         same as ``name`` (upstream is always included)
        layer:fact    every unit in a layer

    The result always includes the transitive dependencies of what was
    selected.
    """
    selected: set[str] = set()
    for raw in selectors:
        selector = raw.strip()
        if not selector:
            continue
        if selector.startswith("layer:"):
            layer = selector.split(":", 1)[1]
            if layer not in LAYERS:
                raise UnknownReferenceError(None, selector)
            selected.update(graph.units_in_layer(layer))
            continue

        with_downstream = selector.endswith("+")
        name = selector.strip("+")
        if name not in graph.units:
            raise UnknownReferenceError(None, name)
        selected.add(name)
        if with_downstream:
            selected.update(graph.downstream(name))

    return selected | graph.upstream(selected)


def plan_tiers(graph: ModelGraph, execution_plan: ExecutionPlan) -> list[list[str]]:
    """Group planned units by depth.

    A unit's depth is the length of its longest dependency chain inside the
    plan, so units sharing a tier never depend on each other and may run
    concurrently. Within a tier, plan order is kept.
    """
    depth: dict[str, int] = {}
    for name in execution_plan:
        deps = [d for d in graph.dependencies[name] if d in depth]
        depth[name] = 1 + max(depth[d] for d in deps) if deps else 0

    tiers: list[list[str]] = []
    for name in execution_plan:
        level = depth[name]
        while len(tiers) <= level:
            tiers.append([])
        tiers[level].append(name)
    return tiers
