"""Model graph: units keyed by name plus the derived dependency structure."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from strata.engine.errors import DuplicateUnitError, InvalidConfigError, UnknownReferenceError
from strata.engine.sql_analysis import extract_relations, render_template

from .models import TransformationUnit

logger = logging.getLogger("strata.transform")


@dataclass(frozen=True)
class ModelGraph:
    """Units in declaration order with resolved dependencies and compiled SQL.

    ``dependencies[name]`` are the units ``name`` reads from;
    ``dependents[name]`` are the units that read from ``name``.
    """

    units: dict[str, TransformationUnit]
    dependencies: dict[str, frozenset[str]]
    dependents: dict[str, frozenset[str]]
    compiled: dict[str, str]
    _order: dict[str, int] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.units)

    def __contains__(self, name: object) -> bool:
        return name in self.units

    def declaration_index(self, name: str) -> int:
        return self._order[name]

    def upstream(self, names: Iterable[str]) -> set[str]:
        """All transitive dependencies of ``names`` (excluding the names themselves)."""
        return self._walk(names, self.dependencies)

    def downstream(self, names: str | Iterable[str]) -> set[str]:
        """All transitive dependents of ``names`` (excluding the names themselves)."""
        if isinstance(names, str):
            names = [names]
        return self._walk(names, self.dependents)

    def _walk(self, names: Iterable[str], edges: dict[str, frozenset[str]]) -> set[str]:
        start = list(names)
        seen: set[str] = set()
        stack = list(start)
        while stack:
            current = stack.pop()
            for nxt in edges.get(current, ()):
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen - set(start)

    def units_in_layer(self, layer: str) -> list[str]:
        return [name for name, unit in self.units.items() if unit.layer == layer]


def build_graph(units: Iterable[TransformationUnit]) -> ModelGraph:
    """Register unit definitions and resolve their references.

    References are resolved here, before anything runs, so that an unknown
    name is a planning error rather than a warehouse error.

    Raises:
        DuplicateUnitError: two definitions share a name.
        UnknownReferenceError: a ``ref``/``depends_on`` or a relationships
            assertion names an undeclared unit.
        InvalidConfigError: two units would materialize into the same relation.
    """
    unit_map: dict[str, TransformationUnit] = {}
    # Keyed lowercase: the warehouse folds identifier case
    relations: dict[str, str] = {}
    for unit in units:
        if unit.name in unit_map:
            raise DuplicateUnitError(unit.name, [unit_map[unit.name].path, unit.path])
        key = unit.relation.lower()
        if key in relations:
            raise InvalidConfigError(
                unit.name,
                f"relation {unit.relation} is already produced by unit '{relations[key]}'",
            )
        unit_map[unit.name] = unit
        relations[key] = unit.name

    dependencies: dict[str, frozenset[str]] = {}
    dependents: dict[str, set[str]] = {name: set() for name in unit_map}
    for unit in unit_map.values():
        for ref in unit.refs:
            if ref not in unit_map:
                raise UnknownReferenceError(unit.name, ref)
            dependents[ref].add(unit.name)
        for assertion in unit.assertions:
            if assertion.to_unit and assertion.to_unit not in unit_map:
                raise UnknownReferenceError(unit.name, assertion.to_unit)
        dependencies[unit.name] = frozenset(unit.refs)

    compiled: dict[str, str] = {}
    for unit in unit_map.values():
        sql = render_template(unit.sql_template, lambda ref: unit_map[ref].relation)
        compiled[unit.name] = sql
        _warn_on_hardcoded_relations(unit, sql, relations)

    return ModelGraph(
        units=unit_map,
        dependencies=dependencies,
        dependents={k: frozenset(v) for k, v in dependents.items()},
        compiled=compiled,
        _order={name: i for i, name in enumerate(unit_map)},
    )


def _warn_on_hardcoded_relations(
    unit: TransformationUnit,
    sql: str,
    relations: dict[str, str],
) -> None:
    # Declared refs are authoritative; a hardcoded relation is not an edge.
    declared = set(unit.refs)
    for fqn in extract_relations(sql, exclude=unit.relation.lower()):
        owner = relations.get(fqn)
        if owner and owner not in declared:
            logger.warning(
                "Unit %s reads %s directly; use {{ ref('%s') }} so it is ordered after %s",
                unit.name, fqn, owner, owner,
            )
