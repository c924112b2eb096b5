"""Shared fixtures: an in-memory warehouse and a unit factory."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

import pytest

from strata.engine.errors import MaterializationError
from strata.engine.transform.models import (
    CREATE_VIEW,
    TABLE,
    VIEW,
    TargetState,
    TransformationUnit,
)


class FakeWarehouse:
    """Records materializations instead of running them.

    Units named in ``failing`` raise MaterializationError; ``delays`` maps a
    unit to seconds spent "building" it.
    """

    def __init__(self, failing=(), delays=None, state=None):
        self.failing = set(failing)
        self.delays = dict(delays or {})
        self.state = dict(state or {})
        self.executed = []
        self.schemas = []
        self.sessions = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def ensure_schemas(self, schemas):
        self.schemas.extend(schemas)

    def inspect(self, relation, watermark_column=None):
        return self.state.get(relation, TargetState(exists=False))

    def execute(self, action):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delays.get(action.unit, 0))
            if action.unit in self.failing:
                raise MaterializationError(action.unit, f"boom in {action.unit}")
            with self._lock:
                self.executed.append(action)
                kind = VIEW if action.kind == CREATE_VIEW else TABLE
                self.state[action.relation] = TargetState(exists=True, kind=kind)
            return None if kind == VIEW else 1
        finally:
            with self._lock:
                self.active -= 1

    def query(self, sql, params=()):
        return [(0,)]

    def columns(self, relation):
        return []

    @contextmanager
    def session(self):
        with self._lock:
            self.sessions += 1
        yield self

    @property
    def executed_units(self):
        return [a.unit for a in self.executed]


def _make_unit(name, refs=(), layer="staging", materialized="view", **kwargs):
    kwargs.setdefault("schema", layer)
    return TransformationUnit(
        name=name,
        sql_template=kwargs.pop("sql_template", f"SELECT '{name}' AS unit"),
        materialized=materialized,
        layer=layer,
        refs=tuple(refs),
        **kwargs,
    )


@pytest.fixture
def fake_warehouse():
    return FakeWarehouse()


@pytest.fixture
def fake_warehouse_cls():
    return FakeWarehouse


@pytest.fixture
def make_unit():
    return _make_unit


@pytest.fixture
def movies_units():
    """The three-layer movies chain: src_movies -> dim_movies -> fct_activity."""
    return [
        _make_unit("src_movies", layer="staging"),
        _make_unit("dim_movies", refs=["src_movies"], layer="dimension", materialized="table"),
        _make_unit(
            "fct_activity",
            refs=["dim_movies"],
            layer="fact",
            materialized="incremental",
            watermark_column="event_ts",
            unique_key=("activity_id",),
        ),
    ]
