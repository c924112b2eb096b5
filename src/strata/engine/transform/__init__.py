"""Layered SQL transformation engine.

Discovers SQL units, builds the model graph, plans a dependency-ordered run,
materializes each unit through a warehouse handle, and evaluates assertions.

    from strata.engine.transform import load_graph, run_pipeline
"""

from __future__ import annotations

# Data models
from .models import (
    Assertion,
    AssertionResult,
    ExecutionPlan,
    MaterializationAction,
    RunSummary,
    TargetState,
    TransformationUnit,
    UnitResult,
)

# Discovery and graph
from .discovery import discover_units, load_unit
from .graph import ModelGraph, build_graph

# Planning
from .planning import find_cycle, plan, plan_tiers, select_units

# Materialization and execution
from .strategy import select_materialization
from .execution import ResultSink, execute_plan, execute_unit

# Data quality
from .quality import parse_assertion, run_assertions

# Orchestration
from .orchestration import load_graph, run_pipeline, run_tests_only

__all__ = [
    # Models
    "Assertion",
    "AssertionResult",
    "ExecutionPlan",
    "MaterializationAction",
    "RunSummary",
    "TargetState",
    "TransformationUnit",
    "UnitResult",
    # Graph
    "ModelGraph",
    "build_graph",
    "discover_units",
    "load_unit",
    # Planning
    "find_cycle",
    "plan",
    "plan_tiers",
    "select_units",
    # Execution
    "ResultSink",
    "execute_plan",
    "execute_unit",
    "select_materialization",
    # Quality
    "parse_assertion",
    "run_assertions",
    # Orchestration
    "load_graph",
    "run_pipeline",
    "run_tests_only",
]
