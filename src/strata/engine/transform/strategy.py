"""Materialization strategy selection.

A pure decision over a unit's declared configuration and the observed state of
its target relation. Nothing here touches the warehouse.
"""

from __future__ import annotations

from strata.engine.utils import quote_identifier

from .models import (
    CREATE_OR_REPLACE_TABLE,
    CREATE_VIEW,
    INCREMENTAL,
    MERGE_INCREMENTAL,
    TABLE,
    VIEW,
    MaterializationAction,
    TargetState,
    TransformationUnit,
)


def select_materialization(
    unit: TransformationUnit,
    query: str,
    state: TargetState,
    full_refresh: bool = False,
) -> MaterializationAction:
    """Choose how to materialize ``unit`` given what the warehouse holds.

    view          -> CREATE_VIEW
    table         -> CREATE_OR_REPLACE_TABLE
    incremental   -> MERGE_INCREMENTAL on rows newer than the watermark, or
                     CREATE_OR_REPLACE_TABLE when the target does not exist yet,
                     has no watermark, or a full refresh was requested.
    """
    if unit.materialized == VIEW:
        return MaterializationAction(
            kind=CREATE_VIEW,
            unit=unit.name,
            relation=unit.relation,
            query=query,
            drop_existing=TABLE if state.exists and state.kind == TABLE else None,
        )

    drop_view = VIEW if state.exists and state.kind == VIEW else None

    if unit.materialized == TABLE:
        return MaterializationAction(
            kind=CREATE_OR_REPLACE_TABLE,
            unit=unit.name,
            relation=unit.relation,
            query=query,
            drop_existing=drop_view,
        )

    if unit.materialized != INCREMENTAL:
        raise ValueError(f"Unknown materialization: {unit.materialized}")

    initialize = (
        full_refresh
        or not state.exists
        or state.kind == VIEW
        or state.watermark is None
        or not unit.watermark_column
    )
    if initialize:
        return MaterializationAction(
            kind=CREATE_OR_REPLACE_TABLE,
            unit=unit.name,
            relation=unit.relation,
            query=query,
            unique_key=unit.unique_key,
            drop_existing=drop_view,
        )

    return MaterializationAction(
        kind=MERGE_INCREMENTAL,
        unit=unit.name,
        relation=unit.relation,
        query=query,
        predicate=f"{quote_identifier(unit.watermark_column)} > ?",
        params=(state.watermark,),
        unique_key=unit.unique_key,
        watermark_column=unit.watermark_column,
    )
