"""Warehouse execution interface.

The engine and the test runner only talk to a ``Warehouse``. Connection
lifecycle and credentials stay with whoever constructs the handle.
``DuckDBWarehouse`` is the reference adapter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

import duckdb

from strata.engine.database import INTERNAL_SCHEMA, connect, log_run
from strata.engine.errors import MaterializationError
from strata.engine.utils import quote_identifier
from strata.engine.transform.models import (
    CREATE_OR_REPLACE_TABLE,
    CREATE_VIEW,
    MERGE_INCREMENTAL,
    TABLE,
    VIEW,
    MaterializationAction,
    TargetState,
)

logger = logging.getLogger("strata.warehouse")


class Warehouse(Protocol):
    def ensure_schemas(self, schemas: Iterable[str]) -> None:
        """Create target schemas before any unit is dispatched."""

    def inspect(self, relation: str, watermark_column: str | None = None) -> TargetState:
        """Report whether ``relation`` exists, its kind, and its watermark."""

    def execute(self, action: MaterializationAction) -> int | None:
        """Apply one materialization. Returns a row count when known.

        Raises MaterializationError on failure.
        """

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Run a read-only verification query."""

    def columns(self, relation: str) -> list[tuple[str, str]]:
        """Return ``(column_name, data_type)`` pairs, empty when missing."""

    def session(self) -> AbstractContextManager[Warehouse]:
        """A handle for one worker thread."""


def _split(relation: str) -> tuple[str, str]:
    schema, _, name = relation.partition(".")
    return schema, name


class DuckDBWarehouse:
    """Warehouse adapter over a DuckDB connection."""

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        log_runs: bool = True,
        _schemas: set[str] | None = None,
    ) -> None:
        self.conn = conn
        self.log_runs = log_runs
        self._schemas = _schemas if _schemas is not None else set()

    @classmethod
    def open(cls, db_path: str | Path, read_only: bool = False) -> DuckDBWarehouse:
        return cls(connect(db_path, read_only=read_only), log_runs=not read_only)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> DuckDBWarehouse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @contextmanager
    def session(self) -> Iterator[DuckDBWarehouse]:
        cursor = self.conn.cursor()
        try:
            yield DuckDBWarehouse(cursor, log_runs=self.log_runs, _schemas=self._schemas)
        finally:
            cursor.close()

    # --- state ---

    def ensure_schemas(self, schemas: Iterable[str]) -> None:
        for schema in schemas:
            if schema not in self._schemas:
                self.conn.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")
                self._schemas.add(schema)

    def inspect(self, relation: str, watermark_column: str | None = None) -> TargetState:
        schema, name = _split(relation)
        row = self.conn.execute(
            "SELECT table_type FROM information_schema.tables WHERE table_schema = ? AND table_name = ?",
            [schema, name],
        ).fetchone()
        if row is None:
            return TargetState(exists=False)

        kind = VIEW if row[0] == "VIEW" else TABLE
        watermark = None
        if watermark_column and kind == TABLE:
            try:
                watermark = self.conn.execute(
                    f"SELECT MAX({quote_identifier(watermark_column)}) FROM {relation}"
                ).fetchone()[0]
            except duckdb.Error as e:
                raise MaterializationError(name, f"cannot read watermark {watermark_column}: {e}") from e
        return TargetState(exists=True, kind=kind, watermark=watermark)

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        return self.conn.execute(sql, list(params)).fetchall()

    def columns(self, relation: str) -> list[tuple[str, str]]:
        schema, name = _split(relation)
        return [
            (r[0], r[1])
            for r in self.conn.execute(
                "SELECT column_name, data_type FROM information_schema.columns "
                "WHERE table_schema = ? AND table_name = ? ORDER BY ordinal_position",
                [schema, name],
            ).fetchall()
        ]

    # --- materialization ---

    def execute(self, action: MaterializationAction) -> int | None:
        start = time.perf_counter()
        try:
            self.ensure_schemas([action.schema])
            if action.drop_existing:
                kind = "VIEW" if action.drop_existing == VIEW else "TABLE"
                self.conn.execute(f"DROP {kind} IF EXISTS {action.relation}")

            if action.kind == CREATE_VIEW:
                self.conn.execute(f"CREATE OR REPLACE VIEW {action.relation} AS\n{action.query}")
                row_count = None
            elif action.kind == CREATE_OR_REPLACE_TABLE:
                self.conn.execute(f"CREATE OR REPLACE TABLE {action.relation} AS\n{action.query}")
                row_count = self._count(action.relation)
            elif action.kind == MERGE_INCREMENTAL:
                row_count = self._merge(action)
            else:
                raise ValueError(f"Unknown materialization action: {action.kind}")
        except (duckdb.Error, ValueError) as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            self._log(action, "error", duration_ms, error=str(e))
            raise MaterializationError(action.unit, str(e)) from e

        duration_ms = int((time.perf_counter() - start) * 1000)
        self._log(action, "success", duration_ms, row_count)
        return row_count

    def _count(self, relation: str) -> int:
        result = self.conn.execute(f"SELECT count(*) FROM {relation}").fetchone()
        return result[0] if result else 0

    def _describe(self, relation: str) -> list[tuple[str, str]]:
        return [(r[0], r[1]) for r in self.conn.execute(f"DESCRIBE {relation}").fetchall()]

    def _merge(self, action: MaterializationAction) -> int:
        """Merge rows newer than the watermark into an existing table.

        New rows are staged in a temp table first. Columns that appear in the
        query but not in the target are added to the target. With a unique key,
        the batch is first reduced to one row per key (the latest by watermark),
        then matching rows are updated and the rest inserted; without one, rows
        are appended.
        """
        _, name = _split(action.relation)
        staging = f"_strata_staging_{name}"
        source = f"SELECT * FROM (\n{action.query}\n) AS src"
        keys = list(action.unique_key)

        try:
            self.conn.execute(f"CREATE OR REPLACE TEMP TABLE {staging} AS {source} LIMIT 0")
            where = f" WHERE {action.predicate}" if action.predicate else ""
            latest = ""
            if keys:
                partition = ", ".join(quote_identifier(k) for k in keys)
                order = (
                    f" ORDER BY {quote_identifier(action.watermark_column)} DESC"
                    if action.watermark_column
                    else ""
                )
                latest = f" QUALIFY row_number() OVER (PARTITION BY {partition}{order}) = 1"
            self.conn.execute(f"INSERT INTO {staging} {source}{where}{latest}", list(action.params))

            target_cols = {c for c, _ in self._describe(action.relation)}
            staging_cols = self._describe(staging)
            for col_name, col_type in staging_cols:
                if col_name not in target_cols:
                    logger.info("Adding column %s to %s", col_name, action.relation)
                    self.conn.execute(
                        f"ALTER TABLE {action.relation} ADD COLUMN {quote_identifier(col_name)} {col_type}"
                    )

            col_names = [c for c, _ in staging_cols]
            insert_cols = ", ".join(quote_identifier(c) for c in col_names)

            if keys:
                non_key_cols = [c for c in col_names if c not in keys]
                join_cond = " AND ".join(
                    f"target.{quote_identifier(k)} = staging.{quote_identifier(k)}" for k in keys
                )
                if non_key_cols:
                    set_clause = ", ".join(
                        f"{quote_identifier(c)} = staging.{quote_identifier(c)}" for c in non_key_cols
                    )
                    self.conn.execute(
                        f"UPDATE {action.relation} AS target SET {set_clause} "
                        f"FROM {staging} AS staging WHERE {join_cond}"
                    )
                self.conn.execute(
                    f"INSERT INTO {action.relation} ({insert_cols}) "
                    f"SELECT {insert_cols} FROM {staging} AS staging "
                    f"WHERE NOT EXISTS (SELECT 1 FROM {action.relation} AS target WHERE {join_cond})"
                )
            else:
                self.conn.execute(
                    f"INSERT INTO {action.relation} ({insert_cols}) SELECT {insert_cols} FROM {staging}"
                )
        finally:
            self.conn.execute(f"DROP TABLE IF EXISTS {staging}")

        return self._count(action.relation)

    def _log(
        self,
        action: MaterializationAction,
        status: str,
        duration_ms: int,
        row_count: int | None = None,
        error: str | None = None,
    ) -> None:
        if not self.log_runs:
            return
        try:
            log_run(self.conn, "transform", action.relation, status, duration_ms, row_count, error, action.kind)
        except duckdb.Error as e:
            logger.debug("Failed to write %s.run_log: %s", INTERNAL_SCHEMA, e)
