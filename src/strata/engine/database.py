"""DuckDB connection management."""

from __future__ import annotations

from pathlib import Path

import duckdb

INTERNAL_SCHEMA = "_strata_internal"


def connect(db_path: str | Path, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection to the given path."""
    db_path = str(db_path)
    conn = duckdb.connect(db_path, read_only=read_only)
    if not read_only:
        ensure_meta_table(conn)
    return conn


def ensure_meta_table(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the internal tables for the run log and seed change tracking."""
    conn.execute(f"CREATE SCHEMA IF NOT EXISTS {INTERNAL_SCHEMA}")
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {INTERNAL_SCHEMA}.run_log (
            run_id       VARCHAR DEFAULT gen_random_uuid()::VARCHAR,
            run_type     VARCHAR NOT NULL,
            target       VARCHAR NOT NULL,
            status       VARCHAR NOT NULL,
            action       VARCHAR,
            logged_at    TIMESTAMP DEFAULT current_timestamp,
            duration_ms  BIGINT,
            rows_affected BIGINT DEFAULT 0,
            error        VARCHAR
        )
    """)
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {INTERNAL_SCHEMA}.seed_state (
            seed_path    VARCHAR PRIMARY KEY,
            content_hash VARCHAR NOT NULL,
            row_count    BIGINT DEFAULT 0,
            loaded_at    TIMESTAMP DEFAULT current_timestamp
        )
    """)


def log_run(
    conn: duckdb.DuckDBPyConnection,
    run_type: str,
    target: str,
    status: str,
    duration_ms: int = 0,
    rows_affected: int | None = 0,
    error: str | None = None,
    action: str | None = None,
) -> None:
    """Insert a run log entry."""
    conn.execute(
        f"""
        INSERT INTO {INTERNAL_SCHEMA}.run_log
            (run_type, target, status, action, duration_ms, rows_affected, error)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [run_type, target, status, action, duration_ms, rows_affected or 0, error],
    )
