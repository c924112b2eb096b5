"""CSV seed loader.

Loads ``seeds/*.csv`` into tables of the raw schema so staging units can read
them through ``{{ source('raw', '<file stem>') }}``. A seed is reloaded only
when its content hash changes, unless forced.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path

import duckdb
from rich.console import Console

from strata.engine.database import INTERNAL_SCHEMA, ensure_meta_table, log_run
from strata.engine.utils import validate_identifier

console = Console()
logger = logging.getLogger("strata.seeds")

RAW_SCHEMA = "raw"

LOADED = "loaded"
UNCHANGED = "unchanged"
ERROR = "error"


@dataclass
class SeedResult:
    relation: str
    status: str
    row_count: int = 0
    duration_ms: int = 0
    error: str | None = None


def _hash_file(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()[:16]


def _stored_hash(conn: duckdb.DuckDBPyConnection, relation: str) -> str | None:
    row = conn.execute(
        f"SELECT content_hash FROM {INTERNAL_SCHEMA}.seed_state WHERE seed_path = ?",
        [relation],
    ).fetchone()
    return row[0] if row else None


def _save_state(conn: duckdb.DuckDBPyConnection, relation: str, content_hash: str, row_count: int) -> None:
    conn.execute(
        f"""
        INSERT OR REPLACE INTO {INTERNAL_SCHEMA}.seed_state
            (seed_path, content_hash, row_count, loaded_at)
        VALUES (?, ?, ?, current_timestamp)
        """,
        [relation, content_hash, row_count],
    )


def discover_seeds(seeds_dir: Path) -> list[Path]:
    if not seeds_dir.exists():
        return []
    return sorted(seeds_dir.glob("*.csv"))


def load_seed(
    conn: duckdb.DuckDBPyConnection,
    csv_path: Path,
    schema: str = RAW_SCHEMA,
    force: bool = False,
) -> SeedResult:
    """Load one CSV file into ``<schema>.<file stem>``.

    An empty file produces an empty single-column table so downstream
    references still resolve.
    """
    name = csv_path.stem
    validate_identifier(name, f"seed name for {csv_path.name}")
    relation = f"{schema}.{name}"
    content_hash = _hash_file(csv_path)

    if not force and _stored_hash(conn, relation) == content_hash:
        return SeedResult(relation, UNCHANGED)

    start = time.perf_counter()
    conn.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")
    if not csv_path.read_text(errors="replace").strip():
        conn.execute(f"CREATE OR REPLACE TABLE {relation} (empty_file BOOLEAN)")
        row_count = 0
    else:
        csv_str = str(csv_path).replace("'", "''")
        conn.execute(
            f"CREATE OR REPLACE TABLE {relation} AS "
            f"SELECT * FROM read_csv_auto('{csv_str}', header=true)"
        )
        row_count = conn.execute(f"SELECT count(*) FROM {relation}").fetchone()[0]

    duration_ms = int((time.perf_counter() - start) * 1000)
    _save_state(conn, relation, content_hash, row_count)
    log_run(conn, "seed", relation, "success", duration_ms, row_count)
    logger.info("Loaded %s (%d rows)", relation, row_count)
    return SeedResult(relation, LOADED, row_count, duration_ms)


def run_seeds(
    conn: duckdb.DuckDBPyConnection,
    seeds_dir: Path,
    schema: str = RAW_SCHEMA,
    force: bool = False,
) -> list[SeedResult]:
    """Load every CSV file in ``seeds_dir``. A bad file does not stop the rest."""
    ensure_meta_table(conn)
    files = discover_seeds(seeds_dir)
    if not files:
        console.print(f"[yellow]No CSV files found in {seeds_dir}[/yellow]")
        return []

    results: list[SeedResult] = []
    for csv_path in files:
        label = f"[bold]{schema}.{csv_path.stem}[/bold]"
        try:
            result = load_seed(conn, csv_path, schema, force)
        except (duckdb.Error, ValueError, OSError) as e:
            logger.error("Failed to load seed %s: %s", csv_path, e)
            console.print(f"  [red]fail[/red]  {label}: {e}")
            log_run(conn, "seed", f"{schema}.{csv_path.stem}", "error", error=str(e))
            results.append(SeedResult(f"{schema}.{csv_path.stem}", ERROR, error=str(e)))
            continue

        if result.status == UNCHANGED:
            console.print(f"  [dim]skip[/dim]  {label} [dim](unchanged)[/dim]")
        else:
            console.print(f"  [green]done[/green]  {label} ({result.row_count:,} rows, {result.duration_ms}ms)")
        results.append(result)
    return results
