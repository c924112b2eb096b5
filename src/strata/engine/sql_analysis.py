"""SQL header parsing, reference templating and relation extraction.

Unit files carry their configuration in ``--`` directive comments
(``-- config:``, ``-- description:``, ``-- depends_on:``, ``-- col:``,
``-- assert:``) and refer to other units through ``{{ ref('name') }}`` and to
external relations through ``{{ source('schema', 'table') }}``. References are
collected here as structured lists so the graph builder can resolve them
before anything runs.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator

import sqlglot
from sqlglot import exp

logger = logging.getLogger("strata.transform")

# Schemas that are never real upstream dependencies
SKIP_SCHEMAS = frozenset({"information_schema", "_strata_internal", "pg_catalog", "sys"})

DIRECTIVES = ("config", "depends_on", "description", "col", "assert")
_DIRECTIVE_PATTERN = re.compile(
    r"^\s*--\s*(" + "|".join(DIRECTIVES) + r"):\s*(.*?)\s*$"
)
_COL_DOC_PATTERN = re.compile(r"^(\w+):\s*(.+)$")

REF_PATTERN = re.compile(r"\{\{\s*ref\(\s*['\"]([^'\"]+)['\"]\s*\)\s*\}\}")
SOURCE_PATTERN = re.compile(
    r"\{\{\s*source\(\s*['\"]([^'\"]+)['\"]\s*,\s*['\"]([^'\"]+)['\"]\s*\)\s*\}\}"
)
_ANY_TEMPLATE_PATTERN = re.compile(r"\{\{.*?\}\}", re.DOTALL)


def directives(sql: str, kind: str | None = None) -> Iterator[tuple[str, str]]:
    """Yield ``(kind, value)`` for every directive comment, in file order."""
    for line in sql.splitlines():
        match = _DIRECTIVE_PATTERN.match(line)
        if match and (kind is None or match.group(1) == kind):
            yield match.group(1), match.group(2)


def _split_top_level(raw: str) -> list[str]:
    # unique_key=(a, b) keeps its comma-separated columns together
    parts: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(raw):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(raw[start:i].strip())
            start = i + 1
    parts.append(raw[start:].strip())
    return [p for p in parts if p]


def parse_config(sql: str) -> dict[str, str]:
    """Parse ``-- config: key=value, key=value`` lines.

    Repeated config lines are merged, later keys winning. A bare key maps to
    an empty string.
    """
    config: dict[str, str] = {}
    for _, value in directives(sql, "config"):
        for pair in _split_top_level(value):
            key, _, val = pair.partition("=")
            config[key.strip()] = val.strip()
    return config


def parse_depends(sql: str) -> list[str]:
    """Unit names listed in ``-- depends_on:`` lines."""
    return [dep for _, value in directives(sql, "depends_on") for dep in _split_top_level(value)]


def parse_assertions(sql: str) -> list[str]:
    return [value for _, value in directives(sql, "assert") if value]


def parse_description(sql: str) -> str:
    """The first ``-- description:`` line, or an empty string."""
    return next((value for _, value in directives(sql, "description")), "")


def parse_column_docs(sql: str) -> dict[str, str]:
    """Map column name to description from ``-- col: name: text`` lines."""
    docs: dict[str, str] = {}
    for _, value in directives(sql, "col"):
        match = _COL_DOC_PATTERN.match(value)
        if match:
            docs[match.group(1)] = match.group(2).strip()
    return docs


def strip_config_comments(sql: str) -> str:
    """Drop the directive lines and leading blank lines; ordinary comments stay."""
    lines = [line for line in sql.splitlines() if not _DIRECTIVE_PATTERN.match(line)]
    while lines and not lines[0].strip():
        lines.pop(0)
    return "\n".join(lines).rstrip()


# --- Template references ---


def extract_refs(template: str) -> list[str]:
    """Return unit names used in ``{{ ref('...') }}`` calls, first-seen order."""
    seen: list[str] = []
    for match in REF_PATTERN.finditer(template):
        name = match.group(1).strip()
        if name not in seen:
            seen.append(name)
    return seen


def extract_sources(template: str) -> list[str]:
    """Return ``schema.table`` names used in ``{{ source(...) }}`` calls."""
    seen: list[str] = []
    for match in SOURCE_PATTERN.finditer(template):
        fqn = f"{match.group(1).strip()}.{match.group(2).strip()}"
        if fqn not in seen:
            seen.append(fqn)
    return seen


def find_unrecognized_templates(template: str) -> list[str]:
    """Return ``{{ ... }}`` blocks that are neither ``ref`` nor ``source`` calls."""
    stripped = SOURCE_PATTERN.sub("", REF_PATTERN.sub("", template))
    return [m.group(0) for m in _ANY_TEMPLATE_PATTERN.finditer(stripped)]


def render_template(template: str, resolve_ref: Callable[[str], str]) -> str:
    """Replace ``ref`` and ``source`` calls with concrete relation names."""
    rendered = REF_PATTERN.sub(lambda m: resolve_ref(m.group(1).strip()), template)
    return SOURCE_PATTERN.sub(
        lambda m: f"{m.group(1).strip()}.{m.group(2).strip()}", rendered
    )


# --- Relations read by a compiled query ---


def extract_relations(sql: str, *, exclude: str | None = None) -> list[str]:
    """Schema-qualified relations a query reads, sorted and lowercased.

    CTE names, internal schemas and ``exclude`` (usually the unit's own
    relation) are left out. Used only for diagnostics, so SQL that sqlglot
    cannot tokenize or parse yields an empty list.
    """
    try:
        tree = sqlglot.parse_one(sql, read="duckdb")
    except sqlglot.errors.SqlglotError as e:
        logger.debug("Could not parse SQL for relation extraction: %s", e)
        return []

    local = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
    found = set()
    for table in tree.find_all(exp.Table):
        schema, name = table.db.lower(), table.name.lower()
        if not schema or schema in SKIP_SCHEMAS or schema in local or name in local:
            continue
        found.add(f"{schema}.{name}")
    found.discard(exclude or "")
    return sorted(found)
