"""Shared utility functions for the strata engine layer."""

from __future__ import annotations

import re

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(value: str, label: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Only allows alphanumeric characters and underscores, starting with a letter
    or underscore. Raises ValueError if the identifier is unsafe.

    Unit names, schemas, key columns and watermark columns all pass through
    here before they are interpolated into DDL.
    """
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"Invalid {label}: {value!r} (must match [A-Za-z_][A-Za-z0-9_]*)")
    return value


def quote_identifier(value: str) -> str:
    """Double-quote a column name for use in generated SQL."""
    return '"' + value.replace('"', '""') + '"'
