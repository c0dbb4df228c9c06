"""Column token resolution.

A *column token* is ``/`` followed by a column id, not followed by a further
word character: ``/company_name``.  Formula, merge and HTTP templates have
their tokens replaced by the row's stringified values before use.

Resolution is a single pass over the template.  Ids are tried longest first,
so ``/email_2`` is never consumed by the ``email`` column, and substituted
values are never re-scanned (a value containing ``/other`` stays literal, which
also keeps circular formulas from expanding).

Agent prompts are **not** resolved here; their tokens reach the model verbatim.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from gridwright.sheet_runtime.models.sheet import ColumnDefinition, RowData

TOKEN_PATTERN = re.compile(r"/([A-Za-z0-9_]+)(?![A-Za-z0-9_])")
"""Any syntactically valid token, whether or not the column exists."""


def stringify_cell(value: Any) -> str:
    """Render a cell value as template / comparison text.

    ``None`` becomes ``''``; booleans are lowercase; integral floats drop the
    trailing ``.0``; containers are JSON encoded.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _column_ids(columns: Iterable[ColumnDefinition | str]) -> list[str]:
    ids = {c if isinstance(c, str) else c.id for c in columns}
    # Longest first; ties broken alphabetically for a stable pattern.
    return sorted((i for i in ids if i), key=lambda i: (-len(i), i))


def compile_token_pattern(columns: Iterable[ColumnDefinition | str]) -> re.Pattern[str] | None:
    """Build the alternation matching ``/<id>`` for every known column."""
    ids = _column_ids(columns)
    if not ids:
        return None
    alternation = "|".join(re.escape(i) for i in ids)
    return re.compile(rf"/({alternation})(?![A-Za-z0-9_])")


def resolve(template: str, row: RowData, columns: Iterable[ColumnDefinition | str]) -> str:
    """Substitute every known column token in *template* with *row*'s value.

    Unknown tokens are left verbatim.
    """
    if not template or "/" not in template:
        return template or ""
    pattern = compile_token_pattern(columns)
    if pattern is None:
        return template
    return pattern.sub(lambda m: stringify_cell(row.get(m.group(1))), template)


def resolve_mapping(
    mapping: Mapping[str, str],
    row: RowData,
    columns: Iterable[ColumnDefinition | str],
) -> dict[str, str]:
    """Resolve every value of a str->str mapping (keys are left untouched)."""
    columns = list(columns)
    return {key: resolve(value, row, columns) for key, value in mapping.items()}


def find_tokens(template: str, columns: Iterable[ColumnDefinition | str] | None = None) -> list[str]:
    """Return referenced column ids in order of first appearance.

    With *columns*, only ids of existing columns are reported (using the same
    longest-first matching as :func:`resolve`); otherwise every syntactic token.
    """
    if not template:
        return []
    pattern = TOKEN_PATTERN if columns is None else compile_token_pattern(columns)
    if pattern is None:
        return []
    seen: dict[str, None] = {}
    for match in pattern.finditer(template):
        seen.setdefault(match.group(1), None)
    return list(seen)
