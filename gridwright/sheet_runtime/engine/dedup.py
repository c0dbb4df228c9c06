"""Column-scoped deduplication.

When a column's deduplication is active, rows sharing the same stringified
value (case-sensitive) in that column are collapsed to one: the earliest in
list order for ``keep='oldest'``, the latest for ``keep='newest'``.  Empty
values are never considered duplicates of each other.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from loguru import logger

from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.models.enums import DedupKeep
from gridwright.sheet_runtime.models.sheet import ColumnDefinition, RowData


def duplicate_row_ids(rows: Sequence[RowData], column_id: str, keep: DedupKeep) -> set[str]:
    """Ids of the rows that deduplication on *column_id* would remove."""
    ordered = rows if keep == DedupKeep.OLDEST else list(reversed(rows))
    seen: set[str] = set()
    removed: set[str] = set()
    for row in ordered:
        value = stringify_cell(row.get(column_id))
        if not value:
            continue
        if value in seen:
            removed.add(str(row.get("id")))
        else:
            seen.add(value)
    return removed


def deduplicate(rows: Sequence[RowData], column_id: str, keep: DedupKeep = DedupKeep.OLDEST) -> list[RowData]:
    """Return *rows* without duplicates on *column_id*, preserving order."""
    removed = duplicate_row_ids(rows, column_id, keep)
    if not removed:
        return list(rows)
    logger.debug("Dedup on '{}' (keep={}) removes {} rows", column_id, keep, len(removed))
    return [row for row in rows if str(row.get("id")) not in removed]


def apply_deduplication(
    rows: Sequence[RowData],
    columns: Iterable[ColumnDefinition],
    changed_column_ids: Iterable[str] | None = None,
) -> list[RowData]:
    """Run every active deduplicating column (optionally only *changed_column_ids*).

    Columns are processed independently in column order.
    """
    only = set(changed_column_ids) if changed_column_ids is not None else None
    result = list(rows)
    for column in columns:
        if not column.dedup_active or (only is not None and column.id not in only):
            continue
        result = deduplicate(result, column.id, column.deduplication.keep)  # type: ignore[union-attr]
    return result
