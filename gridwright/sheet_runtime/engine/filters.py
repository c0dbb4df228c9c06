"""Filter and search evaluation over rows.

A row is kept iff it passes the active search (if any) AND the filter
conditions joined by the single combinator (zero conditions pass everything).
All comparisons are case-insensitive on stringified cell values.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.models.enums import FilterCombinator, FilterOperator, SearchMode
from gridwright.sheet_runtime.models.filters import FilterCondition, FilterState, SearchState
from gridwright.sheet_runtime.models.sheet import RowData


def _text(row: RowData, col_id: str) -> str:
    return stringify_cell(row.get(col_id)).lower()


def _terms(value: str) -> list[str]:
    """Comma-split, trimmed, non-empty, lowercase terms for the ``*_any_of`` operators."""
    return [t.strip().lower() for t in value.split(",") if t.strip()]


def _contains_any(cell: str, value: str) -> bool:
    return any(term in cell for term in _terms(value))


_OPERATORS: dict[FilterOperator, Callable[[str, str], bool]] = {
    FilterOperator.EQUAL_TO: lambda cell, value: cell == value.lower(),
    FilterOperator.NOT_EQUAL_TO: lambda cell, value: cell != value.lower(),
    FilterOperator.CONTAINS: lambda cell, value: value.lower() in cell,
    FilterOperator.DOES_NOT_CONTAIN: lambda cell, value: value.lower() not in cell,
    FilterOperator.CONTAINS_ANY_OF: _contains_any,
    FilterOperator.DOES_NOT_CONTAIN_ANY_OF: lambda cell, value: not _contains_any(cell, value),
    FilterOperator.IS_EMPTY: lambda cell, _value: cell.strip() == "",
    FilterOperator.IS_NOT_EMPTY: lambda cell, _value: cell.strip() != "",
}


def matches(row: RowData, condition: FilterCondition) -> bool:
    """Evaluate a single condition against *row*."""
    return _OPERATORS[condition.operator](_text(row, condition.col_id), condition.value)


def matches_filter(row: RowData, state: FilterState | None) -> bool:
    if state is None or not state.conditions:
        return True
    results = (matches(row, c) for c in state.conditions)
    if state.combinator == FilterCombinator.OR:
        return any(results)
    return all(results)


def matches_search(row: RowData, search: SearchState | None) -> bool:
    """Substring search in one column, or in any column (``id`` excluded)."""
    if search is None or not search.query:
        return True
    needle = search.query.lower()
    if search.mode == SearchMode.COLUMN:
        if not search.col_id:
            return True
        return needle in _text(row, search.col_id)
    return any(needle in stringify_cell(v).lower() for k, v in row.items() if k != "id")


def evaluate(
    rows: Iterable[RowData],
    state: FilterState | None = None,
    search: SearchState | None = None,
) -> list[RowData]:
    """Rows passing both the search and the filter, in their original order."""
    return [row for row in rows if matches_search(row, search) and matches_filter(row, state)]
