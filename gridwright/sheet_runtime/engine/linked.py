"""Linked column resolution.

A linked column joins each row to a row of another sheet::

    value(R) = S[source_column_id]  where  str(S[source_match_column_id]) == str(R[match_column_id])

Lookups go through a hash index built lazily per
``(source_sheet_id, source_match_column_id)`` so rendering a large sheet is
O(rows) instead of O(rows * source_rows).  The first source row carrying a key
wins.  An empty key never matches.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.models.sheet import CellValue, LinkedColumnConfig, RowData, Sheet


class LinkedColumnIndex:
    """Lazily-built join indexes over a set of source sheets.

    Build one per render / request; it does not observe later row changes.
    """

    def __init__(self, sources: Iterable[Sheet] | Mapping[str, list[RowData]]) -> None:
        if isinstance(sources, Mapping):
            self._rows = {sheet_id: list(rows) for sheet_id, rows in sources.items()}
        else:
            self._rows = {sheet.id: sheet.rows for sheet in sources}
        self._indexes: dict[tuple[str, str], dict[str, RowData]] = {}

    def _index(self, sheet_id: str, column_id: str) -> dict[str, RowData]:
        key = (sheet_id, column_id)
        index = self._indexes.get(key)
        if index is None:
            index = {}
            for row in self._rows.get(sheet_id, []):
                join_key = stringify_cell(row.get(column_id))
                if join_key:
                    index.setdefault(join_key, row)
            self._indexes[key] = index
        return index

    def find_source_row(self, row: RowData, link: LinkedColumnConfig) -> RowData | None:
        join_key = stringify_cell(row.get(link.match_column_id))
        if not join_key:
            return None
        return self._index(link.source_sheet_id, link.source_match_column_id).get(join_key)

    def resolve(self, row: RowData, link: LinkedColumnConfig) -> CellValue:
        """Linked value for *row*, or ``None`` when no source row matches."""
        source = self.find_source_row(row, link)
        if source is None:
            return None
        return source.get(link.source_column_id)
