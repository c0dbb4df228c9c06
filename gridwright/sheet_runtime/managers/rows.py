"""Row operations: insert, cell writes, staged-update merges, delete and render."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from gridwright.sheet_runtime.db.tables import Row
from gridwright.sheet_runtime.engine.cells import coerce_write, render_row, validate_write
from gridwright.sheet_runtime.engine.linked import LinkedColumnIndex
from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.managers.sheets import (
    find_column,
    get_sheet,
    load_rows,
    next_row_position,
    remove_duplicates,
    row_data,
    sheet_columns,
)
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.render import RenderedRow
from gridwright.sheet_runtime.models.sheet import CellValue, ColumnDefinition, RowData


class RowNotFoundError(LookupError):
    """Raised when a row is not found in the sheet."""


class DuplicateRowError(ValueError):
    """Raised when an inserted row id already exists."""


def new_row_id() -> str:
    return f"row-{uuid.uuid4().hex[:12]}"


def default_cell(column: ColumnDefinition) -> CellValue:
    """``default_value`` when set, else ``0`` for NUMBER, else ``''``."""
    if column.default_value:
        return column.default_value
    if column.type == ColumnType.NUMBER:
        return 0
    return ""


def _initial_data(source: Mapping[str, Any], columns: Sequence[ColumnDefinition]) -> dict[str, CellValue]:
    data: dict[str, CellValue] = {}
    for column in columns:
        if column.is_linked:
            continue
        if column.id in source:
            data[column.id] = coerce_write(column, source[column.id])
        else:
            data[column.id] = default_cell(column)
    return data


async def insert_rows(db: AsyncSession, sheet_id: str, rows: Iterable[Mapping[str, Any]]) -> list[RowData]:
    """Append rows at the end of the sheet, filling column defaults.

    Keys that are not column ids are dropped.  Active deduplicating columns run
    a collapse pass afterwards; the returned rows are the inserted ones that
    survived it.
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    position = await next_row_position(db, sheet_id)

    inserted: list[Row] = []
    seen: set[str] = set()
    for offset, source in enumerate(rows):
        row_id = str(source.get("id") or new_row_id())
        if row_id in seen or await db.get(Row, row_id) is not None:
            raise DuplicateRowError(row_id)
        row = Row(row_id=row_id, sheet_id=sheet_id, position=position + offset, data=_initial_data(source, columns))
        db.add(row)
        inserted.append(row)
        seen.add(row_id)

    removed = await remove_duplicates(db, sheet_id, columns)
    kept = [row_data(r) for r in inserted if r.row_id not in removed]
    await db.commit()

    logger.info("Inserted {} rows into sheet {} ({} removed as duplicates)", len(inserted), sheet_id, len(removed))
    return kept


async def get_row(db: AsyncSession, sheet_id: str, row_id: str) -> Row:
    row = await db.get(Row, row_id)
    if row is None or row.sheet_id != sheet_id:
        raise RowNotFoundError(row_id)
    return row


async def write_cell(
    db: AsyncSession,
    sheet_id: str,
    row_id: str,
    column_id: str,
    value: Any,
) -> tuple[RowData, list[str]]:
    """Validate and store a direct edit.

    Returns ``(row, removed_row_ids)``.  The written row itself may be among
    the removed ones when deduplication keeps an older duplicate.

    Raises ``ColumnNotFoundError``, ``RowNotFoundError``,
    ``ReadOnlyColumnError`` or ``InvalidSelectOptionError``.
    """
    sheet = await get_sheet(db, sheet_id)
    column = find_column(sheet_columns(sheet), column_id)
    row = await get_row(db, sheet_id, row_id)

    stored = validate_write(column, value)
    row.data = {**(row.data or {}), column_id: stored}
    written = row_data(row)

    removed: list[str] = []
    if column.dedup_active and stringify_cell(stored):
        removed = await remove_duplicates(db, sheet_id, [column])

    await db.commit()
    return written, removed


async def merge_row_updates(
    db: AsyncSession,
    sheet_id: str,
    updates: Mapping[str, Mapping[str, CellValue]],
) -> list[str]:
    """Merge engine-staged ``{row_id: {column_id: value}}`` updates (last write wins).

    Rows deleted since the run started and unknown columns are skipped.
    Returns the ids of rows that were updated.
    """
    if not updates:
        return []
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    known = {c.id for c in columns}

    changed_columns: set[str] = set()
    updated: list[str] = []
    for row in await load_rows(db, sheet_id, updates.keys()):
        staged = {k: v for k, v in updates[row.row_id].items() if k in known}
        if not staged:
            continue
        row.data = {**(row.data or {}), **staged}
        changed_columns.update(staged)
        updated.append(row.row_id)

    await remove_duplicates(db, sheet_id, [c for c in columns if c.id in changed_columns])
    await db.commit()
    return updated


async def delete_rows(db: AsyncSession, sheet_id: str, row_ids: Sequence[str]) -> int:
    if not row_ids:
        return 0
    await get_sheet(db, sheet_id)
    result = await db.execute(delete(Row).where(Row.sheet_id == sheet_id, Row.row_id.in_(list(row_ids))))
    await db.commit()
    return result.rowcount or 0


async def build_linked_index(db: AsyncSession, columns: Iterable[ColumnDefinition]) -> LinkedColumnIndex:
    """Load the rows of every sheet referenced by a linked column."""
    source_ids = {c.linked_column.source_sheet_id for c in columns if c.linked_column is not None}
    sources = {sid: [row_data(r) for r in await load_rows(db, sid)] for sid in sorted(source_ids)}
    return LinkedColumnIndex(sources)


async def get_rendered_rows(
    db: AsyncSession,
    sheet_id: str,
    row_ids: Iterable[str] | None = None,
) -> list[RenderedRow]:
    """Derived values for every column of the sheet's rows."""
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    linked = await build_linked_index(db, columns)
    return [render_row(row_data(r), columns, linked=linked) for r in await load_rows(db, sheet_id, row_ids)]
