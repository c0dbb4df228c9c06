"""Sheet and column operations.

Columns, agents and HTTP request configs live as JSONB on the sheet row and
are rewritten wholesale on every change.  Rows live in their own table (see
``managers.rows``); the helpers here convert between ORM rows and the
``{"id": ..., <column_id>: value}`` dicts the engine works on.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gridwright.sheet_runtime.constants import SELECT_PALETTE
from gridwright.sheet_runtime.db.tables import Row, Sheet
from gridwright.sheet_runtime.engine.cells import convert_column_type
from gridwright.sheet_runtime.engine.dedup import apply_deduplication
from gridwright.sheet_runtime.engine.importer import create_column_id
from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.managers.verticals import get_vertical
from gridwright.sheet_runtime.models.api import ColumnCreate, ColumnUpdate, SheetCreate, SheetUpdate
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.sheet import (
    AgentConfig,
    ColumnDefinition,
    HttpRequestConfig,
    RowData,
)


class DuplicateSheetError(ValueError):
    """Raised when a sheet with the given ID already exists."""


class SheetNotFoundError(LookupError):
    """Raised when a sheet is not found."""


class DuplicateColumnError(ValueError):
    """Raised when a column id is already used in the sheet."""


class ColumnNotFoundError(LookupError):
    """Raised when a column is not found in the sheet."""


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


def sheet_columns(sheet: Sheet) -> list[ColumnDefinition]:
    return [ColumnDefinition.model_validate(c) for c in sheet.columns or []]


def sheet_agents(sheet: Sheet) -> list[AgentConfig]:
    return [AgentConfig.model_validate(a) for a in sheet.agents or []]


def sheet_http_requests(sheet: Sheet) -> list[HttpRequestConfig]:
    return [HttpRequestConfig.model_validate(h) for h in sheet.http_requests or []]


def store_columns(sheet: Sheet, columns: Iterable[ColumnDefinition]) -> None:
    sheet.columns = [c.dump() for c in columns]


def row_data(row: Row) -> RowData:
    return {"id": row.row_id, **(row.data or {})}


def find_column(columns: Sequence[ColumnDefinition], column_id: str) -> ColumnDefinition:
    column = next((c for c in columns if c.id == column_id), None)
    if column is None:
        raise ColumnNotFoundError(column_id)
    return column


async def load_rows(db: AsyncSession, sheet_id: str, row_ids: Iterable[str] | None = None) -> list[Row]:
    """Rows of a sheet in insertion order, optionally restricted to *row_ids*."""
    stmt = select(Row).where(Row.sheet_id == sheet_id).order_by(Row.position, Row.row_id)
    if row_ids is not None:
        stmt = stmt.where(Row.row_id.in_(list(row_ids)))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def next_row_position(db: AsyncSession, sheet_id: str) -> int:
    result = await db.execute(select(func.max(Row.position)).where(Row.sheet_id == sheet_id))
    current = result.scalar_one_or_none()
    return 0 if current is None else current + 1


async def remove_duplicates(db: AsyncSession, sheet_id: str, columns: Iterable[ColumnDefinition]) -> list[str]:
    """Collapse duplicates for each active deduplicating column; return removed row ids.

    Columns are processed independently, each over the rows that survived the
    previous one.  Does not commit.
    """
    data = [row_data(r) for r in await load_rows(db, sheet_id)]
    kept = {d["id"] for d in apply_deduplication(data, columns)}
    removed = [d["id"] for d in data if d["id"] not in kept]
    if removed:
        await db.execute(delete(Row).where(Row.sheet_id == sheet_id, Row.row_id.in_(removed)))
        logger.info("Deduplication removed {} rows from sheet {}", len(removed), sheet_id)
    return removed


# ---------------------------------------------------------------------------
# Sheet CRUD
# ---------------------------------------------------------------------------


async def create_sheet(db: AsyncSession, body: SheetCreate) -> Sheet:
    """Create a sheet at the end of its vertical.

    Raises ``VerticalNotFoundError`` or ``DuplicateSheetError``.
    """
    await get_vertical(db, body.vertical_id)
    sheet_id = body.sheet_id or str(uuid.uuid4())
    if await db.get(Sheet, sheet_id) is not None:
        raise DuplicateSheetError(sheet_id)

    count = await db.execute(select(func.count()).select_from(Sheet).where(Sheet.vertical_id == body.vertical_id))
    sheet = Sheet(
        sheet_id=sheet_id,
        vertical_id=body.vertical_id,
        name=body.name,
        description=body.description,
        color=body.color,
        position=count.scalar_one(),
        columns=[c.dump() for c in body.columns],
        agents=[a.dump() for a in body.agents],
        http_requests=[h.dump() for h in body.http_requests],
        auto_update=body.auto_update,
    )
    db.add(sheet)
    await db.commit()
    await db.refresh(sheet)
    return sheet


async def list_sheets(db: AsyncSession, *, vertical_id: str | None = None) -> list[Sheet]:
    stmt = select(Sheet).order_by(Sheet.vertical_id, Sheet.position, Sheet.created_at)
    if vertical_id is not None:
        stmt = stmt.where(Sheet.vertical_id == vertical_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_sheet(db: AsyncSession, sheet_id: str) -> Sheet:
    """Get a sheet by ID.  Raises ``SheetNotFoundError`` if missing."""
    sheet = await db.get(Sheet, sheet_id)
    if sheet is None:
        raise SheetNotFoundError(sheet_id)
    return sheet


async def update_sheet(db: AsyncSession, sheet_id: str, body: SheetUpdate) -> Sheet:
    sheet = await get_sheet(db, sheet_id)

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return sheet

    # JSONB fields are stored in their camelCase wire shape.
    if "agents" in changes:
        changes["agents"] = [a.dump() for a in body.agents or []]
    if "http_requests" in changes:
        changes["http_requests"] = [h.dump() for h in body.http_requests or []]

    for key, value in changes.items():
        setattr(sheet, key, value)

    await db.commit()
    await db.refresh(sheet)
    return sheet


async def delete_sheet(db: AsyncSession, sheet_id: str) -> None:
    """Delete a sheet and, by cascade, its rows."""
    sheet = await get_sheet(db, sheet_id)
    await db.delete(sheet)
    await db.commit()


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


async def _backfill_default(db: AsyncSession, sheet_id: str, column: ColumnDefinition) -> int:
    """Write ``column.default_value`` into every row where the column is empty."""
    if not column.default_value:
        return 0
    filled = 0
    for row in await load_rows(db, sheet_id):
        if not stringify_cell((row.data or {}).get(column.id)):
            row.data = {**(row.data or {}), column.id: column.default_value}
            filled += 1
    return filled


async def add_column(
    db: AsyncSession,
    sheet_id: str,
    body: ColumnCreate,
    *,
    palette: Sequence[str] = SELECT_PALETTE,
) -> ColumnDefinition:
    """Append a column.

    A SELECT column without options gets them populated from existing data
    (normally none); ``default_value`` is backfilled; an active deduplication
    runs a collapse pass.
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    taken = {c.id for c in columns}

    if body.id is not None and body.id in taken:
        raise DuplicateColumnError(body.id)
    column_id = body.id or create_column_id(body.header, taken)

    column = ColumnDefinition.model_validate({**body.model_dump(exclude_none=True), "id": column_id})
    data = [row_data(r) for r in await load_rows(db, sheet_id)]
    if column.type == ColumnType.SELECT:
        column = convert_column_type(column, column.type, data, palette)

    store_columns(sheet, [*columns, column])
    await _backfill_default(db, sheet_id, column)
    if column.dedup_active:
        await remove_duplicates(db, sheet_id, [column])

    await db.commit()
    logger.info("Added column {} ({}) to sheet {}", column.id, column.type, sheet_id)
    return column


async def update_column(
    db: AsyncSession,
    sheet_id: str,
    column_id: str,
    body: ColumnUpdate,
    *,
    palette: Sequence[str] = SELECT_PALETTE,
) -> ColumnDefinition:
    """Partially update a column.

    - A type change to SELECT auto-populates options from the column's data.
    - Turning deduplication on (or changing ``keep``) collapses duplicates.
    - A new ``default_value`` is backfilled into empty cells.
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    current = find_column(columns, column_id)

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return current

    new_type = changes.pop("type", None)
    updated = ColumnDefinition.model_validate({**current.model_dump(), **changes, "id": current.id})
    if new_type is not None and new_type != current.type:
        data = [row_data(r) for r in await load_rows(db, sheet_id)]
        updated = convert_column_type(updated, new_type, data, palette)

    store_columns(sheet, [updated if c.id == column_id else c for c in columns])

    if "default_value" in changes:
        await _backfill_default(db, sheet_id, updated)
    dedup_changed = updated.deduplication != current.deduplication
    if updated.dedup_active and dedup_changed:
        await remove_duplicates(db, sheet_id, [updated])

    await db.commit()
    return updated


async def delete_column(db: AsyncSession, sheet_id: str, column_id: str) -> None:
    """Remove a column and its key from every row."""
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    find_column(columns, column_id)

    store_columns(sheet, [c for c in columns if c.id != column_id])
    for row in await load_rows(db, sheet_id):
        if column_id in (row.data or {}):
            row.data = {k: v for k, v in row.data.items() if k != column_id}

    await db.commit()
    logger.info("Deleted column {} from sheet {}", column_id, sheet_id)
