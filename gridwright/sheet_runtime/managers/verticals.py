"""Vertical CRUD operations.

A vertical groups sheets; deleting one cascades to its sheets and their rows.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gridwright.sheet_runtime.db.tables import Vertical
from gridwright.sheet_runtime.models.api import VerticalCreate, VerticalUpdate


class DuplicateVerticalError(ValueError):
    """Raised when a vertical with the given ID already exists."""


class VerticalNotFoundError(LookupError):
    """Raised when a vertical is not found."""


async def create_vertical(db: AsyncSession, body: VerticalCreate) -> Vertical:
    """Create a new vertical.  Raises ``DuplicateVerticalError`` if ID exists."""
    vertical_id = body.vertical_id or str(uuid.uuid4())

    existing = await db.get(Vertical, vertical_id)
    if existing is not None:
        raise DuplicateVerticalError(vertical_id)

    vertical = Vertical(vertical_id=vertical_id, name=body.name, color=body.color)
    db.add(vertical)
    await db.commit()
    await db.refresh(vertical)
    return vertical


async def list_verticals(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> list[Vertical]:
    """List verticals, oldest first (sidebar order)."""
    stmt = select(Vertical).order_by(Vertical.created_at, Vertical.vertical_id).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_vertical(db: AsyncSession, vertical_id: str, *, with_sheets: bool = False) -> Vertical:
    """Get a vertical by ID.  Raises ``VerticalNotFoundError`` if missing."""
    options = [selectinload(Vertical.sheets)] if with_sheets else []
    vertical = await db.get(Vertical, vertical_id, options=options, populate_existing=with_sheets)
    if vertical is None:
        raise VerticalNotFoundError(vertical_id)
    return vertical


async def update_vertical(db: AsyncSession, vertical_id: str, body: VerticalUpdate) -> Vertical:
    """Partially update a vertical.  Raises ``VerticalNotFoundError`` if missing."""
    vertical = await get_vertical(db, vertical_id)

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return vertical

    for key, value in changes.items():
        setattr(vertical, key, value)

    await db.commit()
    await db.refresh(vertical)
    return vertical


async def delete_vertical(db: AsyncSession, vertical_id: str) -> None:
    """Delete a vertical and, by cascade, its sheets and rows."""
    vertical = await get_vertical(db, vertical_id)
    await db.delete(vertical)
    await db.commit()
