"""Vertical CRUD endpoints (RPC-style).

All write operations use POST; reads use GET.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from gridwright.sheet_runtime.db.tables import Vertical
from gridwright.sheet_runtime.deps import DbSession
from gridwright.sheet_runtime.managers import verticals as manager
from gridwright.sheet_runtime.models.api import (
    VerticalCreate,
    VerticalDetailResponse,
    VerticalResponse,
    VerticalUpdate,
)

router = APIRouter(prefix="/verticals", tags=["verticals"])


def _not_found(vertical_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Vertical '{vertical_id}' not found.")


@router.post("/create", response_model=VerticalResponse, status_code=status.HTTP_201_CREATED)
async def create_vertical(body: VerticalCreate, db: DbSession) -> Vertical:
    """Create a new vertical."""
    try:
        return await manager.create_vertical(db, body)
    except manager.DuplicateVerticalError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Vertical '{exc}' already exists.") from None


@router.get("/list", response_model=list[VerticalResponse])
async def list_verticals(
    db: DbSession,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[Vertical]:
    """List verticals, oldest first."""
    return await manager.list_verticals(db, limit=limit, offset=offset)


@router.get("/{vertical_id}/get", response_model=VerticalDetailResponse)
async def get_vertical(vertical_id: str, db: DbSession) -> Vertical:
    """Get a vertical with a summary of its sheets."""
    try:
        return await manager.get_vertical(db, vertical_id, with_sheets=True)
    except manager.VerticalNotFoundError:
        raise _not_found(vertical_id) from None


@router.post("/{vertical_id}/update", response_model=VerticalResponse)
async def update_vertical(vertical_id: str, body: VerticalUpdate, db: DbSession) -> Vertical:
    """Partially update a vertical."""
    try:
        return await manager.update_vertical(db, vertical_id, body)
    except manager.VerticalNotFoundError:
        raise _not_found(vertical_id) from None


@router.post("/{vertical_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vertical(vertical_id: str, db: DbSession) -> None:
    """Delete a vertical together with its sheets and rows."""
    try:
        await manager.delete_vertical(db, vertical_id)
    except manager.VerticalNotFoundError:
        raise _not_found(vertical_id) from None
