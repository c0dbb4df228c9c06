"""Sheet, column, row and run endpoints (RPC-style).

All write operations use POST; reads use GET (``rows/rendered`` and ``query``
are POST because they take a body).  Managers raise domain exceptions; this
module maps them to HTTP status codes.
"""

from __future__ import annotations

import anyio
from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status

from gridwright.sheet_runtime.db.tables import Sheet
from gridwright.sheet_runtime.deps import DbSession, HttpClient, Settings
from gridwright.sheet_runtime.engine.cells import InvalidSelectOptionError, ReadOnlyColumnError
from gridwright.sheet_runtime.engine.errors import ConfigurationError
from gridwright.sheet_runtime.engine.importer import UnsupportedFileError, parse_upload
from gridwright.sheet_runtime.managers import compute, rows, sheets
from gridwright.sheet_runtime.managers.verticals import VerticalNotFoundError
from gridwright.sheet_runtime.models.api import (
    AgentRunRequest,
    AgentRunResponse,
    CellWrite,
    CellWriteResponse,
    ColumnCreate,
    ColumnUpdate,
    EnrichmentMapRequest,
    EnrichmentMapResponse,
    HttpRunResponse,
    ImportResponse,
    RowQuery,
    RowsDelete,
    RowsDeleteResponse,
    RowSelection,
    RowsInsert,
    SheetCreate,
    SheetDetailResponse,
    SheetResponse,
    SheetUpdate,
)
from gridwright.sheet_runtime.models.render import RenderedRow
from gridwright.sheet_runtime.models.sheet import ColumnDefinition, RowData

router = APIRouter(prefix="/sheets", tags=["sheets"])


def _not_found(exc: LookupError) -> HTTPException:
    kind = {
        sheets.SheetNotFoundError: "Sheet",
        sheets.ColumnNotFoundError: "Column",
        rows.RowNotFoundError: "Row",
        VerticalNotFoundError: "Vertical",
        compute.AgentNotFoundError: "Agent",
        compute.HttpRequestNotFoundError: "HTTP request",
    }.get(type(exc), "Resource")
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"{kind} '{exc}' not found.")


# ---------------------------------------------------------------------------
# Sheet CRUD
# ---------------------------------------------------------------------------


@router.post("/create", response_model=SheetResponse, status_code=status.HTTP_201_CREATED)
async def create_sheet(body: SheetCreate, db: DbSession) -> Sheet:
    """Create a sheet at the end of its vertical."""
    try:
        return await sheets.create_sheet(db, body)
    except VerticalNotFoundError as exc:
        raise _not_found(exc) from None
    except sheets.DuplicateSheetError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Sheet '{exc}' already exists.") from None


@router.get("/list", response_model=list[SheetResponse])
async def list_sheets(db: DbSession, vertical_id: str | None = Query(None, alias="verticalId")) -> list[Sheet]:
    """List sheets, optionally restricted to one vertical, in tab order."""
    return await sheets.list_sheets(db, vertical_id=vertical_id)


@router.get("/{sheet_id}/get", response_model=SheetDetailResponse)
async def get_sheet(sheet_id: str, db: DbSession) -> SheetDetailResponse:
    """Get a sheet with its columns, configs and stored rows."""
    try:
        sheet = await sheets.get_sheet(db, sheet_id)
        await db.refresh(sheet)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None
    stored = [sheets.row_data(r) for r in await sheets.load_rows(db, sheet_id)]
    detail = SheetResponse.model_validate(sheet)
    return SheetDetailResponse(**dict(detail), rows=stored)


@router.post("/{sheet_id}/update", response_model=SheetResponse)
async def update_sheet(sheet_id: str, body: SheetUpdate, db: DbSession) -> Sheet:
    """Partially update a sheet (name, colour, position, agents, HTTP requests...)."""
    try:
        return await sheets.update_sheet(db, sheet_id, body)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None


@router.post("/{sheet_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sheet(sheet_id: str, db: DbSession) -> None:
    """Delete a sheet and its rows."""
    try:
        await sheets.delete_sheet(db, sheet_id)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


@router.post("/{sheet_id}/columns/add", response_model=ColumnDefinition, status_code=status.HTTP_201_CREATED)
async def add_column(sheet_id: str, body: ColumnCreate, db: DbSession) -> ColumnDefinition:
    try:
        return await sheets.add_column(db, sheet_id, body)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None
    except sheets.DuplicateColumnError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Column '{exc}' already exists.") from None


@router.post("/{sheet_id}/columns/{column_id}/update", response_model=ColumnDefinition)
async def update_column(sheet_id: str, column_id: str, body: ColumnUpdate, db: DbSession) -> ColumnDefinition:
    """Partially update a column; type, dedup and default changes apply to existing rows."""
    try:
        return await sheets.update_column(db, sheet_id, column_id, body)
    except (sheets.SheetNotFoundError, sheets.ColumnNotFoundError) as exc:
        raise _not_found(exc) from None
    except ValueError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None


@router.post("/{sheet_id}/columns/{column_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_column(sheet_id: str, column_id: str, db: DbSession) -> None:
    try:
        await sheets.delete_column(db, sheet_id, column_id)
    except (sheets.SheetNotFoundError, sheets.ColumnNotFoundError) as exc:
        raise _not_found(exc) from None


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


@router.post("/{sheet_id}/rows/insert", response_model=list[RowData], status_code=status.HTTP_201_CREATED)
async def insert_rows(sheet_id: str, body: RowsInsert, db: DbSession) -> list[RowData]:
    """Append rows; returns the inserted rows that survived deduplication."""
    try:
        return await rows.insert_rows(db, sheet_id, body.rows)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None
    except rows.DuplicateRowError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Row '{exc}' already exists.") from None


@router.post("/{sheet_id}/rows/delete", response_model=RowsDeleteResponse)
async def delete_rows(sheet_id: str, body: RowsDelete, db: DbSession) -> RowsDeleteResponse:
    try:
        deleted = await rows.delete_rows(db, sheet_id, body.row_ids)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None
    return RowsDeleteResponse(deleted=deleted)


@router.post("/{sheet_id}/rows/{row_id}/cells/{column_id}/write", response_model=CellWriteResponse)
async def write_cell(sheet_id: str, row_id: str, column_id: str, body: CellWrite, db: DbSession) -> CellWriteResponse:
    """Write one cell.  Computed, linked and invalid SELECT writes are rejected with 422."""
    try:
        row, removed = await rows.write_cell(db, sheet_id, row_id, column_id, body.value)
    except LookupError as exc:
        raise _not_found(exc) from None
    except (ReadOnlyColumnError, InvalidSelectOptionError) as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None
    return CellWriteResponse(row=row, removed_row_ids=removed)


@router.post("/{sheet_id}/rows/rendered", response_model=list[RenderedRow])
async def rendered_rows(sheet_id: str, body: RowSelection, db: DbSession) -> list[RenderedRow]:
    """Derived cell values (formulas, merges, enrichment, linked columns...) for the rows."""
    try:
        return await rows.get_rendered_rows(db, sheet_id, body.row_ids or None)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None


@router.post("/{sheet_id}/query", response_model=list[RowData])
async def query_rows(sheet_id: str, body: RowQuery, db: DbSession) -> list[RowData]:
    """Rows matching the search and filter state."""
    try:
        return await compute.query_rows(db, sheet_id, body)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@router.post("/{sheet_id}/http/{request_id}/run", response_model=HttpRunResponse)
async def run_http_request(
    sheet_id: str,
    request_id: str,
    body: RowSelection,
    db: DbSession,
    client: HttpClient,
    settings: Settings,
) -> HttpRunResponse:
    """Execute a sheet's HTTP request for the selected rows (all by default)."""
    try:
        return await compute.run_http_request(
            db,
            sheet_id,
            request_id,
            body.row_ids,
            client=client,
            timeout=settings.http_timeout,
        )
    except LookupError as exc:
        raise _not_found(exc) from None
    except ConfigurationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None


@router.post("/{sheet_id}/agents/{agent_id}/run", response_model=AgentRunResponse)
async def run_agent(
    sheet_id: str,
    agent_id: str,
    body: AgentRunRequest,
    db: DbSession,
    client: HttpClient,
    settings: Settings,
) -> AgentRunResponse:
    """Run an agent over the selected rows (or its first ``rowsToDeploy`` rows)."""
    keys = settings.api_keys().merged_with(body.api_keys)
    try:
        return await compute.run_agent(db, sheet_id, agent_id, keys, body.row_ids, client=client)
    except LookupError as exc:
        raise _not_found(exc) from None
    except ConfigurationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None


@router.post("/{sheet_id}/rows/{row_id}/enrichment/map", response_model=EnrichmentMapResponse)
async def map_enrichment_field(
    sheet_id: str,
    row_id: str,
    body: EnrichmentMapRequest,
    db: DbSession,
) -> EnrichmentMapResponse:
    """Copy one key of an ENRICHMENT cell into the column named after it."""
    try:
        return await compute.map_enrichment_field(db, sheet_id, row_id, body.column_id, body.key)
    except compute.EnrichmentFieldError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Enrichment field not available: {exc}") from None
    except LookupError as exc:
        raise _not_found(exc) from None
    except ReadOnlyColumnError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None


@router.post("/{sheet_id}/import", response_model=ImportResponse)
async def import_file(
    sheet_id: str,
    db: DbSession,
    client: HttpClient,
    settings: Settings,
    file: UploadFile = File(...),
    confidence_threshold: float | None = Form(None, alias="confidenceThreshold", ge=0.0, le=1.0),
    use_fuzzy_matching: bool | None = Form(None, alias="useFuzzyMatching"),
) -> ImportResponse:
    """Import a CSV / Excel file into an existing sheet."""
    data = await file.read()
    try:
        parsed = await anyio.to_thread.run_sync(parse_upload, file.filename or "", data)
    except UnsupportedFileError as exc:
        raise HTTPException(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(exc)) from None

    config = settings.header_match_config()
    if confidence_threshold is not None:
        config.confidence_threshold = confidence_threshold
    if use_fuzzy_matching is not None:
        config.use_fuzzy_matching = use_fuzzy_matching

    try:
        return await compute.import_rows(db, sheet_id, parsed, config, client=client)
    except sheets.SheetNotFoundError as exc:
        raise _not_found(exc) from None
