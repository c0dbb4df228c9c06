"""Stateless engine endpoints.

These run the sheet engine on data supplied in the request body and never
touch the database, so they keep working when GRID_DATABASE_URL is unset.
"""

from __future__ import annotations

import anyio
import httpx
from fastapi import APIRouter, File, HTTPException, UploadFile, status
from loguru import logger

from gridwright.sheet_runtime.deps import HttpClient, Settings
from gridwright.sheet_runtime.engine.agents import AgentSuggestion, suggest_agent_config
from gridwright.sheet_runtime.engine.cells import evaluate_row
from gridwright.sheet_runtime.engine.dedup import deduplicate
from gridwright.sheet_runtime.engine.errors import ConfigurationError
from gridwright.sheet_runtime.engine.filters import evaluate
from gridwright.sheet_runtime.engine.header_match import match_headers, partition_matches
from gridwright.sheet_runtime.engine.http import HttpExecutionError, HttpExecutionResult, execute_http_request
from gridwright.sheet_runtime.engine.importer import UnsupportedFileError, parse_upload
from gridwright.sheet_runtime.engine.references import find_tokens, resolve
from gridwright.sheet_runtime.models.api import (
    AgentSuggestRequest,
    DedupeRequest,
    FilterRequest,
    HeaderMatchRequest,
    HeaderMatchResponse,
    HttpExecuteRequest,
    ResolveRequest,
    ResolveResponse,
)
from gridwright.sheet_runtime.models.imports import ParsedFile
from gridwright.sheet_runtime.models.sheet import RowData

router = APIRouter(prefix="/engine", tags=["engine"])


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_template(body: ResolveRequest) -> ResolveResponse:
    """Substitute ``/column_id`` tokens with the row's values."""
    columns = body.known_columns()
    row = evaluate_row(body.row, body.columns) if body.columns else body.row
    return ResolveResponse(
        result=resolve(body.template, row, columns),
        tokens=find_tokens(body.template, columns),
    )


@router.post("/filter", response_model=list[RowData])
async def filter_rows(body: FilterRequest) -> list[RowData]:
    return evaluate(body.rows, body.filter, body.search)


@router.post("/dedupe", response_model=list[RowData])
async def dedupe_rows(body: DedupeRequest) -> list[RowData]:
    return deduplicate(body.rows, body.column_id, body.keep)


@router.post("/http/execute", response_model=HttpExecutionResult)
async def execute_http(body: HttpExecuteRequest, client: HttpClient, settings: Settings) -> HttpExecutionResult:
    """Run one HTTP request config against one row and return the mapped updates."""
    try:
        return await execute_http_request(
            body.config,
            body.row,
            body.columns,
            client=client,
            timeout=settings.http_timeout,
        )
    except ConfigurationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except HttpExecutionError as exc:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from None
    except httpx.HTTPError as exc:
        logger.warning("HTTP execute to {} failed: {}", body.config.url, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=f"Request failed: {type(exc).__name__}") from None


@router.post("/headers/match", response_model=HeaderMatchResponse)
async def match_header_lists(body: HeaderMatchRequest, client: HttpClient, settings: Settings) -> HeaderMatchResponse:
    """Match source headers onto target headers (LLM chain with deterministic fallback)."""
    config = body.config or settings.header_match_config()
    if body.config is not None:
        config.api_keys = settings.api_keys().merged_with(config.api_keys)
    matches = await match_headers(body.source_headers, body.target_headers, config, client=client)
    applied, review = partition_matches(matches, config.confidence_threshold)
    return HeaderMatchResponse(matches=matches, applied=applied, review=review)


@router.post("/import/parse", response_model=ParsedFile)
async def parse_import_file(file: UploadFile = File(...)) -> ParsedFile:
    """Parse an uploaded CSV / Excel file into headers and rows."""
    data = await file.read()
    try:
        return await anyio.to_thread.run_sync(parse_upload, file.filename or "", data)
    except UnsupportedFileError as exc:
        raise HTTPException(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(exc)) from None


@router.post("/agents/suggest", response_model=AgentSuggestion)
async def suggest_agent(body: AgentSuggestRequest, client: HttpClient, settings: Settings) -> AgentSuggestion:
    """Draft an agent configuration from a free-form request."""
    keys = settings.api_keys().merged_with(body.api_keys)
    return await suggest_agent_config(
        body.prompt,
        body.inputs,
        body.columns,
        keys,
        outputs=body.outputs,
        client=client,
    )
