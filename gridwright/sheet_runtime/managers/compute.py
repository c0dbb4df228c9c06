"""Engine runs against stored sheets: query, HTTP, agents, enrichment mapping, import.

The engine functions never touch the database; these managers load the sheet,
run the engine outside any DB access, then merge the staged results back with
:func:`~gridwright.sheet_runtime.managers.rows.merge_row_updates`.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import anyio
import httpx
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from gridwright.sheet_runtime.engine import agents as agent_engine
from gridwright.sheet_runtime.engine.cells import evaluate_row, validate_write
from gridwright.sheet_runtime.engine.enrichment import parse_enrichment
from gridwright.sheet_runtime.engine.errors import ConfigurationError
from gridwright.sheet_runtime.engine.filters import evaluate
from gridwright.sheet_runtime.engine.header_match import match_headers
from gridwright.sheet_runtime.engine.http import DEFAULT_TIMEOUT, HttpExecutionError, execute_http_request
from gridwright.sheet_runtime.engine.importer import build_import_plan, create_column_id
from gridwright.sheet_runtime.engine.llm import LLMRunner
from gridwright.sheet_runtime.managers.rows import get_row, insert_rows, merge_row_updates, new_row_id
from gridwright.sheet_runtime.managers.sheets import (
    find_column,
    get_sheet,
    load_rows,
    row_data,
    sheet_agents,
    sheet_columns,
    sheet_http_requests,
    store_columns,
)
from gridwright.sheet_runtime.models.api import (
    AgentRunResponse,
    EnrichmentMapResponse,
    HttpRowOutcome,
    HttpRunResponse,
    ImportResponse,
    RowQuery,
)
from gridwright.sheet_runtime.models.enrichment import EnrichmentError
from gridwright.sheet_runtime.models.enums import AgentProvider, ColumnType
from gridwright.sheet_runtime.models.imports import HeaderMatchConfig, ParsedFile, ProviderKeys
from gridwright.sheet_runtime.models.sheet import ColumnDefinition, RowData

ENRICHMENT_FIELD_WIDTH = 200


class HttpRequestNotFoundError(LookupError):
    """Raised when a sheet has no HTTP request config with the given ID."""


class AgentNotFoundError(LookupError):
    """Raised when a sheet has no agent with the given ID."""


class EnrichmentFieldError(LookupError):
    """Raised when an ENRICHMENT cell has no usable value for the requested key."""


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


async def query_rows(db: AsyncSession, sheet_id: str, query: RowQuery) -> list[RowData]:
    """Rows passing the search and filter, with FORMULA columns evaluated."""
    columns = sheet_columns(await get_sheet(db, sheet_id))
    rows = [evaluate_row(row_data(r), columns) for r in await load_rows(db, sheet_id)]
    return evaluate(rows, query.filter, query.search)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


async def run_http_request(
    db: AsyncSession,
    sheet_id: str,
    request_id: str,
    row_ids: Sequence[str] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> HttpRunResponse:
    """Execute a sheet's HTTP request config for the given rows (all rows by default).

    On success the mapped updates are merged and every HTTP column connected
    to the config receives the response text.  On failure those HTTP columns
    receive an ``Error: ...`` marker instead.

    Raises ``HttpRequestNotFoundError`` or ``ConfigurationError`` (no URL).
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    config = next((h for h in sheet_http_requests(sheet) if h.id == request_id), None)
    if config is None:
        raise HttpRequestNotFoundError(request_id)
    if not config.url.strip():
        msg = f"HTTP request '{config.name}' has no URL"
        raise ConfigurationError(msg)

    rows = [row_data(r) for r in await load_rows(db, sheet_id, row_ids or None)]
    http_columns = [c.id for c in columns if c.type == ColumnType.HTTP and c.connected_http_request_id == config.id]
    outcomes: dict[str, HttpRowOutcome] = {}
    staged: dict[str, dict[str, Any]] = {}

    async def _one(row: RowData) -> None:
        row_id = str(row["id"])
        try:
            result = await execute_http_request(config, row, columns, client=client, timeout=timeout)
        except HttpExecutionError as exc:
            outcomes[row_id] = HttpRowOutcome(row_id=row_id, ok=False, status_code=exc.status_code, error=str(exc))
            staged[row_id] = dict.fromkeys(http_columns, f"Error: HTTP {exc.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("HTTP request '{}' failed for row {}: {}", config.name, row_id, exc)
            outcomes[row_id] = HttpRowOutcome(row_id=row_id, ok=False, error=str(exc) or type(exc).__name__)
            staged[row_id] = dict.fromkeys(http_columns, f"Error: {type(exc).__name__}")
        else:
            updates = {**dict.fromkeys(http_columns, _as_text(result.raw)), **result.updates}
            outcomes[row_id] = HttpRowOutcome(row_id=row_id, ok=True, updates=result.updates)
            staged[row_id] = updates

    async with anyio.create_task_group() as tg:
        for row in rows:
            tg.start_soon(_one, row)

    await merge_row_updates(db, sheet_id, staged)
    return HttpRunResponse(results=[outcomes[str(r["id"])] for r in rows])


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


async def run_agent(
    db: AsyncSession,
    sheet_id: str,
    agent_id: str,
    keys: ProviderKeys,
    row_ids: Sequence[str] | None = None,
    *,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> AgentRunResponse:
    """Run a sheet's agent over selected rows (or the first ``rows_to_deploy``).

    Raises ``AgentNotFoundError`` or ``ConfigurationError`` (no target column).
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    agent = next((a for a in sheet_agents(sheet) if a.id == agent_id), None)
    if agent is None:
        raise AgentNotFoundError(agent_id)

    rows = [row_data(r) for r in await load_rows(db, sheet_id)]
    report = await agent_engine.run_agent(
        agent,
        rows,
        columns,
        keys,
        selected_ids=set(row_ids or []),
        runners=runners,
        client=client,
    )
    updated = await merge_row_updates(
        db,
        sheet_id,
        {row_id: {report.target_column_id: blob} for row_id, blob in report.updates.items()},
    )
    return AgentRunResponse(target_column_id=report.target_column_id, updated=updated, skipped=report.skipped)


async def map_enrichment_field(
    db: AsyncSession,
    sheet_id: str,
    row_id: str,
    column_id: str,
    key: str,
) -> EnrichmentMapResponse:
    """Copy ``key`` of an ENRICHMENT blob into the column whose header is ``key``.

    A TEXT column is created when no column has that header.  Strings are
    copied as-is; any other value is JSON encoded.
    """
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)
    find_column(columns, column_id)
    row = await get_row(db, sheet_id, row_id)

    result = parse_enrichment((row.data or {}).get(column_id))
    if isinstance(result, EnrichmentError):
        msg = f"Enrichment cell holds an error: {result.message}"
        raise EnrichmentFieldError(msg)
    if key not in result.data:
        raise EnrichmentFieldError(key)
    value = _as_text(result.data[key])

    target = next((c for c in columns if c.header == key), None)
    created = target is None
    if target is None:
        target = ColumnDefinition(
            id=create_column_id(key, {c.id for c in columns}),
            header=key,
            type=ColumnType.TEXT,
            width=ENRICHMENT_FIELD_WIDTH,
        )
        store_columns(sheet, [*columns, target])

    row.data = {**(row.data or {}), target.id: validate_write(target, value)}
    await db.commit()
    return EnrichmentMapResponse(column_id=target.id, created=created, value=value)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


async def import_rows(
    db: AsyncSession,
    sheet_id: str,
    parsed: ParsedFile,
    config: HeaderMatchConfig,
    *,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> ImportResponse:
    """Match the upload's headers onto the sheet, add new columns, append the rows."""
    sheet = await get_sheet(db, sheet_id)
    columns = sheet_columns(sheet)

    matches = await match_headers(
        parsed.headers,
        [c.header for c in columns],
        config,
        runners=runners,
        client=client,
    )
    plan = build_import_plan(
        parsed.headers,
        parsed.rows,
        columns,
        matches,
        config.confidence_threshold,
        row_id_factory=new_row_id,
    )
    if plan.new_columns:
        store_columns(sheet, [*columns, *plan.new_columns])
        await db.flush()

    inserted = await insert_rows(db, sheet_id, plan.rows)
    logger.info(
        "Imported {} rows into sheet {} ({} mapped, {} new columns, {} for review)",
        len(inserted),
        sheet_id,
        len(plan.mapped),
        len(plan.new_columns),
        len(plan.review),
    )
    return ImportResponse(
        mapped=plan.mapped,
        new_columns=plan.new_columns,
        review=plan.review,
        inserted=len(inserted),
    )
