"""API request / response schemas.

These thin schemas sit between HTTP and the ORM layer:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.
- **Response** schemas serialize ORM rows via ``from_attributes``.

Everything speaks camelCase on the wire, like the nested domain models
(``ColumnDefinition``, ``AgentConfig``, ...) they reuse.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field, model_validator

from gridwright.sheet_runtime.models.enums import ColumnType, DedupKeep
from gridwright.sheet_runtime.models.filters import FilterState, SearchState
from gridwright.sheet_runtime.models.imports import HeaderMatch, HeaderMatchConfig, ProviderKeys
from gridwright.sheet_runtime.models.sheet import (
    AgentConfig,
    CamelModel,
    ColumnDefinition,
    DeduplicationConfig,
    HttpRequestConfig,
    LinkedColumnConfig,
    MergeInput,
    RowData,
    SelectOption,
)

# ---------------------------------------------------------------------------
# Vertical
# ---------------------------------------------------------------------------


class VerticalCreate(CamelModel):
    vertical_id: str | None = Field(default=None, description="Optional; auto-generated UUID if omitted.")
    name: str
    color: str | None = None


class VerticalUpdate(CamelModel):
    name: str | None = None
    color: str | None = None


class VerticalResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    vertical_id: str
    name: str
    color: str | None = None
    created_at: datetime
    updated_at: datetime


class SheetSummary(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    sheet_id: str
    name: str
    color: str | None = None
    position: int


class VerticalDetailResponse(VerticalResponse):
    sheets: list[SheetSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sheet
# ---------------------------------------------------------------------------


def _check_unique_column_ids(columns: list[ColumnDefinition] | None) -> None:
    ids = [c.id for c in columns or []]
    if len(ids) != len(set(ids)):
        msg = "Column ids must be unique within a sheet"
        raise ValueError(msg)


class SheetCreate(CamelModel):
    sheet_id: str | None = Field(default=None, description="Optional; auto-generated UUID if omitted.")
    vertical_id: str
    name: str
    description: str | None = None
    color: str | None = None
    columns: list[ColumnDefinition] = Field(default_factory=list)
    agents: list[AgentConfig] = Field(default_factory=list)
    http_requests: list[HttpRequestConfig] = Field(default_factory=list)
    auto_update: bool = False

    @model_validator(mode="after")
    def _unique_columns(self) -> SheetCreate:
        _check_unique_column_ids(self.columns)
        return self


class SheetUpdate(CamelModel):
    """Partial sheet update.  Columns have their own endpoints."""

    name: str | None = None
    description: str | None = None
    color: str | None = None
    position: int | None = None
    agents: list[AgentConfig] | None = None
    http_requests: list[HttpRequestConfig] | None = None
    auto_update: bool | None = None


class SheetResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    sheet_id: str
    vertical_id: str
    name: str
    description: str | None = None
    color: str | None = None
    position: int
    columns: list[ColumnDefinition]
    agents: list[AgentConfig]
    http_requests: list[HttpRequestConfig]
    auto_update: bool
    created_at: datetime
    updated_at: datetime


class SheetDetailResponse(SheetResponse):
    rows: list[RowData] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


class ColumnCreate(ColumnDefinition):
    """A new column; ``id`` is derived from the header when omitted."""

    id: str | None = None  # type: ignore[assignment]


class ColumnUpdate(CamelModel):
    """Partial column update.  The column id is immutable."""

    header: str | None = None
    width: int | None = None
    type: ColumnType | None = None
    formula: str | None = None
    default_value: str | None = None
    options: list[SelectOption] | None = None
    deduplication: DeduplicationConfig | None = None
    connected_agent_id: str | None = None
    connected_http_request_id: str | None = None
    description: str | None = None
    header_color: str | None = None
    pinned: bool | None = None
    hidden: bool | None = None
    merge_inputs: list[MergeInput] | None = None
    linked_column: LinkedColumnConfig | None = None


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class RowsInsert(CamelModel):
    """Rows to append.  Each may carry an ``id`` and any subset of column values."""

    rows: list[RowData] = Field(default_factory=lambda: [{}])


class RowsDelete(CamelModel):
    row_ids: list[str]


class CellWrite(CamelModel):
    value: Any = None


class CellWriteResponse(CamelModel):
    row: RowData
    removed_row_ids: list[str] = Field(default_factory=list)


class RowsDeleteResponse(CamelModel):
    deleted: int


class RowQuery(CamelModel):
    filter: FilterState | None = None
    search: SearchState | None = None


class RowSelection(CamelModel):
    """Rows to run on; ``None`` / empty means the default selection."""

    row_ids: list[str] | None = None


class HttpRowOutcome(CamelModel):
    row_id: str
    ok: bool
    status_code: int | None = None
    error: str | None = None
    updates: dict[str, str] = Field(default_factory=dict)


class HttpRunResponse(CamelModel):
    results: list[HttpRowOutcome] = Field(default_factory=list)


class AgentRunRequest(RowSelection):
    api_keys: ProviderKeys | None = Field(default=None, description="Overrides server-side keys per provider.")


class AgentRunResponse(CamelModel):
    target_column_id: str
    updated: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class EnrichmentMapRequest(CamelModel):
    column_id: str = Field(description="ENRICHMENT column holding the blob")
    key: str = Field(description="Blob key; also the header of the destination column")


class EnrichmentMapResponse(CamelModel):
    column_id: str
    created: bool
    value: str


class ImportResponse(CamelModel):
    mapped: dict[str, str] = Field(default_factory=dict)
    new_columns: list[ColumnDefinition] = Field(default_factory=list)
    review: list[HeaderMatch] = Field(default_factory=list)
    inserted: int = 0


# ---------------------------------------------------------------------------
# Stateless engine endpoints
# ---------------------------------------------------------------------------


class ResolveRequest(CamelModel):
    template: str
    row: RowData = Field(default_factory=dict)
    columns: list[ColumnDefinition] | None = None
    column_ids: list[str] | None = Field(default=None, description="Used when ``columns`` is omitted.")

    def known_columns(self) -> list[ColumnDefinition | str]:
        if self.columns is not None:
            return list(self.columns)
        return list(self.column_ids or [])


class ResolveResponse(CamelModel):
    result: str
    tokens: list[str] = Field(default_factory=list)


class FilterRequest(CamelModel):
    rows: list[RowData] = Field(default_factory=list)
    filter: FilterState | None = None
    search: SearchState | None = None


class DedupeRequest(CamelModel):
    rows: list[RowData] = Field(default_factory=list)
    column_id: str
    keep: DedupKeep = DedupKeep.OLDEST


class HttpExecuteRequest(CamelModel):
    config: HttpRequestConfig
    row: RowData = Field(default_factory=dict)
    columns: list[ColumnDefinition] = Field(default_factory=list)


class HeaderMatchRequest(CamelModel):
    source_headers: list[str]
    target_headers: list[str]
    config: HeaderMatchConfig | None = None


class HeaderMatchResponse(CamelModel):
    matches: list[HeaderMatch] = Field(default_factory=list)
    applied: list[HeaderMatch] = Field(default_factory=list)
    review: list[HeaderMatch] = Field(default_factory=list)


class AgentSuggestRequest(CamelModel):
    prompt: str
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    columns: list[ColumnDefinition] = Field(default_factory=list)
    api_keys: ProviderKeys | None = None
