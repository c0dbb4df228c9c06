"""Sheet domain models.

These are pure Pydantic models for the workspace hierarchy
(vertical -> sheet -> columns / rows) and the sheet-scoped agent and HTTP
request configs.  Field names are snake_case in Python; the wire and JSONB
representation uses the camelCase aliases the browser client speaks.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from gridwright.sheet_runtime.models.enums import (
    AgentProvider,
    AgentType,
    ColumnType,
    DedupKeep,
    HttpAuthType,
    HttpMethod,
)

CellValue = str | int | float | bool | None
"""A single stored cell.  Absent keys on a row are treated as empty."""

RowData = dict[str, Any]
"""A row: ``{"id": ..., <column_id>: CellValue, ...}`` (sparse)."""


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        """JSON-safe camelCase dict (the JSONB / wire shape)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# -- Column components -------------------------------------------------------


class SelectOption(CamelModel):
    id: str
    label: str
    color: str


class DeduplicationConfig(CamelModel):
    active: bool = False
    keep: DedupKeep = DedupKeep.OLDEST


class LinkedColumnConfig(CamelModel):
    """Join definition for a read-only column sourced from another sheet."""

    source_sheet_id: str
    source_column_id: str
    match_column_id: str = Field(description="Column in the current sheet holding the join key")
    source_match_column_id: str = Field(description="Column in the source sheet holding the join key")


class MergeInput(CamelModel):
    id: str
    template: str
    use_ai: bool | None = None


class ColumnDefinition(CamelModel):
    """A column of a sheet.  ``id`` is the key used on every row."""

    id: str
    header: str
    width: int = 150
    type: ColumnType = ColumnType.TEXT
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

    @model_validator(mode="after")
    def _unique_option_labels(self) -> ColumnDefinition:
        if self.options:
            labels = [o.label for o in self.options]
            if len(labels) != len(set(labels)):
                msg = f"Column '{self.id}' has duplicate select option labels"
                raise ValueError(msg)
        return self

    @property
    def is_linked(self) -> bool:
        return self.linked_column is not None

    @property
    def dedup_active(self) -> bool:
        return self.deduplication is not None and self.deduplication.active


# -- Agent / HTTP configs ----------------------------------------------------


class AgentConfig(CamelModel):
    """An AI agent that writes a JSON blob into an ENRICHMENT column."""

    id: str
    name: str
    type: AgentType = AgentType.TEXT
    provider: AgentProvider = AgentProvider.GOOGLE
    model_id: str
    prompt: str
    inputs: list[str] = Field(default_factory=list, description="Column ids the prompt may reference")
    outputs: list[str] = Field(default_factory=list, description="Expected JSON keys of the result")
    output_column_name: str = Field(description="Header of the ENRICHMENT column receiving the blob")
    condition: str | None = None
    rows_to_deploy: int | None = None


class HttpAuthConfig(CamelModel):
    type: HttpAuthType = HttpAuthType.NONE
    api_key_header: str | None = None
    api_key_query_param: str | None = None
    api_key_value: str | None = None
    bearer_token: str | None = None
    basic_user: str | None = None
    basic_password: str | None = None


class HttpRequestConfig(CamelModel):
    """Outbound HTTP call templated against a row.

    ``response_mapping`` maps a JSON path (``a.b[0].c``) to a target column
    **header**; the header is looked up at execution time.
    """

    id: str
    name: str
    url: str
    method: HttpMethod = HttpMethod.GET
    auth: HttpAuthConfig = Field(default_factory=HttpAuthConfig)
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None
    inputs: list[str] = Field(default_factory=list)
    response_mapping: dict[str, str] = Field(default_factory=dict)


# -- Sheet / Vertical --------------------------------------------------------


class Sheet(CamelModel):
    id: str
    name: str
    description: str | None = None
    color: str | None = None
    columns: list[ColumnDefinition] = Field(default_factory=list)
    rows: list[RowData] = Field(default_factory=list)
    agents: list[AgentConfig] = Field(default_factory=list)
    http_requests: list[HttpRequestConfig] = Field(default_factory=list)
    auto_update: bool = False

    @model_validator(mode="after")
    def _unique_column_ids(self) -> Sheet:
        ids = [c.id for c in self.columns]
        if len(ids) != len(set(ids)):
            msg = f"Sheet '{self.id}' has duplicate column ids"
            raise ValueError(msg)
        return self


class Vertical(CamelModel):
    id: str
    name: str
    color: str | None = None
    sheets: list[Sheet] = Field(default_factory=list)
