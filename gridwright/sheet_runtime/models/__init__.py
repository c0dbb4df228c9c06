"""Data models for the sheet runtime.

API schemas live in ``models.api`` and are imported from there directly.
"""

from gridwright.sheet_runtime.models.enrichment import (
    EnrichmentData,
    EnrichmentError,
    EnrichmentMetadata,
    EnrichmentResult,
)
from gridwright.sheet_runtime.models.enums import (
    AgentProvider,
    AgentType,
    ColumnType,
    DedupKeep,
    FilterCombinator,
    FilterOperator,
    HttpAuthType,
    HttpMethod,
    SearchMode,
)
from gridwright.sheet_runtime.models.filters import FilterCondition, FilterState, SearchState
from gridwright.sheet_runtime.models.imports import (
    HeaderMatch,
    HeaderMatchConfig,
    ImportPlan,
    ParsedFile,
    ParsedSheet,
    ProviderKeys,
)
from gridwright.sheet_runtime.models.render import RenderedCell, RenderedRow
from gridwright.sheet_runtime.models.sheet import (
    AgentConfig,
    CamelModel,
    CellValue,
    ColumnDefinition,
    DeduplicationConfig,
    HttpAuthConfig,
    HttpRequestConfig,
    LinkedColumnConfig,
    MergeInput,
    RowData,
    SelectOption,
    Sheet,
    Vertical,
)

__all__ = [
    "AgentConfig",
    "AgentProvider",
    "AgentType",
    "CamelModel",
    "CellValue",
    "ColumnDefinition",
    "ColumnType",
    "DedupKeep",
    "DeduplicationConfig",
    "EnrichmentData",
    "EnrichmentError",
    "EnrichmentMetadata",
    "EnrichmentResult",
    "FilterCombinator",
    "FilterCondition",
    "FilterOperator",
    "FilterState",
    "HeaderMatch",
    "HeaderMatchConfig",
    "HttpAuthConfig",
    "HttpAuthType",
    "HttpMethod",
    "HttpRequestConfig",
    "ImportPlan",
    "LinkedColumnConfig",
    "MergeInput",
    "ParsedFile",
    "ParsedSheet",
    "ProviderKeys",
    "RenderedCell",
    "RenderedRow",
    "RowData",
    "SearchMode",
    "SearchState",
    "SelectOption",
    "Sheet",
    "Vertical",
]
