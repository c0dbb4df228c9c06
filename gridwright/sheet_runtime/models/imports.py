"""Models for the file import pipeline (parse -> match headers -> plan)."""

from __future__ import annotations

from pydantic import Field

from gridwright.sheet_runtime.models.enums import AgentProvider
from gridwright.sheet_runtime.models.sheet import CamelModel, ColumnDefinition, RowData

ImportCell = str | int | float | None


class ParsedSheet(CamelModel):
    name: str
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, ImportCell]] = Field(default_factory=list)


class ParsedFile(CamelModel):
    """Result of parsing an uploaded CSV / Excel file.

    ``headers`` and ``rows`` mirror the first worksheet; ``sheets`` lists every
    worksheet for Excel workbooks.
    """

    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, ImportCell]] = Field(default_factory=list)
    sheets: list[ParsedSheet] | None = None
    file_name: str | None = None


class HeaderMatch(CamelModel):
    source_header: str
    target_header: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str | None = None


class ProviderKeys(CamelModel):
    google: str | None = None
    anthropic: str | None = None
    openai: str | None = None

    def has_any(self) -> bool:
        return bool(self.google or self.anthropic or self.openai)

    def key_for(self, provider: AgentProvider) -> str | None:
        match provider:
            case AgentProvider.GOOGLE:
                return self.google
            case AgentProvider.ANTHROPIC:
                return self.anthropic
            case AgentProvider.OPENAI:
                return self.openai
        return None

    def merged_with(self, override: ProviderKeys | None) -> ProviderKeys:
        """Keys from *override* win per provider; missing ones fall back to ``self``."""
        if override is None:
            return self
        return ProviderKeys(
            google=override.google or self.google,
            anthropic=override.anthropic or self.anthropic,
            openai=override.openai or self.openai,
        )


class HeaderMatchConfig(CamelModel):
    provider: AgentProvider = AgentProvider.GOOGLE
    model_id: str | None = None
    confidence_threshold: float = 0.7
    use_fuzzy_matching: bool = True
    api_key: str | None = Field(default=None, description="Key for ``provider``; overrides ``api_keys``")
    api_keys: ProviderKeys = Field(default_factory=ProviderKeys)

    def merged_keys(self) -> ProviderKeys:
        """Per-provider keys with ``api_key`` taking the slot of ``provider``."""
        keys = self.api_keys.model_copy()
        if self.api_key:
            match self.provider:
                case AgentProvider.GOOGLE:
                    keys.google = self.api_key
                case AgentProvider.ANTHROPIC:
                    keys.anthropic = self.api_key
                case AgentProvider.OPENAI:
                    keys.openai = self.api_key
        return keys


class ImportPlan(CamelModel):
    """How an uploaded file lands in an existing sheet.

    - ``mapped``: source header -> existing column id (auto-applied matches).
    - ``new_columns``: columns to create for unmatched headers.
    - ``review``: below-threshold matches surfaced for manual review.
    - ``rows``: rows keyed by column id, ready to insert.
    """

    mapped: dict[str, str] = Field(default_factory=dict)
    new_columns: list[ColumnDefinition] = Field(default_factory=list)
    review: list[HeaderMatch] = Field(default_factory=list)
    rows: list[RowData] = Field(default_factory=list)
