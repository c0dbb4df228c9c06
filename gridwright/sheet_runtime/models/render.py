"""Rendered (derived) cell values returned by the column-type dispatcher."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import Field

from gridwright.sheet_runtime.models.enrichment import EnrichmentData, EnrichmentError
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.sheet import CamelModel


class RenderedCell(CamelModel):
    """The derived view of one ``(row, column)`` pair.

    ``value`` is the typed/computed value, ``display`` its text rendering.
    Type-specific extras are only set for the types they apply to.
    """

    column_id: str
    type: ColumnType
    value: Any = None
    display: str = ""
    editable: bool = True
    is_numeric: bool | None = None
    checked: bool | None = None
    option_color: str | None = None
    configured: bool | None = None
    enrichment: Annotated[EnrichmentData | EnrichmentError, Field(discriminator="kind")] | None = None


class RenderedRow(CamelModel):
    id: str
    cells: dict[str, RenderedCell] = Field(default_factory=dict)
