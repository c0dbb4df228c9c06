"""Filter and search state applied to a sheet's rows."""

from __future__ import annotations

from pydantic import Field

from gridwright.sheet_runtime.models.enums import FilterCombinator, FilterOperator, SearchMode
from gridwright.sheet_runtime.models.sheet import CamelModel


class FilterCondition(CamelModel):
    id: str | None = None
    col_id: str
    operator: FilterOperator = FilterOperator.CONTAINS
    value: str = ""


class FilterState(CamelModel):
    """A flat list of conditions joined by a single combinator (no nesting)."""

    combinator: FilterCombinator = FilterCombinator.AND
    conditions: list[FilterCondition] = Field(default_factory=list)


class SearchState(CamelModel):
    query: str = ""
    mode: SearchMode = SearchMode.GLOBAL
    col_id: str | None = Field(default=None, description="Required when mode is 'column'")
