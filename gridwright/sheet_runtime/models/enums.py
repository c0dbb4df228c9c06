"""Shared enumerations used across the sheet runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Columns -----------------------------------------------------------------


class ColumnType(StrEnum):
    """Declared type of a column; selects the cell derivation rules."""

    TEXT = "TEXT"
    NUMBER = "NUMBER"
    CURRENCY = "CURRENCY"
    DATE = "DATE"
    URL = "URL"
    EMAIL = "EMAIL"
    IMAGE = "IMAGE"
    CHECKBOX = "CHECKBOX"
    SELECT = "SELECT"
    FORMULA = "FORMULA"
    ENRICHMENT = "ENRICHMENT"
    HTTP = "HTTP"
    MESSAGE = "MESSAGE"
    WATERFALL = "WATERFALL"
    MERGE = "MERGE"


class DedupKeep(StrEnum):
    OLDEST = "oldest"
    NEWEST = "newest"


# -- Agents ------------------------------------------------------------------


class AgentType(StrEnum):
    WEB_SEARCH = "WEB_SEARCH"
    TEXT = "TEXT"
    REASONING = "REASONING"
    HUBSPOT = "HUBSPOT"


class AgentProvider(StrEnum):
    GOOGLE = "GOOGLE"
    OPENAI = "OPENAI"
    ANTHROPIC = "ANTHROPIC"


# -- HTTP requests -----------------------------------------------------------


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def allows_body(self) -> bool:
        return self not in (HttpMethod.GET, HttpMethod.DELETE)


class HttpAuthType(StrEnum):
    NONE = "NONE"
    API_KEY = "API_KEY"
    BEARER = "BEARER"
    BASIC = "BASIC"


# -- Filtering ---------------------------------------------------------------


class FilterOperator(StrEnum):
    """Per-column predicate operators.  All comparisons are case-insensitive."""

    EQUAL_TO = "equal_to"
    NOT_EQUAL_TO = "not_equal_to"
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "does_not_contain"
    CONTAINS_ANY_OF = "contains_any_of"
    DOES_NOT_CONTAIN_ANY_OF = "does_not_contain_any_of"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class FilterCombinator(StrEnum):
    AND = "and"
    OR = "or"


class SearchMode(StrEnum):
    COLUMN = "column"
    GLOBAL = "global"
