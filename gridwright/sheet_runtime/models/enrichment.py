"""Parsed form of an ENRICHMENT cell.

An ENRICHMENT cell stores a JSON-encoded object written by an agent run.  It is
read back as a tagged union: either the data the agent produced
(``EnrichmentData``) or the error it recorded (``EnrichmentError``).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from gridwright.sheet_runtime.models.sheet import CamelModel


class EnrichmentMetadata(CamelModel):
    agent_name: str | None = None
    steps_taken: int | None = None
    tokens_used: int | None = None
    execution_time: float | None = Field(default=None, description="Seconds")


class EnrichmentData(CamelModel):
    kind: Literal["data"] = "data"
    data: dict[str, Any] = Field(default_factory=dict)
    sources: list[str] = Field(default_factory=list)
    metadata: EnrichmentMetadata | None = None

    @property
    def field_count(self) -> int:
        return len(self.data)


class EnrichmentError(CamelModel):
    kind: Literal["error"] = "error"
    message: str
    sources: list[str] = Field(default_factory=list)
    metadata: EnrichmentMetadata | None = None


EnrichmentResult = EnrichmentData | EnrichmentError
