"""Reading and writing ENRICHMENT cell blobs.

The raw cell is a JSON object.  Reserved keys:

- ``error``     : the run failed; the value is the message.
- ``_sources``  : list of source URLs / domains the agent cited.
- ``_metadata`` : ``{agentName, stepsTaken, tokensUsed?, executionTime}``.

Everything else is agent data.  Parsing never raises: malformed input reads as
an empty data object so a bad cell can never break the grid.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger
from pydantic import ValidationError

from gridwright.sheet_runtime.models.enrichment import (
    EnrichmentData,
    EnrichmentError,
    EnrichmentMetadata,
    EnrichmentResult,
)

SOURCES_KEY = "_sources"
METADATA_KEY = "_metadata"
ERROR_KEY = "error"


def load_blob(raw: Any) -> dict[str, Any]:
    """Decode a raw cell into a dict; anything else becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Enrichment cell is not valid JSON, treating as empty")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_enrichment(raw: Any) -> EnrichmentResult:
    blob = load_blob(raw)

    sources_raw = blob.get(SOURCES_KEY)
    sources = [str(s) for s in sources_raw if s] if isinstance(sources_raw, list) else []

    metadata = None
    if isinstance(blob.get(METADATA_KEY), dict):
        try:
            metadata = EnrichmentMetadata.model_validate(blob[METADATA_KEY])
        except ValidationError:
            logger.debug("Ignoring malformed enrichment metadata")

    error = blob.get(ERROR_KEY)
    if error:
        return EnrichmentError(message=str(error), sources=sources, metadata=metadata)

    data = {k: v for k, v in blob.items() if k not in (SOURCES_KEY, METADATA_KEY)}
    return EnrichmentData(data=data, sources=sources, metadata=metadata)


def build_blob(
    data: dict[str, Any],
    *,
    sources: list[str] | None = None,
    metadata: EnrichmentMetadata | None = None,
) -> str:
    """Serialise agent output into the raw ENRICHMENT cell value."""
    blob = dict(data)
    if sources:
        blob[SOURCES_KEY] = sources
    if metadata is not None:
        blob[METADATA_KEY] = metadata.dump()
    return json.dumps(blob)


def error_blob(message: str, *, metadata: EnrichmentMetadata | None = None) -> str:
    return build_blob({ERROR_KEY: message}, metadata=metadata)
