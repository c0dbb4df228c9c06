"""Unit tests for ENRICHMENT cell blobs."""

from __future__ import annotations

import json

from gridwright.sheet_runtime.engine.enrichment import build_blob, error_blob, load_blob, parse_enrichment
from gridwright.sheet_runtime.models.enrichment import EnrichmentData, EnrichmentError, EnrichmentMetadata


def test_parse_data_blob() -> None:
    raw = json.dumps(
        {
            "ceo": "Ada",
            "_sources": ["acme.com", "", "news.io"],
            "_metadata": {"agentName": "Finder", "stepsTaken": 2, "executionTime": 1.5},
        }
    )
    result = parse_enrichment(raw)
    assert isinstance(result, EnrichmentData)
    assert result.data == {"ceo": "Ada"}
    assert result.sources == ["acme.com", "news.io"]
    assert result.metadata.agent_name == "Finder"
    assert result.field_count == 1


def test_parse_error_blob() -> None:
    result = parse_enrichment(json.dumps({"error": "rate limited", "_sources": ["x.io"]}))
    assert isinstance(result, EnrichmentError)
    assert result.message == "rate limited"
    assert result.sources == ["x.io"]


def test_parse_never_raises() -> None:
    for raw in (None, "", "   ", "not json", "[1, 2]", 42, '"text"'):
        result = parse_enrichment(raw)
        assert isinstance(result, EnrichmentData)
        assert result.data == {}


def test_malformed_metadata_is_ignored() -> None:
    result = parse_enrichment({"k": "v", "_metadata": {"stepsTaken": "many"}})
    assert result.metadata is None
    assert result.data == {"k": "v"}


def test_load_blob_accepts_dicts() -> None:
    blob = {"a": 1}
    assert load_blob(blob) is blob


def test_build_blob() -> None:
    metadata = EnrichmentMetadata(agent_name="Finder", steps_taken=1)
    blob = json.loads(build_blob({"ceo": "Ada"}, sources=["acme.com"], metadata=metadata))
    assert blob == {
        "ceo": "Ada",
        "_sources": ["acme.com"],
        "_metadata": {"agentName": "Finder", "stepsTaken": 1},
    }


def test_error_blob() -> None:
    assert json.loads(error_blob("boom")) == {"error": "boom"}
