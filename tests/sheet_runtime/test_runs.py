"""Integration tests for HTTP runs, agent runs, enrichment mapping and file import."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from httpx import AsyncClient

HTTP_REQUEST = {
    "id": "h1",
    "name": "Company lookup",
    "url": "https://api.example.com/companies?domain=/domain",
    "responseMapping": {"employees": "Employees"},
}

AGENT = {
    "id": "a1",
    "name": "CEO Finder",
    "modelId": "gemini-test",
    "prompt": "Find the CEO of /company",
    "inputs": ["company"],
    "outputs": ["ceo"],
    "outputColumnName": "Company Info",
}

COLUMNS = [
    {"id": "company", "header": "Company"},
    {"id": "domain", "header": "Domain"},
    {"id": "employees", "header": "Employees"},
    {"id": "lookup", "header": "Lookup", "type": "HTTP", "connectedHttpRequestId": "h1"},
    {"id": "info", "header": "Company Info", "type": "ENRICHMENT", "connectedAgentId": "a1"},
]


async def _sheet_with_rows(client: AsyncClient, rows: list[dict[str, Any]]) -> None:
    await client.post("/api/verticals/create", json={"verticalId": "v1", "name": "Sales"})
    resp = await client.post(
        "/api/sheets/create",
        json={
            "verticalId": "v1",
            "sheetId": "s1",
            "name": "Leads",
            "columns": COLUMNS,
            "agents": [AGENT],
            "httpRequests": [HTTP_REQUEST],
        },
    )
    assert resp.status_code == 201, resp.text
    resp = await client.post("/api/sheets/s1/rows/insert", json={"rows": rows})
    assert resp.status_code == 201, resp.text


async def _stored_rows(client: AsyncClient) -> dict[str, dict[str, Any]]:
    resp = await client.get("/api/sheets/s1/get")
    return {r["id"]: r for r in resp.json()["rows"]}


def _gemini_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


# ---------------------------------------------------------------------------
# HTTP runs
# ---------------------------------------------------------------------------


@pytest.mark.integration
async def test_run_http_request(client: AsyncClient, upstream: Any) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["domain"] == "acme.com":
            return httpx.Response(200, json={"employees": 50})
        return httpx.Response(500, text="upstream down")

    upstream.handler = handler
    await _sheet_with_rows(client, [{"id": "r1", "domain": "acme.com"}, {"id": "r2", "domain": "broken.io"}])

    resp = await client.post("/api/sheets/s1/http/h1/run", json={})
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert [(r["rowId"], r["ok"]) for r in results] == [("r1", True), ("r2", False)]
    assert results[0]["updates"] == {"employees": "50"}
    assert results[1]["statusCode"] == 500

    stored = await _stored_rows(client)
    assert stored["r1"]["employees"] == "50"
    assert json.loads(stored["r1"]["lookup"]) == {"employees": 50}
    assert stored["r2"]["lookup"] == "Error: HTTP 500"
    assert stored["r2"]["employees"] == ""


@pytest.mark.integration
async def test_run_http_request_selected_rows(client: AsyncClient, upstream: Any) -> None:
    upstream.handler = lambda _r: httpx.Response(200, json={"employees": 7})
    await _sheet_with_rows(client, [{"id": "r1", "domain": "a.io"}, {"id": "r2", "domain": "b.io"}])

    resp = await client.post("/api/sheets/s1/http/h1/run", json={"rowIds": ["r2"]})
    assert [r["rowId"] for r in resp.json()["results"]] == ["r2"]
    assert len(upstream.requests) == 1


@pytest.mark.integration
async def test_run_http_request_network_error(client: AsyncClient, upstream: Any) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    upstream.handler = refuse
    await _sheet_with_rows(client, [{"id": "r1", "domain": "acme.com"}])

    resp = await client.post("/api/sheets/s1/http/h1/run", json={})
    assert resp.json()["results"][0]["ok"] is False
    assert (await _stored_rows(client))["r1"]["lookup"] == "Error: ConnectError"


@pytest.mark.integration
async def test_run_http_request_over_formula_column(client: AsyncClient, upstream: Any) -> None:
    upstream.handler = lambda _r: httpx.Response(200, json={"employees": 3})
    await _sheet_with_rows(client, [{"id": "r1", "domain": "acme.com"}])

    column = {"id": "site", "header": "Site", "type": "FORMULA", "formula": "www./domain"}
    assert (await client.post("/api/sheets/s1/columns/add", json=column)).status_code == 201
    request = {**HTTP_REQUEST, "url": "https://api.example.com/companies?domain=/site"}
    assert (await client.post("/api/sheets/s1/update", json={"httpRequests": [request]})).status_code == 200

    resp = await client.post("/api/sheets/s1/http/h1/run", json={})
    assert resp.json()["results"][0]["ok"] is True
    assert upstream.requests[0].url.params["domain"] == "www.acme.com"


@pytest.mark.integration
async def test_run_unknown_http_request(client: AsyncClient) -> None:
    await _sheet_with_rows(client, [])
    resp = await client.post("/api/sheets/s1/http/nope/run", json={})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Agent runs and enrichment mapping
# ---------------------------------------------------------------------------


@pytest.mark.integration
async def test_run_agent(client: AsyncClient, upstream: Any) -> None:
    upstream.handler = lambda _r: _gemini_reply('{"ceo": "Wile E.", "founded": 1949}')
    await _sheet_with_rows(client, [{"id": "r1", "company": "Acme"}, {"id": "r2", "company": ""}])

    resp = await client.post("/api/sheets/s1/agents/a1/run", json={"apiKeys": {"google": "g-key"}})
    assert resp.status_code == 200
    assert resp.json() == {"targetColumnId": "info", "updated": ["r1"], "skipped": ["r2"]}
    assert upstream.requests[0].headers["x-goog-api-key"] == "g-key"

    resp = await client.post("/api/sheets/s1/rows/rendered", json={"rowIds": ["r1"]})
    cell = resp.json()[0]["cells"]["info"]
    assert cell["display"] == "JSON | 2 Fields"
    assert cell["enrichment"]["metadata"]["agentName"] == "CEO Finder"


@pytest.mark.integration
async def test_run_agent_records_provider_failure(client: AsyncClient, upstream: Any) -> None:
    upstream.handler = lambda _r: httpx.Response(429, json={"error": {"message": "Resource exhausted"}})
    await _sheet_with_rows(client, [{"id": "r1", "company": "Acme"}])

    resp = await client.post("/api/sheets/s1/agents/a1/run", json={"apiKeys": {"google": "g-key"}})
    assert resp.json()["updated"] == ["r1"]

    resp = await client.post("/api/sheets/s1/rows/rendered", json={"rowIds": ["r1"]})
    cell = resp.json()[0]["cells"]["info"]
    assert cell["enrichment"]["kind"] == "error"
    assert "Resource exhausted" in cell["display"]


@pytest.mark.integration
async def test_run_unknown_agent(client: AsyncClient) -> None:
    await _sheet_with_rows(client, [])
    resp = await client.post("/api/sheets/s1/agents/nope/run", json={})
    assert resp.status_code == 404


@pytest.mark.integration
async def test_map_enrichment_field(client: AsyncClient, upstream: Any) -> None:
    upstream.handler = lambda _r: _gemini_reply('{"ceo": "Wile E.", "founded": 1949}')
    await _sheet_with_rows(client, [{"id": "r1", "company": "Acme"}])
    await client.post("/api/sheets/s1/agents/a1/run", json={"apiKeys": {"google": "g-key"}})

    resp = await client.post("/api/sheets/s1/rows/r1/enrichment/map", json={"columnId": "info", "key": "ceo"})
    assert resp.status_code == 200
    assert resp.json() == {"columnId": "ceo", "created": True, "value": "Wile E."}

    resp = await client.post("/api/sheets/s1/rows/r1/enrichment/map", json={"columnId": "info", "key": "founded"})
    assert resp.json()["value"] == "1949"

    resp = await client.post("/api/sheets/s1/rows/r1/enrichment/map", json={"columnId": "info", "key": "ceo"})
    assert resp.json()["created"] is False

    detail = (await client.get("/api/sheets/s1/get")).json()
    ceo_column = next(c for c in detail["columns"] if c["id"] == "ceo")
    assert ceo_column["width"] == 200
    assert detail["rows"][0]["ceo"] == "Wile E."


@pytest.mark.integration
async def test_map_missing_enrichment_field(client: AsyncClient) -> None:
    await _sheet_with_rows(client, [{"id": "r1", "company": "Acme"}])
    resp = await client.post("/api/sheets/s1/rows/r1/enrichment/map", json={"columnId": "info", "key": "ceo"})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@pytest.mark.integration
async def test_import_csv(client: AsyncClient, upstream: Any) -> None:
    await _sheet_with_rows(client, [{"id": "r1", "company": "Acme"}])

    csv_bytes = b"company,Website,Headcount\nInitech,initech.com,120\nGlobex,globex.com,n/a\n"
    resp = await client.post(
        "/api/sheets/s1/import",
        files={"file": ("companies.csv", csv_bytes, "text/csv")},
        data={"useFuzzyMatching": "false"},
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["mapped"] == {"company": "company"}
    assert [c["id"] for c in data["newColumns"]] == ["website", "headcount"]
    assert data["inserted"] == 2
    assert upstream.requests == []

    stored = await _stored_rows(client)
    imported = [r for r in stored.values() if r["id"] != "r1"]
    assert {r["company"] for r in imported} == {"Initech", "Globex"}
    assert {r["website"] for r in imported} == {"initech.com", "globex.com"}


@pytest.mark.integration
async def test_import_unsupported_file(client: AsyncClient) -> None:
    await _sheet_with_rows(client, [])
    resp = await client.post("/api/sheets/s1/import", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 415


@pytest.mark.integration
async def test_import_into_missing_sheet(client: AsyncClient) -> None:
    files = {"file": ("companies.csv", b"company\nAcme\n", "text/csv")}
    resp = await client.post("/api/sheets/nope/import", files=files)
    assert resp.status_code == 404
