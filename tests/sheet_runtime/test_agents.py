"""Unit tests for agent execution and agent suggestions."""

from __future__ import annotations

import json

import httpx
import pytest

from gridwright.sheet_runtime.engine.agents import (
    build_agent_prompt,
    build_suggest_prompt,
    find_target_column,
    input_context,
    missing_inputs,
    run_agent,
    run_agent_for_row,
    select_rows,
    suggest_agent_config,
)
from gridwright.sheet_runtime.engine.enrichment import parse_enrichment
from gridwright.sheet_runtime.engine.errors import ConfigurationError, LLMError
from gridwright.sheet_runtime.models.enrichment import EnrichmentData, EnrichmentError
from gridwright.sheet_runtime.models.enums import AgentProvider, AgentType, ColumnType
from gridwright.sheet_runtime.models.imports import ProviderKeys
from gridwright.sheet_runtime.models.sheet import AgentConfig, ColumnDefinition

COLUMNS = [
    ColumnDefinition(id="company", header="Company"),
    ColumnDefinition(id="domain", header="Domain"),
    ColumnDefinition(id="info", header="Company Info", type=ColumnType.ENRICHMENT),
]
ROWS = [
    {"id": "r1", "company": "Acme", "domain": "acme.com"},
    {"id": "r2", "company": "Globex", "domain": ""},
    {"id": "r3", "company": "Initech", "domain": "initech.com"},
]
KEYS = ProviderKeys(google="g-key", openai="o-key")


def _agent(**overrides: object) -> AgentConfig:
    defaults: dict[str, object] = {
        "id": "a1",
        "name": "Company Finder",
        "model_id": "test-model",
        "prompt": "Find the CEO of /company",
        "inputs": ["company", "domain"],
        "outputs": ["ceo"],
        "output_column_name": "Company Info",
    }
    defaults.update(overrides)
    return AgentConfig(**defaults)


class FakeRunner:
    def __init__(self, reply: str | Exception) -> None:
        self.reply = reply
        self.calls: list[dict] = []

    async def __call__(self, model_id, prompt, api_key, system_instruction=None, *, client=None) -> str:
        self.calls.append({"model_id": model_id, "prompt": prompt, "api_key": api_key})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


# ---------------------------------------------------------------------------
# Prompt building and selection
# ---------------------------------------------------------------------------


def test_input_context_uses_headers() -> None:
    agent = _agent(inputs=["company", "gone"])
    assert input_context(agent, ROWS[0], COLUMNS) == {"Company": "Acme"}


def test_missing_inputs() -> None:
    assert missing_inputs(_agent(), ROWS[0]) == []
    assert missing_inputs(_agent(), ROWS[1]) == ["domain"]


def test_prompt_keeps_tokens_verbatim() -> None:
    prompt = build_agent_prompt(_agent(), ROWS[0], COLUMNS)
    assert prompt.startswith("You are a Data Enrichment Agent.")
    assert "GOAL: Find the CEO of /company" in prompt
    assert 'INPUT: {"Company": "Acme", "Domain": "acme.com"}' in prompt
    assert 'containing keys: ["ceo"]' in prompt
    assert "CONDITION" not in prompt


def test_prompt_web_search_and_condition() -> None:
    agent = _agent(type=AgentType.WEB_SEARCH, condition="  the company is public ")
    prompt = build_agent_prompt(agent, ROWS[0], COLUMNS)
    assert prompt.startswith("You are a Web Search Agent.")
    assert "Google Search" in prompt
    assert "CONDITION: Only produce output if the following holds for this input: the company is public" in prompt
    assert '{"_skipped": true}' in prompt


def test_find_target_column() -> None:
    assert find_target_column(_agent(), COLUMNS).id == "info"
    with pytest.raises(ConfigurationError, match="Target column not found"):
        find_target_column(_agent(output_column_name="Nope"), COLUMNS)


def test_select_rows() -> None:
    assert [r["id"] for r in select_rows(_agent(), ROWS)] == ["r1", "r2", "r3"]
    assert [r["id"] for r in select_rows(_agent(rows_to_deploy=2), ROWS)] == ["r1", "r2"]
    assert [r["id"] for r in select_rows(_agent(rows_to_deploy=2), ROWS, {"r3"})] == ["r3"]


# ---------------------------------------------------------------------------
# Single row
# ---------------------------------------------------------------------------


async def test_run_for_row_builds_blob() -> None:
    runner = FakeRunner('```json\n{"ceo": "Wile E."}\n```')
    blob = await run_agent_for_row(_agent(), ROWS[0], COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner})

    result = parse_enrichment(blob)
    assert isinstance(result, EnrichmentData)
    assert result.data == {"ceo": "Wile E."}
    assert result.metadata.agent_name == "Company Finder"
    assert result.metadata.steps_taken == 1
    assert runner.calls[0]["api_key"] == "g-key"
    assert runner.calls[0]["model_id"] == "test-model"


async def test_run_for_row_reads_formula_inputs() -> None:
    runner = FakeRunner('{"ceo": "x"}')
    label = ColumnDefinition(id="label", header="Label", type=ColumnType.FORMULA, formula="/company @ /domain")
    agent = _agent(inputs=["label"])

    blob = await run_agent_for_row(agent, ROWS[0], [*COLUMNS, label], KEYS, runners={AgentProvider.GOOGLE: runner})
    assert blob is not None
    assert '{"Label": "Acme @ acme.com"}' in runner.calls[0]["prompt"]


async def test_run_for_row_uses_agent_provider_key() -> None:
    runner = FakeRunner('{"ceo": "x"}')
    agent = _agent(provider=AgentProvider.OPENAI)
    await run_agent_for_row(agent, ROWS[0], COLUMNS, KEYS, runners={AgentProvider.OPENAI: runner})
    assert runner.calls[0]["api_key"] == "o-key"


async def test_run_for_row_skips_missing_inputs() -> None:
    runner = FakeRunner('{"ceo": "x"}')
    assert await run_agent_for_row(_agent(), ROWS[1], COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner}) is None
    assert runner.calls == []


async def test_run_for_row_condition_not_met() -> None:
    runner = FakeRunner('{"_skipped": true}')
    agent = _agent(condition="public company")
    assert await run_agent_for_row(agent, ROWS[0], COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner}) is None


async def test_run_for_row_plain_text_reply() -> None:
    runner = FakeRunner("The CEO is Wile E.")
    blob = await run_agent_for_row(_agent(), ROWS[0], COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner})
    assert parse_enrichment(blob).data == {"result": "The CEO is Wile E."}


@pytest.mark.parametrize(
    ("reply", "message"),
    [
        (LLMError("Google API key missing"), "Google API key missing"),
        (httpx.ReadTimeout("slow"), "slow"),
        ('{"error": "OpenAI API Key missing"}', "OpenAI API Key missing"),
    ],
)
async def test_run_for_row_records_errors(reply: str | Exception, message: str) -> None:
    runner = FakeRunner(reply)
    blob = await run_agent_for_row(_agent(), ROWS[0], COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner})
    result = parse_enrichment(blob)
    assert isinstance(result, EnrichmentError)
    assert result.message == message
    assert result.metadata.agent_name == "Company Finder"


async def test_web_search_agent_records_sources() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["x-goog-api-key"] == "g-key"
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"parts": [{"text": '{"ceo": "Ada"}'}]},
                        "groundingMetadata": {"groundingChunks": [{"web": {"uri": "https://acme.com/about"}}]},
                    }
                ]
            },
        )

    agent = _agent(type=AgentType.WEB_SEARCH, provider=AgentProvider.OPENAI)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        blob = await run_agent_for_row(agent, ROWS[0], COLUMNS, KEYS, client=client)

    assert json.loads(blob)["_sources"] == ["https://acme.com/about"]
    assert parse_enrichment(blob).data == {"ceo": "Ada"}


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------


async def test_run_agent_report() -> None:
    runner = FakeRunner('{"ceo": "someone"}')
    report = await run_agent(_agent(), ROWS, COLUMNS, KEYS, runners={AgentProvider.GOOGLE: runner})

    assert report.target_column_id == "info"
    assert set(report.updates) == {"r1", "r3"}
    assert report.skipped == ["r2"]
    assert len(runner.calls) == 2


async def test_run_agent_selected_rows_with_cap() -> None:
    runner = FakeRunner('{"ceo": "someone"}')
    report = await run_agent(
        _agent(),
        ROWS,
        COLUMNS,
        KEYS,
        selected_ids={"r3"},
        runners={AgentProvider.GOOGLE: runner},
        max_concurrency=1,
    )
    assert set(report.updates) == {"r3"}


async def test_run_agent_without_target_column() -> None:
    with pytest.raises(ConfigurationError):
        await run_agent(_agent(output_column_name="Missing"), ROWS, COLUMNS, KEYS)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def test_build_suggest_prompt_lists_input_columns() -> None:
    prompt = build_suggest_prompt("find ceo", ["company"], COLUMNS)
    assert 'User Request: "find ceo"' in prompt
    assert "Context Fields: /company (Company)" in prompt

    assert "Context Fields: None" in build_suggest_prompt("find ceo", [], COLUMNS)


async def test_suggest_agent_config() -> None:
    runner = FakeRunner(
        json.dumps({
            "name": "CEO Finder",
            "refinedPrompt": "Find the current CEO of /company.",
            "outputColumnName": "Leadership",
            "suggestedKeys": ["ceo", "ceo_linkedin", ""],
        })
    )
    suggestion = await suggest_agent_config(
        "find ceo",
        ["company"],
        COLUMNS,
        ProviderKeys(google="g-key"),
        outputs=["ceo"],
        runners={AgentProvider.GOOGLE: runner},
    )
    assert suggestion.name == "CEO Finder"
    assert suggestion.output_column_name == "Leadership"
    assert suggestion.suggested_keys == ["ceo", "ceo_linkedin"]
    assert suggestion.dump()["refinedPrompt"] == "Find the current CEO of /company."


async def test_suggest_agent_config_fallback() -> None:
    runner = FakeRunner(LLMError("down"))
    suggestion = await suggest_agent_config(
        "find ceo",
        [],
        COLUMNS,
        ProviderKeys(google="g-key"),
        outputs=["ceo"],
        runners={AgentProvider.GOOGLE: runner},
    )
    assert suggestion.name == "New Agent"
    assert suggestion.refined_prompt == "find ceo"
    assert suggestion.output_column_name == "Enriched Data"
    assert suggestion.suggested_keys == ["ceo"]


async def test_suggest_agent_config_without_keys() -> None:
    suggestion = await suggest_agent_config("find ceo", [], COLUMNS, ProviderKeys())
    assert suggestion.name == "New Agent"
