"""Agent execution for ENRICHMENT columns.

An agent turns selected input columns of a row into a JSON object via an LLM
and stores it, with cited sources and run metadata, as the raw value of the
ENRICHMENT column whose header equals ``agent.output_column_name``.

Prompt templates may contain ``/colId`` tokens; they reach the model verbatim.
The input context is handed over separately as JSON keyed by column header.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio
import httpx
import jinja2
from loguru import logger
from pydantic import Field

from gridwright.sheet_runtime.constants import ENRICHMENT_SKIPPED_KEY
from gridwright.sheet_runtime.engine.cells import evaluate_row
from gridwright.sheet_runtime.engine.enrichment import build_blob, error_blob
from gridwright.sheet_runtime.engine.errors import ConfigurationError, LLMError
from gridwright.sheet_runtime.engine.llm import (
    LLMRunner,
    build_chain,
    is_error_payload,
    parse_llm_json,
    run_agent_task,
    run_anthropic_agent,
    run_chain,
    run_openai_agent,
    run_search_agent,
)
from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.models.enrichment import EnrichmentMetadata
from gridwright.sheet_runtime.models.enums import AgentProvider, AgentType
from gridwright.sheet_runtime.models.imports import ProviderKeys
from gridwright.sheet_runtime.models.sheet import AgentConfig, CamelModel, ColumnDefinition, RowData

AGENT_SYSTEM_INSTRUCTION = "Return valid JSON object."
SUGGEST_SYSTEM_INSTRUCTION = "You are an Expert Prompt Engineer. You MUST return a valid JSON object."
DEFAULT_AGENT_NAME = "New Agent"
DEFAULT_OUTPUT_COLUMN = "Enriched Data"

AGENT_PROMPT_TEMPLATE = """\
{% if web_search -%}
You are a Web Search Agent.
GOAL: {{ goal }}
INPUT: {{ input_json }}
REQUIREMENT: Use the Google Search tool to find REAL-TIME information. Do not hallucinate.
{%- else -%}
You are a Data Enrichment Agent.
GOAL: {{ goal }}
INPUT: {{ input_json }}
{%- endif %}
OUTPUT FORMAT: Single JSON object containing keys: {{ outputs_json }}.
{%- if condition %}
CONDITION: Only produce output if the following holds for this input: {{ condition }}
If it does not hold, return exactly {"{{ skipped_key }}": true}.
{%- endif %}
"""

SUGGEST_PROMPT_TEMPLATE = """\
User Request: "{{ prompt }}"
Context Fields: {{ context or "None" }}
Task: Refine prompt, suggest name, suggest container name, extract desired field keys.
Output JSON schema: { "name": string, "refinedPrompt": string, "outputColumnName": string, "suggestedKeys": string[] }"""

_env = jinja2.Environment(autoescape=False, keep_trailing_newline=False)  # noqa: S701
_agent_template = _env.from_string(AGENT_PROMPT_TEMPLATE)
_suggest_template = _env.from_string(SUGGEST_PROMPT_TEMPLATE)

TEXT_RUNNERS: dict[AgentProvider, LLMRunner] = {
    AgentProvider.GOOGLE: run_agent_task,
    AgentProvider.ANTHROPIC: run_anthropic_agent,
    AgentProvider.OPENAI: run_openai_agent,
}
"""Runner per provider for non-search agents."""


class AgentSuggestion(CamelModel):
    name: str
    refined_prompt: str
    output_column_name: str
    suggested_keys: list[str] = Field(default_factory=list)


@dataclass
class AgentRunReport:
    """Outcome of running one agent over a set of rows."""

    target_column_id: str
    updates: dict[str, str] = field(default_factory=dict)
    """row id -> raw ENRICHMENT blob"""
    skipped: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------


def input_context(agent: AgentConfig, row: RowData, columns: Sequence[ColumnDefinition]) -> dict[str, Any]:
    """``{header: value}`` for each input column that still exists."""
    headers = {c.id: c.header for c in columns}
    return {headers[i]: row.get(i) for i in agent.inputs if i in headers}


def missing_inputs(agent: AgentConfig, row: RowData) -> list[str]:
    return [i for i in agent.inputs if not stringify_cell(row.get(i))]


def build_agent_prompt(agent: AgentConfig, row: RowData, columns: Sequence[ColumnDefinition]) -> str:
    return _agent_template.render(
        web_search=agent.type == AgentType.WEB_SEARCH,
        goal=agent.prompt,
        input_json=json.dumps(input_context(agent, row, columns)),
        outputs_json=json.dumps(agent.outputs),
        condition=(agent.condition or "").strip(),
        skipped_key=ENRICHMENT_SKIPPED_KEY,
    )


def find_target_column(agent: AgentConfig, columns: Sequence[ColumnDefinition]) -> ColumnDefinition:
    target = next((c for c in columns if c.header == agent.output_column_name), None)
    if target is None:
        msg = "Target column not found."
        raise ConfigurationError(msg)
    return target


def select_rows(
    agent: AgentConfig,
    rows: Sequence[RowData],
    selected_ids: Collection[str] | None = None,
) -> list[RowData]:
    """Selected rows when given, else every row capped at ``rows_to_deploy``."""
    if selected_ids:
        return [r for r in rows if str(r.get("id")) in selected_ids]
    if agent.rows_to_deploy is not None:
        return list(rows[: max(agent.rows_to_deploy, 0)])
    return list(rows)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


async def _call_model(
    agent: AgentConfig,
    prompt: str,
    keys: ProviderKeys,
    runners: dict[AgentProvider, LLMRunner],
    client: httpx.AsyncClient | None,
) -> tuple[str, list[str]]:
    if agent.type == AgentType.WEB_SEARCH:
        reply = await run_search_agent(agent.model_id, prompt, keys.google, client=client)
        return reply.text, reply.sources
    runner = runners[agent.provider]
    raw = await runner(agent.model_id, prompt, keys.key_for(agent.provider), AGENT_SYSTEM_INSTRUCTION, client=client)
    return raw, []


def _metadata(agent: AgentConfig, started: float) -> EnrichmentMetadata:
    elapsed = round(time.perf_counter() - started, 3)
    return EnrichmentMetadata(agent_name=agent.name, steps_taken=1, execution_time=elapsed)


async def run_agent_for_row(
    agent: AgentConfig,
    row: RowData,
    columns: Sequence[ColumnDefinition],
    keys: ProviderKeys,
    *,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Run *agent* for one row and return the raw ENRICHMENT blob.

    Returns ``None`` when nothing should be written: an input is empty, or the
    model reported the condition as not holding.  Provider failures are
    recorded in the blob as ``{"error": ...}`` instead of raising.
    """
    row = evaluate_row(row, columns)
    if missing_inputs(agent, row):
        return None

    prompt = build_agent_prompt(agent, row, columns)
    started = time.perf_counter()
    try:
        raw, sources = await _call_model(agent, prompt, keys, runners or TEXT_RUNNERS, client)
    except (LLMError, httpx.HTTPError) as exc:
        logger.warning("Agent '{}' failed on row {}: {}", agent.name, row.get("id"), exc)
        return error_blob(str(exc), metadata=_metadata(agent, started))

    metadata = _metadata(agent, started)
    payload = parse_llm_json(raw)
    if not isinstance(payload, dict):
        payload = {"result": raw}
    elif payload.get(ENRICHMENT_SKIPPED_KEY):
        logger.debug("Agent '{}' skipped row {}: condition not met", agent.name, row.get("id"))
        return None
    elif is_error_payload(payload):
        return error_blob(str(payload["error"]), metadata=metadata)
    return build_blob(payload, sources=sources, metadata=metadata)


async def run_agent(
    agent: AgentConfig,
    rows: Sequence[RowData],
    columns: Sequence[ColumnDefinition],
    keys: ProviderKeys,
    *,
    selected_ids: Collection[str] | None = None,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
    max_concurrency: float = math.inf,
) -> AgentRunReport:
    """Run *agent* over the selected rows concurrently.

    Rows run unbounded unless *max_concurrency* caps them.

    Raises
    ------
    ConfigurationError:
        No column carries the agent's output column header.
    """
    target = find_target_column(agent, columns)
    report = AgentRunReport(target_column_id=target.id)
    limiter = anyio.CapacityLimiter(max_concurrency)

    async def _one(row: RowData) -> None:
        async with limiter:
            blob = await run_agent_for_row(agent, row, columns, keys, runners=runners, client=client)
        row_id = str(row.get("id"))
        if blob is None:
            report.skipped.append(row_id)
        else:
            report.updates[row_id] = blob

    selected = select_rows(agent, rows, selected_ids)
    async with anyio.create_task_group() as tg:
        for row in selected:
            tg.start_soon(_one, row)

    logger.info(
        "Agent '{}' enriched {} of {} rows into '{}'",
        agent.name,
        len(report.updates),
        len(selected),
        target.header,
    )
    return report


# ---------------------------------------------------------------------------
# Auto construct
# ---------------------------------------------------------------------------


def build_suggest_prompt(prompt: str, inputs: Sequence[str], columns: Sequence[ColumnDefinition]) -> str:
    context = ", ".join(f"/{c.id} ({c.header})" for c in columns if c.id in inputs)
    return _suggest_template.render(prompt=prompt, context=context)


def _accept_suggestion(payload: Any, prompt: str, outputs: Sequence[str]) -> AgentSuggestion:
    if not isinstance(payload, dict):
        msg = "suggestion is not a JSON object"
        raise ValueError(msg)  # noqa: TRY004
    keys = payload.get("suggestedKeys")
    suggested = list(outputs)
    if isinstance(keys, list):
        suggested += [str(k) for k in keys if k and str(k) not in suggested]
    return AgentSuggestion(
        name=str(payload.get("name") or DEFAULT_AGENT_NAME),
        refined_prompt=str(payload.get("refinedPrompt") or prompt),
        output_column_name=str(payload.get("outputColumnName") or DEFAULT_OUTPUT_COLUMN),
        suggested_keys=suggested,
    )


async def suggest_agent_config(
    prompt: str,
    inputs: Sequence[str],
    columns: Sequence[ColumnDefinition],
    keys: ProviderKeys,
    *,
    outputs: Sequence[str] = (),
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> AgentSuggestion:
    """Draft an agent's name, prompt, output column and keys from a free-form request.

    Falls back to a deterministic default when no provider answers usefully.
    """
    result = await run_chain(
        build_chain(keys),
        build_suggest_prompt(prompt, inputs, columns),
        SUGGEST_SYSTEM_INSTRUCTION,
        lambda payload: _accept_suggestion(payload, prompt, outputs),
        runners=runners,
        client=client,
    )
    if result is None:
        return AgentSuggestion(
            name=DEFAULT_AGENT_NAME,
            refined_prompt=prompt,
            output_column_name=DEFAULT_OUTPUT_COLUMN,
            suggested_keys=list(outputs),
        )
    return result
