"""LLM runners and the provider fallback chain.

The four runners share one contract::

    await runner(model_id, prompt, api_key, system_instruction=None, *, client=None) -> str

They call the vendor REST APIs directly with httpx and return the model's raw
text.  ``run_openai_agent`` and ``run_anthropic_agent`` never raise: failures
come back as a JSON ``{"error": ...}`` sentinel.  The Gemini runners raise
``LLMError``.  Callers detect both through :func:`parse_llm_json` /
:func:`is_error_payload`.

:func:`run_chain` drains an ordered list of provider candidates; the first one
whose reply parses and is accepted wins, every failure moves to the next.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias, TypeVar

import httpx
from loguru import logger

from gridwright.sheet_runtime.constants import DEFAULT_MODELS, PROVIDER_PRIORITY
from gridwright.sheet_runtime.engine.errors import LLMError
from gridwright.sheet_runtime.models.enums import AgentProvider
from gridwright.sheet_runtime.models.imports import ProviderKeys

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

LLM_TIMEOUT = 120.0
JSON_FORMAT_MODELS = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo")
"""OpenAI models that accept ``response_format={"type": "json_object"}``."""

DEFAULT_OPENAI_SYSTEM = "You are a helpful assistant. Always return your response as a valid JSON object."

_FENCE = re.compile(r"```(?:json)?")


class LLMRunner(Protocol):
    def __call__(
        self,
        model_id: str,
        prompt: str,
        api_key: str | None,
        system_instruction: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> Awaitable[str]: ...


@dataclass
class SearchReply:
    text: str = ""
    sources: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def strip_code_fences(raw: str) -> str:
    return _FENCE.sub("", raw or "").strip()


def parse_llm_json(raw: str | None) -> Any | None:
    """Decode a model reply, tolerating markdown fences.  ``None`` if invalid."""
    if not raw:
        return None
    try:
        return json.loads(strip_code_fences(raw))
    except ValueError:
        return None


def is_error_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload.get("error"))


def error_sentinel(message: str) -> str:
    return json.dumps({"error": message})


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


async def _post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    client: httpx.AsyncClient | None,
) -> dict[str, Any]:
    if client is None:
        async with httpx.AsyncClient(timeout=LLM_TIMEOUT) as own_client:
            response = await own_client.post(url, json=payload, headers=headers)
    else:
        response = await client.post(url, json=payload, headers=headers, timeout=LLM_TIMEOUT)

    try:
        data = response.json()
    except ValueError:
        data = {}
    if not response.is_success:
        detail = data.get("error") if isinstance(data, dict) else None
        if isinstance(detail, dict):
            detail = detail.get("message")
        msg = detail or f"HTTP {response.status_code}"
        raise LLMError(msg)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


async def _gemini_generate(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None,
    client: httpx.AsyncClient | None,
    *,
    json_mode: bool = False,
    search: bool = False,
) -> dict[str, Any]:
    if not api_key:
        msg = "Google API key missing"
        raise LLMError(msg)
    payload: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    if json_mode:
        payload["generationConfig"] = {"responseMimeType": "application/json"}
    if search:
        payload["tools"] = [{"google_search": {}}]
        payload["generationConfig"] = {"temperature": 0.3}
    try:
        return await _post_json(
            GEMINI_URL.format(model=model_id),
            payload,
            {"x-goog-api-key": api_key},
            client,
        )
    except httpx.HTTPError as exc:
        msg = f"Gemini API error: {exc}"
        raise LLMError(msg) from exc


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(items: Any) -> dict[str, Any]:
    """First element of a vendor list when it is an object, else ``{}``."""
    if isinstance(items, list) and items:
        return _as_dict(items[0])
    return {}


def _join_text(blocks: Any, *, kind: str | None = None) -> str:
    if not isinstance(blocks, list):
        return ""
    return "".join(
        b["text"]
        for b in blocks
        if isinstance(b, dict) and isinstance(b.get("text"), str) and (kind is None or b.get("type") == kind)
    )


def _gemini_text(data: dict[str, Any]) -> str:
    return _join_text(_as_dict(_first(data.get("candidates")).get("content")).get("parts"))


async def run_agent_task(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Plain Gemini text generation."""
    data = await _gemini_generate(model_id, prompt, api_key, system_instruction, client)
    return _gemini_text(data)


async def run_json_task(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Gemini generation in JSON mode.  Raises ``LLMError`` on an empty reply."""
    data = await _gemini_generate(model_id, prompt, api_key, system_instruction, client, json_mode=True)
    text = _gemini_text(data)
    if not text:
        msg = "Empty response from Gemini API"
        raise LLMError(msg)
    return text


async def run_search_agent(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> SearchReply:
    """Gemini generation grounded with Google Search; returns cited source URLs."""
    data = await _gemini_generate(model_id, prompt, api_key, system_instruction, client, search=True)
    metadata = _as_dict(_first(data.get("candidates")).get("groundingMetadata"))
    chunks = metadata.get("groundingChunks")
    sources = []
    for chunk in chunks if isinstance(chunks, list) else []:
        web = _as_dict(_as_dict(chunk).get("web"))
        source = web.get("uri") or web.get("title")
        if source and isinstance(source, str):
            sources.append(source)
    return SearchReply(text=_gemini_text(data), sources=sources)


# ---------------------------------------------------------------------------
# OpenAI / Anthropic
# ---------------------------------------------------------------------------


async def run_openai_agent(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    if not api_key:
        return error_sentinel("OpenAI API Key missing. Please add it in Settings.")

    payload: dict[str, Any] = {
        "model": model_id,
        "messages": [
            {"role": "system", "content": system_instruction or DEFAULT_OPENAI_SYSTEM},
            {"role": "user", "content": prompt},
        ],
        "temperature": 0.7,
    }
    if model_id.startswith(JSON_FORMAT_MODELS):
        payload["response_format"] = {"type": "json_object"}

    try:
        data = await _post_json(OPENAI_URL, payload, {"Authorization": f"Bearer {api_key}"}, client)
    except (LLMError, httpx.HTTPError) as exc:
        logger.warning("OpenAI call failed: {}", exc)
        return error_sentinel(f"OpenAI call failed: {exc}")

    content = _as_dict(_first(data.get("choices")).get("message")).get("content")
    return content if isinstance(content, str) else ""


async def run_anthropic_agent(
    model_id: str,
    prompt: str,
    api_key: str | None,
    system_instruction: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    if not api_key:
        return error_sentinel("Anthropic API Key missing. Please add it in Settings.")

    payload: dict[str, Any] = {
        "model": model_id,
        "max_tokens": 4096,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_instruction:
        payload["system"] = system_instruction
    headers = {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}

    try:
        data = await _post_json(ANTHROPIC_URL, payload, headers, client)
    except (LLMError, httpx.HTTPError) as exc:
        logger.warning("Anthropic call failed: {}", exc)
        return error_sentinel(f"Anthropic call failed: {exc}")

    return _join_text(data.get("content"), kind="text")


RUNNERS: dict[AgentProvider, LLMRunner] = {
    AgentProvider.GOOGLE: run_json_task,
    AgentProvider.ANTHROPIC: run_anthropic_agent,
    AgentProvider.OPENAI: run_openai_agent,
}
"""JSON-oriented runner per provider, used by the fallback chains."""


# ---------------------------------------------------------------------------
# Provider chain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderCandidate:
    provider: AgentProvider
    model_id: str
    api_key: str


ProviderChain: TypeAlias = tuple[ProviderCandidate, ...]
"""Candidates drained in order; the first success wins."""


def build_chain(
    keys: ProviderKeys,
    *,
    model_overrides: dict[AgentProvider, str] | None = None,
    order: Sequence[AgentProvider] = PROVIDER_PRIORITY,
) -> ProviderChain:
    """Candidates in priority order, skipping providers without a key."""
    models = {**DEFAULT_MODELS, **(model_overrides or {})}
    return tuple(
        ProviderCandidate(provider=p, model_id=models[p], api_key=keys.key_for(p))  # type: ignore[arg-type]
        for p in order
        if keys.key_for(p)
    )


T = TypeVar("T")


async def run_chain(
    chain: Sequence[ProviderCandidate],
    prompt: str,
    system_instruction: str | None,
    accept: Callable[[Any], T],
    *,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> T | None:
    """Try each candidate in order; return ``accept(payload)`` of the first success.

    A candidate fails when the runner raises, the reply is not JSON, the reply
    is an ``{"error": ...}`` sentinel, or ``accept`` raises.  Returns ``None``
    once the chain is exhausted.
    """
    runners = runners or RUNNERS
    for candidate in chain:
        runner = runners[candidate.provider]
        try:
            raw = await runner(candidate.model_id, prompt, candidate.api_key, system_instruction, client=client)
        except Exception as exc:
            logger.warning("Provider {} failed: {}", candidate.provider, exc)
            continue

        payload = parse_llm_json(raw)
        if payload is None:
            logger.warning("Provider {} returned non-JSON output", candidate.provider)
            continue
        if is_error_payload(payload):
            logger.warning("Provider {} returned error: {}", candidate.provider, payload["error"])
            continue
        try:
            return accept(payload)
        except Exception as exc:
            logger.warning("Provider {} returned an unusable payload: {}", candidate.provider, exc)
    return None
