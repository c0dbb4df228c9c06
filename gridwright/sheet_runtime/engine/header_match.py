"""Header matching for imports.

Matches uploaded headers to a sheet's existing headers.

- Deterministic matching normalises both sides (BOM strip, trim, collapse
  whitespace, lowercase): equal -> 1.0, substring either way -> 0.7 (with
  `_`, `-` and `.` read as spaces), else 0.
  Scores below 0.5 yield no target.
- LLM matching asks one model for ``{"matches": [...]}`` restricted to the
  candidate list, trying providers Google -> Anthropic -> OpenAI.  It falls
  back to deterministic matching when fuzzy matching is off, no key is
  configured, there are no targets, every provider fails, or the reply has
  an empty ``matches`` list.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from gridwright.sheet_runtime.constants import (
    CONFIDENT_MATCH_SCORE,
    EXACT_MATCH_SCORE,
    SUBSTRING_MATCH_SCORE,
)
from gridwright.sheet_runtime.engine.llm import LLMRunner, build_chain, run_chain
from gridwright.sheet_runtime.models.enums import AgentProvider
from gridwright.sheet_runtime.models.imports import HeaderMatch, HeaderMatchConfig

SYSTEM_INSTRUCTION = "You are a data mapping assistant. Return a single valid JSON object only."

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[\s_\-.]+")


def normalize_header(header: str) -> str:
    return _WHITESPACE.sub(" ", header.lstrip("\ufeff").strip()).lower()


def _compact(normalized: str) -> str:
    """Normalised header with `_`, `-` and `.` read as spaces."""
    return _SEPARATORS.sub(" ", normalized).strip()


def score_match(source: str, target: str) -> float:
    a = normalize_header(source)
    b = normalize_header(target)
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_MATCH_SCORE
    ca, cb = _compact(a), _compact(b)
    if ca and cb and (ca in cb or cb in ca):
        return SUBSTRING_MATCH_SCORE
    return 0.0


def simple_header_match(source_headers: Sequence[str], target_headers: Sequence[str]) -> list[HeaderMatch]:
    """Deterministic best match per source header (first best target wins ties)."""
    matches = []
    for source in source_headers:
        best_header: str | None = None
        best_score = 0.0
        for target in target_headers:
            score = score_match(source, target)
            if score > best_score:
                best_header, best_score = target, score
        confident = best_score >= CONFIDENT_MATCH_SCORE
        matches.append(
            HeaderMatch(
                source_header=source,
                target_header=best_header if confident else None,
                confidence=best_score,
                reason="Normalized match" if confident else "No confident match",
            )
        )
    return matches


def build_prompt(source_headers: Sequence[str], target_headers: Sequence[str]) -> str:
    return "\n".join([
        "Match uploaded headers to existing headers.",
        'Return JSON with key "matches" as an array of objects:',
        '{ "sourceHeader": string, "targetHeader": string | null, "confidence": number, "reason": string }',
        "Only choose a targetHeader from the provided existing list.",
        "If there is no confident match, return null for targetHeader.",
        "",
        f"Uploaded headers: {json.dumps(list(source_headers))}",
        f"Existing headers: {json.dumps(list(target_headers))}",
    ])


def _coerce_matches(
    payload: Any,
    source_headers: Sequence[str],
    target_headers: Sequence[str],
) -> list[HeaderMatch]:
    """Turn an LLM payload into matches, one per source header.

    Targets outside the candidate list are dropped to ``None``; source headers
    the model omitted are backfilled with ``confidence=0``.
    """
    raw_matches = payload.get("matches") if isinstance(payload, dict) else None
    if not isinstance(raw_matches, list):
        raw_matches = []

    targets = set(target_headers)
    by_source: dict[str, HeaderMatch] = {}
    for item in raw_matches:
        source = item.get("sourceHeader") if isinstance(item, dict) else None
        if not isinstance(source, str) or source not in source_headers:
            continue
        target = item.get("targetHeader")
        confidence = item.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = 0.0
        by_source.setdefault(
            source,
            HeaderMatch(
                source_header=source,
                target_header=target if isinstance(target, str) and target in targets else None,
                confidence=min(max(float(confidence), 0.0), 1.0),
                reason=item.get("reason") if isinstance(item.get("reason"), str) else None,
            ),
        )

    if not by_source:
        return []
    return [
        by_source.get(source) or HeaderMatch(source_header=source, target_header=None, confidence=0.0)
        for source in source_headers
    ]


async def match_headers(
    source_headers: Sequence[str],
    target_headers: Sequence[str],
    config: HeaderMatchConfig,
    *,
    runners: dict[AgentProvider, LLMRunner] | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[HeaderMatch]:
    """Match *source_headers* onto *target_headers*; never raises for provider failures."""
    keys = config.merged_keys()
    if not config.use_fuzzy_matching or not keys.has_any() or not target_headers:
        return simple_header_match(source_headers, target_headers)

    overrides = {AgentProvider.GOOGLE: config.model_id} if config.model_id else None
    chain = build_chain(keys, model_overrides=overrides)
    matches = await run_chain(
        chain,
        build_prompt(source_headers, target_headers),
        SYSTEM_INSTRUCTION,
        lambda payload: _coerce_matches(payload, source_headers, target_headers),
        runners=runners,
        client=client,
    )
    if not matches:
        logger.info("Header matching fell back to deterministic normalisation")
        return simple_header_match(source_headers, target_headers)
    return matches


def partition_matches(
    matches: Sequence[HeaderMatch],
    threshold: float,
) -> tuple[list[HeaderMatch], list[HeaderMatch]]:
    """Split into ``(auto_applied, needs_review)`` by confidence threshold.

    Matches without a target are neither; they become new columns.
    """
    applied = [m for m in matches if m.target_header is not None and m.confidence >= threshold]
    review = [m for m in matches if m.target_header is not None and m.confidence < threshold]
    return applied, review
