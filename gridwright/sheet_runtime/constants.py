"""Fixed configuration shared by the engine.

These are immutable ordered structures; callers pass them (or their own
overrides) into the engine functions explicitly.
"""

from __future__ import annotations

from gridwright.sheet_runtime.models.enums import AgentProvider

SELECT_PALETTE: tuple[str, ...] = (
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#84CC16",
    "#F97316",
    "#6366F1",
)
"""Colours assigned round-robin to auto-populated SELECT options."""

PROVIDER_PRIORITY: tuple[AgentProvider, ...] = (
    AgentProvider.GOOGLE,
    AgentProvider.ANTHROPIC,
    AgentProvider.OPENAI,
)
"""Order in which LLM providers are tried by fallback chains."""

DEFAULT_MODELS: dict[AgentProvider, str] = {
    AgentProvider.GOOGLE: "gemini-2.5-flash-lite",
    AgentProvider.ANTHROPIC: "claude-haiku-4-5",
    AgentProvider.OPENAI: "gpt-4o-mini",
}

CONFIDENT_MATCH_SCORE = 0.5
EXACT_MATCH_SCORE = 1.0
SUBSTRING_MATCH_SCORE = 0.7

NUMBER_INFERENCE_RATIO = 0.8
"""Share of numeric non-empty values above which an imported column is NUMBER."""

MERGE_NO_DATA = "no data"
HTTP_UNCONFIGURED = "unconfigured"
ENRICHMENT_SKIPPED_KEY = "_skipped"
