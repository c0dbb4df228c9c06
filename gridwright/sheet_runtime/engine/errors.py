"""Exceptions shared by several engine modules."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A run was requested with missing configuration (API key, URL, name ...).

    Reported synchronously to the caller; never retried.
    """


class LLMError(RuntimeError):
    """An LLM runner failed (transport error, non-2xx, empty response)."""
