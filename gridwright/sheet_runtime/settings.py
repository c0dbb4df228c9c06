"""Service configuration loaded from GRID_* environment variables."""

from __future__ import annotations

import secrets

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from gridwright.sheet_runtime.models.imports import HeaderMatchConfig, ProviderKeys


class GridSettings(BaseSettings):
    """Gridwright sheet runtime settings.

    All fields are read from environment variables with the ``GRID_`` prefix.
    For example, ``GRID_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    Provider keys configured here are server-side defaults; requests may still
    carry their own keys (header matching, agent runs), which take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (``postgresql+psycopg://``)."""

    # -- Auth ------------------------------------------------------------------
    auth_token: str | None = None
    """Bearer token for API access.  Auth is disabled when empty."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000

    # -- Outbound HTTP ---------------------------------------------------------
    http_timeout: float = 30.0
    """Timeout in seconds for HTTP-column requests."""

    # -- LLM providers ---------------------------------------------------------
    google_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    openai_api_key: SecretStr | None = None

    # -- Import header matching ------------------------------------------------
    header_match_model: str | None = None
    """Gemini model override for header matching."""

    header_match_threshold: float = 0.7
    fuzzy_header_matching: bool = True

    # -- Helpers ---------------------------------------------------------------

    def api_keys(self) -> ProviderKeys:
        def _reveal(secret: SecretStr | None) -> str | None:
            return secret.get_secret_value() if secret else None

        return ProviderKeys(
            google=_reveal(self.google_api_key),
            anthropic=_reveal(self.anthropic_api_key),
            openai=_reveal(self.openai_api_key),
        )

    def header_match_config(self) -> HeaderMatchConfig:
        return HeaderMatchConfig(
            model_id=self.header_match_model,
            confidence_threshold=self.header_match_threshold,
            use_fuzzy_matching=self.fuzzy_header_matching,
            api_keys=self.api_keys(),
        )

    def resolve_auth_token(self) -> str | None:
        """Return the configured token; ``None`` means the API is open."""
        return self.auth_token or None

    @staticmethod
    def generate_auth_token() -> str:
        return secrets.token_urlsafe(32)


def get_settings() -> GridSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> GridSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return GridSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
