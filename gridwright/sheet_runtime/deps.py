"""FastAPI dependency injection for DB sessions, outbound HTTP and auth.

Usage in route handlers::

    @router.post("/things")
    async def create_thing(db: DbSession, thing: ThingCreate) -> ThingResponse:
        ...

``DbSession`` raises HTTP 503 when GRID_DATABASE_URL is unset; the stateless
``/api/engine`` endpoints work without a database.
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from gridwright.sheet_runtime.settings import GridSettings, get_settings

_bearer = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    The manager called by the route commits on success.  If it raises, the
    session is simply closed and the implicit transaction rolled back.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (GRID_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared outbound client (HTTP columns and LLM providers), pooled for the app's lifetime."""
    return request.app.state.http_client


def require_auth(
    settings: Annotated[GridSettings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Check the bearer token when GRID_AUTH_TOKEN is configured."""
    expected = settings.resolve_auth_token()
    if expected is None:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]
"""Annotated dependency: shared outbound httpx client."""

Settings = Annotated[GridSettings, Depends(get_settings)]
"""Annotated dependency: cached service settings."""
