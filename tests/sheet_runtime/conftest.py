"""Shared fixtures for sheet-runtime API tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from gridwright.sheet_runtime.app import app
from gridwright.sheet_runtime.deps import get_db
from gridwright.sheet_runtime.settings import GridSettings, get_settings


class Upstream:
    """Stand-in for every outbound service behind ``app.state.http_client``.

    Tests assign ``handler``; each request is recorded before it is handled.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda _r: httpx.Response(404)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def settings() -> GridSettings:
    """Settings isolated from the developer's environment and ``.env``."""
    return GridSettings(
        _env_file=None,
        database_url=None,
        auth_token=None,
        google_api_key=None,
        anthropic_api_key=None,
        openai_api_key=None,
    )


@asynccontextmanager
async def _app_client(upstream: Upstream, settings: GridSettings) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_settings] = lambda: settings

    # Pre-set state fields (lifespan does not run under ASGITransport).
    app.state.db_engine = None
    app.state.db_session_factory = None

    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as outbound:
        app.state.http_client = outbound
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def api_client(upstream: Upstream, settings: GridSettings) -> AsyncIterator[AsyncClient]:
    """Client for the stateless endpoints; storage endpoints answer 503."""
    async with _app_client(upstream, settings) as ac:
        yield ac


@pytest.fixture
async def client(db_session: AsyncSession, upstream: Upstream, settings: GridSettings) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with a test DB session.

    Overrides ``get_db`` so every request uses the savepoint-isolated
    ``db_session`` fixture from the root conftest.
    """

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    async with _app_client(upstream, settings) as ac:
        yield ac
