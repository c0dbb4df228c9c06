from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI
from fastapi.routing import APIRouter
from loguru import logger

from gridwright.sheet_runtime.db.engine import POOL_DEFAULTS, create_engine, create_session_factory
from gridwright.sheet_runtime.deps import require_auth
from gridwright.sheet_runtime.log import setup_logging
from gridwright.sheet_runtime.settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    if settings.resolve_auth_token() is None:
        logger.warning("GRID_AUTH_TOKEN not set -- API is open")

    logger.info("Sheet runtime starting (host={}, port={})", settings.host, settings.port)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info(
            "PostgreSQL: connected (pool_size={}, max_overflow={})",
            POOL_DEFAULTS["pool_size"],
            POOL_DEFAULTS["max_overflow"],
        )
    else:
        logger.warning("GRID_DATABASE_URL not set -- sheet storage disabled, engine endpoints only")

    # -- Outbound HTTP ---------------------------------------------------------
    _app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout)
    configured = [p for p, key in settings.api_keys() if key]
    logger.info("LLM providers configured: {}", ", ".join(configured) or "none")

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Sheet runtime shutting down")

    await _app.state.http_client.aclose()

    # Dispose DB engine (closes all pooled connections).
    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Gridwright Sheet Runtime", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


# -- Routers -----------------------------------------------------------------
from gridwright.sheet_runtime.routers.engine import router as engine_router  # noqa: E402
from gridwright.sheet_runtime.routers.sheets import router as sheets_router  # noqa: E402
from gridwright.sheet_runtime.routers.verticals import router as verticals_router  # noqa: E402

_protected = [Depends(require_auth)]
api.include_router(verticals_router, dependencies=_protected)
api.include_router(sheets_router, dependencies=_protected)
api.include_router(engine_router, dependencies=_protected)

app.include_router(api)
