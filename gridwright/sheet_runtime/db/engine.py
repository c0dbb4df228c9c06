"""Async SQLAlchemy engine and session factory.

psycopg3 serves both the async runtime and the sync Alembic migrations from
the same ``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

POOL_DEFAULTS: dict[str, object] = {
    "echo": False,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_recycle": 3600,
}


def normalize_url(database_url: str) -> str:
    """Force the psycopg3 dialect for bare ``postgresql://`` / asyncpg URLs."""
    for prefix in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix) :]
    return database_url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async engine; *kwargs* override ``POOL_DEFAULTS``."""
    options = {**POOL_DEFAULTS, **kwargs}
    return create_async_engine(normalize_url(database_url), **options)  # type: ignore[arg-type]


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with ``expire_on_commit=False`` (no implicit IO after commit)."""
    return async_sessionmaker(engine, expire_on_commit=False)
