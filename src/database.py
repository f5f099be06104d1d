"""
Async SQLAlchemy wiring for the dashboard.

One engine and one session factory live for the lifetime of the process;
init_db() builds them in the FastAPI lifespan and close_db() disposes them.

Transaction ownership:
- Request handlers get their session from get_db_session(), which commits
  when the handler returns and rolls back when it raises. Services flush,
  they never commit.
- Notification workers open short-lived sessions from the factory and
  commit them themselves. They never see a request session.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Shared metadata for every table (Alembic imports src.models to fill it)."""


def _engine_options(database_url: str, echo: bool) -> dict[str, Any]:
    url = make_url(database_url)
    options: dict[str, Any] = {"echo": echo}
    if url.get_backend_name() != "sqlite":
        options.update(pool_size=5, max_overflow=10, pool_pre_ping=True, pool_recycle=300)
    elif url.database in (None, "", ":memory:"):
        # an in-memory database only exists on the connection that created it
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    return options


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to engine. Objects stay loaded after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=True)


def init_db(settings: Settings | None = None) -> None:
    global _engine, _session_factory
    cfg = settings or get_settings()
    _engine = create_async_engine(cfg.database_url, **_engine_options(cfg.database_url, cfg.db_echo_sql))
    _session_factory = build_session_factory(_engine)
    log.info("database.initialized", url=cfg.database_url.rsplit("@", 1)[-1])


async def create_all() -> None:
    """Create missing tables straight from the metadata (dev and demo setups)."""
    import src.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("database.tables_created", tables=len(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    log.info("database.closed")


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed unless the handler raises."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()
