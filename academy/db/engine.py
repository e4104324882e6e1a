"""Optional PostgreSQL backing store.

``engine`` and ``async_session_factory`` exist only when DATABASE_URL
is set.  Request handlers never import them directly; they depend on
``get_optional_session`` and receive ``None`` when the service runs on
its in-memory repositories.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from academy.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    # Progress writes arrive in bursts while media plays; pre-ping drops
    # connections the server closed between bursts.
    return create_async_engine(url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True)


engine: AsyncEngine | None = (
    build_engine(SETTINGS.database_url, echo=SETTINGS.is_dev) if SETTINGS.database_url else None
)
async_session_factory = (
    async_sessionmaker(engine, expire_on_commit=False) if engine is not None else None
)


async def get_optional_session() -> AsyncGenerator[AsyncSession | None, None]:
    """One unit of work per request: commit when the handler returns, else roll back."""
    if async_session_factory is None:
        yield None
        return
    async with async_session_factory() as session, session.begin():
        yield session


async def ping_database() -> None:
    """Readiness probe; a no-op on the in-memory store."""
    if engine is None:
        return
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("DATABASE_URL not set, repositories are in memory")
        yield
        return

    logger.info("Using database %s", engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database pool closed")
