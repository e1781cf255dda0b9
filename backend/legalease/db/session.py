"""
Database engine and session factory.

Flow:
  1. build_engine() is called once at startup from settings.database_url.
  2. build_session_factory() wraps it in an async_sessionmaker.
  3. SqlDocumentStore opens one short transaction per operation:
         async with factory() as session:
             async with session.begin():
                 ...
  4. On shutdown the lifespan hook disposes the engine (returns pooled
     connections).

SQLite (aiosqlite) is accepted for local runs and tests; pool sizing
arguments are only passed to server databases.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from legalease.models.documents import Base

logger = logging.getLogger(__name__)


def build_engine(
    database_url: str,
    *,
    echo:         bool = False,
    pool_size:    int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    kwargs: dict = {"echo": echo}   # log SQL in dev; disable in prod
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,      # detect stale connections before use
            pool_recycle=3600,       # recycle connections every hour
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables. Production schemas are managed by migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database | tables ensured")


async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by /ready."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
