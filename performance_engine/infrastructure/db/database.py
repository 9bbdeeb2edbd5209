"""
Database Configuration
Async SQLAlchemy engine for the performance store (daily records, period records)
"""

import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from performance_engine.config import settings

class Base(DeclarativeBase):
    """Base class for all performance store tables"""
    pass


def async_database_url(url: str) -> str:
    """postgres:// and postgresql:// URLs rewritten for the asyncpg driver"""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


DATABASE_URL = async_database_url(settings.DATABASE_URL)

# Alembic builds its own sync engine
ALEMBIC_MODE = os.getenv("ALEMBIC_MODE") == "1" or os.getenv("ALEMBIC_CONTEXT") == "1"

if not ALEMBIC_MODE:
    # At least one pooled connection per scope worker
    engine = create_async_engine(
        DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=max(settings.DB_POOL_SIZE, settings.SCOPE_CONCURRENCY),
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
else:
    engine = None
    async_session_factory = None


async def init_db():
    """Create the performance tables when AUTO_CREATE_TABLES is set (migrations otherwise)"""
    if not settings.AUTO_CREATE_TABLES:
        return
    if engine is None:
        raise RuntimeError("init_db called without an engine (ALEMBIC_MODE is set)")
    async with engine.begin() as conn:
        # Registers the daily and period tables on Base.metadata
        from performance_engine.infrastructure.db import models

        await conn.run_sync(Base.metadata.create_all)

async def close_db():
    """Dispose pooled connections"""
    if engine is not None:
        await engine.dispose()
