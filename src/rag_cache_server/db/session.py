"""
Database Session Management

Builds the async SQLAlchemy engine and session factory for PostgreSQL. The
engine is created on demand from an explicit URL rather than at import time,
so deployments using only the hosted backends never touch a database driver.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from ..core.errors import ConfigMissing
from .models import Base


def create_session_factory(database_url: Optional[str]) -> async_sessionmaker[AsyncSession]:
    """
    Create an async session factory bound to a new engine.

    Raises
    ------
    ConfigMissing
        If no database URL is configured.
    """
    if not database_url:
        raise ConfigMissing("DATABASE_URL")

    engine = create_async_engine(
        database_url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )

    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create the pgvector extension and all tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
