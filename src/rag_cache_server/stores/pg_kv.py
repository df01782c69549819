"""
Local Key-Value Store (PostgreSQL JSONB)

KeyValueStore implementation that keeps payloads in the `kv_entry` table.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import BackendUnavailable
from ..db.models import KeyValueEntry

logger = logging.getLogger("rag.kv")


class PostgresKeyValueStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                value = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("KV get failed for %s: %s", key, type(exc).__name__)
            raise BackendUnavailable(f"KV get failed: {type(exc).__name__}") from exc

        return value if isinstance(value, dict) else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        stmt = pg_insert(KeyValueEntry.__table__).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KeyValueEntry.__table__.c.key],
            set_={"value": stmt.excluded["value"], "updated_at": func.now()},
        )

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("KV set failed for %s: %s", key, type(exc).__name__)
            raise BackendUnavailable(f"KV set failed: {type(exc).__name__}") from exc
