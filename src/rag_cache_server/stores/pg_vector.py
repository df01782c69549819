"""
Local Vector Store (PostgreSQL + pgvector)

VectorStore implementation for self-hosted deployments. Unlike the hosted
index, PostgreSQL cannot embed text, so this store owns an Embedder and
turns every `embed_text` into a vector before writing or searching. Callers
still only ever pass raw text.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import BackendUnavailable
from ..db.models import VectorEntry
from .base import Embedder, MetadataFilter, VectorHit, VectorQuery, VectorRecord

logger = logging.getLogger("rag.vector")


def _filter_clause(metadata_filter: Optional[MetadataFilter]):
    if metadata_filter is None or not metadata_filter.conditions:
        return None

    clauses = []
    for cond in metadata_filter.conditions:
        column = VectorEntry.metadata_[cond.field].astext
        if cond.negate:
            # Entries without the field also satisfy `!=`
            clauses.append(column.is_distinct_from(cond.value))
        else:
            clauses.append(column == cond.value)
    return and_(*clauses)


class PgVectorStore:
    """
    PostgreSQL-backed vector store using pgvector cosine similarity.

    A new session is opened per operation, so one instance can be shared by
    concurrent requests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Embedder,
    ) -> None:
        self._session_factory = session_factory
        self._embedder = embedder

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        """
        Insert or replace records by id.

        Returns
        -------
        int
            Number of records written.
        """
        if not records:
            return 0

        embeddings = await self._embedder.embed([rec.embed_text for rec in records])

        rows = [
            {
                "id": rec.id,
                "embed_text": rec.embed_text,
                "metadata": rec.metadata,
                "embedding": emb,
            }
            for rec, emb in zip(records, embeddings)
        ]

        table = VectorEntry.__table__
        stmt = pg_insert(table).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "embed_text": stmt.excluded["embed_text"],
                "metadata": stmt.excluded["metadata"],
                "embedding": stmt.excluded["embedding"],
            },
        )

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("pgvector upsert failed: %s", type(exc).__name__)
            raise BackendUnavailable(f"Vector upsert failed: {type(exc).__name__}") from exc

        return len(rows)

    async def query(self, query: VectorQuery) -> List[VectorHit]:
        """
        Search by cosine similarity, highest score first.

        Scores are `1 - cosine_distance`.
        """
        embeddings = await self._embedder.embed([query.embed_text])
        if not embeddings:
            return []

        cosine_distance = VectorEntry.embedding.cosine_distance(embeddings[0])

        stmt = (
            select(
                VectorEntry.id,
                VectorEntry.metadata_.label("meta"),
                (1 - cosine_distance).label("score"),
            )
            .order_by(cosine_distance)
            .limit(query.top_k)
        )

        clause = _filter_clause(query.filter)
        if clause is not None:
            stmt = stmt.where(clause)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            logger.error("pgvector query failed: %s", type(exc).__name__)
            raise BackendUnavailable(f"Vector query failed: {type(exc).__name__}") from exc

        return [
            VectorHit(id=row.id, score=float(row.score), metadata=row.meta or {})
            for row in rows
        ]
