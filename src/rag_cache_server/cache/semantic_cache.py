"""
Semantic Response Cache

Caches generated answers keyed by the *meaning* of the query. A cache entry
is split in two:

- CachePayload: the full answer `{query, text, citations}` in the key-value
  store under `cache:{uuid}` (the pointer key).
- CacheRecord: a vector-store entry with id `cache:{uuid}` that embeds the
  query text and carries `{kind: "cache", pointerKey}` metadata.

Writes are two-phase (payload first, pointer second). A failed pointer write
leaves an orphaned payload, which is harmless and never reconciled. Entries
are not deduplicated: concurrent identical queries may each write their own
pair.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..stores.base import KeyValueStore, MetadataFilter, VectorQuery, VectorRecord, VectorStore

logger = logging.getLogger("rag.cache")

CACHE_KIND = "cache"
CACHE_KEY_PREFIX = "cache:"


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class Citation(BaseModel):
    """Source reference emitted to the client and stored with cached answers."""
    id: str
    source: str = "unknown"
    page: Optional[int] = None
    score: float

    model_config = ConfigDict(extra="ignore")


class CachePayload(BaseModel):
    query: str = ""
    text: str = Field(..., min_length=1)
    citations: List[Citation] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class CacheHit(BaseModel):
    score: float
    pointer_key: str

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------

class SemanticCache:
    """
    Threshold-based semantic cache over a VectorStore and a KeyValueStore.

    Parameters
    ----------
    vector_store : VectorStore
        Index holding CacheRecords (shared with document records).
    kv_store : KeyValueStore
        Store holding CachePayloads.
    threshold : float
        Minimum similarity score (inclusive) for a lookup to count as a hit.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        kv_store: KeyValueStore,
        threshold: float = 0.95,
    ) -> None:
        self._vectors = vector_store
        self._kv = kv_store
        self.threshold = threshold

    async def lookup(self, query: str, threshold: Optional[float] = None) -> Optional[CacheHit]:
        """
        Find the closest cached query.

        Returns None when nothing is cached, when the closest entry has no
        pointer key, or when its score is below the threshold. A score equal
        to the threshold is a hit. Backend errors propagate.
        """
        limit = self.threshold if threshold is None else threshold

        hits = await self._vectors.query(
            VectorQuery(
                embed_text=query,
                top_k=1,
                filter=MetadataFilter.eq("kind", CACHE_KIND),
            )
        )
        if not hits:
            return None

        hit = hits[0]
        pointer_key = hit.metadata.get("pointerKey")
        if not pointer_key:
            logger.warning("Cache record %s has no pointerKey", hit.id)
            return None

        if hit.score < limit:
            logger.debug("Cache miss: best score %.4f < %.4f", hit.score, limit)
            return None

        return CacheHit(score=hit.score, pointer_key=str(pointer_key))

    async def fetch_payload(self, pointer_key: str) -> Optional[CachePayload]:
        """
        Load the cached answer behind a pointer key.

        Returns None for absent or malformed payloads. Backend errors
        propagate.
        """
        raw = await self._kv.get(pointer_key)
        if raw is None:
            return None

        try:
            return CachePayload.model_validate(raw)
        except ValidationError:
            logger.warning("Malformed cache payload at %s", pointer_key)
            return None

    async def store(
        self,
        query: str,
        text: str,
        citations: Sequence[Citation | Dict[str, Any]],
    ) -> str:
        """
        Write a new cache entry: payload first, then the discoverable pointer.

        Returns
        -------
        str
            The pointer key of the new entry.
        """
        entry_id = uuid.uuid4()
        pointer_key = f"{CACHE_KEY_PREFIX}{entry_id}"

        payload = CachePayload(
            query=query,
            text=text,
            citations=[
                c if isinstance(c, Citation) else Citation.model_validate(c)
                for c in citations
            ],
        )

        await self._kv.set(pointer_key, payload.model_dump())

        await self._vectors.upsert([
            VectorRecord(
                id=pointer_key,
                embed_text=query,
                metadata={"kind": CACHE_KIND, "pointerKey": pointer_key},
            )
        ])

        logger.info("Cached answer under %s", pointer_key)
        return pointer_key
