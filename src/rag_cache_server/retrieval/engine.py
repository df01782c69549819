"""
Document Retrieval

Multi-stage fallback search for document context. Stages run strictly in
order and the first non-empty stage wins; results are never merged.

1. Enhanced query: metadata-style questions ("who are the authors?") get
   extra keywords appended so title-page chunks rank higher.
2. Raw query: the user's text unchanged.
3. Last resort: a fixed list of broad queries, so any indexed document
   content reaches the model rather than none.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from ..core.errors import BackendUnavailable
from ..stores.base import MetadataFilter, VectorHit, VectorQuery, VectorStore

logger = logging.getLogger("rag.retrieval")

DOC_KIND = "doc"

METADATA_INTENT = re.compile(
    r"author|writer|creator|researcher|paper|document|title|abstract",
    re.IGNORECASE,
)
ENHANCEMENT_KEYWORDS = "authors names researchers contributors paper title abstract"
FALLBACK_QUERIES = ("document", "text content", "paper", "pdf content")


class RetrievedChunk(BaseModel):
    id: str
    score: float
    text: str
    source: Optional[str] = None
    page: Optional[int] = None

    model_config = ConfigDict(frozen=True)


def enhance_query(query: str) -> Optional[str]:
    """Return the keyword-enhanced query, or None if the query has no metadata intent."""
    if METADATA_INTENT.search(query):
        return f"{query} {ENHANCEMENT_KEYWORDS}"
    return None


def _to_chunks(hits: Sequence[VectorHit]) -> List[RetrievedChunk]:
    """Keep document-kind hits with text, preserving similarity order."""
    chunks: List[RetrievedChunk] = []
    for hit in hits:
        meta = hit.metadata
        if meta.get("kind", DOC_KIND) != DOC_KIND:
            continue
        text = meta.get("text")
        if not text:
            continue
        page = meta.get("page")
        chunks.append(
            RetrievedChunk(
                id=hit.id,
                score=hit.score,
                text=str(text),
                source=meta.get("source"),
                page=page if isinstance(page, int) else None,
            )
        )
    return chunks


class RetrievalEngine:
    """
    Fallback-chain retriever over document records.

    Parameters
    ----------
    vector_store : VectorStore
        Index holding DocumentRecords (and CacheRecords, which are excluded).
    top_k_enhanced, top_k_raw, top_k_fallback : int
        Result counts for the three stages.
    fallback_queries : Sequence[str]
        Broad queries tried in order by the last-resort stage.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        top_k_enhanced: int = 8,
        top_k_raw: int = 10,
        top_k_fallback: int = 10,
        fallback_queries: Sequence[str] = FALLBACK_QUERIES,
    ) -> None:
        self._vectors = vector_store
        self.top_k_enhanced = top_k_enhanced
        self.top_k_raw = top_k_raw
        self.top_k_fallback = top_k_fallback
        self.fallback_queries = tuple(fallback_queries)

    async def search_docs(self, text: str, top_k: int) -> List[RetrievedChunk]:
        """Single document-only search. Backend errors propagate."""
        hits = await self._vectors.query(
            VectorQuery(
                embed_text=text,
                top_k=top_k,
                filter=MetadataFilter.ne("kind", "cache"),
            )
        )
        return _to_chunks(hits)

    async def _stage(self, name: str, text: str, top_k: int) -> List[RetrievedChunk]:
        try:
            chunks = await self.search_docs(text, top_k)
        except BackendUnavailable as exc:
            logger.warning("Retrieval stage '%s' failed, treating as empty: %s", name, exc)
            return []
        logger.debug("Retrieval stage '%s' returned %d chunks", name, len(chunks))
        return chunks

    async def retrieve(self, query: str) -> List[RetrievedChunk]:
        """
        Return document context for a user query.

        Returns
        -------
        List[RetrievedChunk]
            The first non-empty stage's chunks in descending score order, or
            an empty list if every stage came back empty.
        """
        if not query.strip():
            return []

        # Queries without metadata intent still run this stage, unmodified
        first = enhance_query(query) or query
        chunks = await self._stage("enhanced", first, self.top_k_enhanced)
        if chunks:
            return chunks

        chunks = await self._stage("raw", query, self.top_k_raw)
        if chunks:
            return chunks

        for broad in self.fallback_queries:
            chunks = await self._stage(f"fallback:{broad}", broad, self.top_k_fallback)
            if chunks:
                logger.info("Retrieval fell back to broad query '%s'", broad)
                return chunks

        logger.info("No document context found for query")
        return []
