"""
Document Ingestion

Turns a document's chunks into DocumentRecords and upserts them into the
vector store batch by batch.

- Record ids are `doc:{docId}:{index}` with the index counted across the
  whole document, so re-ingesting the same docId overwrites in place.
- Batches are written sequentially. A rate-limited batch stops the run and
  reports how many records were already committed; any other failure
  propagates and aborts the remaining batches.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from ..core.errors import RateLimited
from ..stores.base import VectorRecord, VectorStore
from .chunking import TextChunk

logger = logging.getLogger("rag.ingest")

DOC_KIND = "doc"


class IngestResult(BaseModel):
    ok: bool = True
    doc_id: str
    upserted: int = Field(..., ge=0)


def build_records(
    doc_id: str,
    source: str,
    chunks: Sequence[TextChunk],
    start_index: int = 0,
) -> List[VectorRecord]:
    return [
        VectorRecord(
            id=f"doc:{doc_id}:{start_index + offset}",
            embed_text=chunk.text,
            metadata={
                "kind": DOC_KIND,
                "docId": doc_id,
                "source": source,
                "page": chunk.page,
                "text": chunk.text,
            },
        )
        for offset, chunk in enumerate(chunks)
    ]


class IngestionPipeline:
    """
    Batch writer for document chunks.

    Parameters
    ----------
    vector_store : VectorStore
        Destination index.
    batch_size : int
        Records per upsert call.
    """

    def __init__(self, vector_store: VectorStore, batch_size: int = 50) -> None:
        self._vectors = vector_store
        self.batch_size = batch_size

    async def ingest(
        self,
        chunks: Sequence[TextChunk],
        doc_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> IngestResult:
        """
        Upsert all chunks of one document.

        Raises
        ------
        RateLimited
            With `upserted` set to the records committed before the limit.
        BackendUnavailable
            For any other backend failure (no partial success is reported).
        """
        doc_id = doc_id or str(uuid.uuid4())
        source = source or f"doc:{doc_id}"

        upserted = 0
        for start in range(0, len(chunks), self.batch_size):
            batch = build_records(doc_id, source, chunks[start : start + self.batch_size], start)
            try:
                await self._vectors.upsert(batch)
            except RateLimited as exc:
                logger.warning(
                    "Ingestion of %s rate limited after %d records",
                    doc_id,
                    upserted,
                )
                raise RateLimited(str(exc), upserted=upserted) from exc
            upserted += len(batch)
            logger.debug("Upserted batch %d-%d of %s", start, start + len(batch), doc_id)

        logger.info("Ingested %d chunks for %s", upserted, doc_id)
        return IngestResult(doc_id=doc_id, upserted=upserted)
