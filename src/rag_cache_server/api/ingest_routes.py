"""
Ingestion Routes

Boundary for uploading document text into the vector index.

- `POST /ingest` accepts chunks that were already split by the client.
- `POST /ingest/text` accepts per-page text and chunks it server-side with
  the configured chunk size and overlap.

Both return `{"ok": true, "docId": ..., "upserted": n}`. Malformed payloads
map to 400 and a throttled backend to 429 with the partial `upserted` count
(see core.errors).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from .dependencies import get_ingestion, get_settings_dep
from .models import IngestRequest, IngestResponse, IngestTextRequest
from ..config import Settings
from ..core.errors import InvalidPayload
from ..ingest.chunking import chunk_pages
from ..ingest.pipeline import IngestionPipeline

logger = logging.getLogger("rag.ingest")

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post(
    "",
    response_model=IngestResponse,
    summary="Upsert pre-chunked document text",
)
async def ingest_chunks(
    req: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion),
) -> IngestResponse:
    result = await pipeline.ingest(req.chunks, doc_id=req.doc_id, source=req.source)
    return IngestResponse(doc_id=result.doc_id, upserted=result.upserted)


@router.post(
    "/text",
    response_model=IngestResponse,
    summary="Chunk page text server-side and upsert it",
)
async def ingest_text(
    req: IngestTextRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion),
    settings: Settings = Depends(get_settings_dep),
) -> IngestResponse:
    """
    Split each page with the configured chunker, keeping page numbers, then
    ingest the result like `POST /ingest`.
    """
    chunks = chunk_pages(
        req.pages,
        chunk_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
    )
    if not chunks:
        raise InvalidPayload(
            "Document produced no chunks",
            issues=[{"path": ["pages"], "message": "No text after whitespace normalization", "type": "empty"}],
        )

    logger.info("Chunked %d pages into %d chunks", len(req.pages), len(chunks))
    result = await pipeline.ingest(chunks, doc_id=req.doc_id, source=req.source)
    return IngestResponse(doc_id=result.doc_id, upserted=result.upserted)
