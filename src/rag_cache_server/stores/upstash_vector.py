"""
Hosted Vector Index (Upstash Vector)

VectorStore implementation backed by an Upstash Vector index configured with
a built-in embedding model. Records and queries are sent as raw text
(`data`); the index embeds them server-side, so this adapter's embedder is
the remote index itself.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import httpx

from .base import MetadataFilter, VectorHit, VectorQuery, VectorRecord
from .upstash_rest import require_credentials, upstash_request

logger = logging.getLogger("rag.vector")


def render_filter(metadata_filter: Optional[MetadataFilter]) -> Optional[str]:
    """
    Render a MetadataFilter in Upstash's SQL-like filter syntax, e.g.
    `kind = 'cache' AND source != 'x'`.
    """
    if metadata_filter is None or not metadata_filter.conditions:
        return None

    parts = []
    for cond in metadata_filter.conditions:
        op = "!=" if cond.negate else "="
        value = cond.value.replace("'", "\\'")
        parts.append(f"{cond.field} {op} '{value}'")
    return " AND ".join(parts)


class UpstashVectorStore:
    """
    Stateless client for an Upstash Vector index.

    Safe for unsynchronized concurrent use; each call opens its own HTTP
    client.
    """

    def __init__(
        self,
        url: Optional[Any],
        token: Optional[Any],
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url, self._token = require_credentials(url, token, "UPSTASH_VECTOR")
        self.timeout = timeout
        self._transport = transport

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0

        payload = [
            {"id": rec.id, "data": rec.embed_text, "metadata": rec.metadata}
            for rec in records
        ]
        await upstash_request(
            "POST",
            f"{self.url}/upsert-data",
            self._token,
            json=payload,
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.debug("Upserted %d records", len(payload))
        return len(payload)

    async def query(self, query: VectorQuery) -> List[VectorHit]:
        payload = {
            "data": query.embed_text,
            "topK": query.top_k,
            "includeMetadata": True,
        }
        rendered = render_filter(query.filter)
        if rendered:
            payload["filter"] = rendered

        result = await upstash_request(
            "POST",
            f"{self.url}/query-data",
            self._token,
            json=payload,
            timeout=self.timeout,
            transport=self._transport,
        )

        hits = [
            VectorHit(
                id=str(item.get("id")),
                score=float(item.get("score", 0.0)),
                metadata=item.get("metadata") or {},
            )
            for item in (result or [])
            if isinstance(item, dict)
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits
