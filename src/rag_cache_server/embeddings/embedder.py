"""
Text Embedder

Embedding capability owned by the pgvector store. The hosted index embeds
text itself; PostgreSQL cannot, so `PgVectorStore` hands every `embed_text`
to this client before writing or searching.

Talks to the OpenAI embeddings endpoint (or any API with the same shape):

    POST {base_url}/embeddings  {"model": ..., "input": [...]}
    -> {"data": [{"index": 0, "embedding": [...]}, ...]}
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from ..core.errors import BackendUnavailable, ConfigMissing

logger = logging.getLogger("rag.embedder")


class EmbeddingError(BackendUnavailable):
    """Raised when the embeddings API fails or answers with the wrong shape."""


class _EmbeddingItem(BaseModel):
    index: int
    embedding: List[float]


class _EmbeddingResponse(BaseModel):
    data: List[_EmbeddingItem]


class OpenAIEmbedder:
    """
    Parameters
    ----------
    api_key : str or SecretStr
        Provider key. Missing keys fail here, before any request.
    model : str
        Embedding model; its dimension must match `db.models.EMBEDDING_DIMENSIONS`.
    base_url : str
        Root of the OpenAI-compatible API.
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: Optional[Any],
        model: str = "text-embedding-3-large",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ConfigMissing("OPENAI_API_KEY")

        self._key = (
            api_key.get_secret_value() if hasattr(api_key, "get_secret_value") else str(api_key)
        )
        self.model = model
        self.url = f"{base_url.rstrip('/')}/embeddings"
        self.timeout = timeout
        self._transport = transport

    async def embed(self, texts: Sequence[str], batch_size: int = 20) -> List[List[float]]:
        """
        Embed texts in input order, `batch_size` texts per request.

        Raises
        ------
        EmbeddingError
            On any transport failure, non-2xx status, malformed body, or a
            response that does not hold exactly one vector per input.
        """
        if not texts:
            return []

        vectors: List[List[float]] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for offset in range(0, len(texts), batch_size):
                batch = list(texts[offset : offset + batch_size])
                vectors.extend(await self._embed_batch(client, batch))

        return vectors

    async def _embed_batch(self, client: httpx.AsyncClient, batch: List[str]) -> List[List[float]]:
        try:
            resp = await client.post(
                self.url,
                json={"model": self.model, "input": batch},
                headers={"Authorization": f"Bearer {self._key}"},
            )
            resp.raise_for_status()
            parsed = _EmbeddingResponse.model_validate(resp.json())
        except httpx.HTTPError as exc:
            logger.error("Embedding request for %d texts failed: %s", len(batch), type(exc).__name__)
            raise EmbeddingError(f"Embedding request failed: {type(exc).__name__}") from exc
        except (ValueError, ValidationError) as exc:
            raise EmbeddingError("Malformed embeddings response") from exc

        if len(parsed.data) != len(batch):
            raise EmbeddingError(f"Expected {len(batch)} embeddings, got {len(parsed.data)}")

        return [item.embedding for item in sorted(parsed.data, key=lambda item: item.index)]
