"""
Generation Orchestrator

Runs the expensive path for requests the cache proxy let through:

1. Retrieve document context for the latest user query.
2. Build a grounded system prompt from the retrieved chunks.
3. Open the model stream (failures here surface to the caller).
4. Emit citations, then stream answer text deltas.
5. After the stream completes, write the answer to the semantic cache.
   The HTTP layer runs `GenerationStream.write_back` as a background task
   once the response body has been sent. Failures are logged and dropped.

If the consumer stops draining the event stream (client disconnect), the
model stream is closed, the stream never completes, and write_back does
nothing.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..cache.semantic_cache import Citation, SemanticCache
from ..llm.client import GenerationError, LLMClient
from ..retrieval.engine import RetrievalEngine, RetrievedChunk
from .events import (
    StreamEvent,
    citations_event,
    error_event,
    finish_event,
    start_event,
    text_delta,
    text_end,
    text_start,
)
from .messages import to_model_messages

logger = logging.getLogger("rag.generation")


SYSTEM_INSTRUCTIONS = "\n".join([
    "You are a helpful assistant that answers questions based on the provided context from uploaded documents.",
    "The user has uploaded documents and is asking questions about them. Use the context below to answer.",
    "",
    "Critical instructions:",
    "- Answer ONLY from the provided context. Do not rely on outside knowledge.",
    "- Extract information from the context, even if it's partial, incomplete, or not perfectly formatted.",
    "- For questions about 'authors', 'title', 'abstract', or metadata, carefully examine ALL provided context chunks.",
    "- Only say 'I cannot find that information' if you've checked all context and truly cannot find it.",
    "- When you use the context, cite sources by listing them at the end under 'Sources:' with (source, page) pairs.",
])

NO_CONTEXT_NOTE = (
    "NOTE: No context chunks were retrieved for this question. Tell the user you could not "
    "find relevant passages in the uploaded documents and suggest rephrasing the question "
    "or re-uploading the document. Do not invent an answer."
)


def build_citations(chunks: Sequence[RetrievedChunk]) -> List[Citation]:
    return [
        Citation(id=c.id, source=c.source or "unknown", page=c.page, score=c.score)
        for c in chunks
    ]


def build_system_prompt(chunks: Sequence[RetrievedChunk]) -> str:
    """
    Embed every retrieved chunk with its index, source, page and relevance
    score below the grounding instructions.
    """
    if not chunks:
        return f"{SYSTEM_INSTRUCTIONS}\n\n{NO_CONTEXT_NOTE}"

    blocks = []
    for i, chunk in enumerate(chunks, start=1):
        page = chunk.page if chunk.page is not None else "n/a"
        header = (
            f"[Chunk {i}] source={chunk.source or 'unknown'} page={page} "
            f"(relevance: {chunk.score:.3f})"
        )
        blocks.append(f"{header}\n{chunk.text}")

    context = "\n\n".join(blocks)
    return (
        f"{SYSTEM_INSTRUCTIONS}\n\n"
        f"Context from the uploaded documents ({len(chunks)} chunks retrieved):\n\n"
        f"{context}"
    )


class GenerationStream:
    """
    One request's answer stream.

    Iterate it exactly once for the ordered events (start, citations, text
    deltas, finish). Call `write_back` afterwards; it writes the semantic
    cache only if the stream ran to completion.
    `aclose` releases the model stream when the events are never consumed.
    """

    def __init__(
        self,
        query: str,
        citations: List[Citation],
        deltas: AsyncIterator[str],
        first: str,
        cache: Optional[SemanticCache] = None,
    ) -> None:
        self.query = query
        self.citations = citations
        self._deltas = deltas
        self._first = first
        self._cache = cache
        self._parts: List[str] = []
        self.completed = False
        self._closed = False

    @property
    def answer(self) -> str:
        return "".join(self._parts)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        text_id = f"text-{uuid.uuid4().hex[:12]}"

        yield start_event()
        yield citations_event(self.citations)
        yield text_start(text_id)

        try:
            if self._first:
                self._parts.append(self._first)
                yield text_delta(text_id, self._first)

            async for delta in self._deltas:
                self._parts.append(delta)
                yield text_delta(text_id, delta)
        except GenerationError as exc:
            logger.error("Model stream failed after output started: %s", exc)
            yield error_event("Generation failed")
            return
        finally:
            await self.aclose()

        yield text_end(text_id)
        yield finish_event()
        self.completed = True

    async def aclose(self) -> None:
        """
        Close the model stream. Safe to call more than once, and before
        iteration ever started (response abandoned before the first byte).
        """
        if self._closed:
            return
        self._closed = True
        await self._deltas.aclose()

    async def write_back(self) -> None:
        """Best-effort semantic cache write for a completed stream."""
        if self._cache is None or not self.completed:
            return
        if not self.query or not self.answer:
            return

        try:
            await self._cache.store(self.query, self.answer, self.citations)
        except Exception as exc:
            logger.warning("Semantic cache write failed (ignored): %s", exc)


class GenerationOrchestrator:

    def __init__(
        self,
        retrieval: RetrievalEngine,
        llm: LLMClient,
        cache: Optional[SemanticCache] = None,
    ) -> None:
        self._retrieval = retrieval
        self._llm = llm
        self._cache = cache

    async def start(
        self,
        query: str,
        messages: Sequence[Dict[str, Any]],
    ) -> GenerationStream:
        """
        Retrieve context and open the model stream.

        Returns once the model has produced its first delta (or finished
        without any), so failures before streaming surface here.

        Raises
        ------
        GenerationError
            If the model call fails before any output was produced.
        ConfigMissing
            If a backend needed for retrieval is not configured.
        """
        chunks = await self._retrieval.retrieve(query) if query else []
        citations = build_citations(chunks)
        system_prompt = build_system_prompt(chunks)

        deltas = self._llm.stream_chat(system_prompt, to_model_messages(messages))
        try:
            first = await deltas.__anext__()
        except StopAsyncIteration:
            first = ""
        except Exception:
            await deltas.aclose()
            raise

        logger.info(
            "Generating answer with %d context chunks",
            len(chunks),
        )
        return GenerationStream(query, citations, deltas, first, cache=self._cache)
