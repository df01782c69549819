"""
Chat Routes: Retrieval-Grounded Streaming Answers

This module implements the conversational endpoint used by the browser
client. Requests only reach it when the semantic cache proxy did not
answer them.

Major Responsibilities
----------------------
1. Validate the ChatRequest (malformed payloads map to 400 globally).
2. Extract the latest user query from the message list.
3. Hand retrieval + generation to the GenerationOrchestrator.
4. Stream the UI message events as Server-Sent Events.
5. Schedule the semantic cache write to run after the body is sent.
"""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, Depends
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from .dependencies import get_orchestrator
from .models import ChatRequest
from ..generation.events import SSE_MEDIA_TYPE, UI_STREAM_HEADERS, sse_stream
from ..generation.messages import latest_user_query
from ..generation.orchestrator import GenerationOrchestrator, GenerationStream

logger = logging.getLogger("rag.chat")

router = APIRouter(prefix="/chat", tags=["chat"])


class GenerationResponse(StreamingResponse):
    """
    SSE response that owns its GenerationStream.

    The model stream is opened before the response starts, so it is closed
    here once the response ends for any reason, including a client that
    went away before the first event was sent.
    """

    def __init__(self, stream: GenerationStream) -> None:
        self.generation = stream
        super().__init__(
            sse_stream(stream),
            media_type=SSE_MEDIA_TYPE,
            headers=dict(UI_STREAM_HEADERS),
            background=BackgroundTask(stream.write_back),
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.generation.aclose()


# ---------------------------------------------------------------------
# Chat Route
# ---------------------------------------------------------------------

@router.post(
    "",
    summary="Answer a question from the ingested documents",
    response_class=StreamingResponse,
)
async def chat(
    req: ChatRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """
    Stream a grounded answer for the latest user message.

    The response is an SSE stream of UI message events: start, a
    `data-citations` part, text start/delta/end, finish, then `[DONE]`.
    """
    messages = [m.model_dump(exclude_none=True) for m in req.messages]
    query = latest_user_query(messages)
    if not query:
        logger.info("Chat request without a user query; generating without context")

    stream = await orchestrator.start(query, messages)

    return GenerationResponse(stream)
