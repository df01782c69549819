"""
UI message stream events.

Answers are delivered as server-sent events, one JSON object per `data:`
line, in the UI message stream format understood by the chat client:

    data: {"type": "start"}
    data: {"type": "data-citations", "id": "citations", "data": {"sources": [...]}}
    data: {"type": "text-start", "id": "..."}
    data: {"type": "text-delta", "id": "...", "delta": "..."}
    data: {"type": "text-end", "id": "..."}
    data: {"type": "finish"}
    data: [DONE]
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, Iterable, Sequence

from ..cache.semantic_cache import CachePayload, Citation

StreamEvent = Dict[str, Any]

SSE_MEDIA_TYPE = "text/event-stream"
UI_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "x-vercel-ai-ui-message-stream": "v1",
    "x-accel-buffering": "no",
}


def start_event() -> StreamEvent:
    return {"type": "start"}


def citations_event(citations: Sequence[Citation]) -> StreamEvent:
    return {
        "type": "data-citations",
        "id": "citations",
        "data": {"sources": [c.model_dump() for c in citations]},
    }


def text_start(text_id: str) -> StreamEvent:
    return {"type": "text-start", "id": text_id}


def text_delta(text_id: str, delta: str) -> StreamEvent:
    return {"type": "text-delta", "id": text_id, "delta": delta}


def text_end(text_id: str) -> StreamEvent:
    return {"type": "text-end", "id": text_id}


def finish_event() -> StreamEvent:
    return {"type": "finish"}


def error_event(message: str) -> StreamEvent:
    return {"type": "error", "errorText": message}


def replay_events(payload: CachePayload) -> Iterable[StreamEvent]:
    """Events for a cached answer: citations, then the whole text as one block."""
    text_id = "cached-text"
    yield start_event()
    yield citations_event(payload.citations)
    yield text_start(text_id)
    yield text_delta(text_id, payload.text)
    yield text_end(text_id)
    yield finish_event()


def encode_sse(event: StreamEvent) -> str:
    return f"data: {json.dumps(event, separators=(',', ':'))}\n\n"


async def sse_stream(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Encode an event stream as SSE lines, terminated by `[DONE]`."""
    async for event in events:
        yield encode_sse(event)
    yield "data: [DONE]\n\n"


def parse_sse(body: str) -> list[StreamEvent]:
    """Decode an SSE body produced by `sse_stream` (used by clients and tests)."""
    events = []
    for line in body.splitlines():
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        events.append(json.loads(data))
    return events
