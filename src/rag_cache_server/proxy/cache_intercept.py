"""
Semantic cache intercept middleware.

Sits in front of the chat endpoint. For each `POST /chat` it extracts the
latest user query, consults the semantic cache, and on a hit replays the
cached citations and answer without running retrieval or generation.

Everything here fails open: unreadable bodies, empty queries, cache misses,
backend errors and malformed payloads all forward the request unchanged to
the normal pipeline. Nothing raised inside the lookup reaches the client.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import StreamingResponse
from starlette.types import ASGIApp

from ..cache.semantic_cache import CachePayload, SemanticCache
from ..generation.events import (
    SSE_MEDIA_TYPE,
    UI_STREAM_HEADERS,
    encode_sse,
    replay_events,
)
from ..generation.messages import latest_user_query

logger = logging.getLogger("rag.proxy")


def _elapsed_ms(start: float) -> str:
    return f"{(time.perf_counter() - start) * 1000:.2f}"


class CacheInterceptMiddleware(BaseHTTPMiddleware):
    """
    Parameters
    ----------
    app : ASGIApp
        Downstream application.
    get_cache : Callable[[], SemanticCache]
        Returns the cache to consult. Called per intercepted request, so
        construction errors (e.g. missing credentials) fail open too.
    path, method : str
        The single endpoint this middleware intercepts.
    """

    def __init__(
        self,
        app: ASGIApp,
        get_cache: Callable[[], SemanticCache],
        path: str = "/chat",
        method: str = "POST",
    ) -> None:
        super().__init__(app)
        self._get_cache = get_cache
        self.path = path.rstrip("/") or "/"
        self.method = method.upper()

    def _targets(self, request: Request) -> bool:
        path = request.url.path.rstrip("/") or "/"
        return request.method == self.method and path == self.path

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self._targets(request):
            return await call_next(request)

        started = time.perf_counter()

        query = await self._read_query(request)
        if not query:
            return await call_next(request)

        response = await self._try_replay(query, started)
        if response is None:
            return await call_next(request)
        return response

    async def _read_query(self, request: Request) -> str:
        try:
            body = await request.body()
            data = json.loads(body) if body else None
        except Exception as exc:
            logger.debug("Cache proxy could not read body: %s", exc)
            return ""

        if not isinstance(data, dict):
            return ""
        return latest_user_query(data.get("messages"))

    async def _try_replay(self, query: str, started: float) -> Optional[Response]:
        try:
            cache = self._get_cache()

            lookup_started = time.perf_counter()
            hit = await cache.lookup(query)
            lookup_ms = _elapsed_ms(lookup_started)

            if hit is None:
                logger.info("Semantic cache miss")
                return None

            payload_started = time.perf_counter()
            payload = await cache.fetch_payload(hit.pointer_key)
            payload_ms = _elapsed_ms(payload_started)
        except Exception as exc:
            logger.warning("Semantic cache lookup failed, passing through: %s", exc)
            return None

        if payload is None:
            logger.warning("Cache hit %s has no usable payload, passing through", hit.pointer_key)
            return None

        logger.info("Semantic cache hit (score=%.4f, key=%s)", hit.score, hit.pointer_key)
        return self._replay(payload, {
            "X-Cache-Hit": "true",
            "X-Response-Time": _elapsed_ms(started),
            "X-Cache-Lookup-Time": lookup_ms,
            "X-Cache-Payload-Time": payload_ms,
        })

    @staticmethod
    def _replay(payload: CachePayload, timing_headers: dict) -> StreamingResponse:
        async def body():
            for event in replay_events(payload):
                yield encode_sse(event)
            yield "data: [DONE]\n\n"

        return StreamingResponse(
            body(),
            media_type=SSE_MEDIA_TYPE,
            headers={**UI_STREAM_HEADERS, **timing_headers},
        )
