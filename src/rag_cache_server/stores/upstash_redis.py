"""
Hosted Key-Value Store (Upstash Redis)

KeyValueStore implementation over the Upstash Redis REST API. Values are
stored as JSON strings and decoded on read.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..core.errors import BackendUnavailable
from .upstash_rest import require_credentials, upstash_request

logger = logging.getLogger("rag.kv")


class UpstashRedisStore:

    def __init__(
        self,
        url: Optional[Any],
        token: Optional[Any],
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url, self._token = require_credentials(url, token, "UPSTASH_REDIS")
        self.timeout = timeout
        self._transport = transport

    def _key_url(self, command: str, key: str) -> str:
        return f"{self.url}/{command}/{quote(key, safe='')}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        result = await upstash_request(
            "GET",
            self._key_url("get", key),
            self._token,
            timeout=self.timeout,
            transport=self._transport,
        )
        if result is None:
            return None

        try:
            value = json.loads(result) if isinstance(result, str) else result
        except json.JSONDecodeError as exc:
            raise BackendUnavailable(f"Stored value for {key!r} is not JSON") from exc

        return value if isinstance(value, dict) else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        await upstash_request(
            "POST",
            self._key_url("set", key),
            self._token,
            content=json.dumps(value, default=str),
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.debug("Stored key %s", key)
