"""
Upstash REST Transport

Shared request helper for the hosted vector index and the hosted Redis
store. Both speak JSON over HTTPS with a bearer token and wrap successful
results as `{"result": ...}`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..core.errors import BackendUnavailable, ConfigMissing, RateLimited

logger = logging.getLogger("rag.upstash")


def require_credentials(url: Optional[Any], token: Optional[Any], prefix: str) -> tuple[str, str]:
    """
    Validate an endpoint/token pair eagerly.

    `token` may be a pydantic SecretStr or a plain string.

    Raises
    ------
    ConfigMissing
        Naming every absent environment variable.
    """
    missing = []
    if not url:
        missing.append(f"{prefix}_REST_URL")
    if not token:
        missing.append(f"{prefix}_REST_TOKEN")
    if missing:
        raise ConfigMissing(*missing)

    secret = token.get_secret_value() if hasattr(token, "get_secret_value") else str(token)
    return str(url).rstrip("/"), secret


async def upstash_request(
    method: str,
    url: str,
    token: str,
    *,
    json: Any = None,
    content: Optional[str] = None,
    timeout: float = 15.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """
    Perform one authenticated Upstash REST call and return its `result`.

    Raises
    ------
    RateLimited
        On HTTP 429.
    BackendUnavailable
        On transport errors, other non-2xx statuses, or a body without
        `result`.
    """
    headers = {"Authorization": f"Bearer {token}"}

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.request(method, url, json=json, content=content, headers=headers)
        resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 429:
            logger.warning("Upstash rate limit: %s %s", method, url)
            raise RateLimited(f"Upstash rate limit reached ({url})") from exc
        logger.error(
            "Upstash request failed: %s %s -> %d",
            method,
            url,
            exc.response.status_code,
        )
        raise BackendUnavailable(
            f"Upstash request failed with status {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("Upstash transport error (%s): %s %s", type(exc).__name__, method, url)
        raise BackendUnavailable(f"Upstash request failed: {type(exc).__name__}") from exc

    try:
        data = resp.json()
    except ValueError as exc:
        raise BackendUnavailable("Upstash returned a non-JSON body") from exc

    if not isinstance(data, dict) or "result" not in data:
        raise BackendUnavailable(f"Unexpected Upstash response: {data!r}")

    return data["result"]
