import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..core.errors import BackendUnavailable, ConfigMissing

logger = logging.getLogger("rag.llm")


class GenerationError(BackendUnavailable):
    """Raised when the model call fails."""


class LLMClient:
    def __init__(
        self,
        api_key: Optional[Any],
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigMissing("OPENAI_API_KEY")
        self.api_key = (
            api_key.get_secret_value() if hasattr(api_key, "get_secret_value") else str(api_key)
        )
        self.model = model
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout = timeout
        self._transport = transport

    async def stream_chat(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
    ) -> AsyncIterator[str]:
        """
        Yields answer text deltas as the model produces them.

        Reads the OpenAI server-sent event stream:
            data: {"choices": [{"delta": {"content": "..."}}]}
            ...
            data: [DONE]

        Closing the iterator early closes the HTTP stream, so a consumer
        that stops draining stops the generation.
        """
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "temperature": temperature,
            "stream": True,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        delta = _extract_delta(data)
                        if delta:
                            yield delta
        except httpx.HTTPError as exc:
            logger.error("Model request failed (%s): %s", type(exc).__name__, exc)
            raise GenerationError(f"Model call failed: {type(exc).__name__}") from exc


def _extract_delta(data: str) -> str:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping non-JSON stream line")
        return ""

    choices = chunk.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("delta") or {}).get("content") or ""
