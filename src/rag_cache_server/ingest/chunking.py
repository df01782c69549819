"""
Text Chunking

Splits raw document text into overlapping fixed-size character windows for
indexing. Each window becomes one DocumentRecord in the vector store.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import ConfigError

_WHITESPACE = re.compile(r"\s+")


class TextChunk(BaseModel):
    """A bounded piece of a source document, optionally tagged with its page."""

    text: str = Field(..., min_length=1)
    page: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to a single space and trim both ends."""
    return _WHITESPACE.sub(" ", text).strip()


def chunk_text(text: str, chunk_size: int = 900, overlap: int = 150) -> List[str]:
    """
    Split text into overlapping windows.

    Parameters
    ----------
    text : str
        Raw document text. Whitespace is normalized before splitting.
    chunk_size : int
        Window length in characters. `chunk_size <= 0` disables splitting
        and returns the whole normalized text as one chunk.
    overlap : int
        Characters shared by adjacent windows. Must satisfy
        `0 <= overlap < chunk_size` when splitting is enabled.

    Returns
    -------
    List[str]
        Ordered chunks; empty for empty or whitespace-only input.

    Raises
    ------
    ConfigError
        If splitting is enabled and the overlap is out of range.
    """
    if chunk_size > 0 and (overlap >= chunk_size or overlap < 0):
        raise ConfigError(
            f"overlap must be < chunk_size and >= 0 (chunk_size={chunk_size}, overlap={overlap})"
        )

    normalized = normalize_whitespace(text)
    if not normalized:
        return []

    if chunk_size <= 0:
        return [normalized]

    step = chunk_size - overlap
    chunks: List[str] = []
    start = 0
    length = len(normalized)

    while start < length:
        end = min(start + chunk_size, length)
        chunks.append(normalized[start:end])
        if end == length:
            break
        start += step

    return chunks


def chunk_pages(
    pages: Iterable[TextChunk],
    chunk_size: int = 900,
    overlap: int = 150,
) -> List[TextChunk]:
    """
    Chunk each page independently and tag every chunk with its page number.

    Pages are processed in order, so the output preserves document order.
    """
    chunks: List[TextChunk] = []
    for page in pages:
        for piece in chunk_text(page.text, chunk_size=chunk_size, overlap=overlap):
            chunks.append(TextChunk(text=piece, page=page.page))
    return chunks
