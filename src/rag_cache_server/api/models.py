"""
API Models

This module defines the Pydantic models used for request/response validation
across the chat and ingestion endpoints.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Clear schema documentation
- Wire names match the browser client (camelCase `docId`)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, ConfigDict

from ..ingest.chunking import TextChunk


# ---------------------------------------------------------------------
# Chat Models
# ---------------------------------------------------------------------

class ChatMessage(BaseModel):
    """
    Single message in a chat conversation.

    `content` may be a string or a list of parts; `parts` is the newer
    UI message shape. Extra fields sent by the client (ids, metadata) are
    kept and ignored.
    """
    role: str = Field(..., min_length=1)
    content: Optional[Union[str, List[Dict[str, Any]]]] = None
    parts: Optional[List[Dict[str, Any]]] = None

    model_config = ConfigDict(extra="allow")


class ChatRequest(BaseModel):
    """
    Chat completion request payload.
    """
    messages: List[ChatMessage] = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------
# Ingestion Models
# ---------------------------------------------------------------------

class IngestRequest(BaseModel):
    """
    Pre-chunked document upload.
    """
    doc_id: Optional[str] = Field(default=None, alias="docId", min_length=1)
    source: Optional[str] = Field(default=None, min_length=1)
    chunks: List[TextChunk] = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class IngestTextRequest(BaseModel):
    """
    Raw page text upload, chunked server-side.
    """
    doc_id: Optional[str] = Field(default=None, alias="docId", min_length=1)
    source: Optional[str] = Field(default=None, min_length=1)
    pages: List[TextChunk] = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class IngestResponse(BaseModel):
    ok: bool = True
    doc_id: str = Field(..., alias="docId")
    upserted: int = Field(..., ge=0)

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: str
    vector_backend: str
    kv_backend: str
