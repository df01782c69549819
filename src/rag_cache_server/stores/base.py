"""
Store Capability Interfaces

This module defines the two storage capabilities the pipeline depends on and
the value types that cross them:

- VectorStore: similarity-searchable records addressed by raw text. The
  implementation owns embedding; `embed_text` is always plain text, never a
  numeric vector.
- KeyValueStore: point lookup and write of JSON payloads.

Implementations are interchangeable and chosen at construction time
(see `api/dependencies.py`). Nothing here inherits from a backend class;
any object with the right methods satisfies the protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable


# ---------------------------------------------------------------------
# Metadata Filters
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class FieldCondition:
    """Single equality (or inequality) predicate over a metadata field."""

    field: str
    value: str
    negate: bool = False

    def matches(self, metadata: Dict[str, Any]) -> bool:
        equal = metadata.get(self.field) == self.value
        return not equal if self.negate else equal


@dataclass(frozen=True)
class MetadataFilter:
    """Conjunction of field conditions. An empty filter matches everything."""

    conditions: Tuple[FieldCondition, ...] = ()

    @classmethod
    def eq(cls, field_name: str, value: str) -> "MetadataFilter":
        return cls((FieldCondition(field_name, value),))

    @classmethod
    def ne(cls, field_name: str, value: str) -> "MetadataFilter":
        return cls((FieldCondition(field_name, value, negate=True),))

    def matches(self, metadata: Dict[str, Any]) -> bool:
        return all(cond.matches(metadata) for cond in self.conditions)


# ---------------------------------------------------------------------
# Value Types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class VectorRecord:
    id: str
    embed_text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorQuery:
    embed_text: str
    top_k: int
    filter: Optional[MetadataFilter] = None


@dataclass(frozen=True)
class VectorHit:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------

@runtime_checkable
class VectorStore(Protocol):

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        """Insert or replace records; returns the number written."""
        ...

    async def query(self, query: VectorQuery) -> List[VectorHit]:
        """Return hits sorted by descending similarity score."""
        ...


@runtime_checkable
class KeyValueStore(Protocol):

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        ...


@runtime_checkable
class Embedder(Protocol):
    """Turns raw text into dense vectors for stores that embed locally."""

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...
