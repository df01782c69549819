"""
SQLAlchemy Models

Defines the database schema for the local (PostgreSQL) backends:
- Vector entries (documents and cache pointers, pgvector similarity search)
- Key-value entries (cached answer payloads)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector


# text-embedding-3-large
EMBEDDING_DIMENSIONS = 3072


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Vector Entry Model
# ---------------------------------------------------------------------

class VectorEntry(Base):
    """
    One similarity-searchable record.

    Document chunks and cache pointers share this table and are told apart
    only by `metadata["kind"]`.
    """
    __tablename__ = "vector_entry"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    embed_text: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=False)


# ---------------------------------------------------------------------
# Key-Value Entry Model
# ---------------------------------------------------------------------

class KeyValueEntry(Base):
    """A JSON payload addressed by an opaque key (e.g. `cache:{uuid}`)."""
    __tablename__ = "kv_entry"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
