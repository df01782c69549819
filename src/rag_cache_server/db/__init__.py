"""
Database Package

Provides SQLAlchemy async session management and model definitions
for PostgreSQL with pgvector.
"""

from .session import create_session_factory, create_tables
from .models import Base, VectorEntry, KeyValueEntry

__all__ = [
    "create_session_factory",
    "create_tables",
    "Base",
    "VectorEntry",
    "KeyValueEntry",
]
