"""Persistence for knowledge items, chunk vectors and retrieval logs."""

from .base import KnowledgeStore
from .memory import InMemoryKnowledgeStore
from .sqlite import SQLiteKnowledgeStore

__all__ = ["KnowledgeStore", "InMemoryKnowledgeStore", "SQLiteKnowledgeStore"]
