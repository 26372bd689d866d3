"""
Core data types shared by the indexer, retriever and stores.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class KnowledgeItem:
    """A source document. `category` is the risk type, `title` the file stem."""

    id: str
    category: str
    title: str
    content: str = ""
    file_path: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "filePath": self.file_path,
            "content": self.content,
            "createdAt": self.created_at.isoformat() if self.created_at else "",
            "updatedAt": self.updated_at.isoformat() if self.updated_at else "",
        }


@dataclass
class KnowledgeChunk:
    """A bounded slice of a document with its embedding vector."""

    id: str
    item_id: str
    chunk_index: int
    chunk_text: str
    embedding: np.ndarray | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        # Vectors are never serialized
        return {
            "id": self.id,
            "itemId": self.item_id,
            "chunkIndex": self.chunk_index,
            "chunkText": self.chunk_text,
        }


@dataclass
class CandidateChunk:
    """A stored chunk joined with its parent document's category and title."""

    chunk: KnowledgeChunk
    item: KnowledgeItem


@dataclass
class RetrievalResult:
    """A ranked match. `expanded` marks neighbours added for context."""

    chunk: KnowledgeChunk
    item: KnowledgeItem
    similarity: float
    score: float
    expanded: bool = False

    @property
    def category(self) -> str:
        return self.item.category

    @property
    def title(self) -> str:
        return self.item.title

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk": self.chunk.to_dict(),
            "item": {"id": self.item.id, "category": self.item.category, "title": self.item.title},
            "similarity": self.similarity,
            "score": self.score,
            "expanded": self.expanded,
        }


@dataclass
class SearchRequest:
    """
    A single search call.

    `top_k` and `threshold` are optional; None or non-positive values fall
    back to the retriever's configured defaults.
    """

    query: str
    risk_type: str | None = None
    top_k: int | None = None
    threshold: float | None = None


@dataclass
class RetrievalLog:
    """Audit record of which documents a query surfaced."""

    query: str
    retrieved_items: list[str] = field(default_factory=list)
    risk_type: str = ""
    conversation_id: str = ""
    message_id: str = ""
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "query": self.query,
            "riskType": self.risk_type,
            "retrievedItems": list(self.retrieved_items),
            "createdAt": self.created_at.isoformat(),
        }
