"""
Abstract interface for knowledge base persistence.

A store holds documents (knowledge items), their chunk vectors and the
retrieval audit log. Chunk replacement for one document is a single atomic
operation: readers see either the previous chunk set or the new one.
"""

from abc import ABC, abstractmethod

from ..types import CandidateChunk, KnowledgeChunk, KnowledgeItem, RetrievalLog


class KnowledgeStore(ABC):
    """Documents, chunk vectors and retrieval logs."""

    # Documents

    @abstractmethod
    def upsert_document(self, item: KnowledgeItem) -> None:
        """Insert a document or overwrite the one with the same id."""

    @abstractmethod
    def get_document(self, document_id: str) -> KnowledgeItem:
        """Return a document or raise DocumentNotFoundError."""

    @abstractmethod
    def find_document_by_path(self, file_path: str) -> KnowledgeItem | None:
        """Return the document backed by `file_path`, if any."""

    @abstractmethod
    def list_document_ids(self) -> list[str]:
        pass

    @abstractmethod
    def list_documents(self, category: str | None = None) -> list[KnowledgeItem]:
        """Documents ordered by category then title."""

    @abstractmethod
    def delete_document(self, document_id: str) -> None:
        """Delete a document and all of its chunks."""

    @abstractmethod
    def list_categories(self) -> list[str]:
        """Distinct categories, sorted."""

    @abstractmethod
    def document_count(self) -> int:
        pass

    # Chunks

    @abstractmethod
    def replace_chunks(self, document_id: str, chunks: list[KnowledgeChunk]) -> None:
        """
        Atomically swap the document's chunk set for `chunks`.

        Raises DocumentNotFoundError when the document is not stored.
        """

    @abstractmethod
    def delete_chunks(self, document_id: str) -> None:
        pass

    @abstractmethod
    def list_chunks(self, document_id: str) -> list[KnowledgeChunk]:
        """Chunks of one document ordered by chunk_index."""

    @abstractmethod
    def list_candidates(self, category: str | None = None) -> list[CandidateChunk]:
        """
        Every chunk joined with its document's category and title.

        `category` filters by case-insensitive exact match.
        """

    @abstractmethod
    def count_chunks(self) -> int:
        pass

    @abstractmethod
    def indexed_document_count(self) -> int:
        """Number of documents with at least one chunk."""

    # Retrieval logs

    @abstractmethod
    def add_retrieval_log(self, log: RetrievalLog) -> None:
        pass

    @abstractmethod
    def list_retrieval_logs(
        self, conversation_id: str = "", message_id: str = "", limit: int = 50
    ) -> list[RetrievalLog]:
        """Newest first; message_id takes precedence over conversation_id."""

    @abstractmethod
    def delete_retrieval_log(self, log_id: str) -> None:
        """Delete a log entry or raise LookupError."""

    def close(self) -> None:
        """Release underlying resources."""
