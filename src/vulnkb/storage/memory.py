"""
In-memory knowledge store.

Chunk sets are swapped under a lock, so a reader never sees a half-written
document.
"""

import threading
from dataclasses import replace

from ..errors import DocumentNotFoundError
from ..types import CandidateChunk, KnowledgeChunk, KnowledgeItem, RetrievalLog
from .base import KnowledgeStore


class InMemoryKnowledgeStore(KnowledgeStore):
    """Dict-backed store for tests and small corpora."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, KnowledgeItem] = {}
        self._chunks: dict[str, tuple[KnowledgeChunk, ...]] = {}
        self._logs: list[RetrievalLog] = []

    def upsert_document(self, item: KnowledgeItem) -> None:
        with self._lock:
            self._documents[item.id] = replace(item)

    def get_document(self, document_id: str) -> KnowledgeItem:
        with self._lock:
            item = self._documents.get(document_id)
        if item is None:
            raise DocumentNotFoundError(document_id)
        return replace(item)

    def find_document_by_path(self, file_path: str) -> KnowledgeItem | None:
        with self._lock:
            for item in self._documents.values():
                if item.file_path == file_path:
                    return replace(item)
        return None

    def list_document_ids(self) -> list[str]:
        with self._lock:
            return list(self._documents)

    def list_documents(self, category: str | None = None) -> list[KnowledgeItem]:
        with self._lock:
            items = [
                replace(item)
                for item in self._documents.values()
                if not category or item.category == category
            ]
        return sorted(items, key=lambda item: (item.category, item.title))

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            if document_id not in self._documents:
                raise DocumentNotFoundError(document_id)
            del self._documents[document_id]
            self._chunks.pop(document_id, None)

    def list_categories(self) -> list[str]:
        with self._lock:
            return sorted({item.category for item in self._documents.values()})

    def document_count(self) -> int:
        with self._lock:
            return len(self._documents)

    def replace_chunks(self, document_id: str, chunks: list[KnowledgeChunk]) -> None:
        ordered = tuple(sorted(chunks, key=lambda chunk: chunk.chunk_index))
        with self._lock:
            if document_id not in self._documents:
                raise DocumentNotFoundError(document_id)
            if ordered:
                self._chunks[document_id] = ordered
            else:
                self._chunks.pop(document_id, None)

    def delete_chunks(self, document_id: str) -> None:
        with self._lock:
            self._chunks.pop(document_id, None)

    def list_chunks(self, document_id: str) -> list[KnowledgeChunk]:
        with self._lock:
            return list(self._chunks.get(document_id, ()))

    def list_candidates(self, category: str | None = None) -> list[CandidateChunk]:
        wanted = category.casefold() if category else None
        candidates = []
        with self._lock:
            for document_id, chunks in self._chunks.items():
                item = self._documents.get(document_id)
                if item is None:
                    continue
                if wanted is not None and item.category.casefold() != wanted:
                    continue
                header = KnowledgeItem(id=item.id, category=item.category, title=item.title)
                candidates.extend(CandidateChunk(chunk=chunk, item=header) for chunk in chunks)
        return candidates

    def count_chunks(self) -> int:
        with self._lock:
            return sum(len(chunks) for chunks in self._chunks.values())

    def indexed_document_count(self) -> int:
        with self._lock:
            return sum(1 for chunks in self._chunks.values() if chunks)

    def add_retrieval_log(self, log: RetrievalLog) -> None:
        with self._lock:
            self._logs.append(log)

    def list_retrieval_logs(
        self, conversation_id: str = "", message_id: str = "", limit: int = 50
    ) -> list[RetrievalLog]:
        with self._lock:
            logs = list(self._logs)
        if message_id:
            logs = [log for log in logs if log.message_id == message_id]
        elif conversation_id:
            logs = [log for log in logs if log.conversation_id == conversation_id]
        logs.sort(key=lambda log: log.created_at, reverse=True)
        return logs[:limit]

    def delete_retrieval_log(self, log_id: str) -> None:
        with self._lock:
            for index, log in enumerate(self._logs):
                if log.id == log_id:
                    del self._logs[index]
                    return
        raise LookupError(f"retrieval log not found: {log_id}")
