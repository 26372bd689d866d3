"""
Embedding indexer: document → segments → vectors → stored chunk set.

Each chunk is embedded together with its document's category and title so
that structural metadata is part of the vector space. Vectors are computed
before anything is written; the stored chunk set is swapped in one call at
the end, so a cancelled or failed reindex leaves the previous set intact.

The indexer assumes a single writer per document. Reindexing two different
documents concurrently is safe.
"""

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from ..errors import EmbeddingError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..storage.base import KnowledgeStore
from ..types import KnowledgeChunk, new_id, utcnow
from .chunking import ChunkingStrategy, MarkdownSegmenter
from .embedding import EmbeddingProvider

logger = get_logger(__name__)


class IndexingStatus(Enum):
    """Status of indexing operations."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IndexingProgress:
    """Progress tracking for batch indexing."""

    total_documents: int = 0
    processed_documents: int = 0
    failed_documents: int = 0
    total_chunks: int = 0
    skipped_chunks: int = 0
    status: IndexingStatus = IndexingStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def progress_percentage(self) -> float:
        if self.total_documents == 0:
            return 0.0
        return (self.processed_documents / self.total_documents) * 100

    @property
    def duration(self) -> float | None:
        if self.start_time is None:
            return None
        end = self.end_time or time.time()
        return end - self.start_time


@dataclass
class ReindexResult:
    """Outcome of reindexing one document."""

    document_id: str
    segments: int
    chunks: list[KnowledgeChunk]
    failed_chunks: int = 0

    @property
    def stored(self) -> int:
        return len(self.chunks)


def build_embedding_input(category: str, title: str, chunk_text: str) -> str:
    """Embedding input for a chunk, prefixed with its document's metadata."""
    return f"[category: {category}] [title: {title}]\n{chunk_text}"


class EmbeddingIndexer:
    """Builds and replaces the chunk vectors of knowledge base documents."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        segmenter: ChunkingStrategy | None = None,
        max_concurrent: int = 1,
        embed_timeout: float | None = None,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.store = store
        self.embedder = embedder
        self.segmenter = segmenter or MarkdownSegmenter()
        self.max_concurrent = max_concurrent
        self.embed_timeout = embed_timeout

    async def reindex(self, document_id: str, timeout: float | None = None) -> ReindexResult:
        """
        Regenerate the chunk set of one document.

        Raises DocumentNotFoundError or StoreError when the document cannot be
        read or the new chunk set cannot be written. Per-chunk embedding
        failures are logged and skipped. When `timeout` expires the call raises
        TimeoutError and the stored chunks are left untouched.
        """
        if timeout is None:
            return await self._reindex(document_id)
        return await asyncio.wait_for(self._reindex(document_id), timeout=timeout)

    async def _reindex(self, document_id: str) -> ReindexResult:
        with probe("indexer.reindex", document_id=document_id):
            item = self.store.get_document(document_id)
            segments = self.segmenter.segment(item.content)

            chunks: list[KnowledgeChunk] = []
            failed = 0
            for position, segment in enumerate(segments):
                embedding_input = build_embedding_input(item.category, item.title, segment)
                try:
                    vector = await self._embed(embedding_input)
                except (EmbeddingError, TimeoutError) as e:
                    failed += 1
                    logger.warning(
                        "Skipping chunk after embedding failure",
                        document_id=document_id,
                        segment=position,
                        error=str(e),
                    )
                    continue

                chunks.append(
                    KnowledgeChunk(
                        id=new_id(),
                        item_id=document_id,
                        chunk_index=len(chunks),
                        chunk_text=segment,
                        embedding=vector,
                        created_at=utcnow(),
                    )
                )

            self.store.replace_chunks(document_id, chunks)
            get_metrics_collector().record_indexed_chunks(len(chunks), failed)

            if segments and not chunks:
                logger.error(
                    "Document has no indexed chunks after reindex",
                    document_id=document_id,
                    segments=len(segments),
                )
            else:
                logger.info(
                    "Indexed document",
                    document_id=document_id,
                    title=item.title,
                    chunks=len(chunks),
                    failed=failed,
                )

        return ReindexResult(
            document_id=document_id, segments=len(segments), chunks=chunks, failed_chunks=failed
        )

    async def _embed(self, text: str):
        if self.embed_timeout is None:
            return await self.embedder.embed(text)
        return await asyncio.wait_for(
            self.embedder.embed(text, timeout=self.embed_timeout), timeout=self.embed_timeout
        )

    async def rebuild_all(
        self, progress_callback: Callable[[IndexingProgress], None] | None = None
    ) -> IndexingProgress:
        """Reindex every known document; individual failures never abort the batch."""
        document_ids = self.store.list_document_ids()
        progress = IndexingProgress(
            total_documents=len(document_ids),
            status=IndexingStatus.RUNNING,
            start_time=time.time(),
        )
        logger.info("Starting index rebuild", documents=len(document_ids))

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def process(document_id: str) -> None:
            async with semaphore:
                try:
                    result = await self.reindex(document_id)
                except Exception as e:
                    progress.failed_documents += 1
                    progress.errors.append(f"{document_id}: {e}")
                    logger.error("Failed to index document", document_id=document_id, error=str(e))
                else:
                    progress.total_chunks += result.stored
                    progress.skipped_chunks += result.failed_chunks
                finally:
                    progress.processed_documents += 1
                    if progress_callback:
                        progress_callback(progress)

        await asyncio.gather(*(process(document_id) for document_id in document_ids))

        progress.status = IndexingStatus.COMPLETED
        progress.end_time = time.time()
        logger.info(
            "Index rebuild completed",
            documents=progress.processed_documents,
            failed=progress.failed_documents,
            chunks=progress.total_chunks,
            skipped_chunks=progress.skipped_chunks,
            seconds=round(progress.duration or 0.0, 2),
        )
        return progress

    async def reindex_many(
        self, document_ids: Iterable[str], max_consecutive_failures: int = 2
    ) -> IndexingProgress:
        """
        Reindex `document_ids` one at a time.

        Stops early after `max_consecutive_failures` failures in a row, which
        usually means the embedding provider is down.
        """
        ids = list(document_ids)
        progress = IndexingProgress(
            total_documents=len(ids), status=IndexingStatus.RUNNING, start_time=time.time()
        )
        consecutive = 0

        for document_id in ids:
            try:
                result = await self.reindex(document_id)
            except Exception as e:
                consecutive += 1
                progress.failed_documents += 1
                progress.errors.append(f"{document_id}: {e}")
                logger.warning(
                    "Incremental indexing failed",
                    document_id=document_id,
                    consecutive=consecutive,
                    error=str(e),
                )
                if consecutive >= max_consecutive_failures:
                    progress.processed_documents += 1
                    progress.status = IndexingStatus.FAILED
                    progress.end_time = time.time()
                    logger.error(
                        "Stopping incremental indexing after repeated failures",
                        consecutive=consecutive,
                        remaining=len(ids) - progress.processed_documents,
                    )
                    return progress
            else:
                consecutive = 0
                progress.total_chunks += result.stored
                progress.skipped_chunks += result.failed_chunks
            progress.processed_documents += 1

        progress.status = IndexingStatus.COMPLETED
        progress.end_time = time.time()
        return progress

    def has_index(self) -> bool:
        """Whether any chunk exists at all."""
        return self.store.count_chunks() > 0

    def get_indexing_stats(self) -> dict[str, int]:
        return {
            "documents": self.store.document_count(),
            "indexed_documents": self.store.indexed_document_count(),
            "chunks": self.store.count_chunks(),
        }
