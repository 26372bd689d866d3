"""
Knowledge service: startup indexing plus logged search for the tool layer.
"""

from ..config.settings import IndexingConfig
from ..observability.logging import get_logger
from ..types import RetrievalResult, SearchRequest
from .formatting import format_search_results, retrieved_item_ids
from .indexer import EmbeddingIndexer, IndexingProgress, IndexingStatus
from .manager import KnowledgeBaseManager
from .retriever import HybridRetriever

logger = get_logger(__name__)


class KnowledgeService:
    """Ties the manager, indexer and retriever together."""

    def __init__(
        self,
        manager: KnowledgeBaseManager,
        indexer: EmbeddingIndexer,
        retriever: HybridRetriever,
        config: IndexingConfig | None = None,
    ):
        self.manager = manager
        self.indexer = indexer
        self.retriever = retriever
        self.config = config or IndexingConfig()

    async def bootstrap(self) -> IndexingProgress:
        """
        Scan the knowledge base and bring the index up to date.

        A cold index is built from scratch. Otherwise only new or changed
        documents are reindexed, stopping after repeated failures.
        """
        changed = self.manager.scan()

        if not self.indexer.has_index():
            logger.info("No index found, building from scratch")
            return await self.indexer.rebuild_all()

        if not changed:
            logger.info("Index is up to date")
            return IndexingProgress(status=IndexingStatus.COMPLETED)

        logger.info("Incrementally indexing changed documents", documents=len(changed))
        return await self.indexer.reindex_many(
            changed, max_consecutive_failures=self.config.max_consecutive_failures
        )

    async def search(
        self,
        request: SearchRequest,
        conversation_id: str = "",
        message_id: str = "",
        timeout: float | None = None,
    ) -> list[RetrievalResult]:
        """Retrieve with context expansion and record a retrieval log."""
        results = await self.retriever.retrieve(request, timeout=timeout)
        if results:
            self.manager.log_retrieval(
                query=request.query,
                retrieved_items=retrieved_item_ids(results),
                risk_type=request.risk_type or "",
                conversation_id=conversation_id,
                message_id=message_id,
            )
        return results

    async def search_text(self, request: SearchRequest, **kwargs) -> str:
        results = await self.search(request, **kwargs)
        return format_search_results(request.query, results)
