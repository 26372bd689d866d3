"""
Dependency injection container wiring the knowledge base from settings.
"""

import inspect
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Lazily built services with async cleanup of the ones that own resources."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}
        self._async_resources: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory taking the container and returning the service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def get_async(self, name: str, default: Any = None) -> Any:
        """Get a service, entering it first if it is an async context manager."""
        if name in self._async_resources:
            return self._async_resources[name]

        service = self.get(name, default)

        if hasattr(service, "__aenter__"):
            async_service = await service.__aenter__()
            self._async_resources[name] = async_service
            return async_service

        return service

    async def cleanup(self) -> None:
        """Exit async resources and close the services built by factories."""
        for name, resource in self._async_resources.items():
            try:
                await resource.__aexit__(None, None, None)
            except Exception as e:
                logger.error("Error cleaning up resource", resource=name, error=str(e))
        self._async_resources.clear()

        for name, service in self._services.items():
            closer = getattr(service, "aclose", None) or getattr(service, "close", None)
            if closer is None:
                continue
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with the default knowledge base factories."""
    container = Container(settings)

    def _store_factory(c: Container):
        storage = c.settings.storage
        if storage.backend == "memory":
            from ..storage.memory import InMemoryKnowledgeStore

            return InMemoryKnowledgeStore()

        from ..storage.sqlite import SQLiteKnowledgeStore

        return SQLiteKnowledgeStore(storage.database_path)

    def _embedder_factory(c: Container):
        from ..rag.embedding import OpenAIEmbedder

        return OpenAIEmbedder(c.settings.embedding)

    def _segmenter_factory(c: Container):
        from ..rag.chunking import MarkdownSegmenter

        chunking = c.settings.chunking
        return MarkdownSegmenter(chunk_size=chunking.chunk_size, overlap=chunking.chunk_overlap)

    def _indexer_factory(c: Container):
        from ..rag.indexer import EmbeddingIndexer

        indexing = c.settings.indexing
        return EmbeddingIndexer(
            store=c.get("store"),
            embedder=c.get("embedder"),
            segmenter=c.get("segmenter"),
            max_concurrent=indexing.max_concurrent,
            embed_timeout=indexing.embed_timeout,
        )

    def _expander_factory(c: Container):
        from ..rag.context import ContextExpander

        return ContextExpander(c.get("store"))

    def _retriever_factory(c: Container):
        from ..rag.retriever import HybridRetriever

        return HybridRetriever(
            embedder=c.get("embedder"),
            store=c.get("store"),
            config=c.settings.retrieval,
            expander=c.get("expander"),
        )

    def _manager_factory(c: Container):
        from ..rag.manager import KnowledgeBaseManager

        return KnowledgeBaseManager(c.get("store"), c.settings.storage.base_path)

    def _service_factory(c: Container):
        from ..rag.service import KnowledgeService

        return KnowledgeService(
            manager=c.get("manager"),
            indexer=c.get("indexer"),
            retriever=c.get("retriever"),
            config=c.settings.indexing,
        )

    container.register_factory("store", _store_factory)
    container.register_factory("embedder", _embedder_factory)
    container.register_factory("segmenter", _segmenter_factory)
    container.register_factory("indexer", _indexer_factory)
    container.register_factory("expander", _expander_factory)
    container.register_factory("retriever", _retriever_factory)
    container.register_factory("manager", _manager_factory)
    container.register_factory("knowledge_service", _service_factory)

    return container


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()
