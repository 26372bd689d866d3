"""
Retrieval core: segmentation, embedding indexing, hybrid search and context
expansion over a security knowledge base.
"""

from .chunking import ChunkingStrategy, MarkdownSegmenter
from .context import ContextExpander
from .embedding import EmbeddingProvider, OpenAIEmbedder
from .indexer import EmbeddingIndexer, IndexingProgress, IndexingStatus
from .manager import KnowledgeBaseManager
from .retriever import HybridRetriever, RetrievalTuning, cosine_similarity
from .service import KnowledgeService

__all__ = [
    "ChunkingStrategy",
    "MarkdownSegmenter",
    "EmbeddingProvider",
    "OpenAIEmbedder",
    "EmbeddingIndexer",
    "IndexingProgress",
    "IndexingStatus",
    "HybridRetriever",
    "RetrievalTuning",
    "cosine_similarity",
    "ContextExpander",
    "KnowledgeBaseManager",
    "KnowledgeService",
]
