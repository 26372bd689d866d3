"""Exception hierarchy for the knowledge base core."""


class KnowledgeBaseError(Exception):
    """Base class for knowledge base errors."""


class EmptyQueryError(KnowledgeBaseError, ValueError):
    """Search was called with an empty query."""

    def __init__(self, message: str = "query must not be empty"):
        super().__init__(message)


class DocumentNotFoundError(KnowledgeBaseError, LookupError):
    """A document id is unknown to the store."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"knowledge item not found: {document_id}")


class EmbeddingError(KnowledgeBaseError, RuntimeError):
    """The embedding provider failed to return a usable vector."""


class StoreError(KnowledgeBaseError, RuntimeError):
    """The persistent store rejected a read or write."""
