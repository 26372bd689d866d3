"""
vulnkb - retrieval core for a security knowledge assistant.

Markdown documents under `<base_path>/<risk type>/<title>.md` are segmented,
embedded and stored; queries are answered by a hybrid semantic + lexical
retriever that attaches neighbouring chunks so a payload is never returned
without the text that explains it.

Quick Start:
    >>> from vulnkb.config import setup_container
    >>> from vulnkb.types import SearchRequest
    >>>
    >>> container = setup_container()
    >>> service = container.get("knowledge_service")
    >>> await service.bootstrap()
    >>> results = await service.search(SearchRequest("reflected xss in search box"))

CLI:
    $ python -m vulnkb scan
    $ python -m vulnkb rebuild
    $ python -m vulnkb search "sql injection login bypass" --risk-type "SQL Injection"

Configuration:
    - VULNKB_EMBEDDING__BASE_URL=https://api.openai.com/v1
    - VULNKB_EMBEDDING__API_KEY=sk-...
    - VULNKB_RETRIEVAL__TOP_K=5
    - VULNKB_STORAGE__DATABASE_PATH=./data/knowledge.db
    - VULNKB_STORAGE__BASE_PATH=./knowledge_base
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .types import KnowledgeChunk, KnowledgeItem, RetrievalResult, SearchRequest

__all__ = [
    "Settings",
    "KnowledgeItem",
    "KnowledgeChunk",
    "RetrievalResult",
    "SearchRequest",
]
