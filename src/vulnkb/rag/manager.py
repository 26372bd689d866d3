"""
Knowledge base manager: Markdown files on disk mirrored into the store.

Layout is `<base_path>/<category>/<title>.md`. Files directly under the base
path belong to the `uncategorized` category.
"""

from pathlib import Path
from typing import Any

from ..observability.logging import get_logger
from ..storage.base import KnowledgeStore
from ..types import KnowledgeItem, RetrievalLog, new_id, utcnow

logger = get_logger(__name__)

UNCATEGORIZED = "uncategorized"
MARKDOWN_SUFFIX = ".md"


def _validate_name(value: str, field_name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    if "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"{field_name} must not contain path separators: {value!r}")
    return value


class KnowledgeBaseManager:
    """CRUD over knowledge items backed by a directory of Markdown files."""

    def __init__(self, store: KnowledgeStore, base_path: str | Path):
        self.store = store
        self.base_path = Path(base_path)

    def _item_path(self, category: str, title: str) -> Path:
        return self.base_path / category / f"{title}{MARKDOWN_SUFFIX}"

    def scan(self, base_path: str | Path | None = None) -> list[str]:
        """
        Sync every `*.md` file under the base path into the store.

        Returns the ids of documents that were added or whose content,
        category or title changed; those are the ones that need reindexing.
        Unreadable files are logged and skipped.
        """
        root = Path(base_path) if base_path is not None else self.base_path
        root.mkdir(parents=True, exist_ok=True)

        changed: list[str] = []
        for path in sorted(root.rglob(f"*{MARKDOWN_SUFFIX}")):
            if not path.is_file():
                continue

            relative = path.relative_to(root)
            category = relative.parts[0] if len(relative.parts) > 1 else UNCATEGORIZED
            title = path.stem

            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read knowledge file", path=str(path), error=str(e))
                continue

            existing = self.store.find_document_by_path(str(path))
            if existing is None:
                now = utcnow()
                item = KnowledgeItem(
                    id=new_id(),
                    category=category,
                    title=title,
                    content=content,
                    file_path=str(path),
                    created_at=now,
                    updated_at=now,
                )
                self.store.upsert_document(item)
                changed.append(item.id)
                logger.info("Added knowledge item", id=item.id, title=title, category=category)
                continue

            if (existing.content, existing.category, existing.title) == (content, category, title):
                continue

            existing.category = category
            existing.title = title
            existing.content = content
            existing.updated_at = utcnow()
            self.store.upsert_document(existing)
            changed.append(existing.id)
            logger.debug("Updated knowledge item", id=existing.id, title=title)

        logger.info("Scanned knowledge base", path=str(root), changed=len(changed))
        return changed

    def get_categories(self) -> list[str]:
        return self.store.list_categories()

    def get_items(self, category: str | None = None) -> list[KnowledgeItem]:
        return self.store.list_documents(category)

    def get_item(self, item_id: str) -> KnowledgeItem:
        return self.store.get_document(item_id)

    def create_item(self, category: str, title: str, content: str) -> KnowledgeItem:
        category = _validate_name(category, "category")
        title = _validate_name(title, "title")

        path = self._item_path(category, title)
        if self.store.find_document_by_path(str(path)) is not None:
            raise ValueError(f"knowledge item already exists: {category}/{title}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

        now = utcnow()
        item = KnowledgeItem(
            id=new_id(),
            category=category,
            title=title,
            content=content,
            file_path=str(path),
            created_at=now,
            updated_at=now,
        )
        self.store.upsert_document(item)
        logger.info("Created knowledge item", id=item.id, title=title, category=category)
        return item

    def update_item(self, item_id: str, category: str, title: str, content: str) -> KnowledgeItem:
        """
        Rewrite an item, moving its file when the category or title changes.

        The item's chunks are dropped; the caller is expected to reindex it.
        """
        category = _validate_name(category, "category")
        title = _validate_name(title, "title")
        item = self.store.get_document(item_id)

        new_path = self._item_path(category, title)
        old_path = Path(item.file_path) if item.file_path else None
        new_path.parent.mkdir(parents=True, exist_ok=True)

        if old_path is not None and old_path != new_path and old_path.exists():
            old_path.rename(new_path)
            old_dir = old_path.parent
            if old_dir != self.base_path and old_dir.exists() and not any(old_dir.iterdir()):
                old_dir.rmdir()

        new_path.write_text(content, encoding="utf-8")

        item.category = category
        item.title = title
        item.content = content
        item.file_path = str(new_path)
        item.updated_at = utcnow()
        self.store.upsert_document(item)
        self.store.delete_chunks(item_id)

        logger.info("Updated knowledge item", id=item_id, title=title, category=category)
        return self.store.get_document(item_id)

    def delete_item(self, item_id: str) -> None:
        item = self.store.get_document(item_id)
        if item.file_path:
            try:
                Path(item.file_path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to delete knowledge file", path=item.file_path, error=str(e))
        self.store.delete_document(item_id)
        logger.info("Deleted knowledge item", id=item_id)

    def index_status(self) -> dict[str, Any]:
        total = self.store.document_count()
        indexed = self.store.indexed_document_count()
        progress = (indexed / total * 100) if total > 0 else 100.0
        return {
            "total_items": total,
            "indexed_items": indexed,
            "progress_percent": progress,
            "is_complete": total > 0 and indexed >= total,
        }

    def log_retrieval(
        self,
        query: str,
        retrieved_items: list[str],
        risk_type: str = "",
        conversation_id: str = "",
        message_id: str = "",
    ) -> RetrievalLog:
        log = RetrievalLog(
            query=query,
            retrieved_items=list(retrieved_items),
            risk_type=risk_type,
            conversation_id=conversation_id,
            message_id=message_id,
        )
        self.store.add_retrieval_log(log)
        return log

    def get_retrieval_logs(
        self, conversation_id: str = "", message_id: str = "", limit: int = 50
    ) -> list[RetrievalLog]:
        return self.store.list_retrieval_logs(conversation_id, message_id, limit)

    def delete_retrieval_log(self, log_id: str) -> None:
        self.store.delete_retrieval_log(log_id)
