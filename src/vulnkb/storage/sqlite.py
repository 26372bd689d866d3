"""
SQLite knowledge store.

Vectors are stored as little-endian float32 blobs. Replacing a document's
chunks runs the delete and the inserts inside one transaction.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

import numpy as np

from ..errors import DocumentNotFoundError, StoreError
from ..observability.logging import get_logger
from ..types import CandidateChunk, KnowledgeChunk, KnowledgeItem, RetrievalLog, utcnow
from .base import KnowledgeStore

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge_base_items (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    file_path TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS knowledge_embeddings (
    id TEXT PRIMARY KEY,
    item_id TEXT NOT NULL REFERENCES knowledge_base_items(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    embedding BLOB NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS knowledge_retrieval_logs (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL DEFAULT '',
    message_id TEXT NOT NULL DEFAULT '',
    query TEXT NOT NULL,
    risk_type TEXT NOT NULL DEFAULT '',
    retrieved_items TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_knowledge_items_category ON knowledge_base_items(category);
CREATE INDEX IF NOT EXISTS idx_knowledge_embeddings_item ON knowledge_embeddings(item_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_retrieval_logs_conversation ON knowledge_retrieval_logs(conversation_id);
CREATE INDEX IF NOT EXISTS idx_retrieval_logs_message ON knowledge_retrieval_logs(message_id);
"""

_ITEM_COLUMNS = "id, category, title, file_path, content, created_at, updated_at"


def _encode_vector(vector: np.ndarray | None) -> bytes:
    if vector is None:
        raise StoreError("chunk has no embedding")
    return np.asarray(vector, dtype="<f4").tobytes()


def _decode_vector(blob: bytes | None) -> np.ndarray:
    if not blob:
        return np.zeros(0, dtype=np.float32)
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unparseable timestamp in knowledge store", value=value)
        return None


def _casefold(value: str | None) -> str | None:
    # Unicode case folding; COLLATE NOCASE only folds ASCII
    return value.casefold() if value is not None else None


class SQLiteKnowledgeStore(KnowledgeStore):
    """Knowledge store backed by a single SQLite database file."""

    def __init__(self, database_path: str | Path = ":memory:"):
        self.database_path = str(database_path)
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.database_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.create_function("casefold", 1, _casefold, deterministic=True)
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"failed to open knowledge store {self.database_path}: {e}") from e

        logger.info("Opened knowledge store", path=self.database_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"knowledge store query failed: {e}") from e

    def _write(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise StoreError(f"knowledge store write failed: {e}") from e

    def _row_to_item(self, row: sqlite3.Row) -> KnowledgeItem:
        created_at = _parse_time(row["created_at"])
        return KnowledgeItem(
            id=row["id"],
            category=row["category"],
            title=row["title"],
            file_path=row["file_path"],
            content=row["content"],
            created_at=created_at,
            updated_at=_parse_time(row["updated_at"]) or created_at,
        )

    def _row_to_chunk(self, row: sqlite3.Row) -> KnowledgeChunk:
        return KnowledgeChunk(
            id=row["id"],
            item_id=row["item_id"],
            chunk_index=row["chunk_index"],
            chunk_text=row["chunk_text"],
            embedding=_decode_vector(row["embedding"]),
            created_at=_parse_time(row["created_at"]),
        )

    # Documents

    def upsert_document(self, item: KnowledgeItem) -> None:
        now = utcnow()
        self._write(
            f"""
            INSERT INTO knowledge_base_items ({_ITEM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                category = excluded.category,
                title = excluded.title,
                file_path = excluded.file_path,
                content = excluded.content,
                updated_at = excluded.updated_at
            """,
            (
                item.id,
                item.category,
                item.title,
                item.file_path,
                item.content,
                _format_time(item.created_at or now),
                _format_time(item.updated_at or now),
            ),
        )

    def get_document(self, document_id: str) -> KnowledgeItem:
        rows = self._query(
            f"SELECT {_ITEM_COLUMNS} FROM knowledge_base_items WHERE id = ?", (document_id,)
        )
        if not rows:
            raise DocumentNotFoundError(document_id)
        return self._row_to_item(rows[0])

    def find_document_by_path(self, file_path: str) -> KnowledgeItem | None:
        rows = self._query(
            f"SELECT {_ITEM_COLUMNS} FROM knowledge_base_items WHERE file_path = ?", (file_path,)
        )
        return self._row_to_item(rows[0]) if rows else None

    def list_document_ids(self) -> list[str]:
        return [row["id"] for row in self._query("SELECT id FROM knowledge_base_items")]

    def list_documents(self, category: str | None = None) -> list[KnowledgeItem]:
        if category:
            rows = self._query(
                f"SELECT {_ITEM_COLUMNS} FROM knowledge_base_items WHERE category = ? ORDER BY title",
                (category,),
            )
        else:
            rows = self._query(
                f"SELECT {_ITEM_COLUMNS} FROM knowledge_base_items ORDER BY category, title"
            )
        return [self._row_to_item(row) for row in rows]

    def delete_document(self, document_id: str) -> None:
        if self._write("DELETE FROM knowledge_base_items WHERE id = ?", (document_id,)) == 0:
            raise DocumentNotFoundError(document_id)

    def list_categories(self) -> list[str]:
        rows = self._query("SELECT DISTINCT category FROM knowledge_base_items ORDER BY category")
        return [row["category"] for row in rows]

    def document_count(self) -> int:
        return self._query("SELECT COUNT(*) AS n FROM knowledge_base_items")[0]["n"]

    # Chunks

    def replace_chunks(self, document_id: str, chunks: list[KnowledgeChunk]) -> None:
        now = _format_time(utcnow())
        rows = [
            (
                chunk.id,
                document_id,
                chunk.chunk_index,
                chunk.chunk_text,
                _encode_vector(chunk.embedding),
                _format_time(chunk.created_at) or now,
            )
            for chunk in chunks
        ]
        with self._lock:
            try:
                with self._conn:
                    exists = self._conn.execute(
                        "SELECT 1 FROM knowledge_base_items WHERE id = ?", (document_id,)
                    ).fetchone()
                    if exists is None:
                        raise DocumentNotFoundError(document_id)
                    self._conn.execute(
                        "DELETE FROM knowledge_embeddings WHERE item_id = ?", (document_id,)
                    )
                    self._conn.executemany(
                        """
                        INSERT INTO knowledge_embeddings
                            (id, item_id, chunk_index, chunk_text, embedding, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        rows,
                    )
            except sqlite3.Error as e:
                raise StoreError(f"failed to replace chunks for {document_id}: {e}") from e

    def delete_chunks(self, document_id: str) -> None:
        self._write("DELETE FROM knowledge_embeddings WHERE item_id = ?", (document_id,))

    def list_chunks(self, document_id: str) -> list[KnowledgeChunk]:
        rows = self._query(
            """
            SELECT id, item_id, chunk_index, chunk_text, embedding, created_at
            FROM knowledge_embeddings
            WHERE item_id = ?
            ORDER BY chunk_index
            """,
            (document_id,),
        )
        return [self._row_to_chunk(row) for row in rows]

    def list_candidates(self, category: str | None = None) -> list[CandidateChunk]:
        sql = """
            SELECT e.id, e.item_id, e.chunk_index, e.chunk_text, e.embedding, e.created_at,
                   i.category, i.title
            FROM knowledge_embeddings e
            JOIN knowledge_base_items i ON e.item_id = i.id
        """
        params: tuple = ()
        if category:
            sql += " WHERE casefold(i.category) = ?"
            params = (category.casefold(),)
        sql += " ORDER BY e.item_id, e.chunk_index"

        candidates = []
        for row in self._query(sql, params):
            item = KnowledgeItem(id=row["item_id"], category=row["category"], title=row["title"])
            candidates.append(CandidateChunk(chunk=self._row_to_chunk(row), item=item))
        return candidates

    def count_chunks(self) -> int:
        return self._query("SELECT COUNT(*) AS n FROM knowledge_embeddings")[0]["n"]

    def indexed_document_count(self) -> int:
        return self._query("SELECT COUNT(DISTINCT item_id) AS n FROM knowledge_embeddings")[0]["n"]

    # Retrieval logs

    def add_retrieval_log(self, log: RetrievalLog) -> None:
        self._write(
            """
            INSERT INTO knowledge_retrieval_logs
                (id, conversation_id, message_id, query, risk_type, retrieved_items, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                log.id,
                log.conversation_id,
                log.message_id,
                log.query,
                log.risk_type,
                json.dumps(log.retrieved_items),
                _format_time(log.created_at),
            ),
        )

    def list_retrieval_logs(
        self, conversation_id: str = "", message_id: str = "", limit: int = 50
    ) -> list[RetrievalLog]:
        columns = "id, conversation_id, message_id, query, risk_type, retrieved_items, created_at"
        if message_id:
            rows = self._query(
                f"SELECT {columns} FROM knowledge_retrieval_logs WHERE message_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (message_id, limit),
            )
        elif conversation_id:
            rows = self._query(
                f"SELECT {columns} FROM knowledge_retrieval_logs WHERE conversation_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (conversation_id, limit),
            )
        else:
            rows = self._query(
                f"SELECT {columns} FROM knowledge_retrieval_logs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )

        logs = []
        for row in rows:
            try:
                retrieved = json.loads(row["retrieved_items"] or "[]")
            except json.JSONDecodeError:
                logger.warning("Corrupt retrieved_items in retrieval log", log_id=row["id"])
                retrieved = []
            logs.append(
                RetrievalLog(
                    id=row["id"],
                    conversation_id=row["conversation_id"],
                    message_id=row["message_id"],
                    query=row["query"],
                    risk_type=row["risk_type"],
                    retrieved_items=retrieved,
                    created_at=_parse_time(row["created_at"]) or utcnow(),
                )
            )
        return logs

    def delete_retrieval_log(self, log_id: str) -> None:
        if self._write("DELETE FROM knowledge_retrieval_logs WHERE id = ?", (log_id,)) == 0:
            raise LookupError(f"retrieval log not found: {log_id}")
