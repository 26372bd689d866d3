"""
Tests for the Markdown-backed knowledge base manager.
"""

import numpy as np
import pytest

from vulnkb.errors import DocumentNotFoundError
from vulnkb.rag.manager import UNCATEGORIZED, KnowledgeBaseManager

from fakes import add_chunks


@pytest.fixture
def base_path(tmp_path):
    root = tmp_path / "knowledge_base"
    (root / "SQL Injection").mkdir(parents=True)
    (root / "XSS").mkdir()
    (root / "SQL Injection" / "Login bypass.md").write_text("# Login\n' OR 1=1 --", encoding="utf-8")
    (root / "XSS" / "Stored.md").write_text("<script>alert(1)</script>", encoding="utf-8")
    (root / "README.md").write_text("Top level notes", encoding="utf-8")
    (root / "XSS" / "notes.txt").write_text("ignored", encoding="utf-8")
    return root


@pytest.fixture
def manager(store, base_path):
    return KnowledgeBaseManager(store, base_path)


class TestScan:
    def test_scan_adds_markdown_files(self, manager):
        added = manager.scan()

        assert len(added) == 3
        items = {(i.category, i.title) for i in manager.get_items()}
        assert items == {
            ("SQL Injection", "Login bypass"),
            ("XSS", "Stored"),
            (UNCATEGORIZED, "README"),
        }
        assert manager.get_categories() == ["SQL Injection", "XSS", UNCATEGORIZED]

    def test_rescan_without_changes_reports_nothing(self, manager):
        manager.scan()
        assert manager.scan() == []
        assert manager.store.document_count() == 3

    def test_rescan_reports_changed_content(self, manager, base_path):
        manager.scan()
        stored = manager.get_items("XSS")[0]

        (base_path / "XSS" / "Stored.md").write_text("<img onerror=alert(1)>", encoding="utf-8")
        changed = manager.scan()

        assert changed == [stored.id]
        assert manager.get_item(stored.id).content == "<img onerror=alert(1)>"

    def test_new_file_picked_up(self, manager, base_path):
        manager.scan()
        (base_path / "SSRF").mkdir()
        (base_path / "SSRF" / "Metadata.md").write_text("http://169.254.169.254/", encoding="utf-8")

        changed = manager.scan()

        assert len(changed) == 1
        assert manager.get_item(changed[0]).category == "SSRF"

    def test_unreadable_file_skipped(self, manager, base_path):
        (base_path / "XSS" / "binary.md").write_bytes(b"\xff\xfe\x00bad")

        added = manager.scan()

        assert len(added) == 3
        assert "binary" not in {i.title for i in manager.get_items()}

    def test_scan_creates_missing_base_path(self, store, tmp_path):
        root = tmp_path / "fresh"
        assert KnowledgeBaseManager(store, root).scan() == []
        assert root.is_dir()


class TestItemCrud:
    def test_create_writes_file(self, manager, base_path):
        item = manager.create_item("SSRF", "Cloud metadata", "curl http://169.254.169.254")

        path = base_path / "SSRF" / "Cloud metadata.md"
        assert path.read_text(encoding="utf-8") == "curl http://169.254.169.254"
        assert item.file_path == str(path)
        assert manager.get_item(item.id).title == "Cloud metadata"

    def test_create_duplicate_rejected(self, manager):
        manager.create_item("SSRF", "Cloud metadata", "x")
        with pytest.raises(ValueError, match="already exists"):
            manager.create_item("SSRF", "Cloud metadata", "y")

    @pytest.mark.parametrize("category,title", [("", "t"), ("c", "  "), ("a/b", "t"), ("c", "..")])
    def test_invalid_names_rejected(self, manager, category, title):
        with pytest.raises(ValueError):
            manager.create_item(category, title, "x")

    def test_update_moves_file_and_drops_chunks(self, manager, base_path):
        item = manager.create_item("SSRF", "Old", "old body")
        add_chunks(manager.store, item, [np.ones(2)])

        updated = manager.update_item(item.id, "XSS", "New", "new body")

        assert not (base_path / "SSRF").exists()
        assert (base_path / "XSS" / "New.md").read_text(encoding="utf-8") == "new body"
        assert updated.category == "XSS"
        assert updated.title == "New"
        assert manager.store.list_chunks(item.id) == []

    def test_update_in_place(self, manager, base_path):
        item = manager.create_item("SSRF", "Same", "v1")

        manager.update_item(item.id, "SSRF", "Same", "v2")

        assert (base_path / "SSRF" / "Same.md").read_text(encoding="utf-8") == "v2"
        assert manager.get_item(item.id).content == "v2"

    def test_delete_removes_file_and_document(self, manager, base_path):
        item = manager.create_item("SSRF", "Gone", "x")

        manager.delete_item(item.id)

        assert not (base_path / "SSRF" / "Gone.md").exists()
        with pytest.raises(DocumentNotFoundError):
            manager.get_item(item.id)

    def test_delete_tolerates_missing_file(self, manager, base_path):
        item = manager.create_item("SSRF", "Vanished", "x")
        (base_path / "SSRF" / "Vanished.md").unlink()

        manager.delete_item(item.id)

        assert manager.store.document_count() == 0


class TestIndexStatus:
    def test_empty_knowledge_base_is_not_complete(self, manager):
        status = manager.index_status()
        assert status == {
            "total_items": 0,
            "indexed_items": 0,
            "progress_percent": 100.0,
            "is_complete": False,
        }

    def test_partial_index(self, manager):
        manager.scan()
        first = manager.get_items("XSS")[0]
        add_chunks(manager.store, first, [np.ones(2)])

        status = manager.index_status()

        assert status["total_items"] == 3
        assert status["indexed_items"] == 1
        assert status["progress_percent"] == pytest.approx(100 / 3)
        assert status["is_complete"] is False


class TestRetrievalLogs:
    def test_log_and_list(self, manager):
        log = manager.log_retrieval(
            "union select", ["a", "b"], risk_type="SQL Injection", conversation_id="conv-1"
        )

        logs = manager.get_retrieval_logs(conversation_id="conv-1")

        assert [entry.id for entry in logs] == [log.id]
        assert logs[0].retrieved_items == ["a", "b"]
        assert logs[0].risk_type == "SQL Injection"

    def test_delete_log(self, manager):
        log = manager.log_retrieval("q", ["a"])
        manager.delete_retrieval_log(log.id)
        assert manager.get_retrieval_logs() == []
