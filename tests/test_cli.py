"""
Tests for the command-line interface.
"""

import pytest

from vulnkb.config.container import setup_container
from vulnkb.config.settings import Settings, StorageConfig
from vulnkb.main import build_parser, main
from vulnkb.storage.memory import InMemoryKnowledgeStore

from fakes import QUERY_VECTOR, FailingReplaceStore, FakeEmbedder


@pytest.fixture
def knowledge_dir(tmp_path):
    root = tmp_path / "kb"
    (root / "SQL Injection").mkdir(parents=True)
    (root / "XSS").mkdir()
    (root / "SQL Injection" / "Login bypass.md").write_text("Use ' OR 1=1 -- in the login form.")
    (root / "XSS" / "Stored.md").write_text("Store <script>alert(1)</script> in a comment.")
    return root


@pytest.fixture
def cli_container(knowledge_dir):
    """Container with a shared in-memory store that outlives each command."""
    settings = Settings(storage=StorageConfig(backend="memory", base_path=knowledge_dir))
    container = setup_container(settings)
    container.register_singleton("store", InMemoryKnowledgeStore())
    container.register_singleton("embedder", FakeEmbedder(default=QUERY_VECTOR))
    return container


class TestParser:
    def test_search_arguments(self):
        args = build_parser().parse_args(
            ["search", "union select", "--risk-type", "SQL Injection", "--top-k", "3", "--summary"]
        )
        assert args.command == "search"
        assert args.query == "union select"
        assert args.risk_type == "SQL Injection"
        assert args.top_k == 3
        assert args.threshold is None
        assert args.summary is True


class TestCommands:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: vulnkb" in capsys.readouterr().out

    def test_scan(self, cli_container, capsys):
        assert main(["scan"], container=cli_container) == 0
        assert "✓ Scanned knowledge base: 2 new or changed items" in capsys.readouterr().out

    def test_status_before_indexing(self, cli_container, capsys):
        main(["scan"], container=cli_container)
        capsys.readouterr()

        assert main(["status"], container=cli_container) == 0

        out = capsys.readouterr().out
        assert "Items: 2  Indexed: 0  Progress: 0.0%  Complete: no" in out

    def test_categories(self, cli_container, capsys):
        main(["scan"], container=cli_container)
        capsys.readouterr()

        assert main(["categories"], container=cli_container) == 0

        out = capsys.readouterr().out
        assert "1. SQL Injection" in out
        assert "2. XSS" in out

    def test_rebuild_then_search(self, cli_container, capsys):
        assert main(["rebuild"], container=cli_container) == 0
        assert "✓ Rebuilt index: 2/2 documents, 2 chunks" in capsys.readouterr().out

        assert main(["search", "login", "--risk-type", "SQL Injection"], container=cli_container) == 0

        out = capsys.readouterr().out
        assert "Source: [SQL Injection] Login bypass" in out
        assert "retrievedItemIDs" in out

    def test_search_summary(self, cli_container, capsys):
        main(["bootstrap"], container=cli_container)
        capsys.readouterr()

        assert main(["search", "stored", "--summary"], container=cli_container) == 0

        out = capsys.readouterr().out
        assert out.startswith("2 results:")

    def test_bootstrap(self, cli_container, capsys):
        assert main(["bootstrap"], container=cli_container) == 0
        assert "✓ Indexed 2 documents (0 failed, 2 chunks)" in capsys.readouterr().out

    def test_rebuild_reports_failures(self, cli_container, capsys):
        cli_container.register_singleton("store", FailingReplaceStore())

        assert main(["rebuild"], container=cli_container) == 1

        out = capsys.readouterr().out
        assert "✓ Rebuilt index: 0/2 documents, 0 chunks" in out
        assert "disk full" in out

    def test_empty_query_is_an_error(self, cli_container, capsys):
        assert main(["search", "   "], container=cli_container) == 1
        assert "✗ query must not be empty" in capsys.readouterr().out
