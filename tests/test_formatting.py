"""
Tests for plain-text rendering of retrieval results.
"""

import json

from vulnkb.rag.formatting import (
    METADATA_PREFIX,
    METADATA_SUFFIX,
    format_risk_types,
    format_search_results,
    retrieved_item_ids,
    summarize_results,
)
from vulnkb.types import KnowledgeChunk, KnowledgeItem, RetrievalResult


def _item(item_id: str, category: str, title: str) -> KnowledgeItem:
    return KnowledgeItem(id=item_id, category=category, title=title)


def _result(item, index, text, similarity, expanded=False) -> RetrievalResult:
    chunk = KnowledgeChunk(
        id=f"{item.id}-{index}", item_id=item.id, chunk_index=index, chunk_text=text
    )
    return RetrievalResult(
        chunk=chunk, item=item, similarity=similarity, score=similarity, expanded=expanded
    )


SQLI = _item("sqli-1", "SQL Injection", "Login bypass")
XSS = _item("xss-1", "XSS", "Stored")


def _metadata(text: str) -> dict:
    trailer = text.splitlines()[-1]
    assert trailer.startswith(METADATA_PREFIX) and trailer.endswith(METADATA_SUFFIX)
    return json.loads(trailer[len(METADATA_PREFIX) : -len(METADATA_SUFFIX)])


class TestFormatSearchResults:
    def test_no_results(self):
        text = format_search_results("ldap injection", [])
        assert text.startswith("No knowledge found for query 'ldap injection'.")
        assert METADATA_PREFIX not in text

    def test_single_chunk_document(self):
        text = format_search_results("xss", [_result(XSS, 0, "<script>", 0.876)])

        assert "Found 1 relevant knowledge chunks" in text
        assert "--- Result 1 (similarity: 87.60%) ---" in text
        assert "Source: [XSS] Stored (ID: xss-1)" in text
        assert "Content:\n<script>" in text
        assert _metadata(text) == {"_metadata": {"retrievedItemIDs": ["xss-1"]}}

    def test_multi_chunk_document_in_document_order(self):
        results = [
            _result(SQLI, 2, "payload", 0.9),
            _result(SQLI, 1, "description", 0.72, expanded=True),
            _result(XSS, 0, "<script>", 0.7),
            _result(SQLI, 3, "remediation", 0.72, expanded=True),
        ]

        text = format_search_results("sqli", results)
        lines = text.splitlines()

        start = lines.index("Content (in document order):")
        assert lines[start + 1 : start + 7] == [
            "  [Fragment 1]",
            "description",
            "  [Fragment 2 [primary match]]",
            "payload",
            "  [Fragment 3]",
            "remediation",
        ]
        assert text.index("Result 1") < text.index("Result 2")
        assert "--- Result 2 (similarity: 70.00%) ---" in text
        assert _metadata(text)["_metadata"]["retrievedItemIDs"] == ["sqli-1", "xss-1"]


class TestHelpers:
    def test_retrieved_item_ids_first_appearance(self):
        results = [_result(XSS, 0, "a", 0.8), _result(SQLI, 0, "b", 0.9), _result(XSS, 1, "c", 0.6)]
        assert retrieved_item_ids(results) == ["xss-1", "sqli-1"]

    def test_format_risk_types(self):
        text = format_risk_types(["SQL Injection", "XSS"])
        assert text.splitlines()[:4] == [
            "The knowledge base has 2 risk types:",
            "",
            "1. SQL Injection",
            "2. XSS",
        ]
        assert "Tip:" in text

    def test_format_risk_types_empty(self):
        assert format_risk_types([]) == "The knowledge base has no risk types yet."

    def test_summarize_results(self):
        summary = summarize_results(
            [_result(SQLI, 2, "payload", 0.9), _result(SQLI, 1, "desc", 0.72, expanded=True)]
        )
        assert summary.splitlines() == [
            "2 results:",
            "1. [SQL Injection] Login bypass #2 similarity=90.00% score=0.900",
            "2. [SQL Injection] Login bypass #1 similarity=72.00% score=0.720 (context)",
        ]
        assert summarize_results([]) == "No results"
