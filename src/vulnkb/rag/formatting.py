"""Plain-text rendering of retrieval output for the chat/tool layer."""

import json

from ..types import RetrievalResult

METADATA_PREFIX = "<!-- METADATA: "
METADATA_SUFFIX = " -->"


def group_by_item(results: list[RetrievalResult]) -> dict[str, list[RetrievalResult]]:
    """Group results per document, preserving first-appearance order."""
    groups: dict[str, list[RetrievalResult]] = {}
    for result in results:
        groups.setdefault(result.item.id, []).append(result)
    return groups


def retrieved_item_ids(results: list[RetrievalResult]) -> list[str]:
    return list(group_by_item(results))


def format_search_results(query: str, results: list[RetrievalResult]) -> str:
    """
    Render results grouped by document, chunks in document order.

    The highest-similarity chunk of each document is marked as the primary
    match. A machine-readable trailer lists the retrieved document ids.
    """
    if not results:
        return (
            f"No knowledge found for query '{query}'. Suggestions:\n"
            "1. Try different keywords\n"
            "2. Check that the risk type is correct\n"
            "3. Confirm the knowledge base contains related content"
        )

    groups = group_by_item(results)
    lines = [f"Found {len(results)} relevant knowledge chunks (including context expansion):", ""]

    for position, item_results in enumerate(groups.values(), start=1):
        primary = max(item_results, key=lambda r: r.similarity)
        ordered = sorted(item_results, key=lambda r: r.chunk.chunk_index)

        lines.append(f"--- Result {position} (similarity: {primary.similarity * 100:.2f}%) ---")
        lines.append(f"Source: [{primary.category}] {primary.title} (ID: {primary.item.id})")

        if len(ordered) == 1:
            lines.append("Content:")
            lines.append(primary.chunk.chunk_text)
        else:
            lines.append("Content (in document order):")
            for index, result in enumerate(ordered, start=1):
                marker = " [primary match]" if result.chunk.id == primary.chunk.id else ""
                lines.append(f"  [Fragment {index}{marker}]")
                lines.append(result.chunk.chunk_text)
        lines.append("")

    metadata = json.dumps({"_metadata": {"retrievedItemIDs": list(groups)}})
    lines.append(f"{METADATA_PREFIX}{metadata}{METADATA_SUFFIX}")
    return "\n".join(lines)


def format_risk_types(categories: list[str]) -> str:
    if not categories:
        return "The knowledge base has no risk types yet."

    lines = [f"The knowledge base has {len(categories)} risk types:", ""]
    lines.extend(f"{index}. {category}" for index, category in enumerate(categories, start=1))
    lines.append("")
    lines.append(
        "Tip: pass one of these as the risk type when searching to narrow the scope "
        "and improve retrieval."
    )
    return "\n".join(lines)


def summarize_results(results: list[RetrievalResult]) -> str:
    """One line per result, for logs and the CLI."""
    if not results:
        return "No results"

    lines = [f"{len(results)} results:"]
    for index, result in enumerate(results, start=1):
        tag = " (context)" if result.expanded else ""
        lines.append(
            f"{index}. [{result.category}] {result.title} #{result.chunk.chunk_index} "
            f"similarity={result.similarity * 100:.2f}% score={result.score:.3f}{tag}"
        )
    return "\n".join(lines)
