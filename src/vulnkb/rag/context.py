"""
Context expansion around retrieval matches.

Segment boundaries can separate a vulnerability description from the
payload or code block right after it. For each document in the result set
the expander pulls in chunks adjacent to its best matches so the caller
sees both.
"""

from ..errors import StoreError
from ..observability.logging import get_logger
from ..storage.base import KnowledgeStore
from ..types import KnowledgeChunk, RetrievalResult

logger = get_logger(__name__)


class ContextExpander:
    """Adds neighbouring chunks from the same document to ranked results."""

    def __init__(
        self,
        store: KnowledgeStore,
        max_expand_from: int = 3,
        max_neighbors_per_match: int = 4,
        max_distance: int = 2,
        max_expand_per_item: int = 8,
        expansion_factor: float = 0.8,
    ):
        self.store = store
        self.max_expand_from = max_expand_from
        self.max_neighbors_per_match = max_neighbors_per_match
        self.max_distance = max_distance
        self.max_expand_per_item = max_expand_per_item
        self.expansion_factor = expansion_factor

    def expand(self, results: list[RetrievalResult]) -> list[RetrievalResult]:
        """
        Return `results` followed by expansion chunks.

        Original matches keep their order. Expansion chunks for each document
        follow in order of proximity to that document's matches, scored
        `expansion_factor` times the document's best similarity, and never
        duplicate a chunk already in the output.
        """
        if not results:
            return []

        by_item: dict[str, list[RetrievalResult]] = {}
        for result in results:
            by_item.setdefault(result.item.id, []).append(result)

        seen: set[str] = set()
        expanded: list[RetrievalResult] = []
        for result in results:
            if result.chunk.id not in seen:
                seen.add(result.chunk.id)
                expanded.append(result)

        added = 0
        for item_id, item_results in by_item.items():
            try:
                all_chunks = self.store.list_chunks(item_id)
            except StoreError as e:
                logger.warning("Could not load chunks for expansion", item_id=item_id, error=str(e))
                continue

            neighbours = self._collect_neighbours(item_results, all_chunks, seen)
            best = max(r.similarity for r in item_results)
            synthetic = best * self.expansion_factor

            for chunk in neighbours:
                seen.add(chunk.id)
                expanded.append(
                    RetrievalResult(
                        chunk=chunk,
                        item=item_results[0].item,
                        similarity=synthetic,
                        score=synthetic,
                        expanded=True,
                    )
                )
                added += 1

        if added:
            logger.debug("Expanded retrieval context", matches=len(results), added=added)
        return expanded

    def _collect_neighbours(
        self,
        item_results: list[RetrievalResult],
        all_chunks: list[KnowledgeChunk],
        seen: set[str],
    ) -> list[KnowledgeChunk]:
        top = sorted(item_results, key=lambda r: r.similarity, reverse=True)[: self.max_expand_from]

        candidates: dict[str, KnowledgeChunk] = {}
        for result in top:
            for chunk in self._neighbours_of(result.chunk, all_chunks, seen):
                candidates[chunk.id] = chunk

        match_indexes = [r.chunk.chunk_index for r in item_results]

        def proximity(chunk: KnowledgeChunk) -> tuple[int, int]:
            distance = min(abs(chunk.chunk_index - index) for index in match_indexes)
            return distance, chunk.chunk_index

        ordered = sorted(candidates.values(), key=proximity)
        return ordered[: self.max_expand_per_item]

    def _neighbours_of(
        self, target: KnowledgeChunk, all_chunks: list[KnowledgeChunk], seen: set[str]
    ) -> list[KnowledgeChunk]:
        related = [
            chunk
            for chunk in all_chunks
            if chunk.id != target.id
            and chunk.id not in seen
            and 0 < abs(chunk.chunk_index - target.chunk_index) <= self.max_distance
        ]
        related.sort(key=lambda c: (abs(c.chunk_index - target.chunk_index), c.chunk_index))
        return related[: self.max_neighbors_per_match]
