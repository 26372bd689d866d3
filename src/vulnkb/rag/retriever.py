"""
Hybrid retriever: semantic similarity blended with lexical overlap.

Scoring pipeline for one query:

1. Embed the query (prefixed with the risk type when one is given).
2. Load candidates from a `CandidateSource`; the default one scans every
   stored chunk, which is fine while the corpus fits in memory.
3. Score each candidate by cosine similarity and by term overlap against the
   chunk text, the document category and the document title. Category or
   title overlap above `strong_keyword_threshold` is a strong keyword match.
4. Relax the threshold when no candidate has a strong keyword match (likely a
   paraphrased or cross-lingual query), accept, fall back to a floor when
   nothing passes, truncate to top-K and compute hybrid scores.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from ..config.settings import RetrievalConfig
from ..errors import EmbeddingError, EmptyQueryError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..storage.base import KnowledgeStore
from ..types import CandidateChunk, RetrievalResult, SearchRequest
from .context import ContextExpander
from .embedding import EmbeddingProvider

logger = get_logger(__name__)

TERM_PATTERN = re.compile(r"\w+")


def cosine_similarity(a: np.ndarray | None, b: np.ndarray | None) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Returns 0.0 when either vector is missing, the dimensions differ or
    either vector has zero magnitude.
    """
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or va.size != vb.size:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    return min(max(similarity, 0.0), 1.0)


def tokenize(text: str) -> list[str]:
    return TERM_PATTERN.findall(text.lower())


def lexical_score(query: str, text: str) -> float:
    """
    Simplified term-frequency overlap of `query` against `text`.

    Each query term found in the text contributes its frequency divided by
    the text length in terms; the sum is averaged over the query terms.
    """
    query_terms = tokenize(query)
    text_terms = tokenize(text)
    if not query_terms or not text_terms:
        return 0.0

    counts: dict[str, int] = {}
    for term in text_terms:
        counts[term] = counts.get(term, 0) + 1

    score = sum(counts.get(term, 0) / len(text_terms) for term in query_terms)
    return score / len(query_terms)


@dataclass(frozen=True)
class RetrievalTuning:
    """Acceptance heuristics. Values are a tuning surface, not a contract."""

    noise_floor: float = 0.1
    strong_keyword_threshold: float = 0.3
    relax_factor: float = 0.85
    cross_lingual_floor: float = 0.6
    keyword_floor: float = 0.55
    fallback_floor: float = 0.55
    default_top_k: int = 5
    default_threshold: float = 0.7
    default_hybrid_weight: float = 0.7


@dataclass
class ScoredCandidate:
    candidate: CandidateChunk
    similarity: float
    lexical: float
    strong_keyword_match: bool


class CandidateSource(Protocol):
    """Returns the chunks worth scoring for a query vector."""

    def candidates(
        self, query_vector: np.ndarray, category: str | None = None
    ) -> list[CandidateChunk]: ...


class ExhaustiveCandidateSource:
    """Every stored chunk, optionally limited to one category."""

    def __init__(self, store: KnowledgeStore):
        self.store = store

    def candidates(
        self, query_vector: np.ndarray, category: str | None = None
    ) -> list[CandidateChunk]:
        return self.store.list_candidates(category)


def build_query_input(query: str, risk_type: str | None) -> str:
    if risk_type:
        return f"[category: {risk_type}] {query}"
    return query


class HybridRetriever:
    """Semantic + lexical retriever over stored chunk vectors."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: KnowledgeStore,
        config: RetrievalConfig | None = None,
        tuning: RetrievalTuning | None = None,
        candidate_source: CandidateSource | None = None,
        expander: ContextExpander | None = None,
    ):
        self.embedder = embedder
        self.store = store
        self.config = config or RetrievalConfig()
        self.tuning = tuning or RetrievalTuning()
        self.candidate_source = candidate_source or ExhaustiveCandidateSource(store)
        self.expander = expander or ContextExpander(store)

        self._stats = {"queries": 0, "empty_results": 0, "fallbacks": 0, "relaxed": 0}

    def resolve_top_k(self, request: SearchRequest) -> int:
        if request.top_k is not None and request.top_k > 0:
            return request.top_k
        return self.config.top_k or self.tuning.default_top_k

    def resolve_threshold(self, request: SearchRequest) -> float:
        if request.threshold is not None and request.threshold > 0:
            return request.threshold
        return self.config.similarity_threshold or self.tuning.default_threshold

    @property
    def hybrid_weight(self) -> float:
        return self.config.hybrid_weight or self.tuning.default_hybrid_weight

    async def search(
        self, request: SearchRequest, timeout: float | None = None
    ) -> list[RetrievalResult]:
        """
        Ranked matches for a query, at most top-K.

        Raises EmptyQueryError before touching the store or the embedding
        provider, and EmbeddingError when the query cannot be embedded.
        Low relevance is not an error: the result is simply empty.
        """
        if not request.query or not request.query.strip():
            raise EmptyQueryError()

        top_k = self.resolve_top_k(request)
        threshold = self.resolve_threshold(request)
        start = time.perf_counter()

        with probe("retriever.search", top_k=top_k, filtered=bool(request.risk_type)):
            query_vector = await self._embed_query(request, timeout)

            candidates = self.candidate_source.candidates(query_vector, request.risk_type)
            scored = self._score_candidates(request.query, query_vector, candidates)
            accepted = self._accept(scored, threshold, top_k)
            results = self._to_results(accepted)

        self._stats["queries"] += 1
        if not results:
            self._stats["empty_results"] += 1
        get_metrics_collector().record_rag_query(
            time.perf_counter() - start, len(results), bool(request.risk_type)
        )
        logger.debug(
            "Search completed",
            candidates=len(candidates),
            scored=len(scored),
            results=len(results),
            threshold=threshold,
        )
        return results

    async def retrieve(
        self, request: SearchRequest, timeout: float | None = None
    ) -> list[RetrievalResult]:
        """`search` followed by context expansion when enabled."""
        results = await self.search(request, timeout=timeout)
        if not self.config.expand_context:
            return results
        return self.expander.expand(results)

    async def _embed_query(self, request: SearchRequest, timeout: float | None) -> np.ndarray:
        query_input = build_query_input(request.query, request.risk_type)
        try:
            if timeout is None:
                return await self.embedder.embed(query_input)
            return await asyncio.wait_for(
                self.embedder.embed(query_input, timeout=timeout), timeout=timeout
            )
        except TimeoutError as e:
            raise EmbeddingError(f"query embedding timed out after {timeout}s") from e

    def _score_candidates(
        self, query: str, query_vector: np.ndarray, candidates: list[CandidateChunk]
    ) -> list[ScoredCandidate]:
        tuning = self.tuning
        scored = []
        for candidate in candidates:
            similarity = cosine_similarity(query_vector, candidate.chunk.embedding)
            if similarity < tuning.noise_floor:
                continue

            chunk_score = lexical_score(query, candidate.chunk.chunk_text)
            category_score = lexical_score(query, candidate.item.category)
            title_score = lexical_score(query, candidate.item.title)

            scored.append(
                ScoredCandidate(
                    candidate=candidate,
                    similarity=similarity,
                    lexical=max(chunk_score, category_score, title_score),
                    strong_keyword_match=(
                        category_score > tuning.strong_keyword_threshold
                        or title_score > tuning.strong_keyword_threshold
                    ),
                )
            )

        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored

    def _accept(
        self, scored: list[ScoredCandidate], threshold: float, top_k: int
    ) -> list[ScoredCandidate]:
        tuning = self.tuning
        if not scored:
            return []

        effective = threshold
        if not any(s.strong_keyword_match for s in scored):
            effective = max(threshold * tuning.relax_factor, tuning.cross_lingual_floor)
            self._stats["relaxed"] += 1
            logger.debug(
                "No strong keyword match, relaxing threshold",
                threshold=threshold,
                effective=effective,
            )

        keyword_threshold = max(effective * tuning.relax_factor, tuning.keyword_floor)
        accepted = [
            s
            for s in scored
            if s.similarity >= effective
            or (s.strong_keyword_match and s.similarity >= keyword_threshold)
        ]

        if not accepted:
            best = scored[0].similarity
            if best < tuning.fallback_floor:
                logger.debug(
                    "Nothing relevant in corpus", best=best, floor=tuning.fallback_floor
                )
                return []
            self._stats["fallbacks"] += 1
            logger.debug("Falling back to floor", best=best, floor=tuning.fallback_floor)
            accepted = [s for s in scored if s.similarity >= tuning.fallback_floor]

        return accepted[:top_k]

    def _to_results(self, accepted: list[ScoredCandidate]) -> list[RetrievalResult]:
        weight = self.hybrid_weight
        return [
            RetrievalResult(
                chunk=s.candidate.chunk,
                item=s.candidate.item,
                similarity=s.similarity,
                score=weight * s.similarity + (1 - weight) * min(s.lexical, 1.0),
            )
            for s in accepted
        ]

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "tuning": {
                "noise_floor": self.tuning.noise_floor,
                "strong_keyword_threshold": self.tuning.strong_keyword_threshold,
                "relax_factor": self.tuning.relax_factor,
                "cross_lingual_floor": self.tuning.cross_lingual_floor,
                "fallback_floor": self.tuning.fallback_floor,
            },
            "hybrid_weight": self.hybrid_weight,
        }
