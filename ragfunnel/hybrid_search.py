"""Hybrid retrieval combining semantic similarity with keyword matching."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Literal

from ragfunnel.config import config
from ragfunnel.errors import EmptyQueryError, InvalidQueryError, RetrievalError
from ragfunnel.keywords import KeywordScorer, extract_keywords
from ragfunnel.models import SearchResult, SearchType
from ragfunnel.vector_store import SimilaritySearchOptions

if TYPE_CHECKING:
    from ragfunnel.storage import ContentStore
    from ragfunnel.vector_store import SQLiteVectorStore

logger = config.get_logger(__name__)

FusionMethod = Literal["weighted", "rrf"]

METHOD_ALIASES: dict[str, FusionMethod] = {
    "weighted": "weighted",
    "rrf": "rrf",
    "reciprocal_rank": "rrf",
}


@dataclass(frozen=True)
class HybridSearchOptions:
    """Per-query settings for hybrid search.

    ``semantic_limit`` and ``keyword_limit`` default to twice ``limit`` so
    that fusion has room to promote results one pass ranked low.
    """

    limit: int = field(default_factory=lambda: config.SEARCH_DEFAULT_LIMIT)
    semantic_weight: float = field(default_factory=lambda: config.HYBRID_SEMANTIC_WEIGHT)
    keyword_weight: float = field(default_factory=lambda: config.HYBRID_KEYWORD_WEIGHT)
    semantic_limit: int | None = None
    keyword_limit: int | None = None
    method: str = "weighted"
    rrf_k: int = field(default_factory=lambda: config.HYBRID_RRF_K)
    threshold: float = 0.0
    model: str | None = None
    source_type: str | None = None
    source_id: int | None = None

    @property
    def effective_semantic_limit(self) -> int:
        return self.semantic_limit if self.semantic_limit is not None else self.limit * 2

    @property
    def effective_keyword_limit(self) -> int:
        return self.keyword_limit if self.keyword_limit is not None else self.limit * 2


def resolve_method(method: str) -> FusionMethod:
    """Normalize a fusion method name.

    Returns:
        ``"weighted"`` or ``"rrf"``.

    Raises:
        InvalidQueryError: If the method is unknown.
    """
    resolved = METHOD_ALIASES.get(method.lower())
    if resolved is None:
        msg = f"Unknown fusion method: {method}"
        raise InvalidQueryError(msg)
    return resolved


def _merge_passes(
    semantic: list[SearchResult],
    keyword: list[SearchResult],
) -> dict[int, tuple[SearchResult, int | None, int | None]]:
    """Index both passes by chunk id, keeping 1-based ranks per pass."""
    merged: dict[int, tuple[SearchResult, int | None, int | None]] = {}
    for rank, result in enumerate(semantic, start=1):
        merged[result.chunk_id] = (result, rank, None)
    for rank, result in enumerate(keyword, start=1):
        if result.chunk_id in merged:
            base, semantic_rank, _ = merged[result.chunk_id]
            merged[result.chunk_id] = (
                replace(base, keyword_score=result.keyword_score),
                semantic_rank,
                rank,
            )
        else:
            merged[result.chunk_id] = (result, None, rank)
    return merged


def _search_type(semantic_rank: int | None, keyword_rank: int | None) -> SearchType:
    if semantic_rank is not None and keyword_rank is not None:
        return "hybrid"
    return "semantic" if semantic_rank is not None else "keyword"


def weighted_fusion(
    semantic: list[SearchResult],
    keyword: list[SearchResult],
    semantic_weight: float,
    keyword_weight: float,
) -> list[SearchResult]:
    """Combine pass scores as a weighted sum.

    Weights are normalized to sum to 1. A chunk missing from one pass
    contributes 0 for that pass.

    Returns:
        Fused results in first-seen order (semantic pass first).

    Raises:
        InvalidQueryError: If a weight is negative or both are zero.
    """
    if semantic_weight < 0 or keyword_weight < 0:
        msg = "Fusion weights must be non-negative"
        raise InvalidQueryError(msg)
    total = semantic_weight + keyword_weight
    if total <= 0:
        msg = "At least one fusion weight must be positive"
        raise InvalidQueryError(msg)
    semantic_weight /= total
    keyword_weight /= total

    fused = []
    for result, semantic_rank, keyword_rank in _merge_passes(semantic, keyword).values():
        semantic_score = result.semantic_score if semantic_rank is not None else 0.0
        keyword_score = result.keyword_score if keyword_rank is not None else 0.0
        fused.append(
            replace(
                result,
                score=semantic_weight * semantic_score + keyword_weight * keyword_score,
                semantic_score=semantic_score,
                keyword_score=keyword_score,
                search_type=_search_type(semantic_rank, keyword_rank),
            )
        )
    return fused


def reciprocal_rank_fusion(
    semantic: list[SearchResult],
    keyword: list[SearchResult],
    k: int = 60,
) -> list[SearchResult]:
    """Combine passes by summing ``1 / (k + rank)`` over the passes a chunk is in.

    Returns:
        Fused results in first-seen order (semantic pass first).
    """
    fused = []
    for result, semantic_rank, keyword_rank in _merge_passes(semantic, keyword).values():
        score = 0.0
        if semantic_rank is not None:
            score += 1.0 / (k + semantic_rank)
        if keyword_rank is not None:
            score += 1.0 / (k + keyword_rank)
        fused.append(
            replace(
                result,
                score=score,
                semantic_score=result.semantic_score if semantic_rank is not None else 0.0,
                keyword_score=result.keyword_score if keyword_rank is not None else 0.0,
                search_type=_search_type(semantic_rank, keyword_rank),
            )
        )
    return fused


def rank_results(
    results: list[SearchResult],
    threshold: float,
    limit: int,
) -> list[SearchResult]:
    """Drop results below ``threshold``, sort by score and truncate.

    Returns:
        At most ``limit`` results, best first; ties keep their input order.
    """
    kept = [result for result in results if result.score >= threshold]
    kept.sort(key=lambda result: result.score, reverse=True)
    return kept[: max(0, limit)]


class HybridSearch:
    """Runs a semantic and a keyword pass and fuses their rankings."""

    def __init__(
        self,
        vector_store: SQLiteVectorStore,
        content_store: ContentStore,
        scorer: KeywordScorer | None = None,
        min_keyword_score: float | None = None,
        parallel: bool | None = None,
    ) -> None:
        """Initialize hybrid search over existing stores.

        Args:
            vector_store: Store used for the semantic pass.
            content_store: Store used for the keyword prefilter.
            scorer: Keyword scorer. If None, uses default weights.
            min_keyword_score: Keyword results below this score are dropped.
                If None, uses config.HYBRID_MIN_KEYWORD_SCORE.
            parallel: Run both passes concurrently. If None, uses
                config.HYBRID_PARALLEL_PASSES.
        """
        self.vector_store = vector_store
        self.content_store = content_store
        self.scorer = scorer or KeywordScorer()
        self.min_keyword_score = (
            min_keyword_score
            if min_keyword_score is not None
            else config.HYBRID_MIN_KEYWORD_SCORE
        )
        self.parallel = parallel if parallel is not None else config.HYBRID_PARALLEL_PASSES

    def search(
        self,
        query_text: str,
        options: HybridSearchOptions | None = None,
    ) -> list[SearchResult]:
        """Retrieve chunks for a query using both passes.

        Returns:
            Fused results, best first, at most ``options.limit`` long.

        Raises:
            EmptyQueryError: If the query is empty or whitespace.
            InvalidQueryError: If the fusion method or weights are invalid.
            StorageError: If the keyword pass cannot read the content store.
        """
        if not query_text or not query_text.strip():
            msg = "Query text cannot be empty"
            raise EmptyQueryError(msg)

        options = options or HybridSearchOptions()
        method = resolve_method(options.method)

        if self.parallel:
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid") as pool:
                semantic_future = pool.submit(self.semantic_search, query_text, options)
                keyword_future = pool.submit(self.keyword_search, query_text, options)
                semantic = semantic_future.result()
                keyword = keyword_future.result()
        else:
            semantic = self.semantic_search(query_text, options)
            keyword = self.keyword_search(query_text, options)

        if method == "rrf":
            fused = reciprocal_rank_fusion(semantic, keyword, options.rrf_k)
        else:
            fused = weighted_fusion(
                semantic, keyword, options.semantic_weight, options.keyword_weight
            )

        results = rank_results(fused, options.threshold, options.limit)
        logger.info(
            "Hybrid search (%s): %d semantic, %d keyword, %d returned",
            method,
            len(semantic),
            len(keyword),
            len(results),
        )
        return results

    def semantic_search(
        self,
        query_text: str,
        options: HybridSearchOptions,
    ) -> list[SearchResult]:
        """Semantic pass; any retrieval failure yields an empty list.

        Returns:
            Similarity-ranked results, or [] if the pass failed.
        """
        search_options = SimilaritySearchOptions(
            limit=options.effective_semantic_limit,
            model=options.model,
            source_type=options.source_type,
            source_id=options.source_id,
        )
        try:
            return self.vector_store.search(query_text, search_options)
        except RetrievalError as exc:
            logger.warning("Semantic pass failed, continuing with keywords only: %s", exc)
            return []

    def keyword_search(
        self,
        query_text: str,
        options: HybridSearchOptions,
    ) -> list[SearchResult]:
        """Keyword pass over a SQL LIKE prefilter.

        Returns:
            Results scoring at least ``min_keyword_score``, best first.
        """
        keywords = extract_keywords(query_text)
        if not keywords:
            logger.debug("No keywords extracted from query")
            return []

        limit = options.effective_keyword_limit
        candidates = self.content_store.find_keyword_candidates(
            keywords,
            limit,
            source_type=options.source_type,
            source_id=options.source_id,
        )

        results = []
        for chunk in candidates:
            score = self.scorer.score(chunk.content, keywords)
            if score < self.min_keyword_score:
                continue
            results.append(
                SearchResult.from_chunk(
                    chunk, score=score, search_type="keyword", keyword_score=score
                )
            )

        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]
