"""Tests for hybrid search fusion and the two retrieval passes."""

from dataclasses import replace
from unittest.mock import patch

import pytest

from ragfunnel import HybridSearch, HybridSearchOptions, SQLiteVectorStore
from ragfunnel.errors import (
    EmptyQueryError,
    InvalidQueryError,
    ProviderUnavailableError,
    StorageError,
)
from ragfunnel.hybrid_search import (
    rank_results,
    reciprocal_rank_fusion,
    resolve_method,
    weighted_fusion,
)
from tests.conftest import FakeProvider, TestConstants


@pytest.fixture
def fusion_inputs(search_result_factory):
    """Semantic and keyword passes over chunks 1-3."""
    semantic = [
        search_result_factory(1, score=0.9),
        search_result_factory(2, score=0.4),
        search_result_factory(3, score=0.1),
    ]
    keyword = [
        replace(
            search_result_factory(2, score=0.8),
            semantic_score=0.0,
            keyword_score=0.8,
            search_type="keyword",
        ),
        replace(
            search_result_factory(1, score=0.1),
            semantic_score=0.0,
            keyword_score=0.1,
            search_type="keyword",
        ),
    ]
    return semantic, keyword


def test_weighted_fusion_combines_pass_scores(fusion_inputs):
    semantic, keyword = fusion_inputs

    ranked = rank_results(weighted_fusion(semantic, keyword, 0.7, 0.3), 0.0, 10)

    assert [result.chunk_id for result in ranked] == [1, 2, 3]
    assert [result.score for result in ranked] == pytest.approx([0.66, 0.52, 0.07])
    assert [result.search_type for result in ranked] == ["hybrid", "hybrid", "semantic"]
    assert ranked[1].semantic_score == pytest.approx(0.4)
    assert ranked[1].keyword_score == pytest.approx(0.8)
    assert ranked[2].keyword_score == 0.0


def test_weighted_fusion_normalizes_weights(fusion_inputs):
    semantic, keyword = fusion_inputs

    fractional = weighted_fusion(semantic, keyword, 0.7, 0.3)
    scaled = weighted_fusion(semantic, keyword, 7, 3)

    assert [result.score for result in scaled] == pytest.approx(
        [result.score for result in fractional]
    )


def test_weighted_fusion_stays_within_component_bounds(fusion_inputs):
    semantic, keyword = fusion_inputs

    for result in weighted_fusion(semantic, keyword, 0.5, 0.5):
        low = min(result.semantic_score, result.keyword_score)
        high = max(result.semantic_score, result.keyword_score)
        assert low <= result.score <= high


@pytest.mark.parametrize(("semantic_weight", "keyword_weight"), [(-0.1, 1.0), (0.0, 0.0)])
def test_weighted_fusion_rejects_bad_weights(fusion_inputs, semantic_weight, keyword_weight):
    semantic, keyword = fusion_inputs

    with pytest.raises(InvalidQueryError):
        weighted_fusion(semantic, keyword, semantic_weight, keyword_weight)


def test_reciprocal_rank_fusion_scores(fusion_inputs):
    semantic, keyword = fusion_inputs

    fused = {
        result.chunk_id: result
        for result in reciprocal_rank_fusion(semantic, keyword, k=60)
    }

    assert fused[1].score == pytest.approx(1 / 61 + 1 / 62)
    assert fused[2].score == pytest.approx(1 / 62 + 1 / 61)
    assert fused[3].score == pytest.approx(1 / 63)
    assert fused[3].search_type == "semantic"


def test_reciprocal_rank_fusion_rewards_appearing_in_both(search_result_factory):
    only_semantic = search_result_factory(1, score=0.99)
    both = search_result_factory(2, score=0.10)

    fused = reciprocal_rank_fusion([only_semantic, both], [both], k=60)
    ranked = rank_results(fused, 0.0, 10)

    assert [result.chunk_id for result in ranked] == [2, 1]


def test_rank_results_threshold_limit_and_stable_ties(search_result_factory):
    results = [
        search_result_factory(1, score=0.5),
        search_result_factory(2, score=0.9),
        search_result_factory(3, score=0.5),
        search_result_factory(4, score=0.05),
    ]

    assert [r.chunk_id for r in rank_results(results, 0.1, 10)] == [2, 1, 3]
    assert [r.chunk_id for r in rank_results(results, 0.0, 2)] == [2, 1]
    assert rank_results(results, 0.0, 0) == []


@pytest.mark.parametrize(
    ("name", "expected"),
    [("weighted", "weighted"), ("rrf", "rrf"), ("reciprocal_rank", "rrf"), ("RRF", "rrf")],
)
def test_resolve_method(name, expected):
    assert resolve_method(name) == expected


def test_resolve_method_unknown():
    with pytest.raises(InvalidQueryError, match="Unknown fusion method"):
        resolve_method("bm25")


@pytest.mark.parametrize("query", ["", "   ", "\t\n"])
def test_search_empty_query_makes_no_provider_calls(hybrid_search, fake_provider, query):
    with pytest.raises(EmptyQueryError):
        hybrid_search.search(query)

    assert fake_provider.embedding_calls == []


def test_search_finds_exact_match_in_both_passes(hybrid_search, sample_chunks):
    target = sample_chunks[2]

    results = hybrid_search.search(target.content, HybridSearchOptions(limit=3))

    assert results[0].chunk_id == target.id
    assert results[0].search_type == "hybrid"
    assert results[0].semantic_score == pytest.approx(1.0)
    assert results[0].keyword_score > 0.0
    assert len(results) <= 3
    assert all(a.score >= b.score for a, b in zip(results, results[1:], strict=False))


def test_search_uses_double_limit_for_passes(hybrid_search, sample_chunks, fake_provider):
    options = HybridSearchOptions(limit=2)

    assert options.effective_semantic_limit == 4
    assert options.effective_keyword_limit == 4
    assert HybridSearchOptions(limit=2, semantic_limit=7).effective_semantic_limit == 7

    hybrid_search.search("learning patterns", options)
    assert fake_provider.embedding_calls == [
        ("learning patterns", TestConstants.TEST_EMBEDDING_MODEL)
    ]


def test_search_rrf_method_alias(hybrid_search, sample_chunks):
    results = hybrid_search.search(
        "deep learning patterns", HybridSearchOptions(method="reciprocal_rank")
    )

    assert results
    assert all(result.score <= 2 / 61 + 1e-12 for result in results)


def test_search_rejects_unknown_method(hybrid_search, sample_chunks):
    with pytest.raises(InvalidQueryError):
        hybrid_search.search("learning", HybridSearchOptions(method="fancy"))


def test_search_falls_back_to_keywords_without_provider(db_path, content_store, sample_chunks):
    searcher = HybridSearch(SQLiteVectorStore(db_path), content_store, parallel=False)

    results = searcher.search("labeled training data")

    assert results
    assert results[0].chunk_id == sample_chunks[3].id
    assert all(result.search_type == "keyword" for result in results)
    assert all(result.semantic_score == 0.0 for result in results)
    assert results[0].score == pytest.approx(0.3 * results[0].keyword_score)


class OfflineEmbeddings(FakeProvider):
    """Provider whose embedding endpoint fails after being called."""

    def generate_embedding(self, text, model=None):
        super().generate_embedding(text, model)
        msg = "embedding endpoint returned 503"
        raise ProviderUnavailableError(msg)


@pytest.mark.parametrize("parallel", [False, True])
def test_search_falls_back_to_keywords_when_provider_fails(
    db_path, content_store, sample_chunks, parallel
):
    provider = OfflineEmbeddings()
    searcher = HybridSearch(
        SQLiteVectorStore(db_path, embedding_provider=provider), content_store, parallel=parallel
    )

    results = searcher.search("labeled training data")

    assert provider.embedding_calls == [
        ("labeled training data", TestConstants.TEST_EMBEDDING_MODEL)
    ]
    assert results[0].chunk_id == sample_chunks[3].id
    assert all(result.search_type == "keyword" for result in results)


@pytest.mark.parametrize("parallel", [False, True])
def test_search_propagates_keyword_pass_storage_error(
    vector_store, content_store, sample_chunks, parallel
):
    searcher = HybridSearch(vector_store, content_store, parallel=parallel)

    with (
        patch.object(
            content_store,
            "find_keyword_candidates",
            side_effect=StorageError("Storage operation failed: disk I/O error"),
        ),
        pytest.raises(StorageError, match="disk I/O error"),
    ):
        searcher.search("neural networks")


def test_search_parallel_matches_sequential(vector_store, content_store, sample_chunks):
    sequential = HybridSearch(vector_store, content_store, parallel=False)
    parallel = HybridSearch(vector_store, content_store, parallel=True)
    options = HybridSearchOptions(limit=5)

    expected = sequential.search("neural networks and deep learning", options)
    actual = parallel.search("neural networks and deep learning", options)

    assert [r.chunk_id for r in actual] == [r.chunk_id for r in expected]
    assert [r.score for r in actual] == pytest.approx([r.score for r in expected])


def test_search_threshold_filters_results(hybrid_search, sample_chunks):
    results = hybrid_search.search(
        sample_chunks[0].content, HybridSearchOptions(threshold=0.65)
    )

    assert [result.chunk_id for result in results] == [sample_chunks[0].id]


def test_keyword_search_filters_by_min_score_and_source(
    vector_store, content_store, sample_chunks
):
    strict = HybridSearch(vector_store, content_store, min_keyword_score=0.99)
    scoped = HybridSearch(vector_store, content_store)

    assert strict.keyword_search("learning", HybridSearchOptions()) == []

    results = scoped.keyword_search("learning", HybridSearchOptions(source_id=2))
    assert {result.chunk_id for result in results} == {
        sample_chunks[3].id,
        sample_chunks[4].id,
    }
    assert all(result.search_type == "keyword" for result in results)


def test_keyword_search_without_keywords_returns_empty(hybrid_search, sample_chunks):
    assert hybrid_search.keyword_search("is it a", HybridSearchOptions()) == []
