"""Performance and stress tests for ragfunnel components.

The time budgets are generous upper bounds for a developer laptop; they
catch accidental quadratic behavior rather than benchmark the engine.
"""

import os
import time

import numpy as np
import psutil

from ragfunnel import (
    AssemblyOptions,
    HybridSearchOptions,
    SimilaritySearchOptions,
    SQLiteVectorStore,
)
from ragfunnel.keywords import KeywordScorer, extract_keywords
from ragfunnel.vector_store import cosine_similarities
from tests.conftest import hashed_embedding


def test_cosine_similarities_throughput():
    rng = np.random.default_rng(7)
    matrix = rng.normal(size=(10000, 256))
    query = rng.normal(size=256)

    start_time = time.time()
    scores = cosine_similarities(query, matrix)
    elapsed = time.time() - start_time

    assert scores.shape == (10000,)
    assert np.all(np.abs(scores) <= 1.0)
    assert elapsed < 0.5, f"Vectorized similarity too slow: {elapsed:.3f}s"


def test_vector_store_performance(vector_store, content_store):
    chunks = [
        content_store.add_chunk(f"Performance test content {i}", source_id=i % 10)
        for i in range(1000)
    ]

    storage_start = time.time()
    results = vector_store.batch_store([
        (chunk.id, hashed_embedding(chunk.content), "perf-model") for chunk in chunks
    ])
    storage_time = time.time() - storage_start

    search_start = time.time()
    found = vector_store.similarity_search(
        hashed_embedding("test query"),
        SimilaritySearchOptions(limit=10, threshold=-1.0, model="perf-model"),
    )
    search_time = time.time() - search_start

    assert all(isinstance(result, int) for result in results)
    assert len(found) == 10, "Should return requested number of results"
    assert storage_time < 30, f"Storage too slow: {storage_time:.3f}s"
    assert search_time < 2, f"Search too slow: {search_time:.3f}s"


def test_search_scans_at_most_max_candidates(db_path, content_store):
    store = SQLiteVectorStore(db_path, max_candidates=50)
    for i in range(200):
        chunk = content_store.add_chunk(f"Candidate {i}")
        store.store(chunk.id, hashed_embedding(chunk.content), "cap-model")

    found = store.similarity_search(
        hashed_embedding("Candidate 150"),
        SimilaritySearchOptions(limit=200, threshold=-1.0, model="cap-model"),
    )

    assert len(found) == 50
    assert all(int(result.content.split()[1]) < 50 for result in found)


def test_keyword_scoring_large_content():
    scorer = KeywordScorer()
    keywords = extract_keywords("distributed retrieval pipeline latency")
    content = "Retrieval pipelines trade latency for recall. " * 2000

    start_time = time.time()
    score = scorer.score(content, keywords)
    elapsed = time.time() - start_time

    assert 0.0 < score <= 1.0
    assert elapsed < 0.5, f"Keyword scoring too slow: {elapsed:.3f}s"


def test_memory_usage_stability(vector_store, content_store):
    process = psutil.Process(os.getpid())
    initial_memory = process.memory_info().rss / 1024 / 1024

    for round_num in range(5):
        for i in range(200):
            chunk = content_store.add_chunk(f"Memory test chunk {round_num}-{i}")
            vector_store.store(chunk.id, hashed_embedding(chunk.content), "mem-model")

        vector_store.similarity_search(
            hashed_embedding(f"query {round_num}"),
            SimilaritySearchOptions(limit=5, model="mem-model"),
        )

        current_memory = process.memory_info().rss / 1024 / 1024
        memory_growth = current_memory - initial_memory

        assert memory_growth < 50, f"Excessive memory growth: {memory_growth:.1f}MB"


def test_repeated_hybrid_queries(hybrid_search, sample_chunks, context_assembler):
    total_operations = 50

    start_time = time.time()
    for i in range(total_operations):
        results = hybrid_search.search(
            f"learning patterns {i}", HybridSearchOptions(limit=3)
        )
        context = context_assembler.assemble_context(
            "learning patterns", results, options=AssemblyOptions(context_window=4096)
        )
        assert len(results) <= 3
        assert context.tokens_total <= 4096

    total_time = time.time() - start_time
    ops_per_second = total_operations / total_time

    assert ops_per_second > 2, f"Operations too slow: {ops_per_second:.1f} ops/s"
