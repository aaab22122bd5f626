"""Embedding storage and exact similarity search."""

from .similarity import as_vector, cosine_similarities, cosine_similarity
from .sqlite_store import (
    ModelStatistics,
    SimilaritySearchOptions,
    SQLiteVectorStore,
    VectorStoreStatistics,
)

__all__ = [
    "ModelStatistics",
    "SQLiteVectorStore",
    "SimilaritySearchOptions",
    "VectorStoreStatistics",
    "as_vector",
    "cosine_similarities",
    "cosine_similarity",
]
