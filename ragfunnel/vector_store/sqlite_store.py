"""SQLite-backed embedding storage with exact cosine similarity search."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

import numpy as np

from ragfunnel.config import config
from ragfunnel.errors import (
    EmptyQueryError,
    InvalidQueryError,
    NotConfiguredError,
    RetrievalError,
)
from ragfunnel.models import Embedding, SearchResult
from ragfunnel.storage.base import BaseSQLiteStore
from ragfunnel.storage.content_store import CHUNK_COLUMNS, chunk_from_row
from ragfunnel.vector_store.similarity import as_vector, cosine_similarities

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import ArrayLike

    from ragfunnel.providers.base import Provider

logger = config.get_logger(__name__)


@dataclass(frozen=True)
class SimilaritySearchOptions:
    """Filters and limits for a similarity search."""

    limit: int = 10
    threshold: float = 0.0
    model: str | None = None
    source_type: str | None = None
    source_id: int | None = None
    exclude_chunks: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ModelStatistics:
    count: int
    avg_dimension: float


@dataclass(frozen=True)
class VectorStoreStatistics:
    """Embedding counts overall and per model."""

    total_embeddings: int
    models: dict[str, ModelStatistics]


class SQLiteVectorStore(BaseSQLiteStore):
    """Embedding storage in SQLite with brute-force cosine search.

    Vectors are stored as float64 bytes next to the chunk rows they belong
    to. Search scans at most ``max_candidates`` rows in insertion order.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        embedding_provider: Provider | None = None,
        max_candidates: int | None = None,
    ) -> None:
        """Initialize the vector store.

        Args:
            db_path: SQLite file. If None, uses config.CONTENT_DB_PATH.
            embedding_provider: Provider used by :meth:`search` to embed
                query text.
            max_candidates: Upper bound on rows scanned per search. If None,
                uses config.VECTOR_MAX_CANDIDATES.
        """
        super().__init__(db_path if db_path is not None else config.CONTENT_DB_PATH)
        self.embedding_provider = embedding_provider
        self.max_candidates = (
            max_candidates
            if max_candidates is not None
            else config.VECTOR_MAX_CANDIDATES
        )

    def store(self, chunk_id: int, vector: ArrayLike, model: str) -> int:
        """Insert or replace the embedding of a chunk for one model.

        Returns:
            The embedding row id.

        Raises:
            InvalidQueryError: If the vector or model name is invalid.
            StorageError: If the chunk does not exist or the write fails.
        """
        if not model or not model.strip():
            msg = "Embedding model name cannot be empty"
            raise InvalidQueryError(msg)
        values = as_vector(vector)

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO embeddings (chunk_id, embedding_model, dimension, embedding_vector)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (chunk_id, embedding_model) DO UPDATE SET
                    dimension = excluded.dimension,
                    embedding_vector = excluded.embedding_vector,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (int(chunk_id), model, int(values.size), values.tobytes()),
            )
            row = conn.execute(
                "SELECT id FROM embeddings WHERE chunk_id = ? AND embedding_model = ?",
                (int(chunk_id), model),
            ).fetchone()

        embedding_id = int(row[0])
        logger.debug(
            "Stored %d-dim embedding %d for chunk %d (%s)",
            values.size,
            embedding_id,
            chunk_id,
            model,
        )
        return embedding_id

    def update(self, embedding_id: int, vector: ArrayLike, model: str) -> bool:
        """Replace the vector and model of an existing embedding row.

        Returns:
            True if the row existed and was updated; False otherwise.

        Raises:
            InvalidQueryError: If the vector or model name is invalid.
            StorageError: If the chunk already has an embedding for ``model``
                or the write fails.
        """
        if not model or not model.strip():
            msg = "Embedding model name cannot be empty"
            raise InvalidQueryError(msg)
        values = as_vector(vector)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE embeddings
                SET embedding_model = ?, dimension = ?, embedding_vector = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (model, int(values.size), values.tobytes(), int(embedding_id)),
            )
            updated = cursor.rowcount > 0

        if not updated:
            logger.warning("No embedding %s to update", embedding_id)
        return updated

    def batch_store(
        self,
        items: list[tuple[int, ArrayLike, str]],
    ) -> list[int | RetrievalError]:
        """Store several embeddings, collecting per-item failures.

        Returns:
            For each ``(chunk_id, vector, model)`` item, either the embedding
            id or the error that prevented storing it.
        """
        results: list[int | RetrievalError] = []
        for chunk_id, vector, model in items:
            try:
                results.append(self.store(chunk_id, vector, model))
            except RetrievalError as exc:
                logger.warning("Failed to store embedding for chunk %s: %s", chunk_id, exc)
                results.append(exc)
        stored = sum(1 for result in results if isinstance(result, int))
        logger.info("Batch stored %d of %d embeddings", stored, len(items))
        return results

    def get_embedding(self, chunk_id: int, model: str) -> Embedding | None:
        """Fetch the stored embedding of a chunk for one model.

        Returns:
            Embedding if present; otherwise None.
        """
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, chunk_id, embedding_model, dimension, embedding_vector
                FROM embeddings WHERE chunk_id = ? AND embedding_model = ?
                """,
                (int(chunk_id), model),
            ).fetchone()
        if row is None:
            return None
        embedding_id, stored_chunk_id, embedding_model, dimension, blob = row
        return Embedding(
            id=int(embedding_id),
            chunk_id=int(stored_chunk_id),
            embedding_model=embedding_model,
            dimension=int(dimension),
            vector=np.frombuffer(blob, dtype=np.float64).copy(),
        )

    def similarity_search(
        self,
        query_vector: ArrayLike,
        options: SimilaritySearchOptions | None = None,
    ) -> list[SearchResult]:
        """Rank stored embeddings by cosine similarity to ``query_vector``.

        Returns:
            Results at or above the threshold, most similar first. Equal
            scores keep candidate insertion order.

        Raises:
            InvalidQueryError: If the query vector is malformed or any
                candidate has a different dimension.
        """
        options = options or SimilaritySearchOptions()
        query = as_vector(query_vector)
        if options.limit <= 0:
            return []

        conditions: list[str] = []
        params: list[object] = []
        if options.model:
            conditions.append("e.embedding_model = ?")
            params.append(options.model)
        if options.source_type:
            conditions.append("c.source_type = ?")
            params.append(options.source_type)
        if options.source_id is not None:
            conditions.append("c.source_id = ?")
            params.append(int(options.source_id))
        if options.exclude_chunks:
            placeholders = ",".join("?" for _ in options.exclude_chunks)
            conditions.append(f"e.chunk_id NOT IN ({placeholders})")
            params.extend(int(chunk_id) for chunk_id in options.exclude_chunks)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(int(self.max_candidates))
        sql = (
            f"SELECT e.dimension, e.embedding_vector, {CHUNK_COLUMNS} "  # noqa: S608
            f"FROM embeddings e JOIN chunks c ON e.chunk_id = c.id "
            f"{where} ORDER BY e.id LIMIT ?"
        )

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        if not rows:
            return []

        chunks = []
        vectors = []
        for dimension, blob, *chunk_row in rows:
            if int(dimension) != query.size:
                msg = (
                    f"Dimension mismatch: query has {query.size}, "
                    f"chunk {chunk_row[0]} has {dimension}"
                )
                raise InvalidQueryError(msg)
            vector = np.frombuffer(blob, dtype=np.float64)
            if vector.size != query.size:
                logger.warning("Skipping malformed embedding for chunk %s", chunk_row[0])
                continue
            chunks.append(chunk_from_row(tuple(chunk_row)))
            vectors.append(vector)

        if not vectors:
            return []

        similarities = cosine_similarities(query, np.vstack(vectors))
        order = np.argsort(-similarities, kind="stable")

        results: list[SearchResult] = []
        for idx in order:
            score = float(similarities[idx])
            if score < options.threshold:
                continue
            results.append(
                SearchResult.from_chunk(
                    chunks[idx],
                    score=score,
                    search_type="semantic",
                    semantic_score=score,
                )
            )
            if len(results) >= options.limit:
                break

        logger.debug(
            "Similarity search scanned %d candidates, returned %d",
            len(vectors),
            len(results),
        )
        return results

    def search(
        self,
        query_text: str,
        options: SimilaritySearchOptions | None = None,
    ) -> list[SearchResult]:
        """Embed ``query_text`` and run a similarity search with it.

        Returns:
            Results as for :meth:`similarity_search`, restricted to the
            embedding model used for the query.

        Raises:
            EmptyQueryError: If the query text is empty.
            NotConfiguredError: If no embedding provider is set.
            ProviderUnavailableError: If the embedding call fails.
        """
        if not query_text or not query_text.strip():
            msg = "Query text cannot be empty"
            raise EmptyQueryError(msg)
        if self.embedding_provider is None:
            msg = "No embedding provider configured for vector search"
            raise NotConfiguredError(msg)

        options = options or SimilaritySearchOptions()
        model = options.model or self.embedding_provider.default_embedding_model
        query_vector = self.embedding_provider.generate_embedding(query_text, model)
        return self.similarity_search(query_vector, replace(options, model=model))

    def delete_by_chunk(self, chunk_id: int) -> int:
        """Remove every embedding of a chunk.

        Returns:
            Number of embeddings deleted.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM embeddings WHERE chunk_id = ?", (int(chunk_id),)
            )
            return cursor.rowcount

    def delete_by_model(self, model: str) -> int:
        """Remove every embedding produced by ``model``.

        Returns:
            Number of embeddings deleted.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM embeddings WHERE embedding_model = ?", (model,)
            )
            deleted = cursor.rowcount
        logger.info("Deleted %d embeddings for model %s", deleted, model)
        return deleted

    def get_statistics(self) -> VectorStoreStatistics:
        """Summarize stored embeddings.

        Returns:
            Total count and per-model count and average dimension.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT embedding_model, COUNT(*), AVG(dimension)
                FROM embeddings GROUP BY embedding_model ORDER BY embedding_model
                """
            ).fetchall()

        models = {
            model: ModelStatistics(count=int(count), avg_dimension=float(avg_dim))
            for model, count, avg_dim in rows
        }
        total = sum(stats.count for stats in models.values())
        return VectorStoreStatistics(total_embeddings=total, models=models)
