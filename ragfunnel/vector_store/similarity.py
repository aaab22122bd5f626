"""Exact cosine similarity helpers."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike

from ragfunnel.errors import InvalidQueryError


def as_vector(values: ArrayLike) -> np.ndarray:
    """Coerce ``values`` into a finite, non-empty float64 vector.

    Returns:
        One-dimensional float64 array.

    Raises:
        InvalidQueryError: If the input is empty, not one-dimensional or
            contains non-numeric or non-finite values.
    """
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        msg = "Embedding vector must contain only numbers"
        raise InvalidQueryError(msg) from exc

    if vector.ndim != 1 or vector.size == 0:
        msg = "Embedding vector must be a non-empty one-dimensional array"
        raise InvalidQueryError(msg)
    if not np.all(np.isfinite(vector)):
        msg = "Embedding vector contains NaN or infinite values"
        raise InvalidQueryError(msg)
    return vector


def cosine_similarity(first: ArrayLike, second: ArrayLike) -> float:
    """Cosine similarity of two vectors of equal dimension.

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero magnitude.

    Raises:
        InvalidQueryError: If the dimensions differ.
    """
    a = as_vector(first)
    b = as_vector(second)
    if a.shape != b.shape:
        msg = f"Dimension mismatch: {a.shape[0]} != {b.shape[0]}"
        raise InvalidQueryError(msg)

    magnitude = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if magnitude == 0.0:
        return 0.0
    similarity = float(np.dot(a, b)) / magnitude
    return max(-1.0, min(1.0, similarity))


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between ``query`` and every row of ``matrix``.

    Rows (or a query) with zero magnitude score 0.0.

    Returns:
        One similarity per row, clipped to [-1, 1].
    """
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)

    query_norm = float(np.linalg.norm(query))
    row_norms = np.linalg.norm(matrix, axis=1)
    denominators = row_norms * query_norm
    dots = matrix @ query

    similarities = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denominators > 0
    similarities[nonzero] = dots[nonzero] / denominators[nonzero]
    return np.clip(similarities, -1.0, 1.0)
