"""Face embedding helpers shared by the matcher backends and the resolver."""
from typing import Sequence, Union

import numpy as np

from face_access.core.exceptions import ShapeMismatchError, ValidationError

EmbeddingLike = Union[Sequence[float], np.ndarray]


def as_embedding(values: EmbeddingLike, dimension: int) -> np.ndarray:
    """Validate and convert an embedding to a float numpy vector.

    Args:
        values: Raw embedding values
        dimension: Expected number of elements

    Returns:
        1-D float64 numpy array

    Raises:
        ShapeMismatchError: If the embedding is not 1-D or has the wrong length
        ValidationError: If the embedding contains NaN or infinite values
    """
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Embedding is not numeric: {e}")

    if vector.ndim != 1 or vector.shape[0] != dimension:
        raise ShapeMismatchError(
            f"Embedding must have {dimension} elements, got shape {vector.shape}",
            details={"expected": dimension, "shape": list(vector.shape)},
        )
    if not np.all(np.isfinite(vector)):
        raise ValidationError("Embedding contains non-finite values")
    return vector


def cosine_distances(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Cosine distance (0-2) between a query vector and each candidate row.

    Zero-norm vectors are treated as orthogonal to everything (distance 1).
    """
    if candidates.size == 0:
        return np.empty(0, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    candidate_norms = np.linalg.norm(candidates, axis=1)
    denominator = candidate_norms * query_norm
    dots = candidates @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        similarity = np.where(denominator > 0, dots / denominator, 0.0)
    return 1.0 - np.clip(similarity, -1.0, 1.0)


def similarity_from_distance(distance: float) -> float:
    """Operator-facing similarity: 1.0 at distance 0, 0.0 at distance 2."""
    return 1.0 - distance / 2.0
