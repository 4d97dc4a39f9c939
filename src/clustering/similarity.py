"""
Cosine similarity primitive.

similarity = dot(a, b) / (|a| * |b|), distance = 1 - similarity.
Empty, mismatched or zero-norm inputs have similarity 0.0.
"""

from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine_similarity


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Cosine similarity in [-1.0, 1.0]; 0.0 for empty, mismatched or zero vectors
    """
    a = np.asarray(vec1, dtype=np.float64).ravel()
    b = np.asarray(vec2, dtype=np.float64).ravel()

    if a.size == 0 or b.size == 0 or a.size != b.size:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def cosine_distance(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(vec1, vec2)


def similarity_matrix(rows: np.ndarray, columns: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity; zero rows compare as 0.0."""
    return np.clip(_pairwise_cosine_similarity(rows, columns), -1.0, 1.0)


def distance_matrix(rows: np.ndarray, columns: np.ndarray) -> np.ndarray:
    """Pairwise cosine distance (1 - similarity)."""
    return 1.0 - similarity_matrix(rows, columns)
