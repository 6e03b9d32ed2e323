"""
Vector arithmetic operations for word embeddings.

Every function is pure: inputs are converted to float arrays and a new
array (or scalar) is returned, inputs are never modified in place.
"""
from typing import Sequence, Union

import numpy as np

from exceptions import DimensionMismatch, InvalidInput

VectorLike = Union[np.ndarray, Sequence[float]]

SUPPORTED_OPERATIONS = ("+", "-")


def as_vector(values: VectorLike) -> np.ndarray:
    """Return *values* as a 1-D float64 array (always a copy)."""
    return np.array(values, dtype=np.float64).reshape(-1)


def _check_dimensions(v1: np.ndarray, v2: np.ndarray) -> None:
    if v1.shape[0] != v2.shape[0]:
        raise DimensionMismatch(v1.shape[0], v2.shape[0])


def add_vectors(v1: VectorLike, v2: VectorLike) -> np.ndarray:
    a, b = as_vector(v1), as_vector(v2)
    _check_dimensions(a, b)
    return a + b


def subtract_vectors(v1: VectorLike, v2: VectorLike) -> np.ndarray:
    a, b = as_vector(v1), as_vector(v2)
    _check_dimensions(a, b)
    return a - b


def multiply_vector_by_scalar(vector: VectorLike, scalar: float) -> np.ndarray:
    return as_vector(vector) * float(scalar)


def magnitude(vector: VectorLike) -> float:
    return float(np.linalg.norm(as_vector(vector)))


def cosine_similarity(v1: VectorLike, v2: VectorLike) -> float:
    """
    Cosine of the angle between two vectors.

    Args:
        v1: First vector
        v2: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude
    """
    a, b = as_vector(v1), as_vector(v2)
    _check_dimensions(a, b)

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm1 * norm2))
    # Rounding can push identical vectors marginally past 1.0
    return max(-1.0, min(1.0, similarity))


def normalize_vector(vector: VectorLike) -> np.ndarray:
    """Scale to unit length; a zero vector comes back unchanged."""
    v = as_vector(vector)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


def euclidean_distance(v1: VectorLike, v2: VectorLike) -> float:
    a, b = as_vector(v1), as_vector(v2)
    _check_dimensions(a, b)
    return float(np.linalg.norm(a - b))


def manhattan_distance(v1: VectorLike, v2: VectorLike) -> float:
    a, b = as_vector(v1), as_vector(v2)
    _check_dimensions(a, b)
    return float(np.sum(np.abs(a - b)))


def perform_word_arithmetic(embedding1: VectorLike,
                            embedding2: VectorLike,
                            operation: str) -> np.ndarray:
    """
    Perform word arithmetic: word1 +/- word2.

    Subtraction is order sensitive: ``word1 - word2`` differs from
    ``word2 - word1``.

    Args:
        embedding1: Vector of the first word
        embedding2: Vector of the second word
        operation: "+" or "-"

    Returns:
        Combined vector
    """
    if operation == "+":
        return add_vectors(embedding1, embedding2)
    if operation == "-":
        return subtract_vectors(embedding1, embedding2)
    raise InvalidInput(f"Unsupported operation: {operation!r}")
