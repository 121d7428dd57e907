"""
Vector primitives for face embeddings.

Cosine similarity, euclidean distance, element-wise averaging and L2
normalisation over fixed-length embedding vectors, plus the JSON text form
used to store an embedding.
"""

import json
import logging
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class LengthMismatchError(ValueError):
    """Raised when vectors of different length are compared or combined."""
    pass


class EmptyInputError(ValueError):
    """Raised when averaging an empty sequence of vectors."""
    pass


class EmbeddingFormatError(ValueError):
    """Raised when a stored embedding cannot be decoded."""
    pass


def as_vector(values) -> np.ndarray:
    """Coerce a sequence of numbers to a 1-D float64 array."""
    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim != 1:
        raise ValueError(f"Embedding must be one-dimensional, got shape {vector.shape}")
    return vector


def _check_lengths(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise LengthMismatchError(f"Embedding lengths don't match: {a.shape[0]} vs {b.shape[0]}")


def cosine_similarity(a, b) -> float:
    """
    Compute cosine similarity between two embeddings.

    Args:
        a: First embedding vector
        b: Second embedding vector

    Returns:
        float: Similarity in [-1, 1]; 0.0 when either vector has zero norm

    Raises:
        LengthMismatchError: If the vectors differ in length
    """
    a = as_vector(a)
    b = as_vector(b)
    _check_lengths(a, b)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = np.dot(a, b) / (norm_a * norm_b)
    return float(np.clip(similarity, -1.0, 1.0))


def euclidean_distance(a, b) -> float:
    """Straight-line distance between two embeddings of equal length."""
    a = as_vector(a)
    b = as_vector(b)
    _check_lengths(a, b)
    return float(np.linalg.norm(a - b))


def average(vectors: Sequence) -> np.ndarray:
    """
    Element-wise mean of a non-empty sequence of equal-length embeddings.

    Raises:
        EmptyInputError: If no vectors are given
        LengthMismatchError: If the vectors differ in length
    """
    if len(vectors) == 0:
        raise EmptyInputError("Cannot average an empty sequence of embeddings")

    stacked = [as_vector(v) for v in vectors]
    first = stacked[0]
    for other in stacked[1:]:
        _check_lengths(first, other)

    return np.mean(np.stack(stacked), axis=0)


def l2_normalize(v) -> np.ndarray:
    """Scale a vector to unit length; a zero vector is returned unchanged."""
    v = as_vector(v)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


def embedding_to_json(v) -> str:
    """Serialize an embedding as a JSON array of decimals in index order."""
    return json.dumps([float(x) for x in as_vector(v)])


def embedding_from_json(text: str, expected_length: Optional[int] = None) -> np.ndarray:
    """
    Decode an embedding stored with embedding_to_json.

    Args:
        text: JSON array text
        expected_length: If given, the decoded vector must have exactly this length

    Raises:
        EmbeddingFormatError: On malformed JSON, non-numeric items or a length mismatch
    """
    try:
        values = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise EmbeddingFormatError(f"Embedding is not valid JSON: {e}")

    if not isinstance(values, list):
        raise EmbeddingFormatError("Embedding JSON must be an array")

    if any(isinstance(x, bool) or not isinstance(x, (int, float)) for x in values):
        raise EmbeddingFormatError("Embedding JSON must contain only numbers")

    if expected_length is not None and len(values) != expected_length:
        raise EmbeddingFormatError(
            f"Embedding has {len(values)} values, expected {expected_length}"
        )

    return np.array(values, dtype=np.float64)
