"""
Embedding service wrapping the external face embedding model.
"""

import logging
from typing import Any, Callable, Optional, Sequence

import numpy as np

from face_auth.services.vector_math import LengthMismatchError, as_vector, l2_normalize

logger = logging.getLogger(__name__)


class ExtractionFailedError(Exception):
    """Raised when the embedding model cannot produce a usable vector."""
    pass


class EmbeddingService:
    """Validates vectors coming out of a face embedding model."""

    def __init__(
        self,
        embedder: Optional[Callable[[Any], Sequence[float]]] = None,
        embedding_dim: int = 128,
    ):
        """
        Initialize the embedding service.

        Args:
            embedder: Callable turning a cropped face image into a vector.
                      Optional when vectors are supplied by the caller.
            embedding_dim: Length L every embedding must have
        """
        self.embedder = embedder
        self.embedding_dim = embedding_dim

    def extract(self, image: Any) -> np.ndarray:
        """
        Generate an embedding from a cropped face image.

        Args:
            image: Image in whatever form the embedder accepts

        Returns:
            numpy.ndarray: raw (unnormalised) embedding of length embedding_dim

        Raises:
            ExtractionFailedError: If no embedder is configured, the model fails,
                                   or its output is not a valid embedding
        """
        if self.embedder is None:
            raise ExtractionFailedError("No embedding model configured")

        try:
            output = self.embedder(image)
        except Exception as e:
            logger.error(f"Embedding model failed: {e}")
            raise ExtractionFailedError(f"Embedding generation failed: {e}")

        if output is None:
            raise ExtractionFailedError("Embedding model returned no output")

        try:
            embedding = np.asarray(output, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise ExtractionFailedError(f"Embedding model returned non-numeric output: {e}")

        if not self.validate_embedding(embedding):
            raise ExtractionFailedError(
                f"Embedding model returned an invalid vector of shape {embedding.shape}"
            )

        logger.debug(f"Generated embedding with shape: {embedding.shape}")
        return embedding

    def validate_embedding(self, embedding: np.ndarray) -> bool:
        """
        Validate that an embedding has the correct format and dimensions.

        Args:
            embedding: Embedding vector to validate

        Returns:
            bool: True if embedding is valid, False otherwise
        """
        if not isinstance(embedding, np.ndarray):
            return False

        if embedding.ndim != 1 or embedding.shape[0] != self.embedding_dim:
            return False

        if not np.isfinite(embedding).all():
            return False

        if np.allclose(embedding, 0):
            return False

        return True

    def coerce(self, values) -> np.ndarray:
        """
        Turn caller-supplied values into an embedding of the configured length.

        Raises:
            LengthMismatchError: If the vector length differs from embedding_dim
            ValueError: If the values are not a finite 1-D numeric sequence
        """
        vector = as_vector(values)
        if vector.shape[0] != self.embedding_dim:
            raise LengthMismatchError(
                f"Embedding has {vector.shape[0]} values, expected {self.embedding_dim}"
            )
        if not np.isfinite(vector).all():
            raise ValueError("Embedding contains NaN or infinite values")
        return vector

    def prepare_probe(self, values) -> np.ndarray:
        """Coerce a recognition probe and L2-normalise it like stored embeddings."""
        return l2_normalize(self.coerce(values))

    def get_model_info(self) -> dict:
        return {
            "embedder_configured": self.embedder is not None,
            "embedding_dimension": self.embedding_dim,
        }
