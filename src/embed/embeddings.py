"""
Text embedding generation using Vertex AI gemini-embedding-001.

Knowledge points and search queries must be embedded with the same model and
dimensionality, otherwise cosine similarity between them is meaningless.

Environment Variables:
    EMBEDDING_MODEL: Vertex AI embedding model (default: gemini-embedding-001)
    EMBEDDING_DIMENSIONS: Output dimensionality D (default: 768)
    GCP_PROJECT / GCP_REGION: Vertex AI project and region
"""

import os
import time
import logging
from typing import List, Optional

from google.api_core.exceptions import InternalServerError, ResourceExhausted, ServiceUnavailable
from google.cloud import aiplatform
from vertexai.language_models import TextEmbeddingModel

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = 'gemini-embedding-001'
DEFAULT_EMBEDDING_DIMENSIONS = 768

# Retry configuration
MAX_RETRIES = 3
INITIAL_BACKOFF = 1  # seconds
MAX_BACKOFF = 32  # seconds


class EmbeddingError(Exception):
    """Embedding generation failed after retries."""


class EmbeddingProvider:
    """
    Lazily initialised Vertex AI embedding client.

    Args:
        model_name: Embedding model (EMBEDDING_MODEL env var or gemini-embedding-001)
        dimensions: Output dimensionality (EMBEDDING_DIMENSIONS env var or 768)
        model: Pre-built model object exposing get_embeddings() (tests inject a mock)
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        model=None
    ):
        self.model_name = model_name or os.environ.get('EMBEDDING_MODEL', DEFAULT_EMBEDDING_MODEL)
        self.dimensions = dimensions or int(
            os.environ.get('EMBEDDING_DIMENSIONS', str(DEFAULT_EMBEDDING_DIMENSIONS))
        )
        self.project_id = project_id or os.environ.get('GCP_PROJECT')
        self.region = region or os.environ.get('GCP_REGION', 'europe-west4')
        self._model = model

    def _get_model(self):
        if self._model is None:
            logger.info(f"Initializing Vertex AI in project={self.project_id}, region={self.region}")
            aiplatform.init(project=self.project_id, location=self.region)

            logger.info(f"Loading {self.model_name} model...")
            self._model = TextEmbeddingModel.from_pretrained(self.model_name)
        return self._model

    def embed(self, text: str) -> List[float]:
        """
        Generate a D-dimensional embedding for one text.

        Raises:
            EmbeddingError: If generation fails after retries or returns the
                wrong dimensionality
        """
        model = self._get_model()
        backoff = INITIAL_BACKOFF

        for attempt in range(MAX_RETRIES):
            try:
                embeddings = model.get_embeddings([text], output_dimensionality=self.dimensions)
                vector = list(embeddings[0].values)
                break

            except (ResourceExhausted, InternalServerError, ServiceUnavailable) as e:
                if attempt < MAX_RETRIES - 1:
                    logger.warning(
                        f"Embedding API error (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying after {backoff}s: {e}"
                    )
                    time.sleep(backoff)
                    backoff = min(backoff * 2, MAX_BACKOFF)
                else:
                    logger.error(f"Embedding API error after {MAX_RETRIES} attempts: {e}")
                    raise EmbeddingError(f"Embedding generation failed: {e}") from e

            except Exception as e:
                logger.error(f"Unexpected error generating embedding: {e}")
                raise EmbeddingError(f"Embedding generation failed: {e}") from e

        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Expected {self.dimensions}-dimensional embedding, got {len(vector)}"
            )

        return vector

    def zero_vector(self) -> List[float]:
        """Neutral vector used when embedding fails; similar to nothing."""
        return [0.0] * self.dimensions

    def embed_or_zero(self, text: str) -> List[float]:
        try:
            return self.embed(text)
        except EmbeddingError as e:
            logger.warning(f"Falling back to zero vector: {e}")
            return self.zero_vector()
